"""Object identity and helpers for plain-dict cluster objects.

Objects are carried as the dicts the API server serves (apiVersion, kind,
metadata, then kind-specific fields). Secret data is base64 on the wire;
the helpers here convert to and from raw bytes.
"""

import base64
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ObjectRef:
    """Identity of a cluster object.

    Attributes:
        api_version: e.g. 'v1', 'apps/v1'
        kind: e.g. 'Secret', 'StatefulSet'
        name: Object name
        namespace: Namespace, or None for cluster-scoped kinds
    """
    api_version: str
    kind: str
    name: str
    namespace: Optional[str] = None

    @classmethod
    def of(cls, obj: dict) -> 'ObjectRef':
        """Identity of an object dict."""
        metadata = obj.get('metadata', {})
        return cls(
            api_version=obj['apiVersion'],
            kind=obj['kind'],
            name=metadata['name'],
            namespace=metadata.get('namespace'),
        )

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.kind} {self.namespace}/{self.name}"
        return f"{self.kind} {self.name}"


def empty_object(ref: ObjectRef) -> dict:
    """Zero-value object carrying only its identity."""
    metadata: dict = {'name': ref.name}
    if ref.namespace:
        metadata['namespace'] = ref.namespace
    return {'apiVersion': ref.api_version, 'kind': ref.kind, 'metadata': metadata}


def secret_ref(name: str, namespace: str) -> ObjectRef:
    return ObjectRef('v1', 'Secret', name, namespace)


def configmap_ref(name: str, namespace: str) -> ObjectRef:
    return ObjectRef('v1', 'ConfigMap', name, namespace)


def encode_secret_data(data: dict[str, bytes]) -> dict[str, str]:
    return {k: base64.b64encode(v).decode('ascii') for k, v in data.items()}


def decode_secret_data(obj: dict) -> dict[str, bytes]:
    """Raw bytes of a Secret's data section."""
    return {k: base64.b64decode(v) for k, v in (obj.get('data') or {}).items()}


def annotations_of(obj: dict) -> dict:
    """Mutable annotations map of obj, created if missing."""
    metadata = obj.setdefault('metadata', {})
    if metadata.get('annotations') is None:
        metadata['annotations'] = {}
    return metadata['annotations']


def labels_of(obj: dict) -> dict:
    """Mutable labels map of obj, created if missing."""
    metadata = obj.setdefault('metadata', {})
    if metadata.get('labels') is None:
        metadata['labels'] = {}
    return metadata['labels']
