"""ResourceStore backed by a live cluster through the kubernetes dynamic client."""

import logging
from pathlib import Path
from typing import Optional

import urllib3
import yaml
from kubernetes import client, config
from kubernetes.dynamic import DynamicClient
from kubernetes.dynamic.exceptions import DynamicApiError, ResourceNotFoundError

from errors import AlreadyExistsError, ConflictError, DriverError, NotFoundError, TransportError
from store.base import ResourceStore
from store.objects import ObjectRef

logger = logging.getLogger(__name__)


def _translate(exc: DynamicApiError, verb: str, ref: ObjectRef) -> DriverError:
    """Map an API error to the driver taxonomy."""
    status = getattr(exc, 'status', None)
    message = f"{verb} {ref}: {getattr(exc, 'reason', exc)}"
    if status == 404:
        return NotFoundError(message)
    if status == 409:
        if verb == 'create':
            return AlreadyExistsError(message)
        return ConflictError(message)
    return TransportError(f"{message} (status {status})")


class KubernetesStore(ResourceStore):
    """Dynamic-client store for the hosting cluster."""

    def __init__(self, api_client: client.ApiClient):
        self._api_client = api_client
        self._dynamic = DynamicClient(api_client)

    @classmethod
    def from_kubeconfig(cls, path: Optional[Path] = None, inline: Optional[str] = None) -> 'KubernetesStore':
        """Connect using a kubeconfig file, an inline kubeconfig, or in-cluster config.

        Raises:
            TransportError: If no usable configuration is found
        """
        try:
            if inline:
                configuration = client.Configuration()
                config.load_kube_config_from_dict(
                    yaml.safe_load(inline), client_configuration=configuration)
                api_client = client.ApiClient(configuration=configuration)
            elif path:
                api_client = config.new_client_from_config(config_file=str(path))
            else:
                config.load_incluster_config()
                api_client = client.ApiClient()
        except (config.ConfigException, yaml.YAMLError) as e:
            raise TransportError(f"cannot load hosting cluster config: {e}") from e
        return cls(api_client)

    @property
    def configuration(self) -> client.Configuration:
        return self._api_client.configuration

    def _resource(self, api_version: str, kind: str, verb: str, ref: ObjectRef):
        try:
            return self._dynamic.resources.get(api_version=api_version, kind=kind)
        except ResourceNotFoundError as e:
            raise NotFoundError(f"{verb} {ref}: kind not served by the cluster") from e
        except urllib3.exceptions.HTTPError as e:
            raise TransportError(f"{verb} {ref}: {e}") from e

    def _call(self, verb: str, ref: ObjectRef, fn, **kwargs):
        resource = self._resource(ref.api_version, ref.kind, verb, ref)
        if ref.namespace and resource.namespaced:
            kwargs['namespace'] = ref.namespace
        try:
            return fn(resource, **kwargs)
        except DynamicApiError as e:
            raise _translate(e, verb, ref) from e
        except urllib3.exceptions.HTTPError as e:
            raise TransportError(f"{verb} {ref}: {e}") from e

    def get(self, ref: ObjectRef) -> dict:
        result = self._call('get', ref, lambda r, **kw: r.get(name=ref.name, **kw))
        return result.to_dict()

    def create(self, obj: dict) -> dict:
        ref = ObjectRef.of(obj)
        result = self._call('create', ref, lambda r, **kw: r.create(body=obj, **kw))
        logger.debug(f"Created {ref}")
        return result.to_dict()

    def update(self, obj: dict) -> dict:
        ref = ObjectRef.of(obj)
        result = self._call('update', ref, lambda r, **kw: r.replace(body=obj, **kw))
        logger.debug(f"Updated {ref}")
        return result.to_dict()

    def delete(self, ref: ObjectRef) -> None:
        self._call('delete', ref, lambda r, **kw: r.delete(name=ref.name, **kw))
        logger.debug(f"Deleted {ref}")

    def list(self, api_version: str, kind: str, namespace: Optional[str] = None) -> list[dict]:
        ref = ObjectRef(api_version, kind, '*', namespace)
        result = self._call('list', ref, lambda r, **kw: r.get(**kw)).to_dict()
        items = result.get('items') or []
        # list responses omit per-item type fields
        for item in items:
            item.setdefault('apiVersion', api_version)
            item.setdefault('kind', kind)
        return items
