"""Content checksums propagated into pod-template annotations.

A workload's pod template carries one annotation per tracked input
(secret, configmap). When the input content changes, the annotation
changes and the workload controller rolls the pods.
"""

import base64
import hashlib
import json
import threading
from typing import Any


def _encode(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode('ascii')
    if isinstance(value, dict):
        return {str(k): _encode(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode(v) for v in value]
    return value


def compute_checksum(content: Any) -> str:
    """Return the hex SHA-256 of content.

    Raw bytes and str are hashed directly. Mappings and sequences are
    serialized to canonical JSON first (sorted keys, bytes as base64),
    so equal secret data always yields an equal checksum regardless of
    insertion order.
    """
    if isinstance(content, (bytes, bytearray)):
        data = bytes(content)
    elif isinstance(content, str):
        data = content.encode('utf-8')
    else:
        data = json.dumps(_encode(content), sort_keys=True, separators=(',', ':')).encode('utf-8')
    return hashlib.sha256(data).hexdigest()


class ChecksumMap:
    """Artifact key to checksum, rendered as pod-template annotations.

    Each key is owned by exactly one writer. Writing the same value twice
    is a no-op; writing a different value to an occupied key raises.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._checksums: dict[str, str] = {}

    def set(self, key: str, checksum: str) -> None:
        """Record a checksum.

        Raises:
            ValueError: If key already holds a different checksum
        """
        with self._lock:
            existing = self._checksums.get(key)
            if existing is not None and existing != checksum:
                raise ValueError(f"checksum slot '{key}' already written")
            self._checksums[key] = checksum

    def track(self, key: str, content: Any) -> str:
        """Compute and record the checksum of content; return it."""
        checksum = compute_checksum(content)
        self.set(key, checksum)
        return checksum

    def get(self, key: str) -> str:
        with self._lock:
            return self._checksums[key]

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._checksums

    def __len__(self) -> int:
        with self._lock:
            return len(self._checksums)

    def annotations(self) -> dict[str, str]:
        """Snapshot of all recorded checksums, sorted by key."""
        with self._lock:
            return dict(sorted(self._checksums.items()))
