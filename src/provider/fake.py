"""In-memory vendor for tests and dry runs."""

import logging
import threading
from typing import Optional

from errors import NotFoundError
from provider.base import BackupConfig, BackupProvider, InfrastructureProvider, first_ingress

logger = logging.getLogger(__name__)


class FakeInfrastructureProvider(InfrastructureProvider):
    name = 'fake'

    def storage_class_config(self) -> tuple[str, dict[str, str]]:
        return 'kubernetes.io/no-provisioner', {}

    def load_balancer_address(self, service: dict) -> str:
        ingress = first_ingress(service)
        return ingress.get('ip') or ingress.get('hostname') or ''

    def kube_apiserver_url(self, dns_access_domain: Optional[str], load_balancer: str) -> str:
        return f"https://{load_balancer}:443"


class FakeObjectStore:
    """Buckets and their object keys, shared between fake providers."""

    def __init__(self):
        self._lock = threading.Lock()
        self.buckets: dict[str, list[str]] = {}
        self.list_calls = 0

    def put(self, bucket: str, key: str) -> None:
        with self._lock:
            self.buckets[bucket].append(key)


class FakeBackupProvider(BackupProvider):
    """Backup provider over a FakeObjectStore.

    The sidecar configuration echoes the credential bag as secret data.
    """

    storage_provider = 'Fake'

    def __init__(self, bucket_name: str, region: str, credentials: dict[str, str],
                 store: Optional[FakeObjectStore] = None, page_size: int = 2):
        super().__init__(bucket_name, region)
        self.credentials = dict(credentials)
        self.store = store or FakeObjectStore()
        self.page_size = page_size

    def create_bucket(self) -> None:
        with self.store._lock:
            self.store.buckets.setdefault(self.bucket_name, [])

    def bucket_exists(self) -> bool:
        with self.store._lock:
            return self.bucket_name in self.store.buckets

    def _list_objects(self, marker: Optional[str]) -> tuple[list[str], Optional[str]]:
        with self.store._lock:
            self.store.list_calls += 1
            if self.bucket_name not in self.store.buckets:
                raise NotFoundError(f"fake bucket '{self.bucket_name}' not found")
            keys = sorted(self.store.buckets[self.bucket_name])
        if marker:
            keys = [k for k in keys if k > marker]
        page = keys[:self.page_size]
        next_marker = page[-1] if len(keys) > self.page_size else None
        return page, next_marker

    def _delete_objects(self, keys: list[str]) -> None:
        with self.store._lock:
            remaining = self.store.buckets.get(self.bucket_name, [])
            self.store.buckets[self.bucket_name] = [k for k in remaining if k not in set(keys)]

    def _delete_empty_bucket(self) -> None:
        with self.store._lock:
            if self.bucket_name not in self.store.buckets:
                raise NotFoundError(f"fake bucket '{self.bucket_name}' not found")
            if self.store.buckets[self.bucket_name]:
                raise ValueError(f"fake bucket '{self.bucket_name}' is not empty")
            del self.store.buckets[self.bucket_name]

    def compute_backup_config(self, mount_path: str, secret_name: str) -> BackupConfig:
        return BackupConfig(
            storage_provider=self.storage_provider,
            secret_data={k: v.encode('utf-8') for k, v in self.credentials.items()},
            environment=[],
        )
