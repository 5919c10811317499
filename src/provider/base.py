"""Capability sets every vendor implements.

InfrastructureProvider describes the hosting cluster's shape (volume
provisioner, load balancer, public endpoint). BackupProvider owns the
lifecycle of the data store's backup bucket and the sidecar configuration
that points at it.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from common import check_cancelled, wait_until
from config import PollSettings
from errors import NotFoundError

logger = logging.getLogger(__name__)


def secret_env_var(name: str, secret_name: str, key: str) -> dict:
    """Container env var sourced from a secret key."""
    return {
        'name': name,
        'valueFrom': {'secretKeyRef': {'name': secret_name, 'key': key}},
    }


def first_ingress(service: dict) -> dict:
    """First load-balancer ingress entry of a Service, or {}."""
    ingress = (((service.get('status') or {}).get('loadBalancer') or {}).get('ingress')) or []
    return ingress[0] if ingress else {}


class InfrastructureProvider(ABC):
    """Hosting-cluster shape for one vendor."""

    name: str = ''

    @abstractmethod
    def storage_class_config(self) -> tuple[str, dict[str, str]]:
        """(volume provisioner, storage class parameters) for data store volumes."""

    @abstractmethod
    def load_balancer_address(self, service: dict) -> str:
        """Address assigned to a LoadBalancer service, '' while pending."""

    @abstractmethod
    def kube_apiserver_url(self, dns_access_domain: Optional[str], load_balancer: str) -> str:
        """Public URL of the front-end API server."""


@dataclass
class BackupConfig:
    """Sidecar configuration for the backup bucket.

    Attributes:
        storage_provider: Vendor name understood by the backup sidecar
        secret_data: Content of the backup secret
        environment: Env vars injected into the sidecar container
    """
    storage_provider: str
    secret_data: dict[str, bytes]
    environment: list[dict] = field(default_factory=list)


class BackupProvider(ABC):
    """Backup bucket lifecycle for one vendor.

    Subclasses implement the primitive calls; delete_bucket() composes
    them into an idempotent purge-then-delete.
    """

    storage_provider: str = ''

    def __init__(self, bucket_name: str, region: str):
        self.bucket_name = bucket_name
        self.region = region

    @abstractmethod
    def create_bucket(self) -> None:
        """Create the bucket; an existing bucket owned by us is not an error."""

    @abstractmethod
    def bucket_exists(self) -> bool:
        """Whether the bucket currently exists."""

    @abstractmethod
    def _list_objects(self, marker: Optional[str]) -> tuple[list[str], Optional[str]]:
        """One page of object keys and the marker for the next page (None when done).

        Raises:
            NotFoundError: If the bucket does not exist
        """

    @abstractmethod
    def _delete_objects(self, keys: list[str]) -> None:
        """Delete the given objects; missing ones are ignored."""

    @abstractmethod
    def _delete_empty_bucket(self) -> None:
        """Delete the (purged) bucket.

        Raises:
            NotFoundError: If the bucket does not exist
        """

    @abstractmethod
    def compute_backup_config(self, mount_path: str, secret_name: str) -> BackupConfig:
        """Sidecar configuration.

        Args:
            mount_path: Where the backup secret is mounted in the sidecar
            secret_name: Name of the backup secret, for secretKeyRef env vars
        """

    def delete_bucket(self, poll: Optional[PollSettings] = None,
                      cancel: Optional[threading.Event] = None) -> None:
        """Purge all objects page by page, delete the bucket, wait until it is gone.

        An absent bucket is success, so calling this twice is safe.
        """
        if not self.bucket_exists():
            logger.info(f"Backup bucket '{self.bucket_name}' does not exist, nothing to delete")
            return

        logger.info(f"Deleting objects of backup bucket '{self.bucket_name}'")
        marker: Optional[str] = None
        while True:
            check_cancelled(cancel, f"purging bucket '{self.bucket_name}'")
            try:
                keys, marker = self._list_objects(marker)
            except NotFoundError:
                return
            if keys:
                logger.debug(f"Deleting {len(keys)} objects from '{self.bucket_name}'")
                self._delete_objects(keys)
            if not marker:
                break

        logger.info(f"Deleting backup bucket '{self.bucket_name}'")
        try:
            self._delete_empty_bucket()
        except NotFoundError:
            return

        if poll is not None:
            wait_until(
                lambda: not self.bucket_exists(),
                timeout=poll.timeout,
                interval=poll.interval,
                description=f"bucket '{self.bucket_name}' to be deleted",
                cancel=cancel,
            )
