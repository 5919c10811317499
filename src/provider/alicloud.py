"""Alibaba Cloud: cloud disks, SLB IPs, OSS backup buckets."""

import logging
from typing import Optional

import oss2
from oss2 import exceptions as oss_exceptions

from errors import NotFoundError, TransportError
from provider.base import BackupConfig, BackupProvider, InfrastructureProvider, first_ingress, secret_env_var

logger = logging.getLogger(__name__)

DATA_KEY_ACCESS_KEY_ID = 'accessKeyID'
DATA_KEY_ACCESS_KEY_SECRET = 'accessKeySecret'
DATA_KEY_STORAGE_ENDPOINT = 'storageEndpoint'


def storage_endpoint(region: str) -> str:
    """OSS endpoint for a region; values that already look like hosts pass through."""
    if '.' in region:
        return region
    return f"https://oss-{region}.aliyuncs.com"


class AlicloudInfrastructureProvider(InfrastructureProvider):
    name = 'alicloud'

    def storage_class_config(self) -> tuple[str, dict[str, str]]:
        return 'diskplugin.csi.alibabacloud.com', {'type': 'cloud_ssd'}

    def load_balancer_address(self, service: dict) -> str:
        return first_ingress(service).get('ip') or ''

    def kube_apiserver_url(self, dns_access_domain: Optional[str], load_balancer: str) -> str:
        return f"https://{load_balancer}:443"


class OSSBackupProvider(BackupProvider):
    """Backup bucket in Alibaba Cloud OSS.

    Args:
        bucket_name: Bucket to manage
        region: OSS region or endpoint
        credentials: Credential bag with accessKeyID and accessKeySecret
        bucket: Pre-built oss2.Bucket (tests); built from credentials otherwise
    """

    storage_provider = 'OSS'
    page_size = 1000

    def __init__(self, bucket_name: str, region: str, credentials: dict[str, str], bucket=None):
        super().__init__(bucket_name, region)
        self.access_key_id = credentials[DATA_KEY_ACCESS_KEY_ID]
        self.access_key_secret = credentials[DATA_KEY_ACCESS_KEY_SECRET]
        self.endpoint = storage_endpoint(region)
        self._bucket = bucket

    @property
    def bucket(self) -> oss2.Bucket:
        if self._bucket is None:
            auth = oss2.Auth(self.access_key_id, self.access_key_secret)
            self._bucket = oss2.Bucket(auth, self.endpoint, self.bucket_name)
        return self._bucket

    def create_bucket(self) -> None:
        if self.bucket_exists():
            return
        logger.info(f"Creating OSS backup bucket '{self.bucket_name}'")
        try:
            self.bucket.create_bucket(oss2.BUCKET_ACL_PRIVATE)
        except oss_exceptions.OssError as e:
            raise TransportError(f"failed to create OSS bucket '{self.bucket_name}': {e}") from e

    def bucket_exists(self) -> bool:
        try:
            self.bucket.get_bucket_info()
        except oss_exceptions.NoSuchBucket:
            return False
        except oss_exceptions.OssError as e:
            raise TransportError(f"failed to check OSS bucket '{self.bucket_name}': {e}") from e
        return True

    def _list_objects(self, marker: Optional[str]) -> tuple[list[str], Optional[str]]:
        logger.debug(f"Listing objects of '{self.bucket_name}' from marker '{marker or ''}'")
        try:
            result = self.bucket.list_objects(marker=marker or '', max_keys=self.page_size)
        except oss_exceptions.NoSuchBucket as e:
            raise NotFoundError(f"OSS bucket '{self.bucket_name}' not found") from e
        except oss_exceptions.OssError as e:
            raise TransportError(f"failed to list OSS bucket '{self.bucket_name}': {e}") from e
        keys = [obj.key for obj in result.object_list]
        return keys, (result.next_marker if result.is_truncated else None)

    def _delete_objects(self, keys: list[str]) -> None:
        try:
            self.bucket.batch_delete_objects(keys)
        except oss_exceptions.OssError as e:
            raise TransportError(f"failed to delete objects in OSS bucket '{self.bucket_name}': {e}") from e

    def _delete_empty_bucket(self) -> None:
        try:
            self.bucket.delete_bucket()
        except oss_exceptions.NoSuchBucket as e:
            raise NotFoundError(f"OSS bucket '{self.bucket_name}' not found") from e
        except oss_exceptions.OssError as e:
            raise TransportError(f"failed to delete OSS bucket '{self.bucket_name}': {e}") from e

    def compute_backup_config(self, mount_path: str, secret_name: str) -> BackupConfig:
        return BackupConfig(
            storage_provider=self.storage_provider,
            secret_data={
                DATA_KEY_ACCESS_KEY_ID: self.access_key_id.encode('utf-8'),
                DATA_KEY_ACCESS_KEY_SECRET: self.access_key_secret.encode('utf-8'),
                DATA_KEY_STORAGE_ENDPOINT: self.endpoint.encode('utf-8'),
            },
            environment=[
                secret_env_var('ALICLOUD_ACCESS_KEY_ID', secret_name, DATA_KEY_ACCESS_KEY_ID),
                secret_env_var('ALICLOUD_ACCESS_KEY_SECRET', secret_name, DATA_KEY_ACCESS_KEY_SECRET),
                secret_env_var('ALICLOUD_ENDPOINT', secret_name, DATA_KEY_STORAGE_ENDPOINT),
            ],
        )
