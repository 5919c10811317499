"""AWS: EBS volumes, ELB hostnames, S3 backup buckets."""

import logging
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from errors import NotFoundError, TransportError
from provider.base import BackupConfig, BackupProvider, InfrastructureProvider, first_ingress, secret_env_var

logger = logging.getLogger(__name__)

DATA_KEY_ACCESS_KEY_ID = 'accessKeyID'
DATA_KEY_SECRET_ACCESS_KEY = 'secretAccessKey'
DATA_KEY_REGION = 'region'

_NOT_FOUND_CODES = {'404', 'NoSuchBucket', 'NotFound'}


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get('Error', {}).get('Code', ''))


class AWSInfrastructureProvider(InfrastructureProvider):
    name = 'aws'

    def storage_class_config(self) -> tuple[str, dict[str, str]]:
        return 'kubernetes.io/aws-ebs', {'type': 'gp2', 'encrypted': 'true'}

    def load_balancer_address(self, service: dict) -> str:
        return first_ingress(service).get('hostname') or ''

    def kube_apiserver_url(self, dns_access_domain: Optional[str], load_balancer: str) -> str:
        return f"https://{load_balancer}:443"


class S3BackupProvider(BackupProvider):
    """Backup bucket in S3.

    Args:
        bucket_name: Bucket to manage
        region: AWS region
        credentials: Credential bag with accessKeyID and secretAccessKey
        client: Pre-built S3 client (tests); built from credentials otherwise
    """

    storage_provider = 'S3'
    page_size = 1000

    def __init__(self, bucket_name: str, region: str, credentials: dict[str, str], client=None):
        super().__init__(bucket_name, region)
        self.access_key_id = credentials[DATA_KEY_ACCESS_KEY_ID]
        self.secret_access_key = credentials[DATA_KEY_SECRET_ACCESS_KEY]
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client(
                's3',
                region_name=self.region,
                aws_access_key_id=self.access_key_id,
                aws_secret_access_key=self.secret_access_key,
            )
        return self._client

    def create_bucket(self) -> None:
        logger.info(f"Ensuring that S3 backup bucket '{self.bucket_name}' exists")
        kwargs: dict = {'Bucket': self.bucket_name}
        if self.region != 'us-east-1':
            kwargs['CreateBucketConfiguration'] = {'LocationConstraint': self.region}
        try:
            self.client.create_bucket(**kwargs)
        except ClientError as e:
            if _error_code(e) != 'BucketAlreadyOwnedByYou':
                raise TransportError(f"failed to create S3 bucket '{self.bucket_name}': {e}") from e
        except BotoCoreError as e:
            raise TransportError(f"failed to create S3 bucket '{self.bucket_name}': {e}") from e
        self.client.get_waiter('bucket_exists').wait(Bucket=self.bucket_name)

    def bucket_exists(self) -> bool:
        try:
            self.client.head_bucket(Bucket=self.bucket_name)
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                return False
            raise TransportError(f"failed to check S3 bucket '{self.bucket_name}': {e}") from e
        return True

    def _list_objects(self, marker: Optional[str]) -> tuple[list[str], Optional[str]]:
        kwargs: dict = {'Bucket': self.bucket_name, 'MaxKeys': self.page_size}
        if marker:
            kwargs['ContinuationToken'] = marker
        try:
            result = self.client.list_objects_v2(**kwargs)
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                raise NotFoundError(f"S3 bucket '{self.bucket_name}' not found") from e
            raise TransportError(f"failed to list S3 bucket '{self.bucket_name}': {e}") from e
        keys = [obj['Key'] for obj in result.get('Contents', [])]
        next_marker = result.get('NextContinuationToken') if result.get('IsTruncated') else None
        return keys, next_marker

    def _delete_objects(self, keys: list[str]) -> None:
        try:
            self.client.delete_objects(
                Bucket=self.bucket_name,
                Delete={'Objects': [{'Key': k} for k in keys], 'Quiet': True},
            )
        except ClientError as e:
            raise TransportError(f"failed to delete objects in S3 bucket '{self.bucket_name}': {e}") from e

    def _delete_empty_bucket(self) -> None:
        try:
            self.client.delete_bucket(Bucket=self.bucket_name)
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                raise NotFoundError(f"S3 bucket '{self.bucket_name}' not found") from e
            raise TransportError(f"failed to delete S3 bucket '{self.bucket_name}': {e}") from e

    def compute_backup_config(self, mount_path: str, secret_name: str) -> BackupConfig:
        return BackupConfig(
            storage_provider=self.storage_provider,
            secret_data={
                DATA_KEY_ACCESS_KEY_ID: self.access_key_id.encode('utf-8'),
                DATA_KEY_SECRET_ACCESS_KEY: self.secret_access_key.encode('utf-8'),
                DATA_KEY_REGION: self.region.encode('utf-8'),
            },
            environment=[
                secret_env_var('AWS_ACCESS_KEY_ID', secret_name, DATA_KEY_ACCESS_KEY_ID),
                secret_env_var('AWS_SECRET_ACCESS_KEY', secret_name, DATA_KEY_SECRET_ACCESS_KEY),
                secret_env_var('AWS_REGION', secret_name, DATA_KEY_REGION),
            ],
        )
