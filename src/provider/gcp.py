"""GCP: persistent disks, load balancer IPs, GCS backup buckets."""

import json
import logging
from typing import Optional

from google.api_core import exceptions as gexceptions
from google.cloud import storage

from errors import NotFoundError, TransportError, ValidationError
from provider.base import BackupConfig, BackupProvider, InfrastructureProvider, first_ingress

logger = logging.getLogger(__name__)

DATA_KEY_SERVICE_ACCOUNT_JSON = 'serviceaccount.json'


def extract_project_id(service_account_json: str) -> str:
    """project_id of a service account key.

    Raises:
        ValidationError: If the JSON is malformed or has no project_id
    """
    try:
        project_id = json.loads(service_account_json).get('project_id')
    except (ValueError, AttributeError) as e:
        raise ValidationError([f"service account JSON is invalid: {e}"]) from e
    if not project_id:
        raise ValidationError(["service account JSON has no project_id"])
    return project_id


class GCPInfrastructureProvider(InfrastructureProvider):
    name = 'gcp'

    def storage_class_config(self) -> tuple[str, dict[str, str]]:
        return 'kubernetes.io/gce-pd', {'type': 'pd-ssd'}

    def load_balancer_address(self, service: dict) -> str:
        return first_ingress(service).get('ip') or ''

    def kube_apiserver_url(self, dns_access_domain: Optional[str], load_balancer: str) -> str:
        return f"https://api.{dns_access_domain}:443"


class GCSBackupProvider(BackupProvider):
    """Backup bucket in Google Cloud Storage.

    Args:
        bucket_name: Bucket to manage
        region: Bucket location
        credentials: Credential bag with serviceaccount.json
        client: Pre-built storage client (tests); built from credentials otherwise
    """

    storage_provider = 'GCS'
    page_size = 1000

    def __init__(self, bucket_name: str, region: str, credentials: dict[str, str], client=None):
        super().__init__(bucket_name, region)
        if DATA_KEY_SERVICE_ACCOUNT_JSON not in credentials:
            raise ValidationError([f"credentials have no '{DATA_KEY_SERVICE_ACCOUNT_JSON}'"])
        self.service_account_json = credentials[DATA_KEY_SERVICE_ACCOUNT_JSON]
        self.project_id = extract_project_id(self.service_account_json)
        self._client = client

    @property
    def client(self) -> storage.Client:
        if self._client is None:
            self._client = storage.Client.from_service_account_info(
                json.loads(self.service_account_json), project=self.project_id)
        return self._client

    def create_bucket(self) -> None:
        logger.info(f"Ensuring that GCS backup bucket '{self.bucket_name}' exists")
        try:
            self.client.create_bucket(self.bucket_name, project=self.project_id, location=self.region)
        except gexceptions.Conflict:
            logger.debug(f"GCS bucket '{self.bucket_name}' already exists")
        except gexceptions.GoogleAPIError as e:
            raise TransportError(f"failed to create GCS bucket '{self.bucket_name}': {e}") from e

    def bucket_exists(self) -> bool:
        try:
            return self.client.lookup_bucket(self.bucket_name) is not None
        except gexceptions.GoogleAPIError as e:
            raise TransportError(f"failed to check GCS bucket '{self.bucket_name}': {e}") from e

    def _list_objects(self, marker: Optional[str]) -> tuple[list[str], Optional[str]]:
        try:
            blobs = self.client.list_blobs(self.bucket_name, max_results=self.page_size, page_token=marker)
            page = next(blobs.pages, None)
            keys = [blob.name for blob in page] if page is not None else []
        except gexceptions.NotFound as e:
            raise NotFoundError(f"GCS bucket '{self.bucket_name}' not found") from e
        except gexceptions.GoogleAPIError as e:
            raise TransportError(f"failed to list GCS bucket '{self.bucket_name}': {e}") from e
        return keys, blobs.next_page_token

    def _delete_objects(self, keys: list[str]) -> None:
        bucket = self.client.bucket(self.bucket_name)
        try:
            # on_error receives blobs that were already gone
            bucket.delete_blobs([bucket.blob(k) for k in keys], on_error=lambda blob: None)
        except gexceptions.GoogleAPIError as e:
            raise TransportError(f"failed to delete objects in GCS bucket '{self.bucket_name}': {e}") from e

    def _delete_empty_bucket(self) -> None:
        try:
            self.client.bucket(self.bucket_name).delete()
        except gexceptions.NotFound as e:
            raise NotFoundError(f"GCS bucket '{self.bucket_name}' not found") from e
        except gexceptions.GoogleAPIError as e:
            raise TransportError(f"failed to delete GCS bucket '{self.bucket_name}': {e}") from e

    def compute_backup_config(self, mount_path: str, secret_name: str) -> BackupConfig:
        return BackupConfig(
            storage_provider=self.storage_provider,
            secret_data={DATA_KEY_SERVICE_ACCOUNT_JSON: self.service_account_json.encode('utf-8')},
            environment=[{
                'name': 'GOOGLE_APPLICATION_CREDENTIALS',
                'value': f"{mount_path}/{DATA_KEY_SERVICE_ACCOUNT_JSON}",
            }],
        )
