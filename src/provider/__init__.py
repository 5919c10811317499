"""Vendor registry.

Callers resolve a vendor tag once and then only talk to the
InfrastructureProvider / BackupProvider interfaces.
"""

from api import Credentials, ProviderType
from errors import UnsupportedProviderError, ValidationError
from provider.alicloud import AlicloudInfrastructureProvider, OSSBackupProvider
from provider.aws import AWSInfrastructureProvider, S3BackupProvider
from provider.base import BackupConfig, BackupProvider, InfrastructureProvider
from provider.fake import FakeBackupProvider, FakeInfrastructureProvider
from provider.gcp import GCPInfrastructureProvider, GCSBackupProvider

INFRASTRUCTURE_PROVIDERS = {
    ProviderType.ALICLOUD: AlicloudInfrastructureProvider,
    ProviderType.AWS: AWSInfrastructureProvider,
    ProviderType.GCP: GCPInfrastructureProvider,
    ProviderType.FAKE: FakeInfrastructureProvider,
}

BACKUP_PROVIDERS = {
    ProviderType.ALICLOUD: OSSBackupProvider,
    ProviderType.AWS: S3BackupProvider,
    ProviderType.GCP: GCSBackupProvider,
    ProviderType.FAKE: FakeBackupProvider,
}


def provider_type(tag) -> ProviderType:
    """Parse a vendor tag.

    Raises:
        UnsupportedProviderError: If tag is not a known vendor
    """
    try:
        return ProviderType(tag)
    except ValueError:
        raise UnsupportedProviderError(str(tag)) from None


def new_infrastructure_provider(tag) -> InfrastructureProvider:
    """Infrastructure provider for a vendor tag."""
    return INFRASTRUCTURE_PROVIDERS[provider_type(tag)]()


def new_backup_provider(
    tag,
    credentials: dict[str, Credentials],
    credentials_ref: str,
    bucket_name: str,
    region: str,
) -> BackupProvider:
    """Backup provider for a vendor tag, configured from a named credential bag.

    Raises:
        UnsupportedProviderError: If tag is not a known vendor
        ValidationError: If the credentials are missing, of another vendor, or incomplete
    """
    ptype = provider_type(tag)
    creds = credentials.get(credentials_ref)
    if creds is None:
        raise ValidationError([f"credentials '{credentials_ref}' not found"])
    if creds.type != ptype.value:
        raise ValidationError(
            [f"credentials '{credentials_ref}' are of type '{creds.type}', expected '{ptype.value}'"])
    try:
        return BACKUP_PROVIDERS[ptype](bucket_name, region, creds.data)
    except KeyError as e:
        raise ValidationError([f"credentials '{credentials_ref}' lack key {e}"]) from e


__all__ = [
    'BackupConfig',
    'BackupProvider',
    'InfrastructureProvider',
    'new_backup_provider',
    'new_infrastructure_provider',
    'provider_type',
]
