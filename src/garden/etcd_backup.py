"""Backup bucket and the secret the backup sidecar reads it with."""

import logging
import threading
from typing import Optional

from garden.constants import ETCD_BACKUP_MOUNT_PATH, ETCD_SECRET_NAME_BACKUP
from garden.context import OperationContext
from garden.resources import delete_secrets, ensure_secret
from provider import BackupConfig

logger = logging.getLogger(__name__)


def deploy_backup_bucket(ctx: OperationContext, cancel: Optional[threading.Event] = None) -> None:
    provider = ctx.backup_provider
    logger.info(f"Deploying backup bucket '{provider.bucket_name}' in region '{provider.region}'")
    provider.create_bucket()


def delete_backup_bucket(ctx: OperationContext, cancel: Optional[threading.Event] = None) -> None:
    provider = ctx.backup_provider
    logger.info(f"Deleting backup bucket '{provider.bucket_name}'")
    provider.delete_bucket(poll=ctx.config.bucket_deletion, cancel=cancel)


def backup_config(ctx: OperationContext) -> BackupConfig:
    """Sidecar configuration for the main role's backups."""
    return ctx.backup_provider.compute_backup_config(ETCD_BACKUP_MOUNT_PATH, ETCD_SECRET_NAME_BACKUP)


def deploy_backup_secret(ctx: OperationContext, config: BackupConfig) -> str:
    """Converge the backup secret and return its checksum."""
    logger.info("Deploying etcd backup secret")
    return ensure_secret(ctx, ETCD_SECRET_NAME_BACKUP, config.secret_data)


def delete_backup_secret(ctx: OperationContext) -> None:
    logger.info("Deleting etcd backup secret")
    delete_secrets(ctx, [ETCD_SECRET_NAME_BACKUP])
