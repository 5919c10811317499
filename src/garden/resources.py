"""Secrets and configmaps with checksummed content."""

import functools
import logging
from typing import Iterable, Optional

from checksum import compute_checksum
from common import merge_string_maps
from garden.context import OperationContext
from reconciler import delete_resource, ensure_desired_state
from store.objects import configmap_ref, decode_secret_data, encode_secret_data, labels_of, secret_ref

logger = logging.getLogger(__name__)


def mutate_secret(data: dict[str, bytes], secret_type: str, labels: Optional[dict], secret: dict) -> dict:
    """Replace a secret's data; labels are merged into existing ones."""
    if labels:
        secret['metadata']['labels'] = merge_string_maps(labels_of(secret), labels)
    secret['type'] = secret_type
    secret['data'] = encode_secret_data(data)
    return secret


def mutate_configmap(data: dict[str, str], labels: Optional[dict], configmap: dict) -> dict:
    if labels:
        configmap['metadata']['labels'] = merge_string_maps(labels_of(configmap), labels)
    configmap['data'] = dict(data)
    return configmap


def ensure_secret(ctx: OperationContext, name: str, data: dict[str, bytes],
                  secret_type: str = 'Opaque', labels: Optional[dict] = None) -> str:
    """Converge a secret and return the checksum of its stored data."""
    stored, result = ensure_desired_state(
        ctx.store,
        secret_ref(name, ctx.namespace),
        functools.partial(mutate_secret, data, secret_type, labels),
        retries=ctx.config.conflict_retries,
    )
    logger.debug(f"Secret '{name}' {result}")
    return compute_checksum(decode_secret_data(stored))


def ensure_configmap(ctx: OperationContext, name: str, data: dict[str, str],
                     labels: Optional[dict] = None) -> str:
    """Converge a configmap and return the checksum of its stored data."""
    stored, result = ensure_desired_state(
        ctx.store,
        configmap_ref(name, ctx.namespace),
        functools.partial(mutate_configmap, data, labels),
        retries=ctx.config.conflict_retries,
    )
    logger.debug(f"ConfigMap '{name}' {result}")
    return compute_checksum(stored.get('data') or {})


def delete_secrets(ctx: OperationContext, names: Iterable[str]) -> None:
    for name in names:
        delete_resource(ctx.store, secret_ref(name, ctx.namespace))


def delete_configmaps(ctx: OperationContext, names: Iterable[str]) -> None:
    for name in names:
        delete_resource(ctx.store, configmap_ref(name, ctx.namespace))
