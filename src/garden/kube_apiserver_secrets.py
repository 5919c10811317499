"""Secrets of the kube-apiserver holding generated or supplied material.

Generated material (passwords, tokens, signing keys, encryption keys) is
read back from the existing secret before the secret is converged, so a
value is generated only when its secret does not hold one yet.
"""

import base64
import logging
import secrets
from typing import Callable, Optional

import yaml
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from checksum import ChecksumMap
from common import random_string
from garden.constants import (
    CHECKSUM_KEY_ADMISSION_KUBECONFIG,
    CHECKSUM_KEY_AUDIT_WEBHOOK_CONFIG,
    CHECKSUM_KEY_BASIC_AUTH,
    CHECKSUM_KEY_ENCRYPTION_CONFIG,
    CHECKSUM_KEY_SERVICE_ACCOUNT_KEY,
    CHECKSUM_KEY_STATIC_TOKEN,
    DATA_KEY_AUDIT_WEBHOOK_CONFIG,
    DATA_KEY_BASIC_AUTH,
    DATA_KEY_ENCRYPTION_CONFIG,
    DATA_KEY_MUTATING_WEBHOOK,
    DATA_KEY_SERVICE_ACCOUNT_KEY,
    DATA_KEY_STATIC_TOKEN,
    DATA_KEY_VALIDATING_WEBHOOK,
    KUBE_APISERVER_SECRETS,
    SECRET_NAME_ADMISSION_KUBECONFIG,
    SECRET_NAME_AUDIT_WEBHOOK_CONFIG,
    SECRET_NAME_BASIC_AUTH,
    SECRET_NAME_ENCRYPTION_CONFIG,
    SECRET_NAME_SERVICE_ACCOUNT_KEY,
    SECRET_NAME_STATIC_TOKEN,
    kube_apiserver_labels,
)
from garden.context import TEMPLATE_ENCRYPTION_CONFIG, OperationContext
from garden.exports import ExportsAccumulator
from garden.resources import delete_secrets, ensure_secret
from reconciler import get_optional
from store.objects import decode_secret_data, secret_ref

logger = logging.getLogger(__name__)

ADMISSION_TOKENS_PATH = '/var/run/secrets/admission-tokens'
SERVICE_ACCOUNT_KEY_BITS = 4096


def read_secret_value(ctx: OperationContext, name: str, key: str) -> Optional[bytes]:
    """Current value of one key of a secret, or None if secret or key is absent."""
    secret = get_optional(ctx.store, secret_ref(name, ctx.namespace))
    if secret is None:
        return None
    return decode_secret_data(secret).get(key) or None


def stable_value(ctx: OperationContext, name: str, key: str, generate: Callable[[], bytes]) -> bytes:
    """Existing value of name/key, or a freshly generated one."""
    value = read_secret_value(ctx, name, key)
    if value is None:
        logger.info(f"Generating '{key}' for secret '{name}'")
        value = generate()
    return value


def admission_kubeconfig(webhook: str) -> bytes:
    """Kubeconfig the admission plugin uses to call a webhook with a projected token."""
    config = {
        'apiVersion': 'v1',
        'kind': 'Config',
        'users': [{
            'name': '*',
            'user': {'tokenFile': f'{ADMISSION_TOKENS_PATH}/{webhook}-token'},
        }],
    }
    return yaml.safe_dump(config, default_flow_style=False, sort_keys=False).encode('utf-8')


def generate_basic_auth() -> bytes:
    return f"{random_string(32)},admin,admin,system:masters".encode('utf-8')


def generate_static_token() -> bytes:
    return f"{random_string(128)},admin,admin,system:masters".encode('utf-8')


def generate_service_account_key() -> bytes:
    key = rsa.generate_private_key(public_exponent=65537, key_size=SERVICE_ACCOUNT_KEY_BITS)
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


def generate_encryption_config(ctx: OperationContext) -> bytes:
    secret = base64.b64encode(secrets.token_bytes(32)).decode('ascii')
    return ctx.render(
        TEMPLATE_ENCRYPTION_CONFIG,
        key_name=f'key{random_string(8).lower()}',
        key_secret=secret,
    ).encode('utf-8')


def basic_auth_password(ctx: OperationContext) -> str:
    """Admin password from the basic-auth secret, used by the kube-apiserver probes."""
    value = read_secret_value(ctx, SECRET_NAME_BASIC_AUTH, DATA_KEY_BASIC_AUTH) or b''
    return value.decode('utf-8').split(',', 1)[0]


def deploy_secrets(ctx: OperationContext, checksums: ChecksumMap, exports: ExportsAccumulator) -> None:
    logger.info("Deploying secrets for the kube-apiserver")
    apiserver = ctx.imports.virtual_garden.kube_apiserver
    labels = kube_apiserver_labels()

    if apiserver.validating_webhook_enabled or apiserver.mutating_webhook_enabled:
        checksums.set(CHECKSUM_KEY_ADMISSION_KUBECONFIG, ensure_secret(ctx, SECRET_NAME_ADMISSION_KUBECONFIG, {
            DATA_KEY_VALIDATING_WEBHOOK: admission_kubeconfig(DATA_KEY_VALIDATING_WEBHOOK),
            DATA_KEY_MUTATING_WEBHOOK: admission_kubeconfig(DATA_KEY_MUTATING_WEBHOOK),
        }, labels=labels))

    if apiserver.audit_webhook_config:
        checksums.set(CHECKSUM_KEY_AUDIT_WEBHOOK_CONFIG, ensure_secret(ctx, SECRET_NAME_AUDIT_WEBHOOK_CONFIG, {
            DATA_KEY_AUDIT_WEBHOOK_CONFIG: apiserver.audit_webhook_config.encode('utf-8'),
        }, labels=labels))

    basic_auth = stable_value(ctx, SECRET_NAME_BASIC_AUTH, DATA_KEY_BASIC_AUTH, generate_basic_auth)
    checksums.set(CHECKSUM_KEY_BASIC_AUTH, ensure_secret(
        ctx, SECRET_NAME_BASIC_AUTH, {DATA_KEY_BASIC_AUTH: basic_auth}, labels=labels))

    static_token = stable_value(ctx, SECRET_NAME_STATIC_TOKEN, DATA_KEY_STATIC_TOKEN, generate_static_token)
    checksums.set(CHECKSUM_KEY_STATIC_TOKEN, ensure_secret(
        ctx, SECRET_NAME_STATIC_TOKEN, {DATA_KEY_STATIC_TOKEN: static_token}, labels=labels))

    sa_key = stable_value(ctx, SECRET_NAME_SERVICE_ACCOUNT_KEY, DATA_KEY_SERVICE_ACCOUNT_KEY,
                          generate_service_account_key)
    checksums.set(CHECKSUM_KEY_SERVICE_ACCOUNT_KEY, ensure_secret(
        ctx, SECRET_NAME_SERVICE_ACCOUNT_KEY, {DATA_KEY_SERVICE_ACCOUNT_KEY: sa_key}, labels=labels))
    exports.set('service_account_key_pem', sa_key)

    encryption = stable_value(ctx, SECRET_NAME_ENCRYPTION_CONFIG, DATA_KEY_ENCRYPTION_CONFIG,
                              lambda: generate_encryption_config(ctx))
    checksums.set(CHECKSUM_KEY_ENCRYPTION_CONFIG, ensure_secret(
        ctx, SECRET_NAME_ENCRYPTION_CONFIG, {DATA_KEY_ENCRYPTION_CONFIG: encryption}, labels=labels))


def delete_kube_apiserver_secrets(ctx: OperationContext) -> None:
    logger.info("Deleting secrets for the kube-apiserver")
    delete_secrets(ctx, KUBE_APISERVER_SECRETS)
