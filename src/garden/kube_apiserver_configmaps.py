"""Admission and audit-policy configmaps of the kube-apiserver."""

import logging

import yaml

from checksum import ChecksumMap
from garden.constants import (
    CHECKSUM_KEY_ADMISSION_CONFIG,
    CHECKSUM_KEY_AUDIT_POLICY_CONFIG,
    CONFIGMAP_NAME_ADMISSION,
    CONFIGMAP_NAME_AUDIT_POLICY,
    DATA_KEY_ADMISSION_CONFIGURATION,
    DATA_KEY_AUDIT_POLICY,
    DATA_KEY_MUTATING_WEBHOOK,
    DATA_KEY_VALIDATING_WEBHOOK,
    kube_apiserver_labels,
)
from garden.context import TEMPLATE_AUDIT_POLICY, OperationContext
from garden.resources import delete_configmaps, ensure_configmap

logger = logging.getLogger(__name__)

ADMISSION_KUBECONFIG_MOUNT_PATH = '/var/run/secrets/admission-kubeconfig'

VALIDATING_ADMISSION_WEBHOOK = 'ValidatingAdmissionWebhook'
MUTATING_ADMISSION_WEBHOOK = 'MutatingAdmissionWebhook'


def admission_plugin(name: str, data_key: str) -> dict:
    return {
        'name': name,
        'configuration': {
            'apiVersion': 'apiserver.config.k8s.io/v1',
            'kind': 'WebhookAdmissionConfiguration',
            'kubeConfigFile': f'{ADMISSION_KUBECONFIG_MOUNT_PATH}/{data_key}',
        },
    }


def admission_configuration(validating: bool, mutating: bool) -> str:
    """AdmissionConfiguration document for the enabled webhook plugins."""
    plugins = []
    if validating:
        plugins.append(admission_plugin(VALIDATING_ADMISSION_WEBHOOK, DATA_KEY_VALIDATING_WEBHOOK))
    if mutating:
        plugins.append(admission_plugin(MUTATING_ADMISSION_WEBHOOK, DATA_KEY_MUTATING_WEBHOOK))
    config = {
        'apiVersion': 'apiserver.config.k8s.io/v1',
        'kind': 'AdmissionConfiguration',
        'plugins': plugins,
    }
    return yaml.safe_dump(config, default_flow_style=False, sort_keys=False)


def deploy_configmaps(ctx: OperationContext, checksums: ChecksumMap) -> None:
    logger.info("Deploying configmaps for the kube-apiserver")
    apiserver = ctx.imports.virtual_garden.kube_apiserver
    labels = kube_apiserver_labels()

    checksums.set(CHECKSUM_KEY_AUDIT_POLICY_CONFIG, ensure_configmap(ctx, CONFIGMAP_NAME_AUDIT_POLICY, {
        DATA_KEY_AUDIT_POLICY: ctx.render(TEMPLATE_AUDIT_POLICY),
    }, labels=labels))

    if apiserver.validating_webhook_enabled or apiserver.mutating_webhook_enabled:
        checksums.set(CHECKSUM_KEY_ADMISSION_CONFIG, ensure_configmap(ctx, CONFIGMAP_NAME_ADMISSION, {
            DATA_KEY_ADMISSION_CONFIGURATION: admission_configuration(
                apiserver.validating_webhook_enabled, apiserver.mutating_webhook_enabled),
        }, labels=labels))


def delete_kube_apiserver_configmaps(ctx: OperationContext) -> None:
    logger.info("Deleting configmaps for the kube-apiserver")
    delete_configmaps(ctx, (CONFIGMAP_NAME_ADMISSION, CONFIGMAP_NAME_AUDIT_POLICY))
