"""etcd for the virtual garden: one instance per role (main, events).

Deploy converges, in order: the storage class, the CA and client
certificates, then per role the client service, the bootstrap configmap,
the server certificate, the backup secret (main role with backups only),
the statefulset carrying the role's checksums, and optionally an HVPA.
"""

import functools
import logging
import threading
from typing import Optional

from certs import Certificate, CertificateSecretConfig, CertType
from certs.certificate import DATA_KEY_CA_CERTIFICATE, DATA_KEY_CERTIFICATE, DATA_KEY_PRIVATE_KEY
from checksum import ChecksumMap
from common import check_cancelled, merge_string_maps
from garden.constants import (
    CHECKSUM_KEY_ETCD_BACKUP,
    CHECKSUM_KEY_ETCD_BOOTSTRAP_CONFIG,
    CHECKSUM_KEY_ETCD_CA,
    CHECKSUM_KEY_ETCD_CLIENT,
    CHECKSUM_KEY_ETCD_SERVER,
    ETCD_BACKUP_CLIENT_PORT,
    ETCD_CA_MOUNT_PATH,
    ETCD_CLIENT_PORT,
    ETCD_COMPONENT,
    ETCD_DATA_DIR,
    ETCD_DATA_KEY_BOOTSTRAP_SCRIPT,
    ETCD_DATA_KEY_CONFIGURATION,
    ETCD_DATA_MOUNT_PATH,
    ETCD_DEFAULT_STORAGE_CLASS,
    ETCD_ROLE_MAIN,
    ETCD_ROLES,
    ETCD_SECRET_NAME_CA,
    ETCD_SECRET_NAME_CLIENT,
    ETCD_SERVER_MOUNT_PATH,
    LABEL_KEY_APP,
    LABEL_KEY_COMPONENT,
    PREFIX,
    PRIORITY_CLASS_NAME,
    etcd_client_service_name,
    etcd_configmap_name,
    etcd_labels,
    etcd_name,
    etcd_server_secret_name,
)
from garden.context import TEMPLATE_ETCD_BOOTSTRAP, TEMPLATE_ETCD_CONFIG, OperationContext
from garden.etcd_backup import backup_config, delete_backup_secret, deploy_backup_secret
from garden.etcd_statefulset import (
    BackupSettings,
    StatefulSetParams,
    delete_hvpa,
    delete_statefulset,
    deploy_hvpa,
    deploy_statefulset,
)
from garden.exports import ExportsAccumulator
from garden.kube_apiserver_service import reconcile_service_ports
from garden.resources import delete_configmaps, ensure_configmap
from reconciler import delete_resource, ensure_desired_state
from store.objects import ObjectRef, labels_of

logger = logging.getLogger(__name__)

STORAGE_CAPACITY = {ETCD_ROLE_MAIN: '25Gi'}
DEFAULT_STORAGE_CAPACITY = '10Gi'


def storage_class_name(ctx: OperationContext) -> str:
    return ctx.imports.virtual_garden.etcd.storage_class_name or ETCD_DEFAULT_STORAGE_CLASS


def storage_class_ref(name: str) -> ObjectRef:
    return ObjectRef('storage.k8s.io/v1', 'StorageClass', name)


def service_ref(namespace: str, role: str) -> ObjectRef:
    return ObjectRef('v1', 'Service', etcd_client_service_name(role), namespace)


# Storage class

def mutate_storage_class(provisioner: str, parameters: dict, storage_class: dict) -> dict:
    storage_class['allowVolumeExpansion'] = True
    storage_class['provisioner'] = provisioner
    storage_class['parameters'] = dict(parameters)
    return storage_class


def deploy_storage_class(ctx: OperationContext) -> None:
    logger.info("Deploying the storage class for persistent volumes of etcd")
    provisioner, parameters = ctx.infrastructure_provider.storage_class_config()
    ensure_desired_state(
        ctx.store,
        storage_class_ref(storage_class_name(ctx)),
        functools.partial(mutate_storage_class, provisioner, parameters),
        retries=ctx.config.conflict_retries,
    )


def other_etcds_in_hosting_cluster(ctx: OperationContext) -> bool:
    """Whether etcd statefulsets of other virtual gardens live in the hosting cluster."""
    for sts in ctx.store.list('apps/v1', 'StatefulSet'):
        metadata = sts.get('metadata', {})
        if metadata.get('namespace') == ctx.namespace:
            continue
        labels = metadata.get('labels') or {}
        if labels.get(LABEL_KEY_APP) == PREFIX and labels.get(LABEL_KEY_COMPONENT) == ETCD_COMPONENT:
            return True
    return False


def delete_storage_class(ctx: OperationContext) -> None:
    if other_etcds_in_hosting_cluster(ctx):
        logger.info("Keeping the etcd storage class, other virtual gardens still use it")
        return
    logger.info("Deleting the storage class for persistent volumes of etcd")
    delete_resource(ctx.store, storage_class_ref(storage_class_name(ctx)))


# Certificates

def server_dns_names(namespace: str, role: str) -> list[str]:
    service = etcd_client_service_name(role)
    return [
        f'{etcd_name(role)}-0',
        f'{service}.{namespace}',
        f'{service}.{namespace}.svc',
        f'{service}.{namespace}.svc.cluster',
        f'{service}.{namespace}.svc.cluster.local',
    ]


def deploy_ca_certificate(ctx: OperationContext, checksums: ChecksumMap,
                          exports: ExportsAccumulator) -> Certificate:
    config = CertificateSecretConfig(
        name=ETCD_SECRET_NAME_CA,
        cert_type=CertType.CA,
        common_name=f'{PREFIX}:ca:etcd',
    )
    cert, checksum, _ = ctx.certificates.ensure_certificate(config)
    checksums.set(CHECKSUM_KEY_ETCD_CA, checksum)
    exports.set('etcd_ca_pem', cert.certificate_pem)
    return cert


def deploy_client_certificate(ctx: OperationContext, ca: Certificate, checksums: ChecksumMap,
                              exports: ExportsAccumulator) -> Certificate:
    config = CertificateSecretConfig(
        name=ETCD_SECRET_NAME_CLIENT,
        cert_type=CertType.CLIENT,
        common_name=f'{PREFIX}:client:etcd',
        signing_ca=ca,
    )
    cert, checksum, _ = ctx.certificates.ensure_certificate(config)
    checksums.set(CHECKSUM_KEY_ETCD_CLIENT, checksum)
    exports.set('etcd_client_tls_pem', cert.certificate_pem)
    exports.set('etcd_client_tls_key_pem', cert.private_key_pem)
    return cert


def deploy_server_certificate(ctx: OperationContext, ca: Certificate, role: str) -> str:
    config = CertificateSecretConfig(
        name=etcd_server_secret_name(role),
        cert_type=CertType.SERVER_CLIENT,
        common_name=f'{PREFIX}:server:etcd:{role}',
        signing_ca=ca,
        dns_names=server_dns_names(ctx.namespace, role),
    )
    _, checksum, _ = ctx.certificates.ensure_certificate(config)
    return checksum


def certificate_secret_names() -> list[str]:
    return [ETCD_SECRET_NAME_CA, ETCD_SECRET_NAME_CLIENT] + [etcd_server_secret_name(r) for r in ETCD_ROLES]


# Service

def mutate_service(role: str, service: dict) -> dict:
    service['metadata']['labels'] = merge_string_maps(labels_of(service), etcd_labels(role))
    spec = service.setdefault('spec', {})
    spec['type'] = 'ClusterIP'
    spec['sessionAffinity'] = 'None'
    spec['selector'] = etcd_labels(role)
    spec['ports'] = reconcile_service_ports(spec.get('ports'), [
        {'name': 'client', 'protocol': 'TCP', 'port': ETCD_CLIENT_PORT, 'targetPort': ETCD_CLIENT_PORT},
        {'name': 'backup-client', 'protocol': 'TCP', 'port': ETCD_BACKUP_CLIENT_PORT,
         'targetPort': ETCD_BACKUP_CLIENT_PORT},
    ])
    return service


def deploy_service(ctx: OperationContext, role: str, exports: ExportsAccumulator) -> None:
    logger.info(f"Deploying etcd service for role '{role}'")
    ensure_desired_state(
        ctx.store,
        service_ref(ctx.namespace, role),
        functools.partial(mutate_service, role),
        retries=ctx.config.conflict_retries,
    )
    if role == ETCD_ROLE_MAIN:
        exports.set('etcd_url', f'{etcd_client_service_name(role)}.{ctx.namespace}.svc:{ETCD_CLIENT_PORT}')


# Bootstrap configmap

def bootstrap_data(ctx: OperationContext, role: str) -> dict[str, str]:
    """Rendered bootstrap script and etcd configuration for role."""
    return {
        ETCD_DATA_KEY_BOOTSTRAP_SCRIPT: ctx.render(
            TEMPLATE_ETCD_BOOTSTRAP,
            backup_restore_port=ETCD_BACKUP_CLIENT_PORT,
            data_dir=ETCD_DATA_MOUNT_PATH,
        ),
        ETCD_DATA_KEY_CONFIGURATION: ctx.render(
            TEMPLATE_ETCD_CONFIG,
            role=role,
            data_dir=ETCD_DATA_DIR,
            ca_cert_path=f'{ETCD_CA_MOUNT_PATH}/{DATA_KEY_CA_CERTIFICATE}',
            server_cert_path=f'{ETCD_SERVER_MOUNT_PATH}/{DATA_KEY_CERTIFICATE}',
            server_key_path=f'{ETCD_SERVER_MOUNT_PATH}/{DATA_KEY_PRIVATE_KEY}',
            client_port=ETCD_CLIENT_PORT,
        ),
    }


def deploy_configmap(ctx: OperationContext, role: str) -> str:
    logger.info(f"Deploying etcd bootstrap configmap for role '{role}'")
    return ensure_configmap(ctx, etcd_configmap_name(role), bootstrap_data(ctx, role), etcd_labels(role))


# Orchestration

def deploy_etcd(ctx: OperationContext, exports: ExportsAccumulator,
                cancel: Optional[threading.Event] = None) -> dict[str, ChecksumMap]:
    """Converge etcd for all roles.

    Returns:
        Checksum map per role, as attached to each statefulset's pod template
    """
    deploy_storage_class(ctx)

    logger.info("Generating or loading etcd CA and client certificates")
    shared = ChecksumMap()
    ca = deploy_ca_certificate(ctx, shared, exports)
    deploy_client_certificate(ctx, ca, shared, exports)

    images = ctx.imports.images
    priority_class = ctx.imports.virtual_garden.priority_class_name or PRIORITY_CLASS_NAME
    role_checksums = {}
    for role in ETCD_ROLES:
        check_cancelled(cancel, f"deploying etcd role '{role}'")
        checksums = ChecksumMap()
        for key in (CHECKSUM_KEY_ETCD_CA, CHECKSUM_KEY_ETCD_CLIENT):
            checksums.set(key, shared.get(key))

        deploy_service(ctx, role, exports)
        checksums.set(CHECKSUM_KEY_ETCD_BOOTSTRAP_CONFIG, deploy_configmap(ctx, role))
        logger.info(f"Generating or loading etcd server certificate for role '{role}'")
        checksums.set(CHECKSUM_KEY_ETCD_SERVER, deploy_server_certificate(ctx, ca, role))

        backup = None
        storage_class = None
        if role == ETCD_ROLE_MAIN:
            storage_class = storage_class_name(ctx)
            if ctx.backup_provider is not None:
                config = backup_config(ctx)
                checksums.set(CHECKSUM_KEY_ETCD_BACKUP, deploy_backup_secret(ctx, config))
                backup = BackupSettings(
                    storage_provider=config.storage_provider,
                    bucket_name=ctx.backup_provider.bucket_name,
                    environment=list(config.environment),
                )

        deploy_statefulset(ctx, StatefulSetParams(
            role=role,
            checksums=checksums.annotations(),
            storage_capacity=STORAGE_CAPACITY.get(role, DEFAULT_STORAGE_CAPACITY),
            etcd_image=images.etcd,
            backup_restore_image=images.etcd_backup_restore,
            priority_class_name=priority_class,
            storage_class_name=storage_class,
            backup=backup,
        ))

        if ctx.imports.virtual_garden.etcd.hvpa_enabled:
            deploy_hvpa(ctx, role)
        role_checksums[role] = checksums
    return role_checksums


def delete_etcd(ctx: OperationContext, cancel: Optional[threading.Event] = None) -> None:
    """Remove everything deploy_etcd created; absent objects are skipped."""
    for role in ETCD_ROLES:
        check_cancelled(cancel, f"deleting etcd role '{role}'")
        if ctx.hvpa_crd_present:
            delete_hvpa(ctx, role)
        delete_statefulset(ctx, role)
        if role == ETCD_ROLE_MAIN and ctx.imports.backup_enabled:
            delete_backup_secret(ctx)
        logger.info(f"Deleting etcd bootstrap configmap for role '{role}'")
        delete_configmaps(ctx, [etcd_configmap_name(role)])
        logger.info(f"Deleting etcd service for role '{role}'")
        delete_resource(ctx.store, service_ref(ctx.namespace, role))

    logger.info("Deleting all certificates related to etcd")
    ctx.certificates.delete_certificates(certificate_secret_names())
    delete_storage_class(ctx)
