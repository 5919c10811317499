"""etcd statefulset, its data volume claim and its HVPA object."""

import functools
import logging
from dataclasses import dataclass, field
from typing import Optional

from certs.certificate import DATA_KEY_CA_CERTIFICATE, DATA_KEY_CERTIFICATE, DATA_KEY_PRIVATE_KEY
from common import merge_string_maps
from garden.constants import (
    ETCD_BACKUP_CLIENT_PORT,
    ETCD_BACKUP_MOUNT_PATH,
    ETCD_BACKUP_VOLUME,
    ETCD_CA_MOUNT_PATH,
    ETCD_CLIENT_MOUNT_PATH,
    ETCD_CLIENT_PORT,
    ETCD_COMPONENT,
    ETCD_DATA_DIR,
    ETCD_DATA_KEY_BOOTSTRAP_SCRIPT,
    ETCD_DATA_MOUNT_PATH,
    ETCD_SECRET_NAME_BACKUP,
    ETCD_SECRET_NAME_CA,
    ETCD_SECRET_NAME_CLIENT,
    ETCD_SERVER_MOUNT_PATH,
    HVPA_API_VERSION,
    LABEL_KEY_APP,
    LABEL_KEY_COMPONENT,
    PREFIX,
    etcd_client_service_name,
    etcd_configmap_name,
    etcd_data_volume_name,
    etcd_hvpa_name,
    etcd_labels,
    etcd_name,
    etcd_pvc_name,
    etcd_server_secret_name,
)
from garden.context import OperationContext
from reconciler import delete_resource, ensure_desired_state
from store.objects import ObjectRef, labels_of

logger = logging.getLogger(__name__)

ETCD_CONTAINER = 'etcd'
BACKUP_RESTORE_CONTAINER = 'backup-restore'
ETCD_SERVER_PORT = 2380

BOOTSTRAP_VOLUME = 'bootstrap-config'
BOOTSTRAP_MOUNT_PATH = '/bootstrap'
CA_VOLUME = 'ca-cert'
SERVER_VOLUME = 'server-cert'
CLIENT_VOLUME = 'client-cert'


@dataclass(frozen=True)
class BackupSettings:
    """Backup sidecar settings for the main role.

    Attributes:
        storage_provider: Vendor name understood by the sidecar
        bucket_name: Bucket snapshots are written to
        environment: Vendor env vars for the sidecar
    """
    storage_provider: str
    bucket_name: str
    environment: list = field(default_factory=list)


@dataclass(frozen=True)
class StatefulSetParams:
    """Inputs of the etcd statefulset for one role."""
    role: str
    checksums: dict
    storage_capacity: str
    etcd_image: str
    backup_restore_image: str
    priority_class_name: str
    storage_class_name: Optional[str] = None
    backup: Optional[BackupSettings] = None


def statefulset_ref(namespace: str, role: str) -> ObjectRef:
    return ObjectRef('apps/v1', 'StatefulSet', etcd_name(role), namespace)


def pvc_ref(namespace: str, role: str) -> ObjectRef:
    return ObjectRef('v1', 'PersistentVolumeClaim', etcd_pvc_name(role), namespace)


def hvpa_ref(namespace: str, role: str) -> ObjectRef:
    return ObjectRef(HVPA_API_VERSION, 'Hvpa', etcd_hvpa_name(role), namespace)


def _tls_flags(name: str) -> list[str]:
    return [
        f'--cacert={ETCD_CA_MOUNT_PATH}/{DATA_KEY_CA_CERTIFICATE}',
        f'--cert={ETCD_CLIENT_MOUNT_PATH}/{DATA_KEY_CERTIFICATE}',
        f'--key={ETCD_CLIENT_MOUNT_PATH}/{DATA_KEY_PRIVATE_KEY}',
        f'--endpoints=https://{name}-0:{ETCD_CLIENT_PORT}',
    ]


def _etcd_container(params: StatefulSetParams, name: str) -> dict:
    data_volume = etcd_data_volume_name(params.role)
    return {
        'name': ETCD_CONTAINER,
        'image': params.etcd_image,
        'imagePullPolicy': 'IfNotPresent',
        'command': [f'{BOOTSTRAP_MOUNT_PATH}/{ETCD_DATA_KEY_BOOTSTRAP_SCRIPT}'],
        'readinessProbe': {
            'httpGet': {'path': '/healthz', 'port': ETCD_BACKUP_CLIENT_PORT, 'scheme': 'HTTP'},
            'initialDelaySeconds': 5,
            'periodSeconds': 5,
        },
        'livenessProbe': {
            'exec': {'command': ['/bin/sh', '-ec', 'ETCDCTL_API=3', 'etcdctl', *_tls_flags(name), 'get', 'foo']},
            'initialDelaySeconds': 15,
            'periodSeconds': 5,
        },
        'ports': [
            {'name': 'server', 'containerPort': ETCD_SERVER_PORT, 'protocol': 'TCP'},
            {'name': 'client', 'containerPort': ETCD_CLIENT_PORT, 'protocol': 'TCP'},
        ],
        'resources': {
            'requests': {'cpu': '200m', 'memory': '500Mi'},
            'limits': {'cpu': '1', 'memory': '8Gi'},
        },
        'volumeMounts': [
            {'name': data_volume, 'mountPath': ETCD_DATA_MOUNT_PATH},
            {'name': BOOTSTRAP_VOLUME, 'mountPath': BOOTSTRAP_MOUNT_PATH},
            {'name': CA_VOLUME, 'mountPath': ETCD_CA_MOUNT_PATH},
            {'name': SERVER_VOLUME, 'mountPath': ETCD_SERVER_MOUNT_PATH},
            {'name': CLIENT_VOLUME, 'mountPath': ETCD_CLIENT_MOUNT_PATH},
        ],
    }


def _backup_restore_container(params: StatefulSetParams, name: str) -> dict:
    command = [
        'etcdbrctl',
        'server',
        f'--data-dir={ETCD_DATA_DIR}',
        *_tls_flags(name)[:3],
        '--insecure-transport=false',
        '--insecure-skip-tls-verify=false',
        f'--endpoints=https://{name}-0:{ETCD_CLIENT_PORT}',
        '--etcd-connection-timeout=5m',
        '--garbage-collection-period=12h',
        f'--snapstore-temp-directory={ETCD_DATA_MOUNT_PATH}/temp',
    ]
    env: list[dict] = []
    mounts = [
        {'name': etcd_data_volume_name(params.role), 'mountPath': ETCD_DATA_MOUNT_PATH},
        {'name': CA_VOLUME, 'mountPath': ETCD_CA_MOUNT_PATH},
        {'name': CLIENT_VOLUME, 'mountPath': ETCD_CLIENT_MOUNT_PATH},
    ]
    if params.backup is not None:
        command.extend([
            '--schedule=0 */24 * * *',
            '--defragmentation-schedule=0 1 * * *',
            f'--storage-provider={params.backup.storage_provider}',
            f'--store-prefix={name}',
            '--delta-snapshot-period=5m',
            '--delta-snapshot-memory-limit=104857600',
            '--embedded-etcd-quota-bytes=8589934592',
        ])
        env = [{'name': 'STORAGE_CONTAINER', 'value': params.backup.bucket_name}, *params.backup.environment]
        mounts.append({'name': ETCD_BACKUP_VOLUME, 'mountPath': ETCD_BACKUP_MOUNT_PATH})

    container = {
        'name': BACKUP_RESTORE_CONTAINER,
        'image': params.backup_restore_image,
        'imagePullPolicy': 'IfNotPresent',
        'command': command,
        'ports': [{'name': 'server', 'containerPort': ETCD_BACKUP_CLIENT_PORT, 'protocol': 'TCP'}],
        'volumeMounts': mounts,
    }
    if env:
        container['env'] = env
    return container


def _volumes(params: StatefulSetParams) -> list[dict]:
    volumes = [
        {'name': BOOTSTRAP_VOLUME,
         'configMap': {'name': etcd_configmap_name(params.role), 'defaultMode': 0o544}},
        {'name': CA_VOLUME, 'secret': {'secretName': ETCD_SECRET_NAME_CA}},
        {'name': SERVER_VOLUME, 'secret': {'secretName': etcd_server_secret_name(params.role)}},
        {'name': CLIENT_VOLUME, 'secret': {'secretName': ETCD_SECRET_NAME_CLIENT}},
    ]
    if params.backup is not None:
        volumes.append({'name': ETCD_BACKUP_VOLUME, 'secret': {'secretName': ETCD_SECRET_NAME_BACKUP}})
    return volumes


def statefulset_spec(params: StatefulSetParams) -> dict:
    """Full statefulset spec for one role."""
    name = etcd_name(params.role)
    labels = etcd_labels(params.role)
    claim_spec: dict = {
        'accessModes': ['ReadWriteOnce'],
        'resources': {'requests': {'storage': params.storage_capacity}},
    }
    if params.storage_class_name is not None:
        claim_spec['storageClassName'] = params.storage_class_name

    return {
        'replicas': 1,
        'selector': {'matchLabels': labels},
        'serviceName': etcd_client_service_name(params.role),
        'updateStrategy': {'type': 'RollingUpdate'},
        'template': {
            'metadata': {
                'annotations': dict(params.checksums),
                'labels': labels,
            },
            'spec': {
                'affinity': {'podAntiAffinity': {'requiredDuringSchedulingIgnoredDuringExecution': [{
                    'labelSelector': {'matchExpressions': [
                        {'key': LABEL_KEY_APP, 'operator': 'In', 'values': [PREFIX]},
                        {'key': LABEL_KEY_COMPONENT, 'operator': 'In', 'values': [ETCD_COMPONENT]},
                    ]},
                    'topologyKey': 'kubernetes.io/hostname',
                }]}},
                'priorityClassName': params.priority_class_name,
                'containers': [
                    _etcd_container(params, name),
                    _backup_restore_container(params, name),
                ],
                'volumes': _volumes(params),
            },
        },
        'volumeClaimTemplates': [{
            'metadata': {'name': etcd_data_volume_name(params.role)},
            'spec': claim_spec,
        }],
    }


def mutate_statefulset(params: StatefulSetParams, sts: dict) -> dict:
    sts['metadata']['labels'] = merge_string_maps(labels_of(sts), etcd_labels(params.role))
    sts['spec'] = statefulset_spec(params)
    return sts


def deploy_statefulset(ctx: OperationContext, params: StatefulSetParams) -> None:
    logger.info(f"Deploying etcd statefulset for role '{params.role}'")
    _, result = ensure_desired_state(
        ctx.store,
        statefulset_ref(ctx.namespace, params.role),
        functools.partial(mutate_statefulset, params),
        retries=ctx.config.conflict_retries,
    )
    logger.debug(f"etcd statefulset '{params.role}' {result}")


def delete_statefulset(ctx: OperationContext, role: str) -> None:
    """Delete the statefulset, and its data volume claim if volumes are handled."""
    logger.info(f"Deleting etcd statefulset for role '{role}'")
    delete_resource(ctx.store, statefulset_ref(ctx.namespace, role))
    if ctx.imports.virtual_garden.etcd.handle_persistent_volumes:
        logger.info(f"Deleting etcd data volume claim for role '{role}'")
        delete_resource(ctx.store, pvc_ref(ctx.namespace, role))


def _scale_params(cpu: str, memory: str, percentage: int) -> dict:
    return {
        'cpu': {'value': cpu, 'percentage': percentage},
        'memory': {'value': memory, 'percentage': percentage},
    }


def mutate_hvpa(role: str, hvpa: dict) -> dict:
    vpa_labels = {'role': f'etcd-vpa-{role}'}
    hpa_labels = {'role': f'etcd-hpa-{role}'}
    hvpa['spec'] = {
        'replicas': 1,
        'targetRef': {'apiVersion': 'apps/v1', 'kind': 'StatefulSet', 'name': etcd_name(role)},
        'hpa': {
            'selector': {'matchLabels': hpa_labels},
            'deploy': False,
            'template': {
                'metadata': {'labels': hpa_labels},
                'spec': {
                    'minReplicas': 1,
                    'maxReplicas': 1,
                    'metrics': [
                        {'type': 'Resource', 'resource': {'name': 'memory', 'targetAverageUtilization': 80}},
                        {'type': 'Resource', 'resource': {'name': 'cpu', 'targetAverageUtilization': 80}},
                    ],
                },
            },
        },
        'vpa': {
            'selector': {'matchLabels': vpa_labels},
            'deploy': True,
            'template': {
                'metadata': {'labels': vpa_labels},
                'spec': {'resourcePolicy': {'containerPolicies': [
                    {
                        'containerName': ETCD_CONTAINER,
                        'maxAllowed': {'cpu': '4', 'memory': '30G'},
                        'minAllowed': {'cpu': '200m', 'memory': '700M'},
                    },
                    {'containerName': BACKUP_RESTORE_CONTAINER, 'mode': 'Off'},
                ]}},
            },
            'scaleUp': {
                'updatePolicy': {'updateMode': 'Auto'},
                'stabilizationDuration': '5m',
                'minChange': _scale_params('1', '2G', 80),
            },
            'scaleDown': {
                'updatePolicy': {'updateMode': 'Off'},
                'stabilizationDuration': '15m',
                'minChange': _scale_params('1', '2G', 80),
            },
            'limitsRequestsGapScaleParams': _scale_params('2', '3G', 40),
        },
        'weightBasedScalingIntervals': [
            {'vpaWeight': 100, 'startReplicaCount': 1, 'lastReplicaCount': 1},
        ],
    }
    return hvpa


def deploy_hvpa(ctx: OperationContext, role: str) -> None:
    logger.info(f"Deploying etcd HVPA for role '{role}'")
    ensure_desired_state(
        ctx.store,
        hvpa_ref(ctx.namespace, role),
        functools.partial(mutate_hvpa, role),
        retries=ctx.config.conflict_retries,
    )


def delete_hvpa(ctx: OperationContext, role: str) -> None:
    logger.info(f"Deleting etcd HVPA for role '{role}'")
    delete_resource(ctx.store, hvpa_ref(ctx.namespace, role))
