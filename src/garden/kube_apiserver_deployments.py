"""kube-apiserver and kube-controller-manager deployments."""

import base64
import functools
import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from api import KubeAPIServer
from common import merge_string_maps
from garden.constants import (
    CHECKSUM_KEY_ADMISSION_CONFIG,
    CHECKSUM_KEY_ADMISSION_KUBECONFIG,
    CHECKSUM_KEY_AGGREGATOR_CA,
    CHECKSUM_KEY_AGGREGATOR_CLIENT,
    CHECKSUM_KEY_APISERVER_CA,
    CHECKSUM_KEY_APISERVER_SERVER,
    CHECKSUM_KEY_AUDIT_POLICY_CONFIG,
    CHECKSUM_KEY_AUDIT_WEBHOOK_CONFIG,
    CHECKSUM_KEY_BASIC_AUTH,
    CHECKSUM_KEY_ENCRYPTION_CONFIG,
    CHECKSUM_KEY_ETCD_CA,
    CHECKSUM_KEY_ETCD_CLIENT,
    CHECKSUM_KEY_SERVICE_ACCOUNT_KEY,
    CHECKSUM_KEY_STATIC_TOKEN,
    CONFIGMAP_NAME_ADMISSION,
    CONFIGMAP_NAME_AUDIT_POLICY,
    CONTROLLER_MANAGER_CHECKSUM_KEYS,
    DATA_KEY_ADMISSION_CONFIGURATION,
    DATA_KEY_AUDIT_POLICY,
    DATA_KEY_AUDIT_WEBHOOK_CONFIG,
    DATA_KEY_BASIC_AUTH,
    DATA_KEY_ENCRYPTION_CONFIG,
    DATA_KEY_MUTATING_WEBHOOK,
    DATA_KEY_SERVICE_ACCOUNT_KEY,
    DATA_KEY_STATIC_TOKEN,
    DATA_KEY_VALIDATING_WEBHOOK,
    ETCD_CLIENT_PORT,
    ETCD_ROLE_EVENTS,
    ETCD_ROLE_MAIN,
    ETCD_SECRET_NAME_CA,
    ETCD_SECRET_NAME_CLIENT,
    KUBE_APISERVER_COMPONENT,
    KUBE_APISERVER_NAME,
    KUBE_APISERVER_PORT,
    KUBE_CONTROLLER_MANAGER_NAME,
    LABEL_KEY_APP,
    LABEL_KEY_COMPONENT,
    PREFIX,
    PRIORITY_CLASS_NAME,
    SECRET_NAME_ADMISSION_KUBECONFIG,
    SECRET_NAME_AGGREGATOR_CA,
    SECRET_NAME_AGGREGATOR_CLIENT,
    SECRET_NAME_APISERVER_CA,
    SECRET_NAME_APISERVER_SERVER,
    SECRET_NAME_AUDIT_WEBHOOK_CONFIG,
    SECRET_NAME_BASIC_AUTH,
    SECRET_NAME_CONTROLLER_MANAGER,
    SECRET_NAME_ENCRYPTION_CONFIG,
    SECRET_NAME_SERVICE_ACCOUNT_KEY,
    SECRET_NAME_STATIC_TOKEN,
    SERVICE_CLUSTER_IP_RANGE,
    etcd_client_service_name,
    kube_apiserver_labels,
    kube_controller_manager_labels,
)
from garden.context import OperationContext
from garden.kube_apiserver_configmaps import ADMISSION_KUBECONFIG_MOUNT_PATH
from garden.kube_apiserver_secrets import ADMISSION_TOKENS_PATH
from reconciler import delete_resource, ensure_desired_state
from store.objects import ObjectRef, labels_of

logger = logging.getLogger(__name__)

KUBE_APISERVER_CONTAINER = 'kube-apiserver'
KUBE_CONTROLLER_MANAGER_CONTAINER = 'kube-controller-manager'

DEFAULT_EVENT_TTL = '24h'

# Pod-template annotations of the kube-apiserver, when the slot was written
KUBE_APISERVER_CHECKSUM_KEYS = (
    CHECKSUM_KEY_AUDIT_POLICY_CONFIG,
    CHECKSUM_KEY_ENCRYPTION_CONFIG,
    CHECKSUM_KEY_AGGREGATOR_CA,
    CHECKSUM_KEY_AGGREGATOR_CLIENT,
    CHECKSUM_KEY_APISERVER_CA,
    CHECKSUM_KEY_APISERVER_SERVER,
    CHECKSUM_KEY_AUDIT_WEBHOOK_CONFIG,
    CHECKSUM_KEY_BASIC_AUTH,
    CHECKSUM_KEY_STATIC_TOKEN,
    CHECKSUM_KEY_SERVICE_ACCOUNT_KEY,
    CHECKSUM_KEY_ADMISSION_CONFIG,
    CHECKSUM_KEY_ADMISSION_KUBECONFIG,
    CHECKSUM_KEY_ETCD_CA,
    CHECKSUM_KEY_ETCD_CLIENT,
)

_SRV = '/srv/kubernetes'

# volume name, secret name, mount path
_APISERVER_SECRET_VOLUMES = (
    ('ca-kube-apiserver', SECRET_NAME_APISERVER_CA, f'{_SRV}/ca'),
    ('ca-etcd', ETCD_SECRET_NAME_CA, f'{_SRV}/etcd/ca'),
    ('ca-front-proxy', SECRET_NAME_AGGREGATOR_CA, f'{_SRV}/aggregator-ca'),
    ('etcd-client-tls', ETCD_SECRET_NAME_CLIENT, f'{_SRV}/etcd/client'),
    ('kube-apiserver', SECRET_NAME_APISERVER_SERVER, f'{_SRV}/apiserver'),
    ('service-account-key', SECRET_NAME_SERVICE_ACCOUNT_KEY, f'{_SRV}/service-account-key'),
    ('kube-apiserver-basic-auth', SECRET_NAME_BASIC_AUTH, f'{_SRV}/auth'),
    ('kube-apiserver-static-token', SECRET_NAME_STATIC_TOKEN, f'{_SRV}/token'),
    ('kube-aggregator', SECRET_NAME_AGGREGATOR_CLIENT, f'{_SRV}/aggregator'),
    ('kube-apiserver-encryption-config', SECRET_NAME_ENCRYPTION_CONFIG, '/etc/kube-apiserver/encryption'),
)

# Node CA bundles, location differs per distribution
_HOST_CA_BUNDLES = (
    ('fedora-rhel6-openelec-cabundle', '/etc/pki/tls'),
    ('centos-rhel7-cabundle', '/etc/pki/ca-trust/extracted/pem'),
    ('etc-ssl', '/etc/ssl'),
)

AUDIT_POLICY_MOUNT_PATH = '/etc/kube-apiserver/audit'
AUDIT_WEBHOOK_MOUNT_PATH = '/etc/kube-apiserver/auditwebhook'
ADMISSION_CONFIG_MOUNT_PATH = '/etc/kube-apiserver/admission'
SNI_MOUNT_PATH = f'{_SRV}/sni-tls'

KCM_KUBECONFIG_MOUNT_PATH = f'{_SRV}/controller-manager'


def deployment_ref(namespace: str, name: str) -> ObjectRef:
    return ObjectRef('apps/v1', 'Deployment', name, namespace)


def etcd_url(namespace: str, role: str) -> str:
    return f'https://{etcd_client_service_name(role)}.{namespace}.svc:{ETCD_CLIENT_PORT}'


def select_checksums(checksums: dict[str, str], keys: Iterable[str]) -> dict[str, str]:
    """Subset of checksums for keys, skipping slots that were never written."""
    return {key: checksums[key] for key in keys if key in checksums}


def basic_auth_header(password: str) -> dict:
    token = base64.b64encode(f'admin:{password}'.encode('utf-8')).decode('ascii')
    return {'name': 'Authorization', 'value': f'Basic {token}'}


@dataclass(frozen=True)
class APIServerParams:
    """Inputs of the kube-apiserver deployment."""
    namespace: str
    image: str
    replicas: int
    scaled_externally: bool
    priority_class_name: str
    basic_auth_password: str
    annotations: dict = field(default_factory=dict)
    webhooks_enabled: bool = False
    audit_webhook_enabled: bool = False
    event_ttl: Optional[str] = None
    oidc_issuer_url: Optional[str] = None
    sni_hostnames: tuple = ()
    sni_secret_name: Optional[str] = None


def apiserver_params(ctx: OperationContext, priority_class_name: str, basic_auth_password: str,
                     checksums: dict[str, str]) -> APIServerParams:
    apiserver: KubeAPIServer = ctx.imports.virtual_garden.kube_apiserver
    replicas = apiserver.replicas
    hpa = apiserver.horizontal_pod_autoscaler
    if ctx.imports.autoscaling_enabled and hpa is not None and hpa.min_replicas is not None:
        replicas = hpa.min_replicas
    sni = apiserver.sni
    return APIServerParams(
        namespace=ctx.namespace,
        image=ctx.imports.images.kube_apiserver,
        replicas=replicas,
        scaled_externally=ctx.imports.autoscaling_enabled or apiserver.hvpa_enabled,
        priority_class_name=priority_class_name,
        basic_auth_password=basic_auth_password,
        annotations=select_checksums(checksums, KUBE_APISERVER_CHECKSUM_KEYS),
        webhooks_enabled=apiserver.validating_webhook_enabled or apiserver.mutating_webhook_enabled,
        audit_webhook_enabled=bool(apiserver.audit_webhook_config),
        event_ttl=apiserver.event_ttl,
        oidc_issuer_url=apiserver.oidc_issuer_url,
        sni_hostnames=tuple(sni.hostnames) if sni is not None else (),
        sni_secret_name=sni.secret_name if sni is not None else None,
    )


def apiserver_command(params: APIServerParams) -> list[str]:
    """kube-apiserver command line; etcd endpoints live in the target namespace."""
    events = etcd_url(params.namespace, ETCD_ROLE_EVENTS)
    command = [
        '/usr/local/bin/kube-apiserver',
        '--enable-admission-plugins=Priority,NamespaceLifecycle,LimitRanger,ServiceAccount,'
        'NodeRestriction,DefaultStorageClass,DefaultTolerationSeconds,ResourceQuota,'
        'StorageObjectInUseProtection,MutatingAdmissionWebhook,ValidatingAdmissionWebhook',
        '--disable-admission-plugins=PersistentVolumeLabel',
    ]
    if params.webhooks_enabled:
        command.append(f'--admission-control-config-file={ADMISSION_CONFIG_MOUNT_PATH}/'
                       f'{DATA_KEY_ADMISSION_CONFIGURATION}')
    command.append(f'--audit-policy-file={AUDIT_POLICY_MOUNT_PATH}/{DATA_KEY_AUDIT_POLICY}')
    if params.audit_webhook_enabled:
        command.append(f'--audit-webhook-config-file={AUDIT_WEBHOOK_MOUNT_PATH}/{DATA_KEY_AUDIT_WEBHOOK_CONFIG}')
    command.extend([
        f'--encryption-provider-config=/etc/kube-apiserver/encryption/{DATA_KEY_ENCRYPTION_CONFIG}',
        '--allow-privileged=true',
        '--anonymous-auth=false',
        '--authorization-mode=Node,RBAC',
        f'--basic-auth-file={_SRV}/auth/{DATA_KEY_BASIC_AUTH}',
        f'--token-auth-file={_SRV}/token/{DATA_KEY_STATIC_TOKEN}',
        f'--client-ca-file={_SRV}/ca/ca.crt',
        '--enable-aggregator-routing=true',
        '--enable-bootstrap-token-auth=true',
        f'--etcd-cafile={_SRV}/etcd/ca/ca.crt',
        f'--etcd-certfile={_SRV}/etcd/client/tls.crt',
        f'--etcd-keyfile={_SRV}/etcd/client/tls.key',
        f'--etcd-servers={etcd_url(params.namespace, ETCD_ROLE_MAIN)}',
        f'--etcd-servers-overrides=/events#{events},coordination.k8s.io/leases#{events}',
        f'--event-ttl={params.event_ttl or DEFAULT_EVENT_TTL}',
        '--kubelet-preferred-address-types=InternalIP,Hostname,ExternalIP',
        '--livez-grace-period=1m',
        '--max-requests-inflight=800',
        '--max-mutating-requests-inflight=400',
    ])
    if params.oidc_issuer_url:
        command.extend([
            f'--oidc-issuer-url={params.oidc_issuer_url}',
            '--oidc-client-id=kube-kubectl',
            '--oidc-username-claim=email',
            '--oidc-groups-claim=groups',
        ])
    command.extend([
        '--profiling=false',
        f'--proxy-client-cert-file={_SRV}/aggregator/tls.crt',
        f'--proxy-client-key-file={_SRV}/aggregator/tls.key',
        f'--requestheader-client-ca-file={_SRV}/aggregator-ca/ca.crt',
        '--requestheader-extra-headers-prefix=X-Remote-Extra-',
        '--requestheader-group-headers=X-Remote-Group',
        '--requestheader-username-headers=X-Remote-User',
        f'--secure-port={KUBE_APISERVER_PORT}',
        f'--service-cluster-ip-range={SERVICE_CLUSTER_IP_RANGE}',
        f'--service-account-key-file={_SRV}/service-account-key/{DATA_KEY_SERVICE_ACCOUNT_KEY}',
        '--shutdown-delay-duration=20s',
        f'--tls-cert-file={_SRV}/apiserver/tls.crt',
        f'--tls-private-key-file={_SRV}/apiserver/tls.key',
    ])
    if params.sni_secret_name:
        hostnames = ','.join(params.sni_hostnames)
        command.append(f'--tls-sni-cert-key={SNI_MOUNT_PATH}/tls.crt,{SNI_MOUNT_PATH}/tls.key:{hostnames}')
    command.extend([
        '--watch-cache-sizes=secrets#500,configmaps#500',
        '--v=2',
    ])
    return command


def _secret_volume(name: str, secret_name: str) -> dict:
    return {'name': name, 'secret': {'secretName': secret_name}}


def apiserver_volumes(params: APIServerParams) -> tuple[list[dict], list[dict]]:
    """Volumes and matching container mounts of the kube-apiserver pod."""
    volumes = [{'name': 'kube-apiserver-audit-policy-config',
                'configMap': {'name': CONFIGMAP_NAME_AUDIT_POLICY}}]
    mounts = [{'name': 'kube-apiserver-audit-policy-config', 'mountPath': AUDIT_POLICY_MOUNT_PATH}]

    if params.audit_webhook_enabled:
        volumes.append(_secret_volume('kube-apiserver-audit-webhook-config', SECRET_NAME_AUDIT_WEBHOOK_CONFIG))
        mounts.append({'name': 'kube-apiserver-audit-webhook-config', 'mountPath': AUDIT_WEBHOOK_MOUNT_PATH})

    for name, secret_name, path in _APISERVER_SECRET_VOLUMES:
        volumes.append(_secret_volume(name, secret_name))
        mounts.append({'name': name, 'mountPath': path})

    if params.sni_secret_name:
        volumes.append(_secret_volume('sni-tls', params.sni_secret_name))
        mounts.append({'name': 'sni-tls', 'mountPath': SNI_MOUNT_PATH})

    for name, path in _HOST_CA_BUNDLES:
        volumes.append({'name': name, 'hostPath': {'path': path, 'type': 'DirectoryOrCreate'}})
        mounts.append({'name': name, 'mountPath': path, 'readOnly': True})

    if params.webhooks_enabled:
        volumes.extend([
            {'name': 'kube-apiserver-admission-config', 'configMap': {'name': CONFIGMAP_NAME_ADMISSION}},
            _secret_volume('kube-apiserver-admission-kubeconfig', SECRET_NAME_ADMISSION_KUBECONFIG),
            {'name': 'kube-apiserver-admission-tokens', 'projected': {'sources': [
                {'serviceAccountToken': {
                    'audience': audience,
                    'expirationSeconds': 3600,
                    'path': f'{audience}-token',
                }} for audience in (DATA_KEY_VALIDATING_WEBHOOK, DATA_KEY_MUTATING_WEBHOOK)
            ]}},
        ])
        mounts.extend([
            {'name': 'kube-apiserver-admission-config', 'mountPath': ADMISSION_CONFIG_MOUNT_PATH},
            {'name': 'kube-apiserver-admission-kubeconfig', 'mountPath': ADMISSION_KUBECONFIG_MOUNT_PATH},
            {'name': 'kube-apiserver-admission-tokens', 'mountPath': ADMISSION_TOKENS_PATH},
        ])
    return volumes, mounts


def _probe(path: str, password: str, initial_delay: int) -> dict:
    return {
        'httpGet': {
            'path': path,
            'port': KUBE_APISERVER_PORT,
            'scheme': 'HTTPS',
            'httpHeaders': [basic_auth_header(password)],
        },
        'initialDelaySeconds': initial_delay,
        'timeoutSeconds': 15,
        'periodSeconds': 30,
        'successThreshold': 1,
        'failureThreshold': 3,
    }


def _anti_affinity(component: str) -> dict:
    return {'podAntiAffinity': {'preferredDuringSchedulingIgnoredDuringExecution': [{
        'weight': 100,
        'podAffinityTerm': {
            'topologyKey': 'kubernetes.io/hostname',
            'labelSelector': {'matchExpressions': [
                {'key': LABEL_KEY_APP, 'operator': 'In', 'values': [PREFIX]},
                {'key': LABEL_KEY_COMPONENT, 'operator': 'In', 'values': [component]},
            ]},
        },
    }]}}


def mutate_apiserver_deployment(params: APIServerParams, deployment: dict) -> dict:
    """Converge the kube-apiserver deployment.

    When an autoscaler owns the replica count, the current value of an
    existing deployment is left alone.
    """
    labels = kube_apiserver_labels()
    volumes, mounts = apiserver_volumes(params)
    deployment['metadata']['labels'] = merge_string_maps(labels_of(deployment), labels)

    current = deployment.get('spec') or {}
    replicas = params.replicas
    if params.scaled_externally and current.get('replicas') is not None:
        replicas = current['replicas']

    deployment['spec'] = {
        'revisionHistoryLimit': 0,
        'replicas': replicas,
        'selector': {'matchLabels': labels},
        'template': {
            'metadata': {
                'annotations': dict(params.annotations),
                'labels': dict(labels),
            },
            'spec': {
                'affinity': _anti_affinity(KUBE_APISERVER_COMPONENT),
                'automountServiceAccountToken': False,
                'serviceAccountName': KUBE_APISERVER_NAME,
                'priorityClassName': params.priority_class_name,
                'containers': [{
                    'name': KUBE_APISERVER_CONTAINER,
                    'image': params.image,
                    'imagePullPolicy': 'IfNotPresent',
                    'command': apiserver_command(params),
                    'lifecycle': {'preStop': {'exec': {'command': ['sh', '-c', 'sleep 5']}}},
                    'livenessProbe': _probe('/livez', params.basic_auth_password, 15),
                    'readinessProbe': _probe('/readyz', params.basic_auth_password, 10),
                    'ports': [{'name': 'https', 'containerPort': KUBE_APISERVER_PORT, 'protocol': 'TCP'}],
                    'resources': {
                        'limits': {'cpu': '2', 'memory': '2000Mi'},
                        'requests': {'cpu': '600m', 'memory': '512Mi'},
                    },
                    'volumeMounts': mounts,
                }],
                'dnsPolicy': 'ClusterFirst',
                'restartPolicy': 'Always',
                'terminationGracePeriodSeconds': 30,
                'volumes': volumes,
            },
        },
    }
    return deployment


def controller_manager_command() -> list[str]:
    kubeconfig = f'{KCM_KUBECONFIG_MOUNT_PATH}/kubeconfig'
    return [
        '/usr/local/bin/kube-controller-manager',
        f'--authentication-kubeconfig={kubeconfig}',
        f'--authorization-kubeconfig={kubeconfig}',
        f'--cluster-signing-cert-file={_SRV}/ca/ca.crt',
        f'--cluster-signing-key-file={_SRV}/ca/ca.key',
        '--controllers=namespace,serviceaccount,serviceaccount-token,clusterrole-aggregation,'
        'garbagecollector,csrapproving,csrcleaner,csrsigning,bootstrapsigner,tokencleaner,resourcequota',
        '--concurrent-gc-syncs=250',
        '--concurrent-namespace-syncs=100',
        '--concurrent-resource-quota-syncs=100',
        '--concurrent-serviceaccount-token-syncs=100',
        f'--kubeconfig={kubeconfig}',
        f'--root-ca-file={_SRV}/ca/ca.crt',
        f'--service-account-private-key-file={_SRV}/service-account-key/{DATA_KEY_SERVICE_ACCOUNT_KEY}',
        '--use-service-account-credentials=true',
        '--v=2',
    ]


def mutate_controller_manager_deployment(image: str, priority_class_name: str, annotations: dict,
                                         deployment: dict) -> dict:
    labels = kube_controller_manager_labels()
    deployment['metadata']['labels'] = merge_string_maps(labels_of(deployment), labels)
    deployment['spec'] = {
        'revisionHistoryLimit': 0,
        'replicas': 1,
        'selector': {'matchLabels': labels},
        'template': {
            'metadata': {'annotations': dict(annotations), 'labels': dict(labels)},
            'spec': {
                'automountServiceAccountToken': False,
                'priorityClassName': priority_class_name,
                'containers': [{
                    'name': KUBE_CONTROLLER_MANAGER_CONTAINER,
                    'image': image,
                    'imagePullPolicy': 'IfNotPresent',
                    'command': controller_manager_command(),
                    'livenessProbe': {
                        'httpGet': {'path': '/healthz', 'port': 10257, 'scheme': 'HTTPS'},
                        'initialDelaySeconds': 15,
                        'timeoutSeconds': 15,
                        'periodSeconds': 10,
                        'failureThreshold': 2,
                    },
                    'resources': {
                        'limits': {'cpu': '750m', 'memory': '4Gi'},
                        'requests': {'cpu': '100m', 'memory': '128Mi'},
                    },
                    'volumeMounts': [
                        {'name': 'ca-kube-apiserver', 'mountPath': f'{_SRV}/ca'},
                        {'name': 'kube-controller-manager', 'mountPath': KCM_KUBECONFIG_MOUNT_PATH},
                        {'name': 'service-account-key', 'mountPath': f'{_SRV}/service-account-key'},
                    ],
                }],
                'dnsPolicy': 'ClusterFirst',
                'restartPolicy': 'Always',
                'terminationGracePeriodSeconds': 30,
                'volumes': [
                    _secret_volume('ca-kube-apiserver', SECRET_NAME_APISERVER_CA),
                    _secret_volume('kube-controller-manager', SECRET_NAME_CONTROLLER_MANAGER),
                    _secret_volume('service-account-key', SECRET_NAME_SERVICE_ACCOUNT_KEY),
                ],
            },
        },
    }
    return deployment


def deploy_deployments(ctx: OperationContext, checksums: dict[str, str], basic_auth_password: str) -> None:
    """Converge both deployments with the given pod-template checksums."""
    priority_class = ctx.imports.virtual_garden.priority_class_name or PRIORITY_CLASS_NAME

    logger.info("Deploying kube-apiserver deployment")
    params = apiserver_params(ctx, priority_class, basic_auth_password, checksums)
    ensure_desired_state(
        ctx.store,
        deployment_ref(ctx.namespace, KUBE_APISERVER_NAME),
        functools.partial(mutate_apiserver_deployment, params),
        retries=ctx.config.conflict_retries,
    )

    logger.info("Deploying kube-controller-manager deployment")
    ensure_desired_state(
        ctx.store,
        deployment_ref(ctx.namespace, KUBE_CONTROLLER_MANAGER_NAME),
        functools.partial(
            mutate_controller_manager_deployment,
            ctx.imports.images.kube_controller_manager,
            priority_class,
            select_checksums(checksums, CONTROLLER_MANAGER_CHECKSUM_KEYS),
        ),
        retries=ctx.config.conflict_retries,
    )


def delete_deployments(ctx: OperationContext) -> None:
    logger.info("Deleting kube-apiserver and kube-controller-manager deployments")
    for name in (KUBE_CONTROLLER_MANAGER_NAME, KUBE_APISERVER_NAME):
        delete_resource(ctx.store, deployment_ref(ctx.namespace, name))
