"""Desired-state document (imports) and derived values (exports).

Imports are read from YAML:

    hostingCluster:
      kubeconfig: /path/to/kubeconfig
      namespace: garden
      infrastructureProvider: gcp
    virtualGarden:
      etcd:
        backup:
          infrastructureProvider: gcp
          region: europe-west1
          bucketName: vg-backup
          credentialsRef: gcp-backup
      kubeAPIServer:
        replicas: 2
        dnsAccessDomain: example.org
      deleteNamespace: false
    credentials:
      gcp-backup:
        type: gcp
        data:
          serviceaccount.json: '{"project_id": "..."}'

Every from_dict() is lenient about missing optional keys and strict about
types only where a wrong type would otherwise surface deep inside a task.
Semantic checks live in validation.py.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

import yaml

from errors import ValidationError

logger = logging.getLogger(__name__)


class ProviderType(str, Enum):
    """Supported vendors."""
    ALICLOUD = 'alicloud'
    AWS = 'aws'
    GCP = 'gcp'
    FAKE = 'fake'

    @classmethod
    def values(cls) -> list[str]:
        return [p.value for p in cls]


def _mapping(data: Any, path: str) -> dict:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError([f"{path}: must be a mapping, got {type(data).__name__}"])
    return data


@dataclass
class Credentials:
    """Named credential bag.

    Attributes:
        type: Vendor tag the credentials belong to
        data: Key-value secrets (access keys, service account JSON)
    """
    type: str
    data: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict, path: str = 'credentials') -> 'Credentials':
        data = _mapping(data, path)
        return cls(
            type=str(data.get('type', '')),
            data={str(k): str(v) for k, v in _mapping(data.get('data'), f'{path}.data').items()},
        )

    def to_dict(self) -> dict:
        return {'type': self.type, 'data': dict(self.data)}


@dataclass
class HostingCluster:
    """Where the virtual garden is deployed.

    Attributes:
        namespace: Target namespace in the hosting cluster
        infrastructure_provider: Vendor tag of the hosting cluster
        kubeconfig: Path to, or inline content of, the hosting cluster kubeconfig
    """
    namespace: str
    infrastructure_provider: str
    kubeconfig: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> 'HostingCluster':
        data = _mapping(data, 'hostingCluster')
        return cls(
            namespace=str(data.get('namespace') or ''),
            infrastructure_provider=str(data.get('infrastructureProvider') or ''),
            kubeconfig=data.get('kubeconfig'),
        )

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            'namespace': self.namespace,
            'infrastructureProvider': self.infrastructure_provider,
        }
        if self.kubeconfig is not None:
            d['kubeconfig'] = self.kubeconfig
        return d


@dataclass
class ETCDBackup:
    infrastructure_provider: str
    region: str
    bucket_name: str
    credentials_ref: str

    @classmethod
    def from_dict(cls, data: dict) -> 'ETCDBackup':
        data = _mapping(data, 'virtualGarden.etcd.backup')
        return cls(
            infrastructure_provider=str(data.get('infrastructureProvider') or ''),
            region=str(data.get('region') or ''),
            bucket_name=str(data.get('bucketName') or ''),
            credentials_ref=str(data.get('credentialsRef') or ''),
        )

    def to_dict(self) -> dict:
        return {
            'infrastructureProvider': self.infrastructure_provider,
            'region': self.region,
            'bucketName': self.bucket_name,
            'credentialsRef': self.credentials_ref,
        }


@dataclass
class ETCD:
    """Data store settings.

    Attributes:
        storage_class_name: Override for the storage class name; '' is invalid
        backup: Backup bucket settings, None disables backups
        hvpa_enabled: Scale etcd with an HVPA object instead of fixed resources
        handle_persistent_volumes: Delete the data volume claims on delete
    """
    storage_class_name: Optional[str] = None
    backup: Optional[ETCDBackup] = None
    hvpa_enabled: bool = False
    handle_persistent_volumes: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> 'ETCD':
        data = _mapping(data, 'virtualGarden.etcd')
        backup = data.get('backup')
        return cls(
            storage_class_name=data.get('storageClassName'),
            backup=ETCDBackup.from_dict(backup) if backup is not None else None,
            hvpa_enabled=bool(data.get('hvpaEnabled', False)),
            handle_persistent_volumes=bool(data.get('handleETCDPersistentVolumes', False)),
        )

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            'hvpaEnabled': self.hvpa_enabled,
            'handleETCDPersistentVolumes': self.handle_persistent_volumes,
        }
        if self.storage_class_name is not None:
            d['storageClassName'] = self.storage_class_name
        if self.backup is not None:
            d['backup'] = self.backup.to_dict()
        return d


@dataclass
class SNI:
    """Exposure through an SNI-capable ingress with managed DNS records.

    Attributes:
        hostnames: DNS names served through SNI
        dns_class: dns.gardener.cloud/class annotation value
        ttl: DNS record TTL in seconds
        secret_name: TLS secret presented for the SNI hostnames
    """
    hostnames: list[str] = field(default_factory=list)
    dns_class: Optional[str] = None
    ttl: Optional[int] = None
    secret_name: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> 'SNI':
        data = _mapping(data, 'virtualGarden.kubeAPIServer.sni')
        hostnames = data.get('hostnames')
        if hostnames is None and data.get('hostname'):
            hostnames = [data['hostname']]
        ttl = data.get('ttl')
        return cls(
            hostnames=[str(h) for h in (hostnames or [])],
            dns_class=data.get('dnsClass'),
            ttl=int(ttl) if ttl is not None else None,
            secret_name=data.get('secretName') or None,
        )

    def to_dict(self) -> dict:
        d: dict[str, Any] = {'hostnames': list(self.hostnames)}
        if self.dns_class is not None:
            d['dnsClass'] = self.dns_class
        if self.ttl is not None:
            d['ttl'] = self.ttl
        if self.secret_name:
            d['secretName'] = self.secret_name
        return d


@dataclass
class HorizontalPodAutoscaler:
    """Autoscaling settings for the front-end deployment."""
    min_replicas: Optional[int] = None
    max_replicas: int = 4
    target_cpu_utilization: int = 75

    @classmethod
    def from_dict(cls, data: dict) -> 'HorizontalPodAutoscaler':
        data = _mapping(data, 'virtualGarden.kubeAPIServer.horizontalPodAutoscaler')
        min_replicas = data.get('minReplicas')
        return cls(
            min_replicas=int(min_replicas) if min_replicas is not None else None,
            max_replicas=int(data.get('maxReplicas', 4)),
            target_cpu_utilization=int(data.get('targetCPUUtilization', 75)),
        )

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            'maxReplicas': self.max_replicas,
            'targetCPUUtilization': self.target_cpu_utilization,
        }
        if self.min_replicas is not None:
            d['minReplicas'] = self.min_replicas
        return d


@dataclass
class KubeAPIServer:
    """Front-end settings.

    Attributes:
        replicas: Deployment replicas (HPA minimum when autoscaling)
        dns_access_domain: Domain under which api.<domain> resolves to the front-end
        sni: SNI exposure, None for a plain load balancer
        validating_webhook_enabled: Enable the ValidatingAdmissionWebhook plugin config
        mutating_webhook_enabled: Enable the MutatingAdmissionWebhook plugin config
        audit_webhook_config: Kubeconfig of an audit webhook backend
        event_ttl: --event-ttl of the front-end
        oidc_issuer_url: --oidc-issuer-url of the front-end
        hvpa_enabled: Scale with an HVPA object
        horizontal_pod_autoscaler: Autoscaling settings, None disables the HPA
    """
    replicas: int = 1
    dns_access_domain: str = ''
    sni: Optional[SNI] = None
    validating_webhook_enabled: bool = False
    mutating_webhook_enabled: bool = False
    audit_webhook_config: Optional[str] = None
    event_ttl: Optional[str] = None
    oidc_issuer_url: Optional[str] = None
    hvpa_enabled: bool = False
    horizontal_pod_autoscaler: Optional[HorizontalPodAutoscaler] = None

    @classmethod
    def from_dict(cls, data: dict) -> 'KubeAPIServer':
        data = _mapping(data, 'virtualGarden.kubeAPIServer')
        controlplane = _mapping(data.get('gardenerControlplane'),
                                'virtualGarden.kubeAPIServer.gardenerControlplane')
        audit = _mapping(data.get('auditWebhookConfig'), 'virtualGarden.kubeAPIServer.auditWebhookConfig')
        sni = data.get('sni')
        hpa = data.get('horizontalPodAutoscaler')
        return cls(
            replicas=int(data.get('replicas') or 1),
            dns_access_domain=str(data.get('dnsAccessDomain') or ''),
            sni=SNI.from_dict(sni) if sni is not None else None,
            validating_webhook_enabled=bool(controlplane.get('validatingWebhookEnabled', False)),
            mutating_webhook_enabled=bool(controlplane.get('mutatingWebhookEnabled', False)),
            audit_webhook_config=audit.get('config') or None,
            event_ttl=data.get('eventTTL'),
            oidc_issuer_url=data.get('oidcIssuerURL'),
            hvpa_enabled=bool(data.get('hvpaEnabled', False)),
            horizontal_pod_autoscaler=HorizontalPodAutoscaler.from_dict(hpa) if hpa is not None else None,
        )

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            'replicas': self.replicas,
            'dnsAccessDomain': self.dns_access_domain,
            'gardenerControlplane': {
                'validatingWebhookEnabled': self.validating_webhook_enabled,
                'mutatingWebhookEnabled': self.mutating_webhook_enabled,
            },
            'hvpaEnabled': self.hvpa_enabled,
        }
        if self.sni is not None:
            d['sni'] = self.sni.to_dict()
        if self.audit_webhook_config:
            d['auditWebhookConfig'] = {'config': self.audit_webhook_config}
        if self.event_ttl is not None:
            d['eventTTL'] = self.event_ttl
        if self.oidc_issuer_url is not None:
            d['oidcIssuerURL'] = self.oidc_issuer_url
        if self.horizontal_pod_autoscaler is not None:
            d['horizontalPodAutoscaler'] = self.horizontal_pod_autoscaler.to_dict()
        return d


@dataclass
class VirtualGarden:
    etcd: ETCD = field(default_factory=ETCD)
    kube_apiserver: KubeAPIServer = field(default_factory=KubeAPIServer)
    delete_namespace: bool = False
    priority_class_name: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> 'VirtualGarden':
        data = _mapping(data, 'virtualGarden')
        return cls(
            etcd=ETCD.from_dict(data.get('etcd')),
            kube_apiserver=KubeAPIServer.from_dict(data.get('kubeAPIServer')),
            delete_namespace=bool(data.get('deleteNamespace', False)),
            priority_class_name=data.get('priorityClassName') or None,
        )

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            'etcd': self.etcd.to_dict(),
            'kubeAPIServer': self.kube_apiserver.to_dict(),
            'deleteNamespace': self.delete_namespace,
        }
        if self.priority_class_name:
            d['priorityClassName'] = self.priority_class_name
        return d


@dataclass
class Images:
    """Container image references for the deployed components."""
    etcd: str = 'quay.io/coreos/etcd:v3.4.13'
    etcd_backup_restore: str = 'eu.gcr.io/gardener-project/gardener/etcdbrctl:v0.12.1'
    kube_apiserver: str = 'k8s.gcr.io/kube-apiserver:v1.20.6'
    kube_controller_manager: str = 'k8s.gcr.io/kube-controller-manager:v1.20.6'

    @classmethod
    def from_dict(cls, data: dict) -> 'Images':
        data = _mapping(data, 'images')
        defaults = cls()
        return cls(
            etcd=data.get('etcd', defaults.etcd),
            etcd_backup_restore=data.get('etcdBackupRestore', defaults.etcd_backup_restore),
            kube_apiserver=data.get('kubeAPIServer', defaults.kube_apiserver),
            kube_controller_manager=data.get('kubeControllerManager', defaults.kube_controller_manager),
        )

    def to_dict(self) -> dict:
        return {
            'etcd': self.etcd,
            'etcdBackupRestore': self.etcd_backup_restore,
            'kubeAPIServer': self.kube_apiserver,
            'kubeControllerManager': self.kube_controller_manager,
        }


@dataclass
class Imports:
    """Complete desired-state document."""
    hosting_cluster: HostingCluster
    virtual_garden: VirtualGarden = field(default_factory=VirtualGarden)
    credentials: dict[str, Credentials] = field(default_factory=dict)
    images: Images = field(default_factory=Images)

    @property
    def backup_enabled(self) -> bool:
        return self.virtual_garden.etcd.backup is not None

    @property
    def autoscaling_enabled(self) -> bool:
        return self.virtual_garden.kube_apiserver.horizontal_pod_autoscaler is not None

    @classmethod
    def from_dict(cls, data: dict) -> 'Imports':
        data = _mapping(data, 'imports')
        credentials = _mapping(data.get('credentials'), 'credentials')
        return cls(
            hosting_cluster=HostingCluster.from_dict(data.get('hostingCluster')),
            virtual_garden=VirtualGarden.from_dict(data.get('virtualGarden')),
            credentials={
                str(name): Credentials.from_dict(c, f'credentials.{name}')
                for name, c in credentials.items()
            },
            images=Images.from_dict(data.get('images')),
        )

    def to_dict(self) -> dict:
        return {
            'hostingCluster': self.hosting_cluster.to_dict(),
            'virtualGarden': self.virtual_garden.to_dict(),
            'credentials': {name: c.to_dict() for name, c in self.credentials.items()},
            'images': self.images.to_dict(),
        }


@dataclass
class Exports:
    """Values handed to downstream consumers after a successful reconcile."""
    virtual_garden_apiserver_ca_pem: str = ''
    service_account_key_pem: str = ''
    etcd_ca_pem: str = ''
    etcd_client_tls_pem: str = ''
    etcd_client_tls_key_pem: str = ''
    etcd_url: str = ''
    kubeconfig_yaml: str = ''
    virtual_garden_endpoint: str = ''

    FIELDS = {
        'virtualGardenApiserverCaPem': 'virtual_garden_apiserver_ca_pem',
        'serviceAccountKeyPem': 'service_account_key_pem',
        'etcdCaPem': 'etcd_ca_pem',
        'etcdClientTlsPem': 'etcd_client_tls_pem',
        'etcdClientTlsKeyPem': 'etcd_client_tls_key_pem',
        'etcdUrl': 'etcd_url',
        'kubeconfigYaml': 'kubeconfig_yaml',
        'virtualGardenEndpoint': 'virtual_garden_endpoint',
    }

    @classmethod
    def from_dict(cls, data: dict) -> 'Exports':
        data = _mapping(data, 'exports')
        return cls(**{attr: str(data.get(key, '')) for key, attr in cls.FIELDS.items()})

    def to_dict(self) -> dict:
        return {key: getattr(self, attr) for key, attr in self.FIELDS.items() if getattr(self, attr)}


def load_imports(path: Path) -> Imports:
    """Parse an imports YAML file.

    Raises:
        ValidationError: If the file is missing, not YAML, or structurally wrong
    """
    path = Path(path)
    if not path.exists():
        raise ValidationError([f"imports file not found: {path}"])
    try:
        with open(path, encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValidationError([f"imports file {path} is not valid YAML: {e}"]) from e
    try:
        imports = Imports.from_dict(data)
    except (TypeError, ValueError) as e:
        raise ValidationError([f"imports file {path}: {e}"]) from e
    logger.debug(f"Loaded imports from {path}")
    return imports


def write_exports(exports: Exports, path: Path) -> Path:
    """Write exports as YAML, creating parent directories."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        yaml.safe_dump(exports.to_dict(), f, default_flow_style=False, sort_keys=False)
    logger.debug(f"Wrote exports to {path}")
    return path
