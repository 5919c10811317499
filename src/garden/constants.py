"""Names, labels and data keys of the objects the driver manages."""

PREFIX = 'virtual-garden'

LABEL_KEY_APP = 'app'
LABEL_KEY_COMPONENT = 'component'
LABEL_KEY_ROLE = 'role'

# etcd
ETCD_ROLE_MAIN = 'main'
ETCD_ROLE_EVENTS = 'events'
ETCD_ROLES = (ETCD_ROLE_MAIN, ETCD_ROLE_EVENTS)

ETCD_COMPONENT = 'etcd'
ETCD_DEFAULT_STORAGE_CLASS = f'{PREFIX}.gardener.cloud-fast'
ETCD_SECRET_NAME_CA = f'{PREFIX}-etcd-ca'
ETCD_SECRET_NAME_CLIENT = f'{PREFIX}-etcd-client'
ETCD_SECRET_NAME_BACKUP = f'{PREFIX}-etcd-main-backup'

ETCD_CLIENT_PORT = 2379
ETCD_BACKUP_CLIENT_PORT = 8080
ETCD_BACKUP_MOUNT_PATH = '/var/etcd/backup'
ETCD_BACKUP_VOLUME = 'backup-credentials'
ETCD_DATA_MOUNT_PATH = '/var/etcd/data'
ETCD_DATA_DIR = f'{ETCD_DATA_MOUNT_PATH}/new.etcd'
ETCD_CERTS_MOUNT_PATH = '/var/etcd/ssl'
ETCD_CA_MOUNT_PATH = f'{ETCD_CERTS_MOUNT_PATH}/ca'
ETCD_SERVER_MOUNT_PATH = f'{ETCD_CERTS_MOUNT_PATH}/server'
ETCD_CLIENT_MOUNT_PATH = f'{ETCD_CERTS_MOUNT_PATH}/client'

ETCD_DATA_KEY_BOOTSTRAP_SCRIPT = 'bootstrap.sh'
ETCD_DATA_KEY_CONFIGURATION = 'etcd.conf.yml'

CHECKSUM_KEY_ETCD_BOOTSTRAP_CONFIG = 'checksum/configmap-etcd-bootstrap-config'
CHECKSUM_KEY_ETCD_CA = 'checksum/secret-etcd-ca'
CHECKSUM_KEY_ETCD_SERVER = 'checksum/secret-etcd-server'
CHECKSUM_KEY_ETCD_CLIENT = 'checksum/secret-etcd-client'
CHECKSUM_KEY_ETCD_BACKUP = 'checksum/secret-etcd-backup'

# kube-apiserver
KUBE_APISERVER_COMPONENT = 'kube-apiserver'
KUBE_APISERVER_NAME = f'{PREFIX}-kube-apiserver'
KUBE_APISERVER_SERVICE_PORT_NAME = 'kube-apiserver'
KUBE_APISERVER_PORT = 443

KUBE_CONTROLLER_MANAGER_COMPONENT = 'kube-controller-manager'
KUBE_CONTROLLER_MANAGER_NAME = f'{PREFIX}-kube-controller-manager'

SECRET_NAME_AGGREGATOR_CA = f'{PREFIX}-kube-aggregator-ca'
SECRET_NAME_AGGREGATOR_CLIENT = f'{PREFIX}-kube-aggregator'
SECRET_NAME_APISERVER_CA = f'{PREFIX}-kube-apiserver-ca'
SECRET_NAME_APISERVER_SERVER = f'{PREFIX}-kube-apiserver'
SECRET_NAME_CONTROLLER_MANAGER = f'{PREFIX}-kube-controller-manager'
SECRET_NAME_ADMIN_KUBECONFIG = f'{PREFIX}-kubeconfig-for-admin'
SECRET_NAME_METRICS_SCRAPER = f'{PREFIX}-metrics-scraper'

KUBE_APISERVER_CERTIFICATE_SECRETS = (
    SECRET_NAME_AGGREGATOR_CA,
    SECRET_NAME_AGGREGATOR_CLIENT,
    SECRET_NAME_APISERVER_CA,
    SECRET_NAME_APISERVER_SERVER,
    SECRET_NAME_CONTROLLER_MANAGER,
    SECRET_NAME_ADMIN_KUBECONFIG,
    SECRET_NAME_METRICS_SCRAPER,
)

SECRET_NAME_ADMISSION_KUBECONFIG = f'{PREFIX}-kube-apiserver-admission-kubeconfig'
SECRET_NAME_AUDIT_WEBHOOK_CONFIG = 'kube-apiserver-audit-webhook-config'
SECRET_NAME_BASIC_AUTH = f'{PREFIX}-kube-apiserver-basic-auth'
SECRET_NAME_STATIC_TOKEN = f'{PREFIX}-kube-apiserver-static-token'
SECRET_NAME_ENCRYPTION_CONFIG = f'{PREFIX}-kube-apiserver-encryption-config'
SECRET_NAME_SERVICE_ACCOUNT_KEY = f'{PREFIX}-service-account-key'

KUBE_APISERVER_SECRETS = (
    SECRET_NAME_ADMISSION_KUBECONFIG,
    SECRET_NAME_AUDIT_WEBHOOK_CONFIG,
    SECRET_NAME_BASIC_AUTH,
    SECRET_NAME_STATIC_TOKEN,
    SECRET_NAME_ENCRYPTION_CONFIG,
    SECRET_NAME_SERVICE_ACCOUNT_KEY,
)

CONFIGMAP_NAME_ADMISSION = f'{PREFIX}-kube-apiserver-admission-config'
CONFIGMAP_NAME_AUDIT_POLICY = 'kube-apiserver-audit-policy-config'

DATA_KEY_VALIDATING_WEBHOOK = 'validating-webhook'
DATA_KEY_MUTATING_WEBHOOK = 'mutating-webhook'
DATA_KEY_AUDIT_WEBHOOK_CONFIG = 'audit-webhook-config.yaml'
DATA_KEY_STATIC_TOKEN = 'static_tokens.csv'
DATA_KEY_BASIC_AUTH = 'basic_auth.csv'
DATA_KEY_ENCRYPTION_CONFIG = 'encryption-config.yaml'
DATA_KEY_SERVICE_ACCOUNT_KEY = 'service_account.key'
DATA_KEY_ADMISSION_CONFIGURATION = 'configuration.yaml'
DATA_KEY_AUDIT_POLICY = 'audit-policy.yaml'

CHECKSUM_KEY_AUDIT_POLICY_CONFIG = 'checksum/configmap-kube-apiserver-audit-policy-config'
CHECKSUM_KEY_ENCRYPTION_CONFIG = 'checksum/secret-kube-apiserver-encryption-config'
CHECKSUM_KEY_AGGREGATOR_CA = 'checksum/secret-kube-aggregator-ca'
CHECKSUM_KEY_AGGREGATOR_CLIENT = 'checksum/secret-kube-aggregator-client'
CHECKSUM_KEY_APISERVER_CA = 'checksum/secret-kube-apiserver-ca'
CHECKSUM_KEY_APISERVER_SERVER = 'checksum/secret-kube-apiserver-server'
CHECKSUM_KEY_AUDIT_WEBHOOK_CONFIG = 'checksum/secret-kube-apiserver-audit-webhook-config'
CHECKSUM_KEY_STATIC_TOKEN = 'checksum/secret-kube-apiserver-static-token'
CHECKSUM_KEY_BASIC_AUTH = 'checksum/secret-kube-apiserver-basic-auth'
CHECKSUM_KEY_ADMISSION_CONFIG = 'checksum/virtual-garden-kube-apiserver-admission-config'
CHECKSUM_KEY_ADMISSION_KUBECONFIG = 'checksum/secret-kube-apiserver-admission-kubeconfig'
CHECKSUM_KEY_CONTROLLER_MANAGER_CLIENT = 'checksum/secret-kube-controller-manager-client'
CHECKSUM_KEY_SERVICE_ACCOUNT_KEY = 'checksum/secret-service-account-key'

# Checksums the controller-manager pod template carries
CONTROLLER_MANAGER_CHECKSUM_KEYS = (
    CHECKSUM_KEY_APISERVER_CA,
    CHECKSUM_KEY_CONTROLLER_MANAGER_CLIENT,
    CHECKSUM_KEY_SERVICE_ACCOUNT_KEY,
)

# HVPA
HVPA_CRD_NAME = 'hvpas.autoscaling.k8s.io'
HVPA_API_VERSION = 'autoscaling.k8s.io/v1alpha1'

DNS_ANNOTATION_NAMES = 'dns.gardener.cloud/dnsnames'
DNS_ANNOTATION_CLASS = 'dns.gardener.cloud/class'
DNS_ANNOTATION_TTL = 'dns.gardener.cloud/ttl'
DNS_ANNOTATIONS = (DNS_ANNOTATION_NAMES, DNS_ANNOTATION_CLASS, DNS_ANNOTATION_TTL)

PRIORITY_CLASS_NAME = 'garden-controlplane'
SERVICE_CLUSTER_IP_RANGE = '100.64.0.0/13'
SERVICE_CLUSTER_IP = '100.64.0.1'


def etcd_name(role: str) -> str:
    """Name of the etcd statefulset for role."""
    return f'{PREFIX}-etcd-{role}'


def etcd_client_service_name(role: str) -> str:
    return f'{etcd_name(role)}-client'


def etcd_configmap_name(role: str) -> str:
    return f'{etcd_name(role)}-bootstrap'


def etcd_server_secret_name(role: str) -> str:
    return f'{etcd_name(role)}-server'


def etcd_hvpa_name(role: str) -> str:
    return etcd_name(role)


def etcd_data_volume_name(role: str) -> str:
    """Name of the statefulset volume claim template for role."""
    if role == ETCD_ROLE_MAIN:
        return f'{ETCD_ROLE_MAIN}-{PREFIX}-etcd'
    return etcd_name(role)


def etcd_pvc_name(role: str) -> str:
    """Name of the claim the statefulset controller creates for pod 0."""
    return f'{etcd_data_volume_name(role)}-{etcd_name(role)}-0'


def etcd_labels(role: str) -> dict[str, str]:
    return {
        LABEL_KEY_APP: PREFIX,
        LABEL_KEY_COMPONENT: ETCD_COMPONENT,
        LABEL_KEY_ROLE: role,
    }


def kube_apiserver_labels() -> dict[str, str]:
    return {
        LABEL_KEY_APP: PREFIX,
        LABEL_KEY_COMPONENT: KUBE_APISERVER_COMPONENT,
    }


def kube_controller_manager_labels() -> dict[str, str]:
    return {
        LABEL_KEY_APP: PREFIX,
        LABEL_KEY_COMPONENT: KUBE_CONTROLLER_MANAGER_COMPONENT,
    }
