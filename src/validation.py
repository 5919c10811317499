"""Semantic validation of the desired-state document.

Checks run before any remote call so malformed input fails fast without
side effects. Each check returns a list of field-path messages; an empty
list means valid.
"""

import logging

from api import Credentials, ETCDBackup, Imports, ProviderType, SNI
from errors import ValidationError

logger = logging.getLogger(__name__)

SNI_TTL_MIN = 60
SNI_TTL_MAX = 600


def _not_supported(path: str, value: str) -> str:
    return f"{path}: unsupported value '{value}', supported: {', '.join(ProviderType.values())}"


def validate_hosting_cluster(imports: Imports, require_kubeconfig: bool = True) -> list[str]:
    """Validate the hostingCluster section."""
    errors = []
    hosting = imports.hosting_cluster
    if require_kubeconfig and not hosting.kubeconfig:
        errors.append("hostingCluster.kubeconfig: kubeconfig of hosting cluster is required")
    if not hosting.namespace:
        errors.append("hostingCluster.namespace: namespace for deployment in hosting cluster is required")
    if hosting.infrastructure_provider not in ProviderType.values():
        errors.append(_not_supported('hostingCluster.infrastructureProvider', hosting.infrastructure_provider))
    return errors


def validate_etcd_backup(backup: ETCDBackup, credentials: dict[str, Credentials]) -> list[str]:
    """Validate virtualGarden.etcd.backup against the credential bags."""
    path = 'virtualGarden.etcd.backup'
    errors = []
    if backup.infrastructure_provider not in ProviderType.values():
        errors.append(_not_supported(f'{path}.infrastructureProvider', backup.infrastructure_provider))
    if not backup.region:
        errors.append(f"{path}.region: region must be given")
    if not backup.bucket_name:
        errors.append(f"{path}.bucketName: bucketName must be given")

    if not backup.credentials_ref:
        errors.append(f"{path}.credentialsRef: credentialsRef must be given")
    elif backup.credentials_ref not in credentials:
        errors.append(f"{path}.credentialsRef: '{backup.credentials_ref}' was not found in .credentials")
    elif credentials[backup.credentials_ref].type != backup.infrastructure_provider:
        errors.append(
            f"{path}.credentialsRef: referenced credentials are not of type "
            f"'{backup.infrastructure_provider}' but '{credentials[backup.credentials_ref].type}'")
    return errors


def validate_sni(sni: SNI) -> list[str]:
    path = 'virtualGarden.kubeAPIServer.sni'
    errors = []
    if not sni.hostnames:
        errors.append(f"{path}.hostnames: at least one hostname is required")
    if sni.ttl is not None and not SNI_TTL_MIN <= sni.ttl <= SNI_TTL_MAX:
        errors.append(f"{path}.ttl: ttl must be between {SNI_TTL_MIN} and {SNI_TTL_MAX}, got {sni.ttl}")
    return errors


def validate_virtual_garden(imports: Imports) -> list[str]:
    """Validate the virtualGarden section."""
    errors = []
    garden = imports.virtual_garden
    etcd = garden.etcd
    if etcd.storage_class_name is not None and not etcd.storage_class_name:
        errors.append("virtualGarden.etcd.storageClassName: storage class name cannot be empty if key is provided")
    if etcd.backup is not None:
        errors.extend(validate_etcd_backup(etcd.backup, imports.credentials))

    apiserver = garden.kube_apiserver
    if apiserver.replicas < 1:
        errors.append(f"virtualGarden.kubeAPIServer.replicas: must be at least 1, got {apiserver.replicas}")
    if imports.hosting_cluster.infrastructure_provider == ProviderType.GCP.value and not apiserver.dns_access_domain:
        errors.append("virtualGarden.kubeAPIServer.dnsAccessDomain: required on gcp hosting clusters")
    if apiserver.sni is not None:
        errors.extend(validate_sni(apiserver.sni))

    hpa = apiserver.horizontal_pod_autoscaler
    if hpa is not None:
        minimum = hpa.min_replicas if hpa.min_replicas is not None else apiserver.replicas
        if hpa.max_replicas < minimum:
            errors.append(
                f"virtualGarden.kubeAPIServer.horizontalPodAutoscaler.maxReplicas: "
                f"must not be below minReplicas ({minimum}), got {hpa.max_replicas}")
    return errors


def validate_credentials(credentials: dict[str, Credentials]) -> list[str]:
    errors = []
    for name, creds in sorted(credentials.items()):
        if not creds.type:
            errors.append(f"credentials.{name}.type: type must be given")
        if not creds.data:
            errors.append(f"credentials.{name}.data: at least one key-value pair must be given")
    return errors


def validate_imports(imports: Imports, require_kubeconfig: bool = True) -> list[str]:
    """Run every check on a parsed imports document.

    Args:
        imports: Parsed desired state
        require_kubeconfig: False when the hosting-cluster connection is
            supplied out of band (--kubeconfig, in-cluster config)

    Returns:
        List of validation error messages (empty if valid)
    """
    errors = []
    errors.extend(validate_hosting_cluster(imports, require_kubeconfig))
    errors.extend(validate_virtual_garden(imports))
    errors.extend(validate_credentials(imports.credentials))
    for error in errors:
        logger.debug(f"Validation: {error}")
    return errors


def ensure_valid(imports: Imports, require_kubeconfig: bool = True) -> Imports:
    """Raise ValidationError listing every problem, or return imports unchanged."""
    errors = validate_imports(imports, require_kubeconfig)
    if errors:
        raise ValidationError(errors)
    return imports
