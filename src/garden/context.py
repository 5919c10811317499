"""Immutable per-run context shared by every deploy and delete step.

Everything that would otherwise be looked up lazily and cached process
wide (vendor providers, compiled templates, whether the HVPA CRD is
served) is resolved once by build_context() and frozen here.
"""

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Optional

from jinja2 import Environment, PackageLoader, StrictUndefined, Template

from api import Imports
from certs import CertificateManager
from config import DriverConfig
from garden.constants import HVPA_CRD_NAME
from provider import BackupProvider, InfrastructureProvider, new_backup_provider, new_infrastructure_provider
from reconciler import get_optional
from store.base import ResourceStore
from store.objects import ObjectRef

logger = logging.getLogger(__name__)

TEMPLATE_ETCD_BOOTSTRAP = 'etcd-bootstrap.sh.j2'
TEMPLATE_ETCD_CONFIG = 'etcd.conf.yml.j2'
TEMPLATE_AUDIT_POLICY = 'audit-policy.yaml.j2'
TEMPLATE_ENCRYPTION_CONFIG = 'encryption-config.yaml.j2'
TEMPLATE_HVPA_CRD = 'hvpa-crd.yaml.j2'

TEMPLATE_NAMES = (
    TEMPLATE_ETCD_BOOTSTRAP,
    TEMPLATE_ETCD_CONFIG,
    TEMPLATE_AUDIT_POLICY,
    TEMPLATE_ENCRYPTION_CONFIG,
    TEMPLATE_HVPA_CRD,
)

HVPA_CRD_REF = ObjectRef('apiextensions.k8s.io/v1', 'CustomResourceDefinition', HVPA_CRD_NAME)


def compile_templates() -> Mapping[str, Template]:
    """Load and compile every bundled template.

    Raises:
        jinja2.TemplateError: If a template is missing or malformed
    """
    env = Environment(
        loader=PackageLoader('garden', 'templates'),
        auto_reload=False,
        undefined=StrictUndefined,
        keep_trailing_newline=True,
    )
    return MappingProxyType({name: env.get_template(name) for name in TEMPLATE_NAMES})


@dataclass(frozen=True)
class OperationContext:
    """Resolved inputs of one reconcile or delete run.

    Attributes:
        store: Hosting-cluster object store
        namespace: Target namespace
        imports: Desired state
        config: Driver runtime settings
        infrastructure_provider: Hosting-cluster vendor
        backup_provider: Backup bucket vendor, None when backups are disabled
        templates: Compiled templates by name
        hvpa_crd_present: Whether the HVPA CRD was served when the run started
        certificates: Certificate manager for the target namespace
    """
    store: ResourceStore
    namespace: str
    imports: Imports
    config: DriverConfig
    infrastructure_provider: InfrastructureProvider
    backup_provider: Optional[BackupProvider]
    templates: Mapping[str, Template]
    hvpa_crd_present: bool
    certificates: CertificateManager

    @property
    def hvpa_enabled(self) -> bool:
        garden = self.imports.virtual_garden
        return garden.etcd.hvpa_enabled or garden.kube_apiserver.hvpa_enabled

    def render(self, template: str, **values) -> str:
        return self.templates[template].render(**values)


def build_context(
    store: ResourceStore,
    imports: Imports,
    config: Optional[DriverConfig] = None,
    backup_provider: Optional[BackupProvider] = None,
) -> OperationContext:
    """Resolve providers, compile templates and probe the HVPA CRD.

    Args:
        store: Hosting-cluster object store
        imports: Validated desired state
        config: Runtime settings, defaults if None
        backup_provider: Pre-built backup provider (tests, dry runs);
            resolved from the imports when None and backups are enabled

    Raises:
        UnsupportedProviderError: If a vendor tag is unknown
        ValidationError: If the backup credentials do not fit the vendor
    """
    config = config or DriverConfig()
    namespace = imports.hosting_cluster.namespace

    infrastructure_provider = new_infrastructure_provider(imports.hosting_cluster.infrastructure_provider)
    backup = imports.virtual_garden.etcd.backup
    if backup_provider is None and backup is not None:
        backup_provider = new_backup_provider(
            backup.infrastructure_provider,
            imports.credentials,
            backup.credentials_ref,
            backup.bucket_name,
            backup.region,
        )

    hvpa_crd_present = get_optional(store, HVPA_CRD_REF) is not None
    logger.debug(f"HVPA CRD present: {hvpa_crd_present}")

    return OperationContext(
        store=store,
        namespace=namespace,
        imports=imports,
        config=config,
        infrastructure_provider=infrastructure_provider,
        backup_provider=backup_provider,
        templates=compile_templates(),
        hvpa_crd_present=hvpa_crd_present,
        certificates=CertificateManager(store, namespace, retries=config.conflict_retries),
    )
