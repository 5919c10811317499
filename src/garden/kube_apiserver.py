"""Deploy and delete the virtual garden kube-apiserver.

The front-end depends on the load balancer address of its service, which
is only known once the hosting cluster has provisioned it. Deployment
therefore polls the service first, then converges certificates, secrets
and configmaps, and finally the workloads whose pod templates carry the
checksums of everything they mount.
"""

import logging
import threading
from typing import Optional

from checksum import ChecksumMap, compute_checksum
from common import check_cancelled, wait_until
from garden.constants import (
    CHECKSUM_KEY_ETCD_CA,
    CHECKSUM_KEY_ETCD_CLIENT,
    ETCD_SECRET_NAME_CA,
    ETCD_SECRET_NAME_CLIENT,
)
from garden.context import OperationContext
from garden.exports import ExportsAccumulator
from garden.kube_apiserver_certificates import delete_certificates, deploy_certificates
from garden.kube_apiserver_configmaps import delete_kube_apiserver_configmaps, deploy_configmaps
from garden.kube_apiserver_deployments import delete_deployments, deploy_deployments
from garden.kube_apiserver_misc import delete_autoscaling, delete_misc, deploy_autoscaling, deploy_misc
from garden.kube_apiserver_secrets import basic_auth_password, delete_kube_apiserver_secrets, deploy_secrets
from garden.kube_apiserver_service import kube_apiserver_service_ref
from reconciler import get_optional
from store.objects import decode_secret_data, secret_ref

logger = logging.getLogger(__name__)


def compute_load_balancer(ctx: OperationContext, cancel: Optional[threading.Event] = None) -> str:
    """Wait for the kube-apiserver service to get a load balancer address.

    Raises:
        DeadlineExceeded: If no address shows up within the configured ceiling
        Cancelled: If cancel is set while waiting
    """
    ref = kube_apiserver_service_ref(ctx.namespace)
    found = {}

    def has_address() -> bool:
        service = get_optional(ctx.store, ref)
        if service is None:
            return False
        address = ctx.infrastructure_provider.load_balancer_address(service)
        if address:
            found['address'] = address
        return bool(address)

    poll = ctx.config.load_balancer
    wait_until(has_address, poll.timeout, poll.interval, 'kube-apiserver load balancer', cancel)
    logger.info(f"kube-apiserver load balancer: {found['address']}")
    return found['address']


def track_etcd_secrets(ctx: OperationContext, checksums: ChecksumMap) -> None:
    """Record checksums of the etcd secrets the kube-apiserver mounts."""
    for key, name in ((CHECKSUM_KEY_ETCD_CA, ETCD_SECRET_NAME_CA), (CHECKSUM_KEY_ETCD_CLIENT, ETCD_SECRET_NAME_CLIENT)):
        secret = get_optional(ctx.store, secret_ref(name, ctx.namespace))
        if secret is not None:
            checksums.set(key, compute_checksum(decode_secret_data(secret)))


def deploy_kube_apiserver(ctx: OperationContext, exports: ExportsAccumulator,
                          cancel: Optional[threading.Event] = None) -> ChecksumMap:
    """Converge the kube-apiserver and its controller-manager.

    Returns:
        Checksums carried by the kube-apiserver pod template
    """
    logger.info("Deploying kube-apiserver")
    apiserver = ctx.imports.virtual_garden.kube_apiserver
    checksums = ChecksumMap()

    load_balancer = compute_load_balancer(ctx, cancel)
    exports.set('virtual_garden_endpoint',
                ctx.infrastructure_provider.kube_apiserver_url(apiserver.dns_access_domain, load_balancer))

    check_cancelled(cancel, 'kube-apiserver certificates')
    deploy_certificates(ctx, load_balancer, checksums, exports)

    check_cancelled(cancel, 'kube-apiserver secrets')
    deploy_secrets(ctx, checksums, exports)
    deploy_configmaps(ctx, checksums)
    track_etcd_secrets(ctx, checksums)

    check_cancelled(cancel, 'kube-apiserver workloads')
    deploy_misc(ctx)
    deploy_deployments(ctx, checksums.annotations(), basic_auth_password(ctx))
    deploy_autoscaling(ctx)
    return checksums


def delete_kube_apiserver(ctx: OperationContext, cancel: Optional[threading.Event] = None) -> None:
    """Remove everything deploy_kube_apiserver() created, workloads first.

    The service is left in place; it has its own delete step.
    """
    logger.info("Deleting kube-apiserver")
    delete_autoscaling(ctx)
    delete_deployments(ctx)
    delete_misc(ctx)
    check_cancelled(cancel, 'kube-apiserver secrets')
    delete_kube_apiserver_configmaps(ctx)
    delete_kube_apiserver_secrets(ctx)
    delete_certificates(ctx)
