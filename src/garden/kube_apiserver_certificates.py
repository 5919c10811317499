"""Certificates of the kube-apiserver, its aggregator and its clients."""

import ipaddress
import logging

from certs import Certificate, CertificateSecretConfig, CertType, KubeconfigGenerator
from checksum import ChecksumMap
from garden.constants import (
    CHECKSUM_KEY_AGGREGATOR_CA,
    CHECKSUM_KEY_AGGREGATOR_CLIENT,
    CHECKSUM_KEY_APISERVER_CA,
    CHECKSUM_KEY_APISERVER_SERVER,
    CHECKSUM_KEY_CONTROLLER_MANAGER_CLIENT,
    KUBE_APISERVER_CERTIFICATE_SECRETS,
    KUBE_APISERVER_NAME,
    KUBE_APISERVER_PORT,
    PREFIX,
    SECRET_NAME_ADMIN_KUBECONFIG,
    SECRET_NAME_AGGREGATOR_CA,
    SECRET_NAME_AGGREGATOR_CLIENT,
    SECRET_NAME_APISERVER_CA,
    SECRET_NAME_APISERVER_SERVER,
    SECRET_NAME_CONTROLLER_MANAGER,
    SECRET_NAME_METRICS_SCRAPER,
    SERVICE_CLUSTER_IP,
)
from garden.context import OperationContext
from garden.exports import ExportsAccumulator

logger = logging.getLogger(__name__)


def _is_ip(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def server_dns_names(namespace: str, load_balancer: str, dns_access_domain: str) -> list[str]:
    names = [
        'localhost',
        KUBE_APISERVER_NAME,
        f'{KUBE_APISERVER_NAME}.{namespace}',
        f'{KUBE_APISERVER_NAME}.{namespace}.svc',
        f'{KUBE_APISERVER_NAME}.{namespace}.svc.cluster',
        f'{KUBE_APISERVER_NAME}.{namespace}.svc.cluster.local',
        'kubernetes',
        'kubernetes.default',
        'kubernetes.default.svc',
        'kubernetes.default.svc.cluster',
        'kubernetes.default.svc.cluster.local',
    ]
    if load_balancer and not _is_ip(load_balancer):
        names.append(load_balancer)
    if dns_access_domain:
        names.extend([f'api.{dns_access_domain}', f'gardener.{dns_access_domain}'])
    return names


def server_ip_addresses(load_balancer: str) -> list[str]:
    ips = ['127.0.0.1', SERVICE_CLUSTER_IP]
    if load_balancer and _is_ip(load_balancer):
        ips.append(load_balancer)
    return ips


def deploy_certificates(ctx: OperationContext, load_balancer: str, checksums: ChecksumMap,
                        exports: ExportsAccumulator) -> dict[str, Certificate]:
    """Converge all seven certificate secrets, CAs before the leaves they sign.

    Returns:
        Certificates by secret name
    """
    logger.info("Deploying secrets containing kube-apiserver certificates")
    manager = ctx.certificates
    apiserver = ctx.imports.virtual_garden.kube_apiserver
    certs: dict[str, Certificate] = {}

    def ensure(config: CertificateSecretConfig, checksum_key: str = '', kubeconfig=None):
        cert, checksum, kubeconfig_yaml = manager.ensure_certificate(config, kubeconfig)
        if checksum_key:
            checksums.set(checksum_key, checksum)
        certs[config.name] = cert
        return cert, kubeconfig_yaml

    aggregator_ca, _ = ensure(CertificateSecretConfig(
        name=SECRET_NAME_AGGREGATOR_CA,
        cert_type=CertType.CA,
        common_name=f'{PREFIX}:ca:kube-aggregator',
    ), CHECKSUM_KEY_AGGREGATOR_CA)
    ensure(CertificateSecretConfig(
        name=SECRET_NAME_AGGREGATOR_CLIENT,
        cert_type=CertType.CLIENT,
        common_name=f'{PREFIX}:aggregator-client:kube-aggregator',
        signing_ca=aggregator_ca,
    ), CHECKSUM_KEY_AGGREGATOR_CLIENT)

    ca, _ = ensure(CertificateSecretConfig(
        name=SECRET_NAME_APISERVER_CA,
        cert_type=CertType.CA,
        common_name=f'{PREFIX}:ca:kube-apiserver',
    ), CHECKSUM_KEY_APISERVER_CA)
    exports.set('virtual_garden_apiserver_ca_pem', ca.certificate_pem)

    ensure(CertificateSecretConfig(
        name=SECRET_NAME_APISERVER_SERVER,
        cert_type=CertType.SERVER,
        common_name=f'{PREFIX}:server:kube-apiserver',
        signing_ca=ca,
        dns_names=server_dns_names(ctx.namespace, load_balancer, apiserver.dns_access_domain),
        ip_addresses=server_ip_addresses(load_balancer),
    ), CHECKSUM_KEY_APISERVER_SERVER)

    ensure(CertificateSecretConfig(
        name=SECRET_NAME_CONTROLLER_MANAGER,
        cert_type=CertType.CLIENT,
        common_name='system:kube-controller-manager',
        signing_ca=ca,
    ), CHECKSUM_KEY_CONTROLLER_MANAGER_CLIENT, KubeconfigGenerator(
        user='kube-controller-manager',
        server=f'https://{KUBE_APISERVER_NAME}:{KUBE_APISERVER_PORT}',
    ))

    endpoint = ctx.infrastructure_provider.kube_apiserver_url(apiserver.dns_access_domain, load_balancer)
    _, admin_kubeconfig = ensure(CertificateSecretConfig(
        name=SECRET_NAME_ADMIN_KUBECONFIG,
        cert_type=CertType.CLIENT,
        common_name=f'{PREFIX}:client:admin',
        signing_ca=ca,
        organization=['system:masters'],
    ), kubeconfig=KubeconfigGenerator(user='admin', server=endpoint))
    exports.set('kubeconfig_yaml', admin_kubeconfig)

    ensure(CertificateSecretConfig(
        name=SECRET_NAME_METRICS_SCRAPER,
        cert_type=CertType.CLIENT,
        common_name=f'{PREFIX}:client:metrics-scraper',
        signing_ca=ca,
    ))
    return certs


def delete_certificates(ctx: OperationContext) -> None:
    logger.info("Deleting secrets containing kube-apiserver certificates")
    ctx.certificates.delete_certificates(KUBE_APISERVER_CERTIFICATE_SECRETS)
