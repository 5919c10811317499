"""LoadBalancer service in front of the kube-apiserver."""

import functools
import logging
from typing import Optional

from api import SNI
from common import merge_string_maps
from garden.constants import (
    DNS_ANNOTATION_CLASS,
    DNS_ANNOTATION_NAMES,
    DNS_ANNOTATION_TTL,
    DNS_ANNOTATIONS,
    KUBE_APISERVER_NAME,
    KUBE_APISERVER_PORT,
    KUBE_APISERVER_SERVICE_PORT_NAME,
    kube_apiserver_labels,
)
from garden.context import OperationContext
from reconciler import delete_resource, ensure_desired_state
from store.objects import ObjectRef, annotations_of, labels_of

logger = logging.getLogger(__name__)


def kube_apiserver_service_ref(namespace: str) -> ObjectRef:
    return ObjectRef('v1', 'Service', KUBE_APISERVER_NAME, namespace)


def reconcile_service_ports(existing: list[dict], desired: list[dict]) -> list[dict]:
    """Desired ports, keeping server-assigned fields (nodePort) of existing ports with the same name."""
    by_name = {p.get('name'): p for p in existing or []}
    ports = []
    for port in desired:
        merged = dict(port)
        current = by_name.get(port.get('name'))
        if current is not None and current.get('nodePort') and 'nodePort' not in merged:
            merged['nodePort'] = current['nodePort']
        ports.append(merged)
    return ports


def dns_annotations(sni: SNI) -> dict[str, str]:
    annotations = {DNS_ANNOTATION_NAMES: ','.join(sni.hostnames)}
    if sni.dns_class is not None:
        annotations[DNS_ANNOTATION_CLASS] = sni.dns_class
    if sni.ttl is not None:
        annotations[DNS_ANNOTATION_TTL] = str(sni.ttl)
    return annotations


def mutate_kube_apiserver_service(sni: Optional[SNI], service: dict) -> dict:
    annotations = annotations_of(service)
    if sni is not None:
        annotations.update(dns_annotations(sni))
    else:
        for key in DNS_ANNOTATIONS:
            annotations.pop(key, None)

    service['metadata']['labels'] = merge_string_maps(labels_of(service), kube_apiserver_labels())
    spec = service.setdefault('spec', {})
    spec['type'] = 'LoadBalancer'
    spec['selector'] = kube_apiserver_labels()
    spec['ports'] = reconcile_service_ports(spec.get('ports'), [{
        'name': KUBE_APISERVER_SERVICE_PORT_NAME,
        'protocol': 'TCP',
        'port': KUBE_APISERVER_PORT,
        'targetPort': KUBE_APISERVER_PORT,
    }])
    return service


def deploy_kube_apiserver_service(ctx: OperationContext) -> None:
    logger.info("Deploying kube-apiserver service")
    _, result = ensure_desired_state(
        ctx.store,
        kube_apiserver_service_ref(ctx.namespace),
        functools.partial(mutate_kube_apiserver_service, ctx.imports.virtual_garden.kube_apiserver.sni),
        retries=ctx.config.conflict_retries,
    )
    logger.debug(f"kube-apiserver service {result}")


def delete_kube_apiserver_service(ctx: OperationContext) -> None:
    logger.info("Deleting kube-apiserver service")
    delete_resource(ctx.store, kube_apiserver_service_ref(ctx.namespace))
