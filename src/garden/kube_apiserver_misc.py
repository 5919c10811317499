"""PodDisruptionBudget, service account and autoscalers of the kube-apiserver."""

import functools
import logging

from api import HorizontalPodAutoscaler
from common import merge_string_maps
from garden.constants import HVPA_API_VERSION, KUBE_APISERVER_NAME, kube_apiserver_labels
from garden.context import OperationContext
from reconciler import delete_resource, ensure_desired_state
from store.objects import ObjectRef, labels_of

logger = logging.getLogger(__name__)

PDB_MIN_AVAILABLE = 2


def pdb_ref(namespace: str) -> ObjectRef:
    return ObjectRef('policy/v1', 'PodDisruptionBudget', KUBE_APISERVER_NAME, namespace)


def service_account_ref(namespace: str) -> ObjectRef:
    return ObjectRef('v1', 'ServiceAccount', KUBE_APISERVER_NAME, namespace)


def hpa_ref(namespace: str) -> ObjectRef:
    return ObjectRef('autoscaling/v2', 'HorizontalPodAutoscaler', KUBE_APISERVER_NAME, namespace)


def hvpa_ref(namespace: str) -> ObjectRef:
    return ObjectRef(HVPA_API_VERSION, 'Hvpa', KUBE_APISERVER_NAME, namespace)


def _deployment_target() -> dict:
    return {'apiVersion': 'apps/v1', 'kind': 'Deployment', 'name': KUBE_APISERVER_NAME}


def mutate_pdb(pdb: dict) -> dict:
    pdb['metadata']['labels'] = merge_string_maps(labels_of(pdb), kube_apiserver_labels())
    pdb['spec'] = {
        'minAvailable': PDB_MIN_AVAILABLE,
        'selector': {'matchLabels': kube_apiserver_labels()},
    }
    return pdb


def mutate_service_account(sa: dict) -> dict:
    sa['metadata']['labels'] = merge_string_maps(labels_of(sa), kube_apiserver_labels())
    return sa


def mutate_hpa(min_replicas: int, settings: HorizontalPodAutoscaler, hpa: dict) -> dict:
    hpa['metadata']['labels'] = merge_string_maps(labels_of(hpa), kube_apiserver_labels())
    hpa['spec'] = {
        'scaleTargetRef': _deployment_target(),
        'minReplicas': min_replicas,
        'maxReplicas': max(settings.max_replicas, min_replicas),
        'metrics': [{
            'type': 'Resource',
            'resource': {
                'name': 'cpu',
                'target': {'type': 'Utilization', 'averageUtilization': settings.target_cpu_utilization},
            },
        }],
    }
    return hpa


def mutate_hvpa(min_replicas: int, max_replicas: int, hvpa: dict) -> dict:
    hpa_labels = {'role': 'apiserver-hpa'}
    vpa_labels = {'role': 'apiserver-vpa'}
    hvpa['metadata']['labels'] = merge_string_maps(labels_of(hvpa), kube_apiserver_labels())
    hvpa['spec'] = {
        'replicas': 1,
        'targetRef': _deployment_target(),
        'hpa': {
            'selector': {'matchLabels': hpa_labels},
            'deploy': True,
            'template': {
                'metadata': {'labels': hpa_labels},
                'spec': {
                    'minReplicas': min_replicas,
                    'maxReplicas': max_replicas,
                    'metrics': [
                        {'type': 'Resource', 'resource': {'name': 'cpu', 'targetAverageUtilization': 80}},
                        {'type': 'Resource', 'resource': {'name': 'memory', 'targetAverageUtilization': 80}},
                    ],
                },
            },
        },
        'vpa': {
            'selector': {'matchLabels': vpa_labels},
            'deploy': True,
            'template': {
                'metadata': {'labels': vpa_labels},
                'spec': {'resourcePolicy': {'containerPolicies': [{
                    'containerName': 'kube-apiserver',
                    'minAllowed': {'cpu': '400m', 'memory': '400M'},
                    'maxAllowed': {'cpu': '8', 'memory': '25G'},
                }]}},
            },
            'scaleUp': {'updatePolicy': {'updateMode': 'Auto'}, 'stabilizationDuration': '3m'},
            'scaleDown': {'updatePolicy': {'updateMode': 'Auto'}, 'stabilizationDuration': '15m'},
        },
        'weightBasedScalingIntervals': [
            {'vpaWeight': 100, 'startReplicaCount': max_replicas, 'lastReplicaCount': max_replicas},
            {'vpaWeight': 0, 'startReplicaCount': min_replicas, 'lastReplicaCount': max(max_replicas - 1, min_replicas)},
        ],
    }
    return hvpa


def _replica_bounds(ctx: OperationContext) -> tuple[int, int]:
    apiserver = ctx.imports.virtual_garden.kube_apiserver
    settings = apiserver.horizontal_pod_autoscaler or HorizontalPodAutoscaler()
    min_replicas = settings.min_replicas if settings.min_replicas is not None else apiserver.replicas
    return min_replicas, max(settings.max_replicas, min_replicas)


def deploy_misc(ctx: OperationContext) -> None:
    logger.info("Deploying PodDisruptionBudget for the kube-apiserver")
    ensure_desired_state(ctx.store, pdb_ref(ctx.namespace), mutate_pdb, retries=ctx.config.conflict_retries)

    logger.info("Deploying service account for the kube-apiserver")
    ensure_desired_state(ctx.store, service_account_ref(ctx.namespace), mutate_service_account,
                         retries=ctx.config.conflict_retries)


def deploy_autoscaling(ctx: OperationContext) -> None:
    """Converge the HPA and HVPA objects; remove the ones that are switched off."""
    apiserver = ctx.imports.virtual_garden.kube_apiserver
    min_replicas, max_replicas = _replica_bounds(ctx)

    if ctx.imports.autoscaling_enabled and not apiserver.hvpa_enabled:
        logger.info("Deploying HorizontalPodAutoscaler for the kube-apiserver")
        settings = apiserver.horizontal_pod_autoscaler or HorizontalPodAutoscaler()
        ensure_desired_state(
            ctx.store,
            hpa_ref(ctx.namespace),
            functools.partial(mutate_hpa, min_replicas, settings),
            retries=ctx.config.conflict_retries,
        )
    else:
        delete_resource(ctx.store, hpa_ref(ctx.namespace))

    if apiserver.hvpa_enabled:
        logger.info("Deploying HVPA for the kube-apiserver")
        ensure_desired_state(
            ctx.store,
            hvpa_ref(ctx.namespace),
            functools.partial(mutate_hvpa, min_replicas, max_replicas),
            retries=ctx.config.conflict_retries,
        )
    elif ctx.hvpa_crd_present:
        delete_resource(ctx.store, hvpa_ref(ctx.namespace))


def delete_misc(ctx: OperationContext) -> None:
    logger.info("Deleting PodDisruptionBudget and service account for the kube-apiserver")
    delete_resource(ctx.store, pdb_ref(ctx.namespace))
    delete_resource(ctx.store, service_account_ref(ctx.namespace))


def delete_autoscaling(ctx: OperationContext) -> None:
    logger.info("Deleting autoscalers for the kube-apiserver")
    delete_resource(ctx.store, hpa_ref(ctx.namespace))
    if ctx.hvpa_crd_present:
        delete_resource(ctx.store, hvpa_ref(ctx.namespace))
