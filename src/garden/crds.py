"""Custom resource definitions the driver installs in the hosting cluster."""

import functools
import logging
import threading
from typing import Optional

import yaml

from common import wait_until
from garden.context import HVPA_CRD_REF, TEMPLATE_HVPA_CRD, OperationContext
from reconciler import ensure_desired_state, get_optional
from store.objects import ObjectRef

logger = logging.getLogger(__name__)


def is_established(crd: Optional[dict]) -> bool:
    """Whether a CRD object reports condition Established=True."""
    if crd is None:
        return False
    for condition in (crd.get('status') or {}).get('conditions') or []:
        if condition.get('type') == 'Established' and condition.get('status') == 'True':
            return True
    return False


def mutate_crd(spec: dict, crd: dict) -> dict:
    crd['spec'] = spec
    return crd


def deploy_crd(ctx: OperationContext, ref: ObjectRef, manifest: dict,
               cancel: Optional[threading.Event] = None) -> None:
    """Converge a CRD and wait until the API server serves it.

    Raises:
        DeadlineExceeded: If the CRD is not established within the configured ceiling
    """
    ensure_desired_state(
        ctx.store,
        ref,
        functools.partial(mutate_crd, manifest['spec']),
        retries=ctx.config.conflict_retries,
    )
    poll = ctx.config.crd_established
    wait_until(
        lambda: is_established(get_optional(ctx.store, ref)),
        timeout=poll.timeout,
        interval=poll.interval,
        description=f"CRD '{ref.name}' to be established",
        cancel=cancel,
    )


def hvpa_crd_manifest(ctx: OperationContext) -> dict:
    return yaml.safe_load(ctx.render(TEMPLATE_HVPA_CRD))


def deploy_hvpa_crd(ctx: OperationContext, cancel: Optional[threading.Event] = None) -> None:
    logger.info("Deploying the HVPA CRD")
    deploy_crd(ctx, HVPA_CRD_REF, hvpa_crd_manifest(ctx), cancel)
