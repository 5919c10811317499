"""Target namespace in the hosting cluster."""

import logging

from errors import AlreadyExistsError
from garden.context import OperationContext
from reconciler import delete_resource
from store.objects import ObjectRef, empty_object

logger = logging.getLogger(__name__)


def namespace_ref(name: str) -> ObjectRef:
    return ObjectRef('v1', 'Namespace', name)


def create_namespace(ctx: OperationContext) -> None:
    """Create the namespace unless it exists; an existing one is left untouched."""
    try:
        ctx.store.create(empty_object(namespace_ref(ctx.namespace)))
        logger.info(f"Created namespace '{ctx.namespace}'")
    except AlreadyExistsError:
        logger.debug(f"Namespace '{ctx.namespace}' already exists")


def delete_namespace(ctx: OperationContext) -> None:
    if delete_resource(ctx.store, namespace_ref(ctx.namespace)):
        logger.info(f"Deleted namespace '{ctx.namespace}'")
