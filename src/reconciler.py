"""Converge a single object toward its desired state.

Every deploy step goes through ensure_desired_state(): fetch the object,
apply a pure mutate function to what was observed (or to an empty object
carrying only the identity), then create or update. Fields the mutate
function does not touch, such as server-assigned ones, are preserved.

mutate takes the observed object and returns the desired one. It must not
read anything besides its argument and the parameters bound to it (use
functools.partial to bind them):

    ensure_desired_state(store, ref, functools.partial(mutate_service, spec))
"""

import copy
import logging
from typing import Callable, Optional

from errors import AlreadyExistsError, ConflictError, NotFoundError
from store.base import ResourceStore
from store.objects import ObjectRef, empty_object

logger = logging.getLogger(__name__)

CREATED = 'created'
UPDATED = 'updated'
UNCHANGED = 'unchanged'

DEFAULT_CONFLICT_RETRIES = 5

Mutate = Callable[[dict], dict]


def _apply(mutate: Mutate, obj: dict, ref: ObjectRef) -> dict:
    desired = mutate(obj)
    if desired is None:
        raise ValueError(f"mutate for {ref} returned None")
    if ObjectRef.of(desired) != ref:
        raise ValueError(f"mutate for {ref} changed the object identity to {ObjectRef.of(desired)}")
    return desired


def ensure_desired_state(
    store: ResourceStore,
    ref: ObjectRef,
    mutate: Mutate,
    retries: int = DEFAULT_CONFLICT_RETRIES,
) -> tuple[dict, str]:
    """Create or update the object identified by ref.

    Args:
        store: Target store
        ref: Identity of the object
        mutate: Pure function from observed object to desired object
        retries: Re-fetch attempts after a conflict or a lost create race

    Returns:
        (stored object, result) where result is CREATED, UPDATED or UNCHANGED

    Raises:
        ConflictError: If the object kept changing underneath for every attempt
        TransportError: If the store is unavailable
    """
    for attempt in range(retries + 1):
        try:
            observed = store.get(ref)
        except NotFoundError:
            desired = _apply(mutate, empty_object(ref), ref)
            try:
                return store.create(desired), CREATED
            except AlreadyExistsError:
                logger.debug(f"{ref} appeared concurrently, retrying ({attempt + 1}/{retries})")
                continue

        desired = _apply(mutate, copy.deepcopy(observed), ref)
        if desired == observed:
            return observed, UNCHANGED
        try:
            return store.update(desired), UPDATED
        except ConflictError:
            logger.debug(f"Conflict updating {ref}, re-fetching ({attempt + 1}/{retries})")

    raise ConflictError(f"{ref} still conflicting after {retries} retries")


def delete_resource(store: ResourceStore, ref: ObjectRef) -> bool:
    """Delete ref; an absent object counts as success.

    Returns:
        True if something was deleted, False if it was already gone
    """
    try:
        store.delete(ref)
    except NotFoundError:
        logger.debug(f"{ref} already absent")
        return False
    logger.debug(f"Deleted {ref}")
    return True


def get_optional(store: ResourceStore, ref: ObjectRef) -> Optional[dict]:
    """Fetch ref, or None if it does not exist."""
    try:
        return store.get(ref)
    except NotFoundError:
        return None
