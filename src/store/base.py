"""Store interface consumed by the reconciler and deploy steps."""

from abc import ABC, abstractmethod
from typing import Optional

from store.objects import ObjectRef


class ResourceStore(ABC):
    """Typed CRUD over named, optionally namespaced objects.

    Implementations raise errors from the shared taxonomy:
    NotFoundError, AlreadyExistsError, ConflictError (stale
    resourceVersion on update) and TransportError.
    """

    @abstractmethod
    def get(self, ref: ObjectRef) -> dict:
        """Fetch an object.

        Raises:
            NotFoundError: If the object (or its kind) does not exist
        """

    @abstractmethod
    def create(self, obj: dict) -> dict:
        """Create an object and return the stored version.

        Raises:
            AlreadyExistsError: If an object with the same identity exists
        """

    @abstractmethod
    def update(self, obj: dict) -> dict:
        """Replace an object.

        The object's metadata.resourceVersion must match the stored one.

        Raises:
            ConflictError: If the stored object changed since it was read
            NotFoundError: If the object does not exist
        """

    @abstractmethod
    def delete(self, ref: ObjectRef) -> None:
        """Delete an object.

        Raises:
            NotFoundError: If the object does not exist
        """

    @abstractmethod
    def list(self, api_version: str, kind: str, namespace: Optional[str] = None) -> list[dict]:
        """List objects of a kind, optionally scoped to one namespace."""
