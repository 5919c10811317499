"""In-process store with API-server semantics.

Used by tests and dry runs. Mirrors what the real API server guarantees
to this driver: server-assigned resourceVersion and uid, version-checked
updates, namespace-scoped listing. Reactors stand in for cluster
controllers (assigning load-balancer addresses, marking CRDs established).
"""

import copy
import itertools
import logging
import threading
import uuid
from dataclasses import dataclass
from typing import Callable, Optional

from errors import AlreadyExistsError, ConflictError, DriverError, NotFoundError
from store.base import ResourceStore
from store.objects import ObjectRef

logger = logging.getLogger(__name__)

Reactor = Callable[[dict], None]


@dataclass
class _InjectedError:
    verb: str
    kind: str
    name: Optional[str]
    error: DriverError
    remaining: int


class InMemoryStore(ResourceStore):
    """Thread-safe dict-backed ResourceStore.

    Attributes:
        writes: (verb, ref) for every successful create/update/delete
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._objects: dict[ObjectRef, dict] = {}
        self._versions = itertools.count(1)
        self._reactors: dict[str, list[Reactor]] = {}
        self._errors: list[_InjectedError] = []
        self.writes: list[tuple[str, ObjectRef]] = []

    def add_reactor(self, kind: str, reactor: Reactor) -> None:
        """Run reactor on the stored copy after every create/update of kind."""
        self._reactors.setdefault(kind, []).append(reactor)

    def inject_error(self, verb: str, kind: str, error: DriverError,
                     name: Optional[str] = None, times: int = 1) -> None:
        """Make the next `times` matching calls raise error."""
        self._errors.append(_InjectedError(verb, kind, name, error, times))

    def _maybe_fail(self, verb: str, ref: ObjectRef) -> None:
        for injected in self._errors:
            if injected.remaining <= 0:
                continue
            if injected.verb != verb or injected.kind != ref.kind:
                continue
            if injected.name is not None and injected.name != ref.name:
                continue
            injected.remaining -= 1
            raise injected.error

    def _react(self, obj: dict) -> None:
        for reactor in self._reactors.get(obj['kind'], []):
            reactor(obj)

    def get(self, ref: ObjectRef) -> dict:
        with self._lock:
            self._maybe_fail('get', ref)
            obj = self._objects.get(ref)
            if obj is None:
                raise NotFoundError(f"{ref} not found")
            return copy.deepcopy(obj)

    def create(self, obj: dict) -> dict:
        ref = ObjectRef.of(obj)
        with self._lock:
            self._maybe_fail('create', ref)
            if ref in self._objects:
                raise AlreadyExistsError(f"{ref} already exists")
            stored = copy.deepcopy(obj)
            metadata = stored.setdefault('metadata', {})
            metadata['uid'] = str(uuid.uuid4())
            metadata['resourceVersion'] = str(next(self._versions))
            self._react(stored)
            self._objects[ref] = stored
            self.writes.append(('create', ref))
            logger.debug(f"Created {ref}")
            return copy.deepcopy(stored)

    def update(self, obj: dict) -> dict:
        ref = ObjectRef.of(obj)
        with self._lock:
            self._maybe_fail('update', ref)
            current = self._objects.get(ref)
            if current is None:
                raise NotFoundError(f"{ref} not found")
            version = obj.get('metadata', {}).get('resourceVersion')
            if version != current['metadata']['resourceVersion']:
                raise ConflictError(
                    f"{ref} was modified (have {version}, stored {current['metadata']['resourceVersion']})")
            stored = copy.deepcopy(obj)
            stored['metadata']['uid'] = current['metadata']['uid']
            stored['metadata']['resourceVersion'] = str(next(self._versions))
            self._react(stored)
            self._objects[ref] = stored
            self.writes.append(('update', ref))
            logger.debug(f"Updated {ref}")
            return copy.deepcopy(stored)

    def delete(self, ref: ObjectRef) -> None:
        with self._lock:
            self._maybe_fail('delete', ref)
            if ref not in self._objects:
                raise NotFoundError(f"{ref} not found")
            del self._objects[ref]
            if ref.kind == 'Namespace':
                for other in [r for r in self._objects if r.namespace == ref.name]:
                    del self._objects[other]
            self.writes.append(('delete', ref))
            logger.debug(f"Deleted {ref}")

    def list(self, api_version: str, kind: str, namespace: Optional[str] = None) -> list[dict]:
        with self._lock:
            return [
                copy.deepcopy(obj) for ref, obj in sorted(self._objects.items(), key=lambda i: str(i[0]))
                if ref.api_version == api_version and ref.kind == kind
                and (namespace is None or ref.namespace == namespace)
            ]

    def exists(self, ref: ObjectRef) -> bool:
        with self._lock:
            return ref in self._objects

    def refs(self) -> 'list[ObjectRef]':
        """Identities of all stored objects."""
        with self._lock:
            return list(self._objects)
