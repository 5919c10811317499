"""Collects derived values while a reconcile graph runs."""

import logging
import threading

from api import Exports

logger = logging.getLogger(__name__)


class ExportsAccumulator:
    """Append-only, single-writer-per-key collector for Exports.

    Tasks record values with set(); finalize() turns them into an Exports
    object once the graph has completed. Setting a key twice with the same
    value is allowed (re-runs inside one process), a different value is not.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._values: dict[str, str] = {}
        self._finalized = False

    def set(self, field: str, value) -> None:
        """Record one export.

        Args:
            field: Exports attribute name, e.g. 'etcd_url'
            value: str or bytes (decoded as UTF-8)

        Raises:
            KeyError: If field is not an Exports attribute
            ValueError: If field already holds another value or the
                accumulator was finalized
        """
        if field not in Exports.FIELDS.values():
            raise KeyError(f"unknown export '{field}'")
        if isinstance(value, bytes):
            value = value.decode('utf-8')
        with self._lock:
            if self._finalized:
                raise ValueError(f"exports already finalized, cannot set '{field}'")
            existing = self._values.get(field)
            if existing is not None and existing != value:
                raise ValueError(f"export '{field}' is already set to a different value")
            self._values[field] = value
        logger.debug(f"Recorded export '{field}'")

    def get(self, field: str) -> str:
        with self._lock:
            return self._values.get(field, '')

    def finalize(self) -> Exports:
        """Freeze the accumulator and build the Exports document."""
        with self._lock:
            self._finalized = True
            return Exports(**self._values)
