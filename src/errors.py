"""Error taxonomy shared by the store, providers, graph and operations.

Every component raises one of these instead of returning status codes,
so the graph executor and the CLI can classify failures uniformly.
"""

from typing import Optional


class DriverError(Exception):
    """Base class for all driver errors."""


class ValidationError(DriverError):
    """Malformed desired-state input.

    Attributes:
        errors: Individual field-path messages
    """

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__('invalid imports:\n  ' + '\n  '.join(self.errors))


class UnsupportedProviderError(DriverError):
    """Unknown vendor tag."""

    def __init__(self, tag: str):
        self.tag = tag
        super().__init__(f"unsupported provider type '{tag}'")


class NotFoundError(DriverError):
    """Object or bucket does not exist."""


class AlreadyExistsError(DriverError):
    """Create hit an existing object."""


class ConflictError(DriverError):
    """Update rejected because the stored version moved on."""


class DeadlineExceeded(DriverError):
    """Bounded wait ran out of time."""


class TransportError(DriverError):
    """Remote store or cloud API unavailable."""


class Cancelled(DriverError):
    """Operation halted by the caller's cancel signal."""


class GraphError(DriverError):
    """Task graph is malformed (cycle, unknown dependency, duplicate id)."""


class GraphExecutionError(DriverError):
    """One or more tasks failed while running a graph.

    Attributes:
        task_id: Id of the first task that failed
        cause: Exception raised by that task
        failed: Ids of every failed task, in failure order
        not_run: Ids of tasks that never ran because of the failure
        summary: Human-readable partial-progress summary
    """

    def __init__(
        self,
        task_id: str,
        cause: BaseException,
        failed: list[str],
        not_run: list[str],
        summary: Optional[str] = None,
    ):
        self.task_id = task_id
        self.cause = cause
        self.failed = list(failed)
        self.not_run = list(not_run)
        self.summary = summary or ''
        super().__init__(f"task '{task_id}' failed: {cause}")
