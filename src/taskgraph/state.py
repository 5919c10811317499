"""Execution state for task graphs.

Tracks per-task status (pending, running, succeeded, failed, skipped,
not_run) and derives progress snapshots and the failure summary.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Optional

from errors import Cancelled, GraphExecutionError

logger = logging.getLogger(__name__)


class TaskStatus:
    """Task status values."""
    PENDING = 'pending'
    RUNNING = 'running'
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'
    SKIPPED = 'skipped'
    NOT_RUN = 'not_run'

    TERMINAL = frozenset({SUCCEEDED, FAILED, SKIPPED, NOT_RUN})
    # Dependents may start once every dependency is in one of these
    PASSABLE = frozenset({SUCCEEDED, SKIPPED})


@dataclass
class TaskState:
    """Per-task execution state.

    Attributes:
        id: Task id
        name: Display name
        status: Current status
        started_at: Timestamp when the task function started
        completed_at: Timestamp when the task reached a terminal status
        error: Exception raised by the task, if it failed
    """
    id: str
    name: str = ''
    status: str = TaskStatus.PENDING
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    error: Optional[BaseException] = None

    def start(self) -> None:
        self.status = TaskStatus.RUNNING
        self.started_at = time.time()

    def succeed(self) -> None:
        self.status = TaskStatus.SUCCEEDED
        self.completed_at = time.time()

    def fail(self, error: BaseException) -> None:
        self.status = TaskStatus.FAILED
        self.completed_at = time.time()
        self.error = error

    def skip(self) -> None:
        self.status = TaskStatus.SKIPPED
        self.completed_at = time.time()

    def mark_not_run(self) -> None:
        self.status = TaskStatus.NOT_RUN
        self.completed_at = time.time()

    @property
    def is_terminal(self) -> bool:
        return self.status in TaskStatus.TERMINAL

    @property
    def duration(self) -> Optional[float]:
        if self.started_at and self.completed_at:
            return self.completed_at - self.started_at
        return None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            'id': self.id,
            'status': self.status,
        }
        if self.duration is not None:
            d['duration'] = round(self.duration, 3)
        if self.error is not None:
            d['error'] = str(self.error)
        return d


@dataclass(frozen=True)
class Progress:
    """Snapshot handed to progress callbacks.

    Attributes:
        completed: Tasks that succeeded or were skipped
        failed: Tasks that failed
        not_run: Tasks that will never run
        total: All tasks in the graph
        running: Display names of running tasks
    """
    completed: int
    failed: int
    not_run: int
    total: int
    running: tuple[str, ...] = ()

    @property
    def percent(self) -> int:
        if self.total == 0:
            return 100
        return self.completed * 100 // self.total


class GraphState:
    """Status of every task in one graph run."""

    def __init__(self, graph_name: str):
        self.graph_name = graph_name
        self._lock = threading.Lock()
        self._tasks: dict[str, TaskState] = {}
        self._failure_order: list[str] = []
        self.cancelled = False
        self.started_at: Optional[float] = None
        self.completed_at: Optional[float] = None

    def add_task(self, task_id: str, name: str = '') -> TaskState:
        """Register a task for tracking."""
        state = TaskState(id=task_id, name=name or task_id)
        self._tasks[task_id] = state
        return state

    def get_task(self, task_id: str) -> TaskState:
        """Get task state by id.

        Raises:
            KeyError: If task not registered
        """
        return self._tasks[task_id]

    @property
    def tasks(self) -> dict[str, TaskState]:
        return dict(self._tasks)

    def status(self, task_id: str) -> str:
        return self._tasks[task_id].status

    def record_failure(self, task_id: str, error: BaseException) -> None:
        with self._lock:
            self._tasks[task_id].fail(error)
            self._failure_order.append(task_id)

    def ids_with(self, status: str) -> list[str]:
        return [tid for tid, s in self._tasks.items() if s.status == status]

    @property
    def failed(self) -> list[str]:
        """Failed task ids in the order they failed."""
        return list(self._failure_order)

    @property
    def not_run(self) -> list[str]:
        return self.ids_with(TaskStatus.NOT_RUN)

    @property
    def succeeded(self) -> bool:
        """True if every task succeeded or was skipped."""
        return all(s.status in TaskStatus.PASSABLE for s in self._tasks.values())

    def start(self) -> None:
        self.started_at = time.time()

    def finish(self) -> None:
        self.completed_at = time.time()

    def progress(self) -> Progress:
        states = list(self._tasks.values())
        return Progress(
            completed=sum(1 for s in states if s.status in TaskStatus.PASSABLE),
            failed=sum(1 for s in states if s.status == TaskStatus.FAILED),
            not_run=sum(1 for s in states if s.status == TaskStatus.NOT_RUN),
            total=len(states),
            running=tuple(s.name for s in states if s.status == TaskStatus.RUNNING),
        )

    def summary(self) -> str:
        """One line per task, for partial-progress reports."""
        p = self.progress()
        lines = [f"{self.graph_name}: {p.completed}/{p.total} completed, "
                 f"{p.failed} failed, {p.not_run} not run"]
        for tid, s in self._tasks.items():
            line = f"  {tid}: {s.status}"
            if s.error is not None:
                line += f" ({s.error})"
            lines.append(line)
        return '\n'.join(lines)

    def raise_for_status(self) -> None:
        """Raise if the run did not complete.

        Raises:
            GraphExecutionError: If any task failed (first failure is the cause)
            Cancelled: If the run was cancelled without a task failure
        """
        if self._failure_order:
            first = self._failure_order[0]
            raise GraphExecutionError(
                task_id=first,
                cause=self._tasks[first].error,
                failed=self._failure_order,
                not_run=self.not_run,
                summary=self.summary(),
            )
        if self.cancelled and not self.succeeded:
            raise Cancelled(f"graph '{self.graph_name}' cancelled\n{self.summary()}")

    def to_dict(self) -> dict:
        return {
            'graph': self.graph_name,
            'started_at': self.started_at,
            'completed_at': self.completed_at,
            'cancelled': self.cancelled,
            'tasks': [s.to_dict() for s in self._tasks.values()],
        }
