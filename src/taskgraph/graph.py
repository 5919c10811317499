"""Task graph declaration and compilation.

A TaskGraph collects Task records; compile() checks that every dependency
resolves and that there are no cycles, and returns a CompiledGraph with a
stable topological order (declaration order among independent tasks).
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Optional

from errors import GraphError

logger = logging.getLogger(__name__)

TaskFn = Callable[[threading.Event], None]
Predicate = Callable[[], bool]


@dataclass(frozen=True)
class Task:
    """A named unit of work.

    Attributes:
        id: Unique id within the graph
        fn: Work function; receives the cancel signal
        dependencies: Ids that must finish (succeeded or skipped) first
        name: Display name, defaults to id
        skip_if: Evaluated when eligible; True marks the task skipped
        do_if: Evaluated when eligible; False reports trivial success without running fn
    """
    id: str
    fn: TaskFn
    dependencies: tuple[str, ...] = ()
    name: str = ''
    skip_if: Optional[Predicate] = None
    do_if: Optional[Predicate] = None

    @property
    def display_name(self) -> str:
        return self.name or self.id


class TaskGraph:
    """Mutable collection of tasks, compiled before execution."""

    def __init__(self, name: str):
        self.name = name
        self._tasks: dict[str, Task] = {}

    def add(self, task: Task) -> Task:
        """Register a task.

        Raises:
            GraphError: If the id is empty or already registered
        """
        if not task.id:
            raise GraphError(f"graph '{self.name}': task id must not be empty")
        if task.id in self._tasks:
            raise GraphError(f"graph '{self.name}': duplicate task id '{task.id}'")
        self._tasks[task.id] = task
        return task

    def task(
        self,
        id: str,
        fn: TaskFn,
        dependencies: tuple[str, ...] = (),
        name: str = '',
        skip_if: Optional[Predicate] = None,
        do_if: Optional[Predicate] = None,
    ) -> Task:
        """Build and register a task in one call."""
        return self.add(Task(id=id, fn=fn, dependencies=tuple(dependencies), name=name,
                             skip_if=skip_if, do_if=do_if))

    def compile(self) -> 'CompiledGraph':
        """Validate references and acyclicity.

        Raises:
            GraphError: On unknown dependencies, self-dependencies or cycles
        """
        for task in self._tasks.values():
            for dep in task.dependencies:
                if dep == task.id:
                    raise GraphError(f"graph '{self.name}': task '{task.id}' depends on itself")
                if dep not in self._tasks:
                    raise GraphError(
                        f"graph '{self.name}': task '{task.id}' depends on unknown task '{dep}'")

        # Kahn's algorithm; queue seeded in declaration order for a stable result
        indegree = {tid: len(set(t.dependencies)) for tid, t in self._tasks.items()}
        dependents: dict[str, list[str]] = {tid: [] for tid in self._tasks}
        for tid, t in self._tasks.items():
            for dep in set(t.dependencies):
                dependents[dep].append(tid)

        queue = deque(tid for tid, n in indegree.items() if n == 0)
        order: list[str] = []
        while queue:
            tid = queue.popleft()
            order.append(tid)
            for child in dependents[tid]:
                indegree[child] -= 1
                if indegree[child] == 0:
                    queue.append(child)

        if len(order) != len(self._tasks):
            cyclic = sorted(tid for tid, n in indegree.items() if n > 0)
            raise GraphError(f"graph '{self.name}': dependency cycle among {', '.join(cyclic)}")

        logger.debug(f"Compiled graph '{self.name}': {' -> '.join(order)}")
        return CompiledGraph(self.name, dict(self._tasks), order, dependents)


@dataclass
class CompiledGraph:
    """Validated, immutable-by-convention DAG.

    Attributes:
        name: Graph name
        tasks: Tasks by id
        order: Topological order
        dependents: Direct dependents by id
    """
    name: str
    tasks: dict[str, Task]
    order: list[str]
    dependents: dict[str, list[str]] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.tasks)

    def get_task(self, task_id: str) -> Task:
        """Get a task by id.

        Raises:
            KeyError: If the id is unknown
        """
        return self.tasks[task_id]

    def descendants(self, task_id: str) -> set[str]:
        """All direct and transitive dependents of a task."""
        seen: set[str] = set()
        queue = deque(self.dependents.get(task_id, []))
        while queue:
            tid = queue.popleft()
            if tid in seen:
                continue
            seen.add(tid)
            queue.extend(self.dependents.get(tid, []))
        return seen
