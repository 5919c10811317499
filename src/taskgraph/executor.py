"""Run a compiled task graph on a bounded worker pool.

The scheduler loop lives in the calling thread. A task becomes eligible
once every dependency succeeded or was skipped; its gates are evaluated
then, and it is submitted to the pool if a worker slot is free. When a
task fails, its direct and transitive dependents are marked not_run while
independent branches carry on. Cancellation stops new submissions and
marks everything not yet started as not_run; running tasks receive the
same cancel event and are expected to stop at their next check.
"""

import logging
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable, Optional

from taskgraph.graph import CompiledGraph, Task
from taskgraph.state import GraphState, Progress, TaskStatus

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[Progress], None]


class ProgressLogger:
    """Progress callback that logs a one-line status on every transition."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logger

    def __call__(self, progress: Progress) -> None:
        if progress.percent == 0 and not progress.running:
            return
        running = ', '.join(progress.running) or '-'
        self.log.info("%d%% of all tasks completed (%d/%d) - Executing now: %s",
                      progress.percent, progress.completed, progress.total, running)


class GraphExecutor:
    """Executes compiled graphs.

    Attributes:
        max_workers: Upper bound on concurrently running tasks
        progress_callback: Called with a Progress snapshot after every transition
    """

    def __init__(self, max_workers: int = 4, progress_callback: Optional[ProgressCallback] = None):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.max_workers = max_workers
        self.progress_callback = progress_callback

    def _notify(self, state: GraphState) -> None:
        if self.progress_callback is None:
            return
        try:
            self.progress_callback(state.progress())
        except Exception:
            logger.exception("Progress callback failed")

    def _gate(self, task: Task, state: GraphState) -> Optional[str]:
        """Evaluate gates; return the terminal status to assign, or None to run."""
        if task.skip_if is not None and task.skip_if():
            return TaskStatus.SKIPPED
        if task.do_if is not None and not task.do_if():
            return TaskStatus.SUCCEEDED
        return None

    def _mark_dependents_not_run(self, graph: CompiledGraph, state: GraphState,
                                 pending: list[str], task_id: str) -> None:
        """Mark every pending direct and transitive dependent of task_id not_run."""
        blocked = graph.descendants(task_id)
        for tid in graph.order:
            if tid in pending and tid in blocked:
                state.get_task(tid).mark_not_run()
                pending.remove(tid)
                logger.debug(f"Task '{state.get_task(tid).name}' will not run, '{task_id}' failed")
                self._notify(state)

    def _fail(self, graph: CompiledGraph, state: GraphState, pending: list[str],
              task_id: str, error: BaseException) -> None:
        state.record_failure(task_id, error)
        self._notify(state)
        self._mark_dependents_not_run(graph, state, pending, task_id)

    def run(self, graph: CompiledGraph, cancel: Optional[threading.Event] = None) -> GraphState:
        """Execute every task in graph.

        The progress callback is invoked once per task status transition.

        Args:
            graph: Compiled graph
            cancel: Signal to stop scheduling; passed to every task function

        Returns:
            Final GraphState; call raise_for_status() to turn failures into errors
        """
        cancel = cancel or threading.Event()
        state = GraphState(graph.name)
        for tid in graph.order:
            state.add_task(tid, graph.tasks[tid].display_name)
        state.start()
        logger.info(f"Running graph '{graph.name}' ({len(graph)} tasks, {self.max_workers} workers)")

        pending = list(graph.order)
        running: dict[Future, str] = {}

        with ThreadPoolExecutor(max_workers=self.max_workers,
                                thread_name_prefix=f'{graph.name}-task') as pool:
            while True:
                if cancel.is_set() and not state.cancelled:
                    state.cancelled = True
                    logger.warning(f"Graph '{graph.name}' cancelled, halting unstarted tasks")

                self._schedule(graph, state, pending, running, pool, cancel)

                if not running:
                    if not pending:
                        break
                    # gated tasks resolved without running; schedule their dependents
                    continue

                done, _ = wait(list(running), return_when=FIRST_COMPLETED)
                for future in done:
                    tid = running.pop(future)
                    task_state = state.get_task(tid)
                    error = future.exception()
                    if error is None:
                        task_state.succeed()
                        logger.info(f"Task '{task_state.name}' succeeded")
                        self._notify(state)
                    else:
                        logger.error(f"Task '{task_state.name}' failed: {error}")
                        self._fail(graph, state, pending, tid, error)

        state.finish()
        if state.failed:
            logger.error(f"Graph '{graph.name}' failed: {', '.join(state.failed)}")
        elif state.cancelled:
            logger.warning(f"Graph '{graph.name}' cancelled")
        else:
            logger.info(f"Graph '{graph.name}' completed")
        return state

    def _schedule(self, graph: CompiledGraph, state: GraphState, pending: list[str],
                  running: dict, pool: ThreadPoolExecutor, cancel: threading.Event) -> None:
        """One scheduling pass over pending tasks in topological order."""
        for tid in list(pending):
            if tid not in pending:
                continue
            task = graph.tasks[tid]
            task_state = state.get_task(tid)
            dep_statuses = [state.status(d) for d in task.dependencies]

            # topological order means upstream not_run is already marked in this pass
            if state.cancelled or any(s in (TaskStatus.FAILED, TaskStatus.NOT_RUN) for s in dep_statuses):
                task_state.mark_not_run()
                pending.remove(tid)
                logger.debug(f"Task '{task_state.name}' will not run")
                self._notify(state)
                continue

            if not all(s in TaskStatus.PASSABLE for s in dep_statuses):
                continue
            if len(running) >= self.max_workers:
                continue

            pending.remove(tid)
            try:
                outcome = self._gate(task, state)
            except Exception as e:
                logger.error(f"Task '{task_state.name}' gate failed: {e}")
                self._fail(graph, state, pending, tid, e)
                continue

            if outcome == TaskStatus.SKIPPED:
                task_state.skip()
                logger.info(f"Task '{task_state.name}' skipped")
            elif outcome == TaskStatus.SUCCEEDED:
                task_state.succeed()
                logger.info(f"Task '{task_state.name}' not required, nothing to do")
            else:
                task_state.start()
                logger.info(f"Task '{task_state.name}' started")
                running[pool.submit(task.fn, cancel)] = tid
            self._notify(state)
