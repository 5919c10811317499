"""Tests for taskgraph - declaration, compilation and parallel execution.

Tests verify:
1. Compilation rejects cycles, unknown and duplicate ids
2. Dependencies finish before dependents start
3. A failure marks only its dependents not_run
4. skip_if / do_if gates
5. Cancellation and progress reporting
"""

import sys
import threading
import time
from pathlib import Path
from unittest.mock import MagicMock

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from errors import Cancelled, GraphError, GraphExecutionError
from taskgraph import GraphExecutor, Progress, ProgressLogger, TaskGraph, TaskStatus


def _recorder():
    """Task factory appending (event, task id) to a shared log."""
    log = []
    lock = threading.Lock()

    def make(task_id, delay=0.0, error=None):
        def fn(cancel):
            with lock:
                log.append(('start', task_id))
            if delay:
                time.sleep(delay)
            if error is not None:
                raise error
            with lock:
                log.append(('end', task_id))
        return fn

    return log, make


def _boom(cancel):
    raise RuntimeError('boom')


class TestCompile:
    """Test graph validation."""

    def test_topological_order_keeps_declaration_order(self):
        graph = TaskGraph('g')
        graph.task('a', lambda c: None)
        graph.task('b', lambda c: None)
        graph.task('c', lambda c: None, dependencies=('a',))
        compiled = graph.compile()
        assert compiled.order == ['a', 'b', 'c']

    def test_cycle_rejected(self):
        graph = TaskGraph('g')
        graph.task('a', lambda c: None, dependencies=('b',))
        graph.task('b', lambda c: None, dependencies=('a',))
        with pytest.raises(GraphError) as exc_info:
            graph.compile()
        assert 'cycle' in str(exc_info.value)

    def test_unknown_dependency_rejected(self):
        graph = TaskGraph('g')
        graph.task('a', lambda c: None, dependencies=('missing',))
        with pytest.raises(GraphError) as exc_info:
            graph.compile()
        assert 'missing' in str(exc_info.value)

    def test_self_dependency_rejected(self):
        graph = TaskGraph('g')
        graph.task('a', lambda c: None, dependencies=('a',))
        with pytest.raises(GraphError):
            graph.compile()

    def test_duplicate_id_rejected(self):
        graph = TaskGraph('g')
        graph.task('a', lambda c: None)
        with pytest.raises(GraphError):
            graph.task('a', lambda c: None)

    def test_descendants_are_transitive(self):
        graph = TaskGraph('g')
        graph.task('a', lambda c: None)
        graph.task('b', lambda c: None, dependencies=('a',))
        graph.task('c', lambda c: None, dependencies=('b',))
        graph.task('d', lambda c: None)
        assert graph.compile().descendants('a') == {'b', 'c'}


class TestExecution:
    """Test ordering and parallelism."""

    def test_dependencies_finish_first(self):
        log, make = _recorder()
        graph = TaskGraph('g')
        graph.task('a', make('a', delay=0.05))
        graph.task('b', make('b'), dependencies=('a',))
        graph.task('c', make('c'), dependencies=('a', 'b'))

        state = GraphExecutor(max_workers=4).run(graph.compile())

        assert state.succeeded
        assert log.index(('end', 'a')) < log.index(('start', 'b'))
        assert log.index(('end', 'b')) < log.index(('start', 'c'))

    def test_independent_tasks_run_concurrently(self):
        barrier = threading.Barrier(2, timeout=5)
        graph = TaskGraph('g')
        graph.task('a', lambda c: barrier.wait())
        graph.task('b', lambda c: barrier.wait())

        state = GraphExecutor(max_workers=2).run(graph.compile())
        assert state.succeeded

    def test_worker_bound_respected(self):
        active = []
        peak = []
        lock = threading.Lock()

        def fn(cancel):
            with lock:
                active.append(1)
                peak.append(len(active))
            time.sleep(0.02)
            with lock:
                active.pop()

        graph = TaskGraph('g')
        for i in range(6):
            graph.task(f't{i}', fn)
        GraphExecutor(max_workers=2).run(graph.compile())
        assert max(peak) <= 2

    def test_invalid_worker_count(self):
        with pytest.raises(ValueError):
            GraphExecutor(max_workers=0)


class TestFailureContainment:
    """Test that failures stop only their dependents."""

    def test_dependents_not_run_independent_branch_completes(self):
        log, make = _recorder()
        graph = TaskGraph('g')
        graph.task('a', make('a', error=RuntimeError('boom')))
        graph.task('b', make('b'), dependencies=('a',))
        graph.task('c', make('c'), dependencies=('b',))
        graph.task('x', make('x', delay=0.02))

        state = GraphExecutor(max_workers=2).run(graph.compile())

        assert state.status('a') == TaskStatus.FAILED
        assert state.status('b') == TaskStatus.NOT_RUN
        assert state.status('c') == TaskStatus.NOT_RUN
        assert state.status('x') == TaskStatus.SUCCEEDED
        assert ('start', 'b') not in log

    def test_descendants_marked_while_branch_still_runs(self):
        release = threading.Event()
        snapshots = []

        def on_progress(progress):
            snapshots.append(progress)
            if progress.not_run == 2:
                release.set()

        graph = TaskGraph('g')
        graph.task('a', _boom)
        graph.task('b', lambda c: None, dependencies=('a',))
        graph.task('c', lambda c: None, dependencies=('b',))
        graph.task('x', lambda c: release.wait(5))

        state = GraphExecutor(max_workers=2, progress_callback=on_progress).run(graph.compile())

        assert state.not_run == ['b', 'c']
        assert state.status('x') == TaskStatus.SUCCEEDED
        marked = next(p for p in snapshots if p.not_run == 2)
        assert marked.failed == 1
        assert marked.running == ('x',)

    def test_raise_for_status_reports_first_failure(self):
        graph = TaskGraph('g')
        graph.task('a', _boom)
        graph.task('b', lambda c: None, dependencies=('a',))

        state = GraphExecutor(max_workers=1).run(graph.compile())

        with pytest.raises(GraphExecutionError) as exc_info:
            state.raise_for_status()
        err = exc_info.value
        assert err.task_id == 'a'
        assert isinstance(err.cause, RuntimeError)
        assert err.failed == ['a']
        assert err.not_run == ['b']
        assert 'b: not_run' in err.summary

    def test_failing_gate_fails_task(self):
        def gate():
            raise RuntimeError('gate broke')

        graph = TaskGraph('g')
        graph.task('a', lambda c: None, skip_if=gate)
        graph.task('b', lambda c: None, dependencies=('a',))

        state = GraphExecutor().run(graph.compile())
        assert state.status('a') == TaskStatus.FAILED
        assert state.status('b') == TaskStatus.NOT_RUN


class TestGates:
    """Test skip_if and do_if."""

    def test_skip_if_marks_skipped_and_unblocks_dependents(self):
        fn = MagicMock()
        after = MagicMock()
        graph = TaskGraph('g')
        graph.task('a', fn, skip_if=lambda: True)
        graph.task('b', after, dependencies=('a',))

        state = GraphExecutor().run(graph.compile())

        fn.assert_not_called()
        after.assert_called_once()
        assert state.status('a') == TaskStatus.SKIPPED
        assert state.succeeded

    def test_do_if_false_succeeds_without_running(self):
        fn = MagicMock()
        graph = TaskGraph('g')
        graph.task('a', fn, do_if=lambda: False)

        state = GraphExecutor().run(graph.compile())

        fn.assert_not_called()
        assert state.status('a') == TaskStatus.SUCCEEDED

    def test_gates_evaluated_when_eligible(self):
        flag = {'skip': False}

        def first(cancel):
            flag['skip'] = True

        second = MagicMock()
        graph = TaskGraph('g')
        graph.task('a', first)
        graph.task('b', second, dependencies=('a',), skip_if=lambda: flag['skip'])

        state = GraphExecutor().run(graph.compile())
        second.assert_not_called()
        assert state.status('b') == TaskStatus.SKIPPED


class TestCancellation:
    """Test the cancel signal."""

    def test_cancel_before_start(self):
        cancel = threading.Event()
        cancel.set()
        fn = MagicMock()
        graph = TaskGraph('g')
        graph.task('a', fn)

        state = GraphExecutor().run(graph.compile(), cancel)

        fn.assert_not_called()
        assert state.status('a') == TaskStatus.NOT_RUN
        with pytest.raises(Cancelled):
            state.raise_for_status()

    def test_cancel_while_running_stops_later_tasks(self):
        cancel = threading.Event()
        later = MagicMock()

        def first(c):
            cancel.set()

        graph = TaskGraph('g')
        graph.task('a', first)
        graph.task('b', later, dependencies=('a',))

        state = GraphExecutor().run(graph.compile(), cancel)

        later.assert_not_called()
        assert state.status('a') == TaskStatus.SUCCEEDED
        assert state.status('b') == TaskStatus.NOT_RUN
        assert state.cancelled


class TestProgress:
    """Test progress callbacks."""

    def test_callback_sees_final_snapshot(self):
        snapshots = []
        graph = TaskGraph('g')
        graph.task('a', lambda c: None)
        graph.task('b', lambda c: None, dependencies=('a',))

        GraphExecutor(progress_callback=snapshots.append).run(graph.compile())

        assert snapshots
        last = snapshots[-1]
        assert last.completed == 2
        assert last.total == 2
        assert last.percent == 100

    def test_callback_per_transition(self):
        snapshots = []
        graph = TaskGraph('g')
        graph.task('a', lambda c: None)
        graph.task('b', lambda c: None, dependencies=('a',))
        graph.task('c', lambda c: None, dependencies=('a',))

        GraphExecutor(progress_callback=snapshots.append).run(graph.compile())

        # three starts and three successes, one snapshot each
        assert [s.completed for s in snapshots] == [0, 1, 1, 1, 2, 3]
        assert snapshots[0].running == ('a',)
        assert snapshots[3].running == ('b', 'c')

    def test_failing_callback_does_not_break_run(self):
        graph = TaskGraph('g')
        graph.task('a', lambda c: None)
        state = GraphExecutor(progress_callback=MagicMock(side_effect=RuntimeError)).run(graph.compile())
        assert state.succeeded

    def test_progress_logger_format(self):
        log = MagicMock()
        ProgressLogger(log)(Progress(completed=1, failed=0, not_run=0, total=4, running=('Deploy etcd',)))
        args = log.info.call_args[0]
        assert args[1:] == (25, 1, 4, 'Deploy etcd')

    def test_progress_logger_quiet_before_start(self):
        log = MagicMock()
        ProgressLogger(log)(Progress(completed=0, failed=0, not_run=0, total=4))
        log.info.assert_not_called()

    def test_empty_graph_is_complete(self):
        assert Progress(0, 0, 0, 0).percent == 100
