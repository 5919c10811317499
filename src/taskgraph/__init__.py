"""Dependency-ordered task execution.

Three stages, each usable on its own:
- graph: declare Task records and compile them into a validated DAG
- state: per-task status tracking and progress snapshots
- executor: run a compiled graph on a bounded worker pool
"""

from taskgraph.executor import GraphExecutor, ProgressLogger
from taskgraph.graph import CompiledGraph, Task, TaskGraph
from taskgraph.state import GraphState, Progress, TaskState, TaskStatus

__all__ = [
    'CompiledGraph',
    'GraphExecutor',
    'GraphState',
    'Progress',
    'ProgressLogger',
    'Task',
    'TaskGraph',
    'TaskState',
    'TaskStatus',
]
