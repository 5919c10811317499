"""Reconcile and delete flows of a virtual garden.

Each flow is a task graph: independent steps (service, backup bucket,
HVPA CRD) run in parallel, the data store waits for its prerequisites,
and the front-end waits for the data store and its service.
"""

import logging
import threading
from typing import Optional

from api import Exports, Imports
from config import DriverConfig
from garden.context import OperationContext, build_context
from garden.crds import deploy_hvpa_crd
from garden.etcd import delete_etcd, deploy_etcd
from garden.etcd_backup import delete_backup_bucket, deploy_backup_bucket
from garden.exports import ExportsAccumulator
from garden.kube_apiserver import delete_kube_apiserver, deploy_kube_apiserver
from garden.kube_apiserver_service import delete_kube_apiserver_service, deploy_kube_apiserver_service
from garden.namespace import create_namespace, delete_namespace
from provider import BackupProvider
from store.base import ResourceStore
from taskgraph import CompiledGraph, GraphExecutor, GraphState, ProgressLogger, TaskGraph
from taskgraph.executor import ProgressCallback

logger = logging.getLogger(__name__)

TASK_CREATE_NAMESPACE = 'create-namespace'
TASK_DEPLOY_HVPA_CRD = 'deploy-hvpa-crd'
TASK_DEPLOY_KUBE_APISERVER_SERVICE = 'deploy-kube-apiserver-service'
TASK_DEPLOY_BACKUP_BUCKET = 'deploy-backup-bucket'
TASK_DEPLOY_ETCD = 'deploy-etcd'
TASK_DEPLOY_KUBE_APISERVER = 'deploy-kube-apiserver'

TASK_DELETE_KUBE_APISERVER = 'delete-kube-apiserver'
TASK_DELETE_ETCD = 'delete-etcd'
TASK_DELETE_BACKUP_BUCKET = 'delete-backup-bucket'
TASK_DELETE_KUBE_APISERVER_SERVICE = 'delete-kube-apiserver-service'
TASK_DELETE_NAMESPACE = 'delete-namespace'


class Operation:
    """Reconcile or delete one virtual garden in a hosting cluster.

    Attributes:
        ctx: Frozen run context
        executor: Graph executor shared by both flows
        last_state: GraphState of the most recent run, None before the first
    """

    def __init__(self, ctx: OperationContext, progress_callback: Optional[ProgressCallback] = None):
        self.ctx = ctx
        self.executor = GraphExecutor(
            max_workers=ctx.config.max_workers,
            progress_callback=progress_callback or ProgressLogger(),
        )
        self.last_state: Optional[GraphState] = None

    @classmethod
    def build(
        cls,
        store: ResourceStore,
        imports: Imports,
        config: Optional[DriverConfig] = None,
        backup_provider: Optional[BackupProvider] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> 'Operation':
        """Resolve the run context and return a ready Operation."""
        return cls(build_context(store, imports, config, backup_provider), progress_callback)

    def reconcile_graph(self, exports: ExportsAccumulator) -> CompiledGraph:
        ctx = self.ctx
        graph = TaskGraph('reconcile')
        graph.task(TASK_CREATE_NAMESPACE, lambda cancel: create_namespace(ctx),
                   name='Create namespace')
        graph.task(TASK_DEPLOY_HVPA_CRD, lambda cancel: deploy_hvpa_crd(ctx, cancel),
                   name='Deploy HVPA CRD',
                   do_if=lambda: ctx.hvpa_enabled and not ctx.hvpa_crd_present)
        graph.task(TASK_DEPLOY_KUBE_APISERVER_SERVICE, lambda cancel: deploy_kube_apiserver_service(ctx),
                   dependencies=(TASK_CREATE_NAMESPACE,),
                   name='Deploy kube-apiserver service')
        graph.task(TASK_DEPLOY_BACKUP_BUCKET, lambda cancel: deploy_backup_bucket(ctx, cancel),
                   dependencies=(TASK_CREATE_NAMESPACE,),
                   name='Deploy backup bucket',
                   skip_if=lambda: not ctx.imports.backup_enabled)
        graph.task(TASK_DEPLOY_ETCD, lambda cancel: deploy_etcd(ctx, exports, cancel),
                   dependencies=(TASK_DEPLOY_BACKUP_BUCKET, TASK_DEPLOY_HVPA_CRD),
                   name='Deploy etcd')
        graph.task(TASK_DEPLOY_KUBE_APISERVER, lambda cancel: deploy_kube_apiserver(ctx, exports, cancel),
                   dependencies=(TASK_DEPLOY_ETCD, TASK_DEPLOY_KUBE_APISERVER_SERVICE, TASK_DEPLOY_HVPA_CRD),
                   name='Deploy kube-apiserver')
        return graph.compile()

    def delete_graph(self) -> CompiledGraph:
        ctx = self.ctx
        graph = TaskGraph('delete')
        graph.task(TASK_DELETE_KUBE_APISERVER, lambda cancel: delete_kube_apiserver(ctx, cancel),
                   name='Delete kube-apiserver')
        graph.task(TASK_DELETE_ETCD, lambda cancel: delete_etcd(ctx, cancel),
                   dependencies=(TASK_DELETE_KUBE_APISERVER,),
                   name='Delete etcd')
        graph.task(TASK_DELETE_BACKUP_BUCKET, lambda cancel: delete_backup_bucket(ctx, cancel),
                   dependencies=(TASK_DELETE_ETCD,),
                   name='Delete backup bucket',
                   do_if=lambda: ctx.backup_provider is not None)
        graph.task(TASK_DELETE_KUBE_APISERVER_SERVICE, lambda cancel: delete_kube_apiserver_service(ctx),
                   dependencies=(TASK_DELETE_KUBE_APISERVER,),
                   name='Delete kube-apiserver service')
        graph.task(TASK_DELETE_NAMESPACE, lambda cancel: delete_namespace(ctx),
                   dependencies=(TASK_DELETE_BACKUP_BUCKET, TASK_DELETE_KUBE_APISERVER_SERVICE),
                   name='Delete namespace',
                   skip_if=lambda: not ctx.imports.virtual_garden.delete_namespace)
        return graph.compile()

    def reconcile(self, cancel: Optional[threading.Event] = None) -> Exports:
        """Bring the hosting cluster to the desired state.

        Returns:
            Exports collected while the graph ran

        Raises:
            GraphExecutionError: If a task failed; dependents did not run
            Cancelled: If cancel was set before the graph completed
        """
        logger.info(f"Reconciling virtual garden in namespace '{self.ctx.namespace}'")
        exports = ExportsAccumulator()
        self.last_state = self.executor.run(self.reconcile_graph(exports), cancel)
        self.last_state.raise_for_status()
        return exports.finalize()

    def delete(self, cancel: Optional[threading.Event] = None) -> None:
        """Remove the virtual garden from the hosting cluster.

        Raises:
            GraphExecutionError: If a task failed; dependents did not run
            Cancelled: If cancel was set before the graph completed
        """
        logger.info(f"Deleting virtual garden in namespace '{self.ctx.namespace}'")
        self.last_state = self.executor.run(self.delete_graph(), cancel)
        self.last_state.raise_for_status()
