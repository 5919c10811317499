#!/usr/bin/env python3
"""End-to-end tests of the reconcile and delete flows against the in-memory store."""

import sys
from pathlib import Path

import pytest
import yaml

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from api import Imports
from conftest import LOAD_BALANCER_IP, NAMESPACE, sample_imports_dict
from errors import GraphExecutionError, TransportError
from garden.constants import ETCD_DEFAULT_STORAGE_CLASS, HVPA_CRD_NAME, KUBE_APISERVER_NAME, etcd_labels
from garden.context import HVPA_CRD_REF
from garden.etcd import storage_class_ref
from garden.etcd_statefulset import pvc_ref, statefulset_ref
from garden.kube_apiserver_misc import hpa_ref, hvpa_ref
from garden.namespace import namespace_ref
from garden.operation import (
    TASK_DEPLOY_BACKUP_BUCKET,
    TASK_DEPLOY_ETCD,
    TASK_DEPLOY_KUBE_APISERVER,
    TASK_DELETE_BACKUP_BUCKET,
    Operation,
)
from store.objects import ObjectRef
from taskgraph import TaskStatus


def _operation(store, imports, driver_config, backup_provider=None, progress=None):
    return Operation.build(store, imports, driver_config, backup_provider,
                           progress_callback=progress.append if progress is not None else None)


class TestReconcile:
    """Test the reconcile flow."""

    def test_reconcile_fills_exports(self, store, imports, driver_config, backup_provider, object_store):
        exports = _operation(store, imports, driver_config, backup_provider).reconcile()

        assert exports.etcd_url == f'virtual-garden-etcd-main-client.{NAMESPACE}.svc:2379'
        assert exports.virtual_garden_endpoint == f'https://{LOAD_BALANCER_IP}:443'
        assert 'BEGIN CERTIFICATE' in exports.virtual_garden_apiserver_ca_pem
        assert 'BEGIN CERTIFICATE' in exports.etcd_ca_pem
        assert 'PRIVATE KEY' in exports.etcd_client_tls_key_pem
        assert 'PRIVATE KEY' in exports.service_account_key_pem
        kubeconfig = yaml.safe_load(exports.kubeconfig_yaml)
        assert kubeconfig['clusters'][0]['cluster']['server'] == exports.virtual_garden_endpoint
        assert 'vg-backup' in object_store.buckets

    def test_reconcile_creates_workloads(self, store, imports, driver_config, backup_provider):
        _operation(store, imports, driver_config, backup_provider).reconcile()

        assert store.exists(namespace_ref(NAMESPACE))
        assert store.exists(storage_class_ref(ETCD_DEFAULT_STORAGE_CLASS))
        for role in ('main', 'events'):
            assert store.exists(statefulset_ref(NAMESPACE, role))
        deployment = store.get(ObjectRef('apps/v1', 'Deployment', KUBE_APISERVER_NAME, NAMESPACE))
        assert deployment['spec']['replicas'] == 2
        annotations = deployment['spec']['template']['metadata']['annotations']
        assert 'checksum/secret-kube-apiserver-server' in annotations
        assert not store.exists(hpa_ref(NAMESPACE))

    def test_second_reconcile_writes_nothing(self, store, imports, driver_config, backup_provider):
        first = _operation(store, imports, driver_config, backup_provider).reconcile()
        store.writes.clear()

        second = _operation(store, imports, driver_config, backup_provider).reconcile()

        assert store.writes == []
        assert second == first

    def test_progress_reported(self, store, imports, driver_config, backup_provider):
        progress = []
        _operation(store, imports, driver_config, backup_provider, progress).reconcile()
        assert progress[-1].percent == 100
        assert progress[-1].total == 6

    def test_backup_bucket_before_etcd(self, store, imports, driver_config, backup_provider, object_store):
        operation = _operation(store, imports, driver_config, backup_provider)
        operation.reconcile()

        bucket = operation.last_state.get_task(TASK_DEPLOY_BACKUP_BUCKET)
        etcd = operation.last_state.get_task(TASK_DEPLOY_ETCD)
        assert bucket.status == TaskStatus.SUCCEEDED
        assert etcd.status == TaskStatus.SUCCEEDED
        assert bucket.completed_at <= etcd.started_at
        assert 'vg-backup' in object_store.buckets

    def test_backup_disabled_skips_bucket(self, store, driver_config, object_store):
        imports = Imports.from_dict(sample_imports_dict(etcd={}))
        operation = _operation(store, imports, driver_config)
        exports = operation.reconcile()

        assert operation.last_state.status(TASK_DEPLOY_BACKUP_BUCKET) == TaskStatus.SKIPPED
        assert operation.last_state.status(TASK_DEPLOY_ETCD) == TaskStatus.SUCCEEDED
        assert exports.etcd_url
        assert object_store.buckets == {}

    def test_failure_stops_dependents(self, store, imports, driver_config, backup_provider):
        store.inject_error('create', 'StatefulSet', TransportError('hosting cluster unavailable'))

        with pytest.raises(GraphExecutionError) as exc_info:
            _operation(store, imports, driver_config, backup_provider).reconcile()

        error = exc_info.value
        assert error.task_id == TASK_DEPLOY_ETCD
        assert isinstance(error.cause, TransportError)
        assert TASK_DEPLOY_KUBE_APISERVER in error.not_run
        assert not store.exists(ObjectRef('apps/v1', 'Deployment', KUBE_APISERVER_NAME, NAMESPACE))

    def test_horizontal_autoscaler(self, store, driver_config, backup_provider):
        imports = Imports.from_dict(sample_imports_dict(kubeAPIServer={
            'replicas': 2,
            'horizontalPodAutoscaler': {'minReplicas': 3, 'maxReplicas': 5},
        }))
        _operation(store, imports, driver_config, backup_provider).reconcile()

        hpa = store.get(hpa_ref(NAMESPACE))
        assert hpa['spec']['minReplicas'] == 3
        assert hpa['spec']['maxReplicas'] == 5

        # an autoscaler scaled the deployment; the next reconcile keeps it
        ref = ObjectRef('apps/v1', 'Deployment', KUBE_APISERVER_NAME, NAMESPACE)
        deployment = store.get(ref)
        deployment['spec']['replicas'] = 4
        store.update(deployment)
        _operation(store, imports, driver_config, backup_provider).reconcile()
        assert store.get(ref)['spec']['replicas'] == 4

    def test_hvpa_installs_crd(self, store, driver_config, backup_provider):
        imports = Imports.from_dict(sample_imports_dict(kubeAPIServer={'replicas': 1, 'hvpaEnabled': True}))
        _operation(store, imports, driver_config, backup_provider).reconcile()

        assert store.exists(HVPA_CRD_REF)
        assert HVPA_CRD_REF.name == HVPA_CRD_NAME
        assert store.exists(hvpa_ref(NAMESPACE))
        assert not store.exists(hpa_ref(NAMESPACE))


class TestDelete:
    """Test the delete flow."""

    def test_delete_keeps_namespace(self, store, imports, driver_config, backup_provider, object_store):
        _operation(store, imports, driver_config, backup_provider).reconcile()

        _operation(store, imports, driver_config, backup_provider).delete()

        assert store.refs() == [namespace_ref(NAMESPACE)]
        assert 'vg-backup' not in object_store.buckets

    def test_delete_namespace(self, store, driver_config, backup_provider):
        imports = Imports.from_dict(sample_imports_dict(deleteNamespace=True))
        _operation(store, imports, driver_config, backup_provider).reconcile()

        _operation(store, imports, driver_config, backup_provider).delete()

        assert store.refs() == []

    def test_delete_of_absent_garden_succeeds(self, store, imports, driver_config, backup_provider):
        operation = _operation(store, imports, driver_config, backup_provider)
        operation.delete()
        assert operation.last_state.status(TASK_DELETE_BACKUP_BUCKET) == TaskStatus.SUCCEEDED
        assert store.writes == []

    def test_storage_class_kept_for_other_gardens(self, store, imports, driver_config, backup_provider):
        _operation(store, imports, driver_config, backup_provider).reconcile()
        store.create({
            'apiVersion': 'apps/v1',
            'kind': 'StatefulSet',
            'metadata': {'name': 'virtual-garden-etcd-main', 'namespace': 'other-garden',
                         'labels': etcd_labels('main')},
        })

        _operation(store, imports, driver_config, backup_provider).delete()

        assert store.exists(storage_class_ref(ETCD_DEFAULT_STORAGE_CLASS))

    def test_persistent_volume_claims(self, store, driver_config):
        imports = Imports.from_dict(sample_imports_dict(etcd={'handleETCDPersistentVolumes': True}))
        _operation(store, imports, driver_config).reconcile()
        for role in ('main', 'events'):
            ref = pvc_ref(NAMESPACE, role)
            store.create({'apiVersion': ref.api_version, 'kind': ref.kind,
                          'metadata': {'name': ref.name, 'namespace': ref.namespace}})

        _operation(store, imports, driver_config).delete()

        assert not store.exists(pvc_ref(NAMESPACE, 'main'))
        assert not store.exists(pvc_ref(NAMESPACE, 'events'))
