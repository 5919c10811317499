#!/usr/bin/env python3
"""Tests for api.py - imports parsing and exports writing."""

import sys
from pathlib import Path

import pytest
import yaml

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from api import Exports, Imports, SNI, load_imports, write_exports
from conftest import sample_imports_dict
from errors import ValidationError


class TestImports:
    """Test the desired-state document."""

    def test_from_dict(self):
        imports = Imports.from_dict(sample_imports_dict())
        assert imports.hosting_cluster.namespace == 'garden-test'
        assert imports.hosting_cluster.infrastructure_provider == 'fake'
        assert imports.virtual_garden.kube_apiserver.replicas == 2
        assert imports.backup_enabled
        assert not imports.autoscaling_enabled
        assert imports.credentials['fake-backup'].type == 'fake'

    def test_defaults_for_missing_sections(self):
        imports = Imports.from_dict({'hostingCluster': {'namespace': 'ns', 'infrastructureProvider': 'aws'}})
        assert not imports.backup_enabled
        assert imports.virtual_garden.kube_apiserver.replicas == 1
        assert imports.virtual_garden.delete_namespace is False
        assert imports.images.etcd.startswith('quay.io/coreos/etcd')

    def test_nested_kube_apiserver_settings(self):
        imports = Imports.from_dict(sample_imports_dict(kubeAPIServer={
            'replicas': 3,
            'gardenerControlplane': {'validatingWebhookEnabled': True},
            'auditWebhookConfig': {'config': 'apiVersion: v1'},
            'horizontalPodAutoscaler': {'minReplicas': 2, 'maxReplicas': 6},
            'eventTTL': '1h',
        }))
        apiserver = imports.virtual_garden.kube_apiserver
        assert apiserver.validating_webhook_enabled
        assert not apiserver.mutating_webhook_enabled
        assert apiserver.audit_webhook_config == 'apiVersion: v1'
        assert apiserver.horizontal_pod_autoscaler.min_replicas == 2
        assert apiserver.event_ttl == '1h'
        assert imports.autoscaling_enabled

    def test_sni_single_hostname(self):
        sni = SNI.from_dict({'hostname': 'api.example.org', 'ttl': 120})
        assert sni.hostnames == ['api.example.org']
        assert sni.ttl == 120

    def test_wrong_section_type(self):
        with pytest.raises(ValidationError):
            Imports.from_dict({'hostingCluster': 'not a mapping'})

    def test_to_dict_round_trips(self):
        data = sample_imports_dict()
        imports = Imports.from_dict(data)
        assert Imports.from_dict(imports.to_dict()) == imports


class TestLoadImports:
    """Test reading imports files."""

    def test_load(self, imports_file):
        assert load_imports(imports_file).hosting_cluster.namespace == 'garden-test'

    def test_missing_file(self, tmp_path):
        with pytest.raises(ValidationError) as exc_info:
            load_imports(tmp_path / 'missing.yaml')
        assert 'not found' in str(exc_info.value)

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / 'bad.yaml'
        path.write_text('hostingCluster: [unclosed')
        with pytest.raises(ValidationError):
            load_imports(path)


class TestExports:
    """Test exports serialization."""

    def test_to_dict_skips_empty(self):
        exports = Exports(etcd_url='virtual-garden-etcd-main-client.ns.svc:2379')
        assert exports.to_dict() == {'etcdUrl': 'virtual-garden-etcd-main-client.ns.svc:2379'}

    def test_write_exports(self, tmp_path):
        path = write_exports(Exports(virtual_garden_endpoint='https://api.example.org:443'),
                             tmp_path / 'out' / 'exports.yaml')
        data = yaml.safe_load(path.read_text())
        assert data == {'virtualGardenEndpoint': 'https://api.example.org:443'}
        assert Exports.from_dict(data).virtual_garden_endpoint == 'https://api.example.org:443'
