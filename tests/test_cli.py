#!/usr/bin/env python3
"""Tests for cli.py - verb dispatch, environment fallbacks and exit codes."""

import json
import sys
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

import cli
from conftest import sample_imports_dict
from errors import DriverError, TransportError


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in (cli.ENV_OPERATION, cli.ENV_IMPORTS_PATH, cli.ENV_EXPORTS_PATH):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(cli, '_install_signal_handlers', lambda cancel: None)


@pytest.fixture
def connected(store):
    """Patch the hosting cluster connection to use the in-memory store."""
    with patch.object(cli, '_connect', return_value=store) as mock_connect:
        yield mock_connect


class TestValidate:
    """Test the validate verb."""

    def test_validate_from_environment(self, imports_file, monkeypatch):
        monkeypatch.setenv('OPERATION', 'validate')
        monkeypatch.setenv('IMPORTS_PATH', str(imports_file))
        assert cli.run([]) == 0

    def test_validate_does_not_need_kubeconfig(self, tmp_path):
        data = sample_imports_dict()
        del data['hostingCluster']['kubeconfig']
        path = tmp_path / 'imports.yaml'
        path.write_text(yaml.safe_dump(data))
        assert cli.run(['validate', '--imports', str(path)]) == 0

    def test_invalid_imports(self, tmp_path, capsys):
        path = tmp_path / 'imports.yaml'
        path.write_text(yaml.safe_dump(sample_imports_dict(etcd={'storageClassName': ''})))
        assert cli.run(['validate', '-i', str(path)]) == 1
        assert 'storageClassName' in capsys.readouterr().err

    def test_json_output(self, imports_file, capsys):
        assert cli.run(['validate', '-i', str(imports_file), '--json-output']) == 0
        output = json.loads(capsys.readouterr().out)
        assert output['verb'] == 'validate'
        assert output['success'] is True


class TestArguments:
    """Test argument and environment handling."""

    def test_unknown_operation(self, imports_file, monkeypatch):
        monkeypatch.setenv('OPERATION', 'upgrade')
        assert cli.run(['-i', str(imports_file)]) == 1

    def test_missing_operation(self, imports_file):
        assert cli.run(['-i', str(imports_file)]) == 1

    def test_missing_imports(self):
        assert cli.run(['validate']) == 1

    def test_imports_file_not_found(self, tmp_path):
        assert cli.run(['validate', '-i', str(tmp_path / 'missing.yaml')]) == 1

    def test_bad_settings(self, imports_file, tmp_path, capsys):
        settings = tmp_path / 'settings.yaml'
        settings.write_text('max_workers: 0\n')
        assert cli.run(['validate', '-i', str(imports_file), '--settings', str(settings)]) == 1
        assert 'Error loading settings' in capsys.readouterr().err

    def test_non_numeric_settings(self, imports_file, tmp_path, capsys):
        settings = tmp_path / 'settings.yaml'
        settings.write_text('max_workers: two\n')
        assert cli.run(['validate', '-i', str(imports_file), '--settings', str(settings)]) == 1
        err = capsys.readouterr().err
        assert 'Error loading settings' in err
        assert 'max_workers' in err


class TestReconcileAndDelete:
    """Test the cluster-touching verbs against the in-memory store."""

    def test_reconcile_writes_exports(self, imports_file, tmp_path, connected, monkeypatch):
        exports_path = tmp_path / 'exports.yaml'
        monkeypatch.setenv('EXPORTS_PATH', str(exports_path))

        assert cli.run(['reconcile', '-i', str(imports_file), '--workers', '2']) == 0

        connected.assert_called_once_with('/tmp/kubeconfig', False)
        exports = yaml.safe_load(exports_path.read_text())
        assert exports['etcdUrl'] == 'virtual-garden-etcd-main-client.garden-test.svc:2379'
        assert exports['virtualGardenEndpoint'].startswith('https://')

    def test_kubeconfig_flag_overrides_imports(self, imports_file, connected):
        assert cli.run(['delete', '-i', str(imports_file), '--kubeconfig', '/tmp/other',
                        '--skip-preflight']) == 0
        connected.assert_called_once_with('/tmp/other', True)

    def test_task_failure_exits_nonzero(self, imports_file, store, connected, capsys):
        store.inject_error('create', 'StatefulSet', TransportError('unavailable'), times=10)
        assert cli.run(['reconcile', '-i', str(imports_file), '--json-output']) == 1
        output = json.loads(capsys.readouterr().out)
        assert output['success'] is False
        statuses = {t['id']: t['status'] for t in output['graph']['tasks']}
        assert statuses['deploy-etcd'] == 'failed'
        assert statuses['deploy-kube-apiserver'] == 'not_run'

    def test_unreachable_cluster(self, imports_file):
        with patch.object(cli, '_connect', side_effect=DriverError('Cannot connect')):
            assert cli.run(['reconcile', '-i', str(imports_file)]) == 1
