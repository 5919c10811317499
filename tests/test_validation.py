#!/usr/bin/env python3
"""Tests for validation.py - semantic checks of the imports."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from api import Imports
from conftest import sample_imports_dict
from errors import ValidationError
from validation import ensure_valid, validate_imports


def _imports(**overrides):
    return Imports.from_dict(sample_imports_dict(**overrides))


class TestValidateImports:
    """Test field-path error messages."""

    def test_sample_is_valid(self):
        assert validate_imports(_imports()) == []

    def test_missing_kubeconfig(self):
        imports = _imports()
        imports.hosting_cluster.kubeconfig = None
        errors = validate_imports(imports)
        assert any(e.startswith('hostingCluster.kubeconfig') for e in errors)
        assert validate_imports(imports, require_kubeconfig=False) == []

    def test_unsupported_hosting_provider(self):
        imports = _imports()
        imports.hosting_cluster.infrastructure_provider = 'azure'
        errors = validate_imports(imports)
        assert any("unsupported value 'azure'" in e for e in errors)

    def test_empty_storage_class(self):
        errors = validate_imports(_imports(etcd={'storageClassName': ''}))
        assert errors == [
            'virtualGarden.etcd.storageClassName: storage class name cannot be empty if key is provided']

    def test_backup_fields_required(self):
        errors = validate_imports(_imports(etcd={'backup': {'infrastructureProvider': 'fake'}}))
        paths = sorted(e.split(':', 1)[0] for e in errors)
        assert paths == [
            'virtualGarden.etcd.backup.bucketName',
            'virtualGarden.etcd.backup.credentialsRef',
            'virtualGarden.etcd.backup.region',
        ]

    def test_backup_credentials_not_found(self):
        errors = validate_imports(_imports(etcd={'backup': {
            'infrastructureProvider': 'fake', 'region': 'r', 'bucketName': 'b', 'credentialsRef': 'nope'}}))
        assert errors == ["virtualGarden.etcd.backup.credentialsRef: 'nope' was not found in .credentials"]

    def test_backup_credentials_wrong_type(self):
        errors = validate_imports(_imports(etcd={'backup': {
            'infrastructureProvider': 'aws', 'region': 'r', 'bucketName': 'b', 'credentialsRef': 'fake-backup'}}))
        assert len(errors) == 1
        assert "not of type 'aws' but 'fake'" in errors[0]

    def test_gcp_requires_dns_access_domain(self):
        imports = _imports(kubeAPIServer={'replicas': 1})
        imports.hosting_cluster.infrastructure_provider = 'gcp'
        errors = validate_imports(imports)
        assert any(e.startswith('virtualGarden.kubeAPIServer.dnsAccessDomain') for e in errors)

    def test_sni_ttl_bounds(self):
        errors = validate_imports(_imports(kubeAPIServer={'sni': {'hostnames': ['a.example.org'], 'ttl': 5}}))
        assert any('ttl must be between 60 and 600' in e for e in errors)

    def test_hpa_max_below_min(self):
        errors = validate_imports(_imports(kubeAPIServer={
            'horizontalPodAutoscaler': {'minReplicas': 4, 'maxReplicas': 2}}))
        assert any('maxReplicas' in e for e in errors)

    def test_empty_credentials(self):
        imports = _imports()
        imports.credentials['fake-backup'].data = {}
        errors = validate_imports(imports)
        assert errors == ['credentials.fake-backup.data: at least one key-value pair must be given']


class TestEnsureValid:
    """Test the raising wrapper."""

    def test_returns_imports(self):
        imports = _imports()
        assert ensure_valid(imports) is imports

    def test_raises_with_all_errors(self):
        imports = _imports(etcd={'storageClassName': ''})
        imports.hosting_cluster.namespace = ''
        with pytest.raises(ValidationError) as exc_info:
            ensure_valid(imports)
        assert len(exc_info.value.errors) == 2
