"""Shared pytest fixtures for virtual garden driver tests."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from api import Imports
from config import DriverConfig, PollSettings
from provider.fake import FakeBackupProvider, FakeObjectStore
from store.memory import InMemoryStore

LOAD_BALANCER_IP = '203.0.113.10'
NAMESPACE = 'garden-test'


def _assign_load_balancer(service: dict) -> None:
    """Stand-in for the cloud controller: give LoadBalancer services an address."""
    if (service.get('spec') or {}).get('type') == 'LoadBalancer':
        service['status'] = {'loadBalancer': {'ingress': [{'ip': LOAD_BALANCER_IP}]}}


def _establish_crd(crd: dict) -> None:
    """Stand-in for the API server: mark CRDs established."""
    crd['status'] = {'conditions': [{'type': 'Established', 'status': 'True'}]}


def sample_imports_dict(**overrides) -> dict:
    """Imports document for the fake vendor; top-level virtualGarden keys can be overridden."""
    virtual_garden = {
        'etcd': {
            'backup': {
                'infrastructureProvider': 'fake',
                'region': 'local',
                'bucketName': 'vg-backup',
                'credentialsRef': 'fake-backup',
            },
        },
        'kubeAPIServer': {
            'replicas': 2,
            'dnsAccessDomain': 'example.org',
        },
        'deleteNamespace': False,
    }
    virtual_garden.update(overrides)
    return {
        'hostingCluster': {
            'kubeconfig': '/tmp/kubeconfig',
            'namespace': NAMESPACE,
            'infrastructureProvider': 'fake',
        },
        'virtualGarden': virtual_garden,
        'credentials': {
            'fake-backup': {
                'type': 'fake',
                'data': {'accessKey': 'AKIAFAKE', 'secretKey': 'fake-secret'},
            },
        },
    }


@pytest.fixture(autouse=True)
def _fast_service_account_key(monkeypatch):
    """Generate smaller service account keys in tests."""
    monkeypatch.setattr('garden.kube_apiserver_secrets.SERVICE_ACCOUNT_KEY_BITS', 2048)


@pytest.fixture
def store():
    """InMemoryStore with load-balancer and CRD reactors."""
    s = InMemoryStore()
    s.add_reactor('Service', _assign_load_balancer)
    s.add_reactor('CustomResourceDefinition', _establish_crd)
    return s


@pytest.fixture
def object_store():
    return FakeObjectStore()


@pytest.fixture
def backup_provider(object_store):
    """Fake backup provider sharing object_store across operations."""
    return FakeBackupProvider('vg-backup', 'local', {'accessKey': 'AKIAFAKE'}, store=object_store)


@pytest.fixture
def driver_config():
    """DriverConfig with short polls."""
    fast = PollSettings(timeout=1.0, interval=0.01)
    return DriverConfig(
        max_workers=4,
        conflict_retries=3,
        crd_established=fast,
        load_balancer=fast,
        bucket_deletion=fast,
    )


@pytest.fixture
def imports():
    """Parsed sample imports with backups enabled."""
    return Imports.from_dict(sample_imports_dict())


@pytest.fixture
def imports_file(tmp_path):
    """Sample imports written to a YAML file."""
    import yaml
    path = tmp_path / 'imports.yaml'
    path.write_text(yaml.safe_dump(sample_imports_dict()))
    return path
