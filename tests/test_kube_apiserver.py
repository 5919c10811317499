#!/usr/bin/env python3
"""Tests for the kube-apiserver building blocks (command line, configs, SANs, service)."""

import sys
from pathlib import Path

import yaml

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from api import SNI
from garden.constants import DNS_ANNOTATION_NAMES, DNS_ANNOTATION_TTL, SERVICE_CLUSTER_IP
from garden.kube_apiserver_certificates import server_dns_names, server_ip_addresses
from garden.kube_apiserver_configmaps import admission_configuration
from garden.kube_apiserver_deployments import APIServerParams, apiserver_command, mutate_apiserver_deployment
from garden.kube_apiserver_service import mutate_kube_apiserver_service, reconcile_service_ports


def _params(**overrides) -> APIServerParams:
    values = dict(
        namespace='garden-test',
        image='k8s.gcr.io/kube-apiserver:v1.18.8',
        replicas=2,
        scaled_externally=False,
        priority_class_name='garden-controlplane',
        basic_auth_password='secret',
    )
    values.update(overrides)
    return APIServerParams(**values)


def _flag(command: list[str], name: str):
    prefix = f'--{name}='
    for arg in command:
        if arg.startswith(prefix):
            return arg[len(prefix):]
    return None


class TestAPIServerCommand:
    """Test the kube-apiserver command line."""

    def test_etcd_servers_in_target_namespace(self):
        command = apiserver_command(_params())
        assert _flag(command, 'etcd-servers') == 'https://virtual-garden-etcd-main-client.garden-test.svc:2379'
        overrides = _flag(command, 'etcd-servers-overrides')
        assert '/events#https://virtual-garden-etcd-events-client.garden-test.svc:2379' in overrides

    def test_defaults(self):
        command = apiserver_command(_params())
        assert _flag(command, 'event-ttl') == '24h'
        assert _flag(command, 'oidc-issuer-url') is None
        assert _flag(command, 'admission-control-config-file') is None
        assert _flag(command, 'audit-webhook-config-file') is None
        assert _flag(command, 'tls-sni-cert-key') is None
        assert _flag(command, 'audit-policy-file') is not None

    def test_optional_flags(self):
        command = apiserver_command(_params(
            event_ttl='1h',
            oidc_issuer_url='https://issuer.example.org',
            webhooks_enabled=True,
            audit_webhook_enabled=True,
            sni_hostnames=('api.example.org', 'garden.example.org'),
            sni_secret_name='sni-tls',
        ))
        assert _flag(command, 'event-ttl') == '1h'
        assert _flag(command, 'oidc-issuer-url') == 'https://issuer.example.org'
        assert _flag(command, 'oidc-client-id') == 'kube-kubectl'
        assert _flag(command, 'admission-control-config-file').endswith('/configuration.yaml')
        assert _flag(command, 'audit-webhook-config-file').endswith('/audit-webhook-config.yaml')
        assert _flag(command, 'tls-sni-cert-key').endswith(':api.example.org,garden.example.org')


class TestDeployment:
    """Test the deployment mutate function."""

    def test_replicas_from_params(self):
        deployment = mutate_apiserver_deployment(_params(), {'metadata': {'name': 'x'}})
        assert deployment['spec']['replicas'] == 2

    def test_replicas_kept_when_scaled_externally(self):
        existing = {'metadata': {'name': 'x'}, 'spec': {'replicas': 5}}
        deployment = mutate_apiserver_deployment(_params(scaled_externally=True), existing)
        assert deployment['spec']['replicas'] == 5

    def test_checksums_on_pod_template(self):
        annotations = {'checksum/secret-kube-apiserver-ca': 'abc'}
        deployment = mutate_apiserver_deployment(_params(annotations=annotations), {'metadata': {'name': 'x'}})
        assert deployment['spec']['template']['metadata']['annotations'] == annotations

    def test_probes_carry_basic_auth(self):
        deployment = mutate_apiserver_deployment(_params(), {'metadata': {'name': 'x'}})
        container = deployment['spec']['template']['spec']['containers'][0]
        headers = container['livenessProbe']['httpGet']['httpHeaders']
        assert headers[0]['name'] == 'Authorization'
        assert headers[0]['value'].startswith('Basic ')


class TestAdmissionConfiguration:
    """Test the admission plugin configuration document."""

    def test_both_webhooks(self):
        config = yaml.safe_load(admission_configuration(True, True))
        assert config['kind'] == 'AdmissionConfiguration'
        assert [p['name'] for p in config['plugins']] == [
            'ValidatingAdmissionWebhook', 'MutatingAdmissionWebhook']

    def test_mutating_only(self):
        config = yaml.safe_load(admission_configuration(False, True))
        assert len(config['plugins']) == 1
        assert config['plugins'][0]['configuration']['kubeConfigFile'].endswith('/mutating-webhook')


class TestServerCertificateNames:
    """Test subject alternative names of the serving certificate."""

    def test_ip_load_balancer(self):
        names = server_dns_names('garden-test', '203.0.113.10', 'example.org')
        assert '203.0.113.10' not in names
        assert 'api.example.org' in names
        assert 'virtual-garden-kube-apiserver.garden-test.svc.cluster.local' in names
        assert server_ip_addresses('203.0.113.10') == ['127.0.0.1', SERVICE_CLUSTER_IP, '203.0.113.10']

    def test_hostname_load_balancer(self):
        names = server_dns_names('garden-test', 'elb.amazonaws.com', '')
        assert 'elb.amazonaws.com' in names
        assert not any(n.startswith('api.') for n in names)
        assert server_ip_addresses('elb.amazonaws.com') == ['127.0.0.1', SERVICE_CLUSTER_IP]


class TestService:
    """Test the load balancer service mutate function."""

    def test_node_port_preserved(self):
        existing = [{'name': 'kube-apiserver', 'port': 443, 'nodePort': 31443}]
        ports = reconcile_service_ports(existing, [{'name': 'kube-apiserver', 'port': 443}])
        assert ports == [{'name': 'kube-apiserver', 'port': 443, 'nodePort': 31443}]

    def test_dns_annotations_follow_sni(self):
        service = {'metadata': {'name': 'x'}}
        sni = SNI(hostnames=['api.example.org'], ttl=120)
        service = mutate_kube_apiserver_service(sni, service)
        annotations = service['metadata']['annotations']
        assert annotations[DNS_ANNOTATION_NAMES] == 'api.example.org'
        assert annotations[DNS_ANNOTATION_TTL] == '120'
        assert service['spec']['type'] == 'LoadBalancer'

        service = mutate_kube_apiserver_service(None, service)
        assert DNS_ANNOTATION_NAMES not in service['metadata'].get('annotations', {})
