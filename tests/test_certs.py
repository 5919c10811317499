"""Tests for certs - generation, reload and kubeconfig rendering."""

import base64
import sys
from pathlib import Path

import pytest
import yaml

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from cryptography import x509
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from certs import CertificateManager, CertificateSecretConfig, CertType, KubeconfigGenerator
from certs.certificate import load_certificate
from errors import DriverError
from store.memory import InMemoryStore
from store.objects import decode_secret_data, secret_ref


def _ca(name='test-ca'):
    return CertificateSecretConfig(name=name, cert_type=CertType.CA, common_name=name).generate()


class TestCertificateSecretConfig:
    """Test certificate generation."""

    def test_ca_is_self_signed(self):
        ca = _ca()
        assert ca.is_ca
        assert ca.common_name == ca.issuer_common_name == 'test-ca'
        assert set(ca.secret_data()) == {'ca.crt', 'ca.key'}

    def test_leaf_signed_by_ca_with_sans(self):
        ca = _ca()
        leaf = CertificateSecretConfig(
            name='server',
            cert_type=CertType.SERVER,
            common_name='server',
            signing_ca=ca,
            dns_names=['api.example.org'],
            ip_addresses=['203.0.113.10'],
        ).generate()

        assert not leaf.is_ca
        assert leaf.issuer_common_name == 'test-ca'
        leaf.certificate.verify_directly_issued_by(ca.certificate)

        san = leaf.certificate.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        assert san.get_values_for_type(x509.DNSName) == ['api.example.org']
        assert [str(ip) for ip in san.get_values_for_type(x509.IPAddress)] == ['203.0.113.10']

        usage = leaf.certificate.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value
        assert list(usage) == [ExtendedKeyUsageOID.SERVER_AUTH]

        data = leaf.secret_data()
        assert data['ca.crt'] == ca.certificate_pem
        assert set(data) == {'ca.crt', 'tls.crt', 'tls.key'}

    def test_organization_in_subject(self):
        ca = _ca()
        client = CertificateSecretConfig(
            name='admin', cert_type=CertType.CLIENT, common_name='admin',
            signing_ca=ca, organization=['system:masters'],
        ).generate()
        orgs = client.certificate.subject.get_attributes_for_oid(NameOID.ORGANIZATION_NAME)
        assert [o.value for o in orgs] == ['system:masters']

    def test_leaf_requires_ca(self):
        with pytest.raises(ValueError):
            CertificateSecretConfig(name='x', cert_type=CertType.CLIENT, common_name='x')

    def test_ca_must_not_have_signer(self):
        with pytest.raises(ValueError):
            CertificateSecretConfig(name='x', cert_type=CertType.CA, common_name='x', signing_ca=_ca())

    def test_load_certificate_rejects_empty(self):
        with pytest.raises(ValueError):
            load_certificate('x', b'', b'')


class TestCertificateManager:
    """Test load-or-generate persistence."""

    def test_reload_is_byte_identical(self):
        store = InMemoryStore()
        manager = CertificateManager(store, 'ns')
        config = CertificateSecretConfig(name='ca', cert_type=CertType.CA, common_name='ca')

        first, checksum1, _ = manager.ensure_certificate(config)
        writes = len(store.writes)
        second, checksum2, _ = manager.ensure_certificate(config)

        assert second.certificate_pem == first.certificate_pem
        assert second.private_key_pem == first.private_key_pem
        assert checksum1 == checksum2
        assert len(store.writes) == writes

    def test_leaf_secret_is_tls_typed(self):
        store = InMemoryStore()
        manager = CertificateManager(store, 'ns')
        ca, _, _ = manager.ensure_certificate(
            CertificateSecretConfig(name='ca', cert_type=CertType.CA, common_name='ca'))
        manager.ensure_certificate(
            CertificateSecretConfig(name='client', cert_type=CertType.CLIENT, common_name='c', signing_ca=ca))

        assert store.get(secret_ref('ca', 'ns'))['type'] == 'Opaque'
        assert store.get(secret_ref('client', 'ns'))['type'] == 'kubernetes.io/tls'

    def test_leaf_reissued_when_ca_changes(self):
        store = InMemoryStore()
        manager = CertificateManager(store, 'ns')
        old_ca = _ca('old')
        new_ca = _ca('new')

        leaf, _, _ = manager.ensure_certificate(
            CertificateSecretConfig(name='client', cert_type=CertType.CLIENT, common_name='c', signing_ca=old_ca))
        reissued = manager.load_or_generate(
            CertificateSecretConfig(name='client', cert_type=CertType.CLIENT, common_name='c', signing_ca=new_ca))

        assert reissued.certificate_pem != leaf.certificate_pem
        assert reissued.issuer_common_name == 'new'

    def test_invalid_stored_data_raises(self):
        store = InMemoryStore()
        store.create({
            'apiVersion': 'v1', 'kind': 'Secret',
            'metadata': {'name': 'ca', 'namespace': 'ns'},
            'data': {'ca.crt': base64.b64encode(b'garbage').decode(), 'ca.key': base64.b64encode(b'x').decode()},
        })
        manager = CertificateManager(store, 'ns')
        with pytest.raises(DriverError):
            manager.load_or_generate(CertificateSecretConfig(name='ca', cert_type=CertType.CA, common_name='ca'))

    def test_kubeconfig_added_to_secret(self):
        store = InMemoryStore()
        manager = CertificateManager(store, 'ns')
        ca = _ca()
        _, _, kubeconfig = manager.ensure_certificate(
            CertificateSecretConfig(name='admin', cert_type=CertType.CLIENT, common_name='admin', signing_ca=ca),
            KubeconfigGenerator(user='admin', server='https://api.example.org:443'),
        )
        stored = decode_secret_data(store.get(secret_ref('admin', 'ns')))
        assert stored['kubeconfig'] == kubeconfig

    def test_delete_skips_absent(self):
        store = InMemoryStore()
        manager = CertificateManager(store, 'ns')
        manager.ensure_certificate(CertificateSecretConfig(name='ca', cert_type=CertType.CA, common_name='ca'))
        manager.delete_certificates(['ca', 'missing'])
        assert store.refs() == []


class TestKubeconfigGenerator:
    """Test kubeconfig rendering."""

    def test_render_trusts_ca_and_uses_client_cert(self):
        ca = _ca()
        client = CertificateSecretConfig(
            name='admin', cert_type=CertType.CLIENT, common_name='admin', signing_ca=ca).generate()

        config = yaml.safe_load(KubeconfigGenerator(user='admin', server='https://vg:443').render(client))

        assert config['current-context'] == 'virtual-garden'
        cluster = config['clusters'][0]['cluster']
        assert cluster['server'] == 'https://vg:443'
        assert base64.b64decode(cluster['certificate-authority-data']) == ca.certificate_pem
        user = config['users'][0]
        assert user['name'] == 'admin'
        assert base64.b64decode(user['user']['client-certificate-data']) == client.certificate_pem

    def test_render_is_deterministic(self):
        ca = _ca()
        client = CertificateSecretConfig(
            name='admin', cert_type=CertType.CLIENT, common_name='admin', signing_ca=ca).generate()
        generator = KubeconfigGenerator(user='admin', server='https://vg:443')
        assert generator.render(client) == generator.render(client)

    def test_requires_ca(self):
        with pytest.raises(ValueError):
            KubeconfigGenerator(user='admin', server='https://vg').build(_ca())
