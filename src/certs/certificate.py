"""X.509 certificates and their declarative requests.

A CertificateSecretConfig describes what should exist (type, subject,
SANs, signing CA). generate() produces a fresh key pair and certificate;
load_certificate() rebuilds a Certificate from stored PEM bytes without
touching them, so a reloaded certificate is byte-identical to the stored one.
"""

import datetime
import ipaddress
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

DATA_KEY_CA_CERTIFICATE = 'ca.crt'
DATA_KEY_CA_PRIVATE_KEY = 'ca.key'
DATA_KEY_CERTIFICATE = 'tls.crt'
DATA_KEY_PRIVATE_KEY = 'tls.key'

DEFAULT_KEY_BITS = 2048
DEFAULT_VALIDITY = datetime.timedelta(days=3650)


class CertType(str, Enum):
    """Kind of certificate to issue."""
    CA = 'ca'
    SERVER = 'server'
    CLIENT = 'client'
    SERVER_CLIENT = 'serverclient'


_EXTENDED_USAGES = {
    CertType.SERVER: [ExtendedKeyUsageOID.SERVER_AUTH],
    CertType.CLIENT: [ExtendedKeyUsageOID.CLIENT_AUTH],
    CertType.SERVER_CLIENT: [ExtendedKeyUsageOID.SERVER_AUTH, ExtendedKeyUsageOID.CLIENT_AUTH],
}


@dataclass
class Certificate:
    """A key pair and certificate, optionally linked to its signing CA.

    The PEM bytes are the source of truth; the parsed forms are derived
    from them once at construction.

    Attributes:
        name: Logical name (the secret it is stored in)
        private_key_pem: PEM-encoded RSA private key
        certificate_pem: PEM-encoded certificate
        ca: Signing CA, None for self-signed roots
    """
    name: str
    private_key_pem: bytes
    certificate_pem: bytes
    ca: Optional['Certificate'] = None
    certificate: x509.Certificate = field(init=False, repr=False, compare=False)
    private_key: rsa.RSAPrivateKey = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.certificate = x509.load_pem_x509_certificate(self.certificate_pem)
        self.private_key = serialization.load_pem_private_key(self.private_key_pem, password=None)

    @property
    def common_name(self) -> str:
        return _common_name(self.certificate.subject)

    @property
    def issuer_common_name(self) -> str:
        return _common_name(self.certificate.issuer)

    @property
    def is_ca(self) -> bool:
        try:
            constraints = self.certificate.extensions.get_extension_for_class(x509.BasicConstraints)
        except x509.ExtensionNotFound:
            return False
        return constraints.value.ca

    def secret_data(self) -> dict[str, bytes]:
        """Data section of the secret holding this certificate.

        CAs are stored under ca.key/ca.crt. Leaves are stored under
        tls.key/tls.crt plus their CA's certificate as ca.crt.
        """
        if self.is_ca:
            return {
                DATA_KEY_CA_PRIVATE_KEY: self.private_key_pem,
                DATA_KEY_CA_CERTIFICATE: self.certificate_pem,
            }
        data = {
            DATA_KEY_PRIVATE_KEY: self.private_key_pem,
            DATA_KEY_CERTIFICATE: self.certificate_pem,
        }
        if self.ca is not None:
            data[DATA_KEY_CA_CERTIFICATE] = self.ca.certificate_pem
        return data


def _common_name(name: x509.Name) -> str:
    attrs = name.get_attributes_for_oid(NameOID.COMMON_NAME)
    return attrs[0].value if attrs else ''


@dataclass
class CertificateSecretConfig:
    """Declarative certificate request.

    Attributes:
        name: Name of the secret the certificate is stored in
        cert_type: CA, SERVER, CLIENT or SERVER_CLIENT
        common_name: Subject common name
        signing_ca: CA that signs this certificate (required unless cert_type is CA)
        organization: Subject organizations (e.g. system:masters)
        dns_names: DNS subject alternative names
        ip_addresses: IP subject alternative names
    """
    name: str
    cert_type: CertType
    common_name: str
    signing_ca: Optional[Certificate] = None
    organization: list[str] = field(default_factory=list)
    dns_names: list[str] = field(default_factory=list)
    ip_addresses: list[str] = field(default_factory=list)
    key_bits: int = DEFAULT_KEY_BITS
    validity: datetime.timedelta = DEFAULT_VALIDITY

    def __post_init__(self) -> None:
        if self.cert_type == CertType.CA and self.signing_ca is not None:
            raise ValueError(f"CA certificate '{self.name}' must be self-signed")
        if self.cert_type != CertType.CA and self.signing_ca is None:
            raise ValueError(f"certificate '{self.name}' requires a signing CA")

    @property
    def data_keys(self) -> tuple[str, str]:
        """(private key, certificate) data keys for this type's secret."""
        if self.cert_type == CertType.CA:
            return DATA_KEY_CA_PRIVATE_KEY, DATA_KEY_CA_CERTIFICATE
        return DATA_KEY_PRIVATE_KEY, DATA_KEY_CERTIFICATE

    def _subject(self) -> x509.Name:
        attrs = [x509.NameAttribute(NameOID.COMMON_NAME, self.common_name)]
        attrs.extend(x509.NameAttribute(NameOID.ORGANIZATION_NAME, o) for o in self.organization)
        return x509.Name(attrs)

    def _alt_names(self) -> list[x509.GeneralName]:
        names: list[x509.GeneralName] = [x509.DNSName(d) for d in self.dns_names]
        names.extend(x509.IPAddress(ipaddress.ip_address(ip)) for ip in self.ip_addresses)
        return names

    def generate(self) -> Certificate:
        """Create a fresh key pair and a certificate for it."""
        key = rsa.generate_private_key(public_exponent=65537, key_size=self.key_bits)
        subject = self._subject()
        now = datetime.datetime.now(datetime.timezone.utc)

        builder = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - datetime.timedelta(minutes=1))
            .not_valid_after(now + self.validity)
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
        )

        if self.cert_type == CertType.CA:
            signing_key = key
            builder = (
                builder
                .issuer_name(subject)
                .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
                .add_extension(_key_usage(ca=True), critical=True)
            )
        else:
            ca = self.signing_ca
            signing_key = ca.private_key
            builder = (
                builder
                .issuer_name(ca.certificate.subject)
                .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
                .add_extension(_key_usage(ca=False), critical=True)
                .add_extension(x509.ExtendedKeyUsage(_EXTENDED_USAGES[self.cert_type]), critical=False)
                .add_extension(
                    x509.AuthorityKeyIdentifier.from_issuer_public_key(ca.private_key.public_key()),
                    critical=False)
            )
            alt_names = self._alt_names()
            if alt_names:
                builder = builder.add_extension(x509.SubjectAlternativeName(alt_names), critical=False)

        cert = builder.sign(signing_key, hashes.SHA256())
        return Certificate(
            name=self.name,
            private_key_pem=key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.TraditionalOpenSSL,
                encryption_algorithm=serialization.NoEncryption(),
            ),
            certificate_pem=cert.public_bytes(serialization.Encoding.PEM),
            ca=self.signing_ca,
        )


def _key_usage(ca: bool) -> x509.KeyUsage:
    return x509.KeyUsage(
        digital_signature=True,
        content_commitment=False,
        key_encipherment=not ca,
        data_encipherment=False,
        key_agreement=False,
        key_cert_sign=ca,
        crl_sign=ca,
        encipher_only=False,
        decipher_only=False,
    )


def load_certificate(
    name: str,
    private_key_pem: bytes,
    certificate_pem: bytes,
    ca: Optional[Certificate] = None,
) -> Certificate:
    """Rebuild a Certificate from stored bytes and attach its signing CA.

    Raises:
        ValueError: If either PEM block is missing or cannot be parsed
    """
    if not private_key_pem or not certificate_pem:
        raise ValueError(f"certificate '{name}' is missing key or certificate data")
    return Certificate(
        name=name,
        private_key_pem=private_key_pem,
        certificate_pem=certificate_pem,
        ca=ca,
    )
