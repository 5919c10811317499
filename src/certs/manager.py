"""Load-or-generate certificates and persist them as secrets."""

import functools
import logging
from typing import Iterable, Optional

from cryptography.exceptions import InvalidSignature

from certs.certificate import Certificate, CertificateSecretConfig, CertType, load_certificate
from certs.kubeconfig import DATA_KEY_KUBECONFIG, KubeconfigGenerator
from checksum import compute_checksum
from errors import DriverError
from reconciler import DEFAULT_CONFLICT_RETRIES, delete_resource, ensure_desired_state, get_optional
from store.base import ResourceStore
from store.objects import decode_secret_data, encode_secret_data, secret_ref

logger = logging.getLogger(__name__)

SECRET_TYPE_OPAQUE = 'Opaque'
SECRET_TYPE_TLS = 'kubernetes.io/tls'


def mutate_certificate_secret(data: dict[str, bytes], secret_type: str, secret: dict) -> dict:
    """Set a secret's type and replace its data with data."""
    secret['type'] = secret_type
    secret['data'] = encode_secret_data(data)
    return secret


def _issued_by(certificate: Certificate, ca: Certificate) -> bool:
    if certificate.issuer_common_name != ca.common_name:
        return False
    try:
        certificate.certificate.verify_directly_issued_by(ca.certificate)
    except (ValueError, TypeError, InvalidSignature):
        return False
    return True


class CertificateManager:
    """Keeps certificate secrets in one namespace converged.

    Generation happens at most once per secret name: as long as the secret
    exists its stored bytes are reused verbatim. The only exception is a
    leaf whose stored certificate was not issued by the CA the caller
    supplies (the CA itself was regenerated), which is reissued.
    """

    def __init__(self, store: ResourceStore, namespace: str, retries: int = DEFAULT_CONFLICT_RETRIES):
        self.store = store
        self.namespace = namespace
        self.retries = retries

    def load_or_generate(self, config: CertificateSecretConfig) -> Certificate:
        """Reconstruct the certificate from its secret, or generate it if absent.

        Raises:
            DriverError: If the stored secret holds unparseable data
        """
        secret = get_optional(self.store, secret_ref(config.name, self.namespace))
        if secret is None:
            logger.info(f"Generating certificate '{config.name}'")
            return config.generate()

        key_field, cert_field = config.data_keys
        data = decode_secret_data(secret)
        try:
            certificate = load_certificate(
                config.name, data.get(key_field, b''), data.get(cert_field, b''), config.signing_ca)
        except ValueError as e:
            raise DriverError(f"secret {self.namespace}/{config.name} holds an invalid certificate: {e}") from e

        if config.signing_ca is not None and not _issued_by(certificate, config.signing_ca):
            logger.warning(f"Certificate '{config.name}' was not issued by '{config.signing_ca.name}', reissuing")
            return config.generate()
        return certificate

    def ensure_certificate(
        self,
        config: CertificateSecretConfig,
        kubeconfig_generator: Optional[KubeconfigGenerator] = None,
    ) -> tuple[Certificate, str, Optional[bytes]]:
        """Load or generate a certificate and persist its secret.

        Args:
            config: Certificate request; leaves carry their signing CA
            kubeconfig_generator: If given, a kubeconfig for the certificate
                is added to the secret under the 'kubeconfig' key

        Returns:
            (certificate, checksum of the persisted secret data, kubeconfig or None)
        """
        certificate = self.load_or_generate(config)

        data = certificate.secret_data()
        kubeconfig = None
        if kubeconfig_generator is not None:
            kubeconfig = kubeconfig_generator.render(certificate)
            data[DATA_KEY_KUBECONFIG] = kubeconfig

        secret_type = SECRET_TYPE_OPAQUE
        if config.cert_type != CertType.CA and certificate.ca is not None:
            secret_type = SECRET_TYPE_TLS

        stored, result = ensure_desired_state(
            self.store,
            secret_ref(config.name, self.namespace),
            functools.partial(mutate_certificate_secret, data, secret_type),
            retries=self.retries,
        )
        logger.debug(f"Certificate secret '{config.name}' {result}")
        return certificate, compute_checksum(decode_secret_data(stored)), kubeconfig

    def delete_certificates(self, names: Iterable[str]) -> None:
        """Delete certificate secrets by name; absent ones are skipped."""
        for name in names:
            if delete_resource(self.store, secret_ref(name, self.namespace)):
                logger.info(f"Deleted certificate secret '{name}'")
