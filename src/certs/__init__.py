"""Certificate authority and leaf certificate lifecycle."""

from certs.certificate import Certificate, CertificateSecretConfig, CertType
from certs.kubeconfig import KubeconfigGenerator
from certs.manager import CertificateManager

__all__ = [
    'Certificate',
    'CertificateManager',
    'CertificateSecretConfig',
    'CertType',
    'KubeconfigGenerator',
]
