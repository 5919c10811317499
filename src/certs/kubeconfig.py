"""Client kubeconfigs derived from leaf certificates."""

import base64
from dataclasses import dataclass

import yaml

from certs.certificate import Certificate

DATA_KEY_KUBECONFIG = 'kubeconfig'
CONTEXT_NAME = 'virtual-garden'


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode('ascii')


@dataclass(frozen=True)
class KubeconfigGenerator:
    """Renders a single-context kubeconfig for a client certificate.

    Attributes:
        user: Name of the user entry
        server: API server URL the kubeconfig points at
    """
    user: str
    server: str

    def build(self, certificate: Certificate) -> dict:
        """Kubeconfig trusting the certificate's CA and authenticating with the certificate.

        Raises:
            ValueError: If the certificate has no signing CA
        """
        if certificate.ca is None:
            raise ValueError(f"certificate '{certificate.name}' has no CA to trust")
        return {
            'apiVersion': 'v1',
            'kind': 'Config',
            'current-context': CONTEXT_NAME,
            'preferences': {},
            'clusters': [{
                'name': CONTEXT_NAME,
                'cluster': {
                    'server': self.server,
                    'certificate-authority-data': _b64(certificate.ca.certificate_pem),
                },
            }],
            'contexts': [{
                'name': CONTEXT_NAME,
                'context': {'cluster': CONTEXT_NAME, 'user': self.user},
            }],
            'users': [{
                'name': self.user,
                'user': {
                    'client-certificate-data': _b64(certificate.certificate_pem),
                    'client-key-data': _b64(certificate.private_key_pem),
                },
            }],
        }

    def render(self, certificate: Certificate) -> bytes:
        """Kubeconfig as YAML bytes."""
        return yaml.safe_dump(self.build(certificate), default_flow_style=False, sort_keys=False).encode('utf-8')
