"""Pre-flight readiness checks for the hosting cluster.

Validates prerequisites before a reconcile or delete graph runs:
- Kubeconfig presence
- API server reachability and credentials
"""

from pathlib import Path
from typing import Optional, Union

import requests
import urllib3

from store.kube import KubernetesStore


def is_inline_kubeconfig(kubeconfig: str) -> bool:
    """Whether kubeconfig holds YAML content rather than a path."""
    return '\n' in kubeconfig or kubeconfig.lstrip().startswith('apiVersion')


def validate_kubeconfig(kubeconfig: Optional[str]) -> tuple[bool, str]:
    """Check that a kubeconfig is given inline or as a readable file.

    Args:
        kubeconfig: Inline kubeconfig YAML or a file path

    Returns:
        (success, message) tuple
    """
    if not kubeconfig:
        return False, "No hosting cluster kubeconfig given (hostingCluster.kubeconfig or --kubeconfig)"
    if is_inline_kubeconfig(kubeconfig):
        return True, "Inline kubeconfig"
    path = Path(kubeconfig).expanduser()
    if not path.is_file():
        return False, f"Kubeconfig file not found: {path}"
    return True, f"Kubeconfig file {path}"


def validate_api_server(
    server: str,
    headers: Optional[dict] = None,
    verify: Union[bool, str] = True,
    cert: Optional[tuple[str, str]] = None,
    timeout: float = 10,
) -> tuple[bool, str]:
    """Validate that the hosting cluster API answers with our credentials.

    Makes a lightweight GET on /version.

    Args:
        server: API server URL (e.g., https://api.seed.example.com)
        headers: Extra request headers, e.g. a bearer token
        verify: CA bundle path, or whether to verify TLS at all
        cert: (client certificate file, client key file)
        timeout: Request timeout in seconds

    Returns:
        (success, message) tuple
    """
    try:
        resp = requests.get(
            f"{server.rstrip('/')}/version",
            headers=headers or {},
            verify=verify,
            cert=cert,
            timeout=timeout,
        )

        if resp.status_code in (401, 403):
            return False, (
                f"Hosting cluster rejected the credentials ({resp.status_code}). "
                "Check the user of the kubeconfig."
            )

        if resp.status_code == 200:
            version = resp.json().get('gitVersion', 'unknown')
            return True, f"Hosting cluster API accessible (version {version})"

        return False, f"Unexpected API response: {resp.status_code} - {resp.text[:100]}"

    except requests.exceptions.SSLError as e:
        return False, f"TLS error connecting to {server}: {e}"
    except requests.exceptions.ConnectionError as e:
        return False, f"Cannot connect to {server}: {e}"
    except requests.exceptions.Timeout:
        return False, f"Timeout connecting to {server}"
    except ValueError as e:
        return False, f"Invalid /version response from {server}: {e}"


def request_args(configuration) -> dict:
    """Translate a kubernetes client Configuration into requests arguments."""
    headers = {}
    token = (configuration.api_key or {}).get('authorization')
    if token:
        prefix = (configuration.api_key_prefix or {}).get('authorization')
        headers['Authorization'] = f"{prefix} {token}" if prefix else token

    verify: Union[bool, str] = bool(configuration.verify_ssl)
    if verify and configuration.ssl_ca_cert:
        verify = configuration.ssl_ca_cert
    if not verify:
        urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    cert = None
    if configuration.cert_file and configuration.key_file:
        cert = (configuration.cert_file, configuration.key_file)
    return {'headers': headers, 'verify': verify, 'cert': cert}


def validate_hosting_cluster(store: KubernetesStore) -> tuple[bool, str]:
    """Combined hosting cluster validation for a connected store.

    Returns:
        (success, message) tuple
    """
    configuration = store.configuration
    if not configuration.host:
        return False, "Hosting cluster kubeconfig has no server"
    return validate_api_server(configuration.host, **request_args(configuration))
