"""
Mutual-TLS transport and device key loading.

The device authenticates to the config server with the same
certificate/key pair it uses for OTA updates, and trusts only the
deployment's root certificate. All three artefacts live in the
sota directory:

    <sota_dir>/client.pem   # client certificate
    <sota_dir>/pkey.pem     # client private key (also the ECIES key)
    <sota_dir>/root.crt     # deployment CA

Anything missing or unparseable here is a configuration error; the
agent cannot do anything useful without it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import requests
from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from . import SKConfigError

logger = logging.getLogger("skconfig.transport")

CLIENT_CERT = "client.pem"
CLIENT_KEY = "pkey.pem"
CA_CERT = "root.crt"
DEFAULT_TIMEOUT = 30.0


class TransportConfigError(SKConfigError):
    """Raised when TLS credentials or the device key cannot be loaded."""


@dataclass(frozen=True)
class TLSCredentials:
    """Validated client certificate, key, and CA bundle.

    Attributes:
        cert_file: Client certificate path.
        key_file: Client private key path.
        ca_file: Deployment CA path.
        private_key: The parsed client key; also the device's ECIES key.
    """

    cert_file: Path
    key_file: Path
    ca_file: Path
    private_key: ec.EllipticCurvePrivateKey = field(repr=False, compare=False)


def _read(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as exc:
        raise TransportConfigError(f"Unable to read {path}: {exc}") from exc


def load_device_key(path: Path) -> ec.EllipticCurvePrivateKey:
    """Load the device's EC private key from a PEM file.

    Args:
        path: PEM file holding a PKCS8 or SEC1 EC private key.

    Returns:
        The private key.

    Raises:
        TransportConfigError: Unreadable, unparseable, or not an EC key.
    """
    path = Path(path)
    try:
        key = serialization.load_pem_private_key(_read(path), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise TransportConfigError(f"Unable to parse private key({path}): {exc}") from exc
    if not isinstance(key, ec.EllipticCurvePrivateKey):
        raise TransportConfigError(f"Private key({path}) is not an elliptic-curve key")
    return key


def load_credentials(sota_dir: Path) -> TLSCredentials:
    """Locate and validate the client TLS material in *sota_dir*.

    Args:
        sota_dir: Directory holding client.pem, pkey.pem, and root.crt.

    Returns:
        TLSCredentials with the three validated paths and the client key.

    Raises:
        TransportConfigError: If any artefact is missing or invalid, or
            the client key does not belong to the client certificate.
    """
    sota_dir = Path(sota_dir)
    cert_file = sota_dir / CLIENT_CERT
    key_file = sota_dir / CLIENT_KEY
    ca_file = sota_dir / CA_CERT

    certs = {}
    for cert_path in (cert_file, ca_file):
        try:
            certs[cert_path] = x509.load_pem_x509_certificate(_read(cert_path))
        except ValueError as exc:
            raise TransportConfigError(
                f"Unable to parse certificate({cert_path}): {exc}"
            ) from exc

    private_key = load_device_key(key_file)
    cert_public = certs[cert_file].public_key()
    if not isinstance(cert_public, ec.EllipticCurvePublicKey) or (
        cert_public.public_numbers() != private_key.public_key().public_numbers()
    ):
        raise TransportConfigError(
            f"Private key({key_file}) does not match certificate({cert_file})"
        )

    return TLSCredentials(
        cert_file=cert_file,
        key_file=key_file,
        ca_file=ca_file,
        private_key=private_key,
    )


class TimeoutSession(requests.Session):
    """A requests session that applies a default timeout to every call."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT):
        super().__init__()
        self.timeout = timeout

    def request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        kwargs.setdefault("timeout", self.timeout)
        return super().request(method, url, **kwargs)


def create_session(
    creds: TLSCredentials, timeout: float = DEFAULT_TIMEOUT
) -> requests.Session:
    """Build the HTTP session used for every request to the config server.

    Args:
        creds: Validated TLS credentials.
        timeout: Per-request timeout in seconds.

    Returns:
        A session presenting the client certificate and trusting only
        the deployment CA.
    """
    session = TimeoutSession(timeout=timeout)
    session.cert = (str(creds.cert_file), str(creds.key_file))
    session.verify = str(creds.ca_file)
    logger.debug(
        "Created mTLS session (cert=%s, ca=%s, timeout=%ss)",
        creds.cert_file, creds.ca_file, timeout,
    )
    return session
