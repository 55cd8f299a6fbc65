"""Shared test fixtures for skconfig."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID


class FakeResponse:
    """Just enough of ``requests.Response`` for the check-in path."""

    def __init__(self, status_code: int, body: bytes = b"", headers: Optional[dict] = None):
        self.status_code = status_code
        self.content = body
        self.headers = headers or {}
        self.closed = False

    @property
    def text(self) -> str:
        return self.content.decode("utf-8")

    def iter_content(self, chunk_size: int = 1):
        for i in range(0, len(self.content), chunk_size):
            yield self.content[i:i + chunk_size]

    def close(self) -> None:
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class FakeSession:
    """Records every GET and replays queued responses in order."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls: list[dict] = []

    def queue(self, response) -> None:
        self.responses.append(response)

    def get(self, url, headers=None, **kwargs):
        self.calls.append({"url": url, "headers": dict(headers or {}), **kwargs})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _pem_key(key: ec.EllipticCurvePrivateKey) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def _self_signed(key: ec.EllipticCurvePrivateKey, common_name: str) -> x509.Certificate:
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.now(timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=1))
        .sign(key, hashes.SHA256())
    )


@pytest.fixture
def device_key() -> ec.EllipticCurvePrivateKey:
    """A fresh P-256 device key."""
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture
def sota_dir(tmp_path: Path, device_key: ec.EllipticCurvePrivateKey) -> Path:
    """A provisioned sota directory: client.pem, pkey.pem, root.crt."""
    sota = tmp_path / "sota"
    sota.mkdir()
    ca_key = ec.generate_private_key(ec.SECP256R1())

    (sota / "pkey.pem").write_bytes(_pem_key(device_key))
    (sota / "client.pem").write_bytes(
        _self_signed(device_key, "device-1").public_bytes(serialization.Encoding.PEM)
    )
    (sota / "root.crt").write_bytes(
        _self_signed(ca_key, "root-ca").public_bytes(serialization.Encoding.PEM)
    )
    return sota


@pytest.fixture
def secrets_dir(tmp_path: Path) -> Path:
    """An existing, empty secrets directory."""
    path = tmp_path / "secrets"
    path.mkdir()
    return path


@pytest.fixture
def make_response():
    """Factory for fake HTTP responses."""
    return FakeResponse


@pytest.fixture
def make_session():
    """Factory for fake HTTP sessions replaying queued responses."""
    return FakeSession
