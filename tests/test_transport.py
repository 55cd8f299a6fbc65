"""
Tests for TLS credential loading and the HTTP session.
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519

from skconfig.transport import (
    DEFAULT_TIMEOUT,
    TimeoutSession,
    TransportConfigError,
    create_session,
    load_credentials,
    load_device_key,
)


class TestLoadCredentials:
    """Tests for load_credentials."""

    def test_valid(self, sota_dir: Path):
        creds = load_credentials(sota_dir)
        assert creds.cert_file == sota_dir / "client.pem"
        assert creds.key_file == sota_dir / "pkey.pem"
        assert creds.ca_file == sota_dir / "root.crt"

    @pytest.mark.parametrize("name", ["client.pem", "pkey.pem", "root.crt"])
    def test_missing_file(self, sota_dir: Path, name: str):
        (sota_dir / name).unlink()
        with pytest.raises(TransportConfigError, match=name):
            load_credentials(sota_dir)

    def test_returns_loaded_key(self, sota_dir: Path, device_key):
        """The client key is parsed once and handed back with the paths."""
        creds = load_credentials(sota_dir)
        assert creds.private_key.private_numbers() == device_key.private_numbers()

    def test_key_does_not_match_certificate(self, sota_dir: Path):
        """A client key from a different keypair is a configuration error."""
        other = ec.generate_private_key(ec.SECP256R1())
        (sota_dir / "pkey.pem").write_bytes(
            other.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption(),
            )
        )
        with pytest.raises(TransportConfigError, match="does not match"):
            load_credentials(sota_dir)

    def test_non_ec_client_key(self, sota_dir: Path):
        """A TLS key that cannot decrypt bundles is rejected up front."""
        (sota_dir / "pkey.pem").write_bytes(
            ed25519.Ed25519PrivateKey.generate().private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption(),
            )
        )
        with pytest.raises(TransportConfigError, match="elliptic-curve"):
            load_credentials(sota_dir)

    @pytest.mark.parametrize("name", ["client.pem", "pkey.pem", "root.crt"])
    def test_garbage_file(self, sota_dir: Path, name: str):
        (sota_dir / name).write_text("-----BEGIN NONSENSE-----\n")
        with pytest.raises(TransportConfigError, match="Unable to parse"):
            load_credentials(sota_dir)


class TestLoadDeviceKey:
    """Tests for load_device_key."""

    def test_ec_key(self, sota_dir: Path, device_key):
        key = load_device_key(sota_dir / "pkey.pem")
        assert key.private_numbers() == device_key.private_numbers()

    def test_non_ec_key(self, tmp_path: Path):
        path = tmp_path / "pkey.pem"
        path.write_bytes(
            ed25519.Ed25519PrivateKey.generate().private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption(),
            )
        )
        with pytest.raises(TransportConfigError, match="elliptic-curve"):
            load_device_key(path)

    def test_missing(self, tmp_path: Path):
        with pytest.raises(TransportConfigError, match="Unable to read"):
            load_device_key(tmp_path / "pkey.pem")


class TestSession:
    """Tests for create_session / TimeoutSession."""

    def test_mtls_settings(self, sota_dir: Path):
        session = create_session(load_credentials(sota_dir))
        assert session.cert == (str(sota_dir / "client.pem"), str(sota_dir / "pkey.pem"))
        assert session.verify == str(sota_dir / "root.crt")
        assert session.timeout == DEFAULT_TIMEOUT == 30.0

    def test_default_timeout_applied(self):
        session = TimeoutSession(timeout=5)
        with patch("requests.Session.request") as request:
            session.get("https://example.test/config")
        assert request.call_args.kwargs["timeout"] == 5

    def test_explicit_timeout_wins(self):
        session = TimeoutSession(timeout=5)
        with patch("requests.Session.request") as request:
            session.get("https://example.test/config", timeout=1)
        assert request.call_args.kwargs["timeout"] == 1
