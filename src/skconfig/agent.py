"""
The config agent -- check in, persist, decrypt, extract.

    agent = Agent.from_settings(AgentSettings.load())
    outcome = agent.check_in()   # GET -> config.encrypted -> secrets/*

The encrypted bundle's own mtime is the cache key: it is set to the
server's ``Date`` on every successful download and sent back as
``If-Modified-Since`` on the next check-in, so an unchanged bundle is
never downloaded, decrypted, or extracted twice.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from email.utils import format_datetime, parsedate_to_datetime
from pathlib import Path
from typing import Optional

import requests
from cryptography.hazmat.primitives.asymmetric import ec

from . import SKConfigError
from .atomic import CHUNK_SIZE, atomic_write_stream
from .bundle import decrypt
from .extract import ExtractReport, extract
from .models import AgentSettings, SyncOutcome
from .transport import (
    CLIENT_KEY,
    create_session,
    load_credentials,
    load_device_key,
)

logger = logging.getLogger("skconfig.agent")

ENCRYPTED_CONFIG = "config.encrypted"


class CheckInError(SKConfigError):
    """Raised when the config server cannot be reached or refuses us.

    Attributes:
        url: The endpoint that was called.
        status_code: HTTP status, or None for network failures.
        body: Response body text, if any.
    """

    def __init__(self, url: str, status_code: Optional[int] = None, body: str = ""):
        self.url = url
        self.status_code = status_code
        self.body = body
        if status_code is None:
            msg = f"Unable to get: {url} - {body}"
        else:
            msg = f"Unable to get {url} - HTTP_{status_code}: {body}"
        super().__init__(msg)


def if_modified_since(path: Path) -> Optional[str]:
    """Return the RFC 1123 (GMT) mtime of *path*, or None if it is absent."""
    try:
        mtime = path.stat().st_mtime
    except FileNotFoundError:
        return None
    return format_datetime(datetime.fromtimestamp(mtime, tz=timezone.utc), usegmt=True)


def parse_server_date(value: Optional[str]) -> datetime:
    """Parse a response ``Date`` header, defaulting to now if unusable."""
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError) as exc:
        logger.warning(
            "Unable to get modtime of config file, defaulting to 'now': %r (%s)",
            value, exc,
        )
        return datetime.now(timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Agent:
    """Device-side config agent.

    Holds everything one sync cycle needs and nothing that changes
    between cycles; all persistent state lives on disk.

    Attributes:
        private_key: Device EC private key used to decrypt bundles.
        encrypted_config: Where the encrypted bundle is persisted.
        secrets_dir: Where secret files are written.
        session: HTTP session (mTLS). None in testing mode.
        config_url: Config server endpoint.
    """

    def __init__(
        self,
        private_key: ec.EllipticCurvePrivateKey,
        encrypted_config: Path,
        secrets_dir: Path,
        session: Optional[requests.Session] = None,
        config_url: str = "",
    ):
        self.private_key = private_key
        self.encrypted_config = Path(encrypted_config)
        self.secrets_dir = Path(secrets_dir)
        self.session = session
        self.config_url = config_url

    @classmethod
    def from_settings(cls, settings: AgentSettings, testing: bool = False) -> "Agent":
        """Build an agent from resolved settings.

        In normal mode the TLS client key doubles as the device key.
        In testing mode no transport is created; only ``pkey.pem`` is
        loaded, which is enough to :meth:`extract` an existing bundle.

        Raises:
            TransportConfigError: Credentials are missing or invalid.
        """
        sota_dir = settings.sota_dir.expanduser()
        session = None
        if testing:
            private_key = load_device_key(sota_dir / CLIENT_KEY)
        else:
            creds = load_credentials(sota_dir)
            session = create_session(creds, timeout=settings.timeout)
            private_key = creds.private_key

        return cls(
            private_key=private_key,
            encrypted_config=sota_dir / ENCRYPTED_CONFIG,
            secrets_dir=settings.secrets_dir.expanduser(),
            session=session,
            config_url=settings.config_url,
        )

    def _require_secrets_dir(self) -> None:
        if not self.secrets_dir.is_dir():
            raise FileNotFoundError(f"Secrets directory does not exist: {self.secrets_dir}")

    def extract(self) -> ExtractReport:
        """Decrypt the persisted bundle and write out every secret.

        Raises:
            FileNotFoundError: The secrets directory is missing.
            BundleDecryptionError: The bundle is not for this device.
            BundleFormatError: The decrypted payload is malformed.
            OSError: Reading the bundle or writing a secret failed.
        """
        self._require_secrets_dir()
        entries = decrypt(self.private_key, self.encrypted_config)
        report = extract(entries, self.secrets_dir)
        logger.info(
            "Extracted %d secrets (%d updated, %d unchanged, %d failed hooks)",
            len(entries), len(report.updated), len(report.unchanged),
            len(report.failed_hooks),
        )
        return report

    def check_in(self) -> SyncOutcome:
        """Fetch the bundle if it changed on the server, then extract it.

        Returns:
            SyncOutcome.UPDATED after a download and extraction, or
            SyncOutcome.NOT_MODIFIED on 304/204 (nothing extracted).

        Raises:
            CheckInError: Network failure or unexpected HTTP status.
            BundleDecryptionError, BundleFormatError, OSError: See
                :meth:`extract`.
        """
        if self.session is None:
            raise SKConfigError("Agent has no transport (created in testing mode)")
        # A bundle persisted with a fresh mtime is not fetched again, so a
        # missing secrets directory must fail before the download.
        self._require_secrets_dir()

        headers = {}
        since = if_modified_since(self.encrypted_config)
        if since:
            headers["If-Modified-Since"] = since

        url = self.config_url
        try:
            with self.session.get(url, headers=headers, stream=True) as res:
                if res.status_code == 200:
                    modtime = parse_server_date(res.headers.get("Date"))
                    atomic_write_stream(
                        self.encrypted_config,
                        res.iter_content(CHUNK_SIZE),
                        modtime=modtime,
                    )
                elif res.status_code == 304:
                    logger.info("Config on server has not changed")
                    return SyncOutcome.NOT_MODIFIED
                elif res.status_code == 204:
                    logger.info("Device has no config defined on server")
                    return SyncOutcome.NOT_MODIFIED
                else:
                    raise CheckInError(url, res.status_code, res.text)
        except requests.RequestException as exc:
            raise CheckInError(url, body=str(exc)) from exc

        self.extract()
        return SyncOutcome.UPDATED
