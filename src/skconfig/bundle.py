"""
Config bundle decoding -- ECIES ciphertext in, named entries out.

Decryption and deserialisation are separate steps so each can be
exercised on its own:

    plaintext = decrypt_bytes(private_key, ciphertext)
    entries = parse_bundle(plaintext)

The plaintext is UTF-8 JSON in one of two layouts:

    {"version": 1, "files": {"a.conf": {"value": "...", "on_changed": [...]}}}
    {"a.conf": {"Value": "...", "OnChanged": [...]}}          # legacy

Reading a bundle never touches anything on disk besides the bundle.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Mapping

from cryptography.hazmat.primitives.asymmetric import ec
from pydantic import ValidationError

from . import SKConfigError
from .ecies import ECIESError, decrypt as ecies_decrypt, encrypt as ecies_encrypt
from .models import ConfigEntry

logger = logging.getLogger("skconfig.bundle")

BUNDLE_VERSION = 1


class BundleDecryptionError(SKConfigError):
    """Raised when the bundle cannot be decrypted with the device key."""


class BundleFormatError(SKConfigError):
    """Raised when decrypted bundle content is not a valid entry mapping."""


def _check_name(name: str) -> None:
    if not name or name in (".", "..") or "/" in name or "\\" in name or "\0" in name:
        raise BundleFormatError(f"Invalid secret name: {name!r}")


def _is_versioned(doc: dict) -> bool:
    # A legacy bundle may legitimately hold a secret called "version";
    # its value is an entry object, never an integer.
    version = doc.get("version")
    return isinstance(version, int) and not isinstance(version, bool) and "files" in doc


def decrypt_bytes(private_key: ec.EllipticCurvePrivateKey, ciphertext: bytes) -> bytes:
    """Decrypt raw bundle bytes.

    Args:
        private_key: The device's EC private key.
        ciphertext: Encrypted bundle content.

    Returns:
        Decrypted payload bytes.

    Raises:
        BundleDecryptionError: Wrong key, truncated or tampered bundle.
    """
    try:
        return ecies_decrypt(private_key, ciphertext)
    except ECIESError as exc:
        raise BundleDecryptionError(f"Unable to decrypt config bundle: {exc}") from exc


def parse_bundle(plaintext: bytes) -> dict[str, ConfigEntry]:
    """Deserialise a decrypted payload into ``name -> ConfigEntry``.

    Args:
        plaintext: UTF-8 JSON in the versioned or legacy layout.

    Returns:
        Mapping of secret file name to its entry.

    Raises:
        BundleFormatError: Invalid JSON, unknown version, bad names or
            entries that fail validation.
    """
    try:
        doc = json.loads(plaintext.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise BundleFormatError(f"Config bundle is not valid JSON: {exc}") from exc

    if not isinstance(doc, dict):
        raise BundleFormatError("Config bundle must be a JSON object")

    if _is_versioned(doc):
        if doc["version"] != BUNDLE_VERSION:
            raise BundleFormatError(f"Unsupported bundle version: {doc['version']!r}")
        files = doc["files"]
        if not isinstance(files, dict):
            raise BundleFormatError("Bundle 'files' must be a JSON object")
    else:
        files = doc

    entries: dict[str, ConfigEntry] = {}
    for name, raw in files.items():
        _check_name(name)
        try:
            entries[name] = ConfigEntry.model_validate(raw)
        except ValidationError as exc:
            raise BundleFormatError(f"Invalid entry {name!r}: {exc}") from exc
    return entries


def decrypt(
    private_key: ec.EllipticCurvePrivateKey, bundle_path: Path
) -> dict[str, ConfigEntry]:
    """Read, decrypt, and parse the bundle stored at *bundle_path*.

    Raises:
        OSError: The bundle cannot be read.
        BundleDecryptionError: See :func:`decrypt_bytes`.
        BundleFormatError: See :func:`parse_bundle`.
    """
    ciphertext = Path(bundle_path).read_bytes()
    entries = parse_bundle(decrypt_bytes(private_key, ciphertext))
    logger.debug("Decrypted %d entries from %s", len(entries), bundle_path)
    return entries


def serialize_bundle(entries: Mapping[str, Any]) -> bytes:
    """Serialise entries into the versioned JSON layout.

    Args:
        entries: ``name -> ConfigEntry`` (or a dict accepted by it).

    Returns:
        UTF-8 JSON bytes.
    """
    files = {}
    for name, entry in entries.items():
        _check_name(name)
        if not isinstance(entry, ConfigEntry):
            entry = ConfigEntry.model_validate(entry)
        files[name] = {
            "value": entry.value.decode("utf-8"),
            "on_changed": list(entry.on_changed),
        }
    doc = {"version": BUNDLE_VERSION, "files": files}
    return json.dumps(doc, sort_keys=True).encode("utf-8")


def seal_bundle(
    public_key: ec.EllipticCurvePublicKey, entries: Mapping[str, Any]
) -> bytes:
    """Serialise and encrypt *entries* for the device owning *public_key*."""
    return ecies_encrypt(public_key, serialize_bundle(entries))
