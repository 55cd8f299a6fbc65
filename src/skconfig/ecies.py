"""
Elliptic Curve Integrated Encryption Scheme.

Wire-compatible with the go-ethereum ECIES construction the config
server encrypts bundles with:

    R || IV || AES-CTR(Ke, IV, plaintext) || HMAC(Km, IV || ciphertext)

where R is the sender's ephemeral public point (uncompressed SEC1),
K = ConcatKDF(ECDH(d, R)) is split into the cipher key Ke and
Km = H(K[len(Ke):]). Shared-info parameters s1/s2 are empty.
"""

from __future__ import annotations

import hashlib
import hmac
import os
from dataclasses import dataclass
from typing import Any, Callable

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.concatkdf import ConcatKDFHash

from . import SKConfigError

BLOCK_SIZE = 16


class ECIESError(SKConfigError):
    """Raised when a message cannot be encrypted or decrypted."""


@dataclass(frozen=True)
class ECIESParams:
    """Cipher parameters bound to a curve."""

    key_len: int
    kdf_hash: Callable[[], hashes.HashAlgorithm]
    mac_hash: Callable[..., Any]


PARAMS_BY_CURVE = {
    "secp256r1": ECIESParams(16, hashes.SHA256, hashlib.sha256),
    "secp384r1": ECIESParams(24, hashes.SHA384, hashlib.sha384),
}


def _params(curve: ec.EllipticCurve) -> ECIESParams:
    try:
        return PARAMS_BY_CURVE[curve.name]
    except KeyError:
        raise ECIESError(f"Unsupported curve for ECIES: {curve.name}") from None


def _point_len(curve: ec.EllipticCurve) -> int:
    return 1 + 2 * ((curve.key_size + 7) // 8)


def _derive_keys(params: ECIESParams, shared: bytes) -> tuple[bytes, bytes]:
    kdf = ConcatKDFHash(
        algorithm=params.kdf_hash(),
        length=2 * params.key_len,
        otherinfo=None,
    )
    k = kdf.derive(shared)
    ke = k[: params.key_len]
    km = params.mac_hash(k[params.key_len:]).digest()
    return ke, km


def _tag(params: ECIESParams, km: bytes, em: bytes) -> bytes:
    return hmac.new(km, em, params.mac_hash).digest()


def _ctr(key: bytes, iv: bytes, data: bytes) -> bytes:
    ctx = Cipher(algorithms.AES(key), modes.CTR(iv)).encryptor()
    return ctx.update(data) + ctx.finalize()


def encrypt(public_key: ec.EllipticCurvePublicKey, message: bytes) -> bytes:
    """Encrypt *message* for the holder of *public_key*.

    Args:
        public_key: Recipient's EC public key.
        message: Plaintext bytes.

    Returns:
        ECIES ciphertext.
    """
    params = _params(public_key.curve)
    ephemeral = ec.generate_private_key(public_key.curve)
    shared = ephemeral.exchange(ec.ECDH(), public_key)
    ke, km = _derive_keys(params, shared)

    iv = os.urandom(BLOCK_SIZE)
    em = iv + _ctr(ke, iv, message)
    r = ephemeral.public_key().public_bytes(
        encoding=serialization.Encoding.X962,
        format=serialization.PublicFormat.UncompressedPoint,
    )
    return r + em + _tag(params, km, em)


def decrypt(private_key: ec.EllipticCurvePrivateKey, ciphertext: bytes) -> bytes:
    """Decrypt an ECIES *ciphertext* with *private_key*.

    Args:
        private_key: Recipient's EC private key.
        ciphertext: Bytes produced by :func:`encrypt` or the server.

    Returns:
        The plaintext.

    Raises:
        ECIESError: If the message is malformed, was encrypted for a
            different key, or has been tampered with.
    """
    curve = private_key.curve
    params = _params(curve)
    r_len = _point_len(curve)
    mac_len = params.mac_hash().digest_size

    if len(ciphertext) < r_len + BLOCK_SIZE + mac_len:
        raise ECIESError("Ciphertext is too short")
    if ciphertext[0] != 0x04:
        raise ECIESError("Ephemeral key is not an uncompressed point")

    try:
        ephemeral = ec.EllipticCurvePublicKey.from_encoded_point(
            curve, ciphertext[:r_len]
        )
    except ValueError as exc:
        raise ECIESError(f"Invalid ephemeral public key: {exc}") from exc

    shared = private_key.exchange(ec.ECDH(), ephemeral)
    ke, km = _derive_keys(params, shared)

    em = ciphertext[r_len:-mac_len]
    tag = ciphertext[-mac_len:]
    if not hmac.compare_digest(tag, _tag(params, km, em)):
        raise ECIESError("Invalid message tag (wrong key or corrupted data)")

    return _ctr(ke, em[:BLOCK_SIZE], em[BLOCK_SIZE:])
