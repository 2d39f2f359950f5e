"""
Vault Crypto Core — Password key derivation, sealed envelopes and serialization.

Every vault record is sealed with a key derived from the master password:
- Key derivation: PBKDF2-HMAC-SHA256(password, salt) → 32-byte AES key
- Envelope: AES-256-GCM → [salt 32B][nonce 16B][tag 16B][ciphertext]

The master password itself is stored only as a salted PBKDF2 digest
(``hash_password``) and checked in constant time (``verify_password``).

Security Note:
    Never log plaintext, passwords or ciphertext values.
    Salt and nonce are fresh random values for every ``seal`` call.
"""
import os
import base64
import binascii
import logging
from typing import Any, Optional

import orjson
from cryptography.exceptions import InvalidKey, InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..exceptions import AuthenticationFailed

logger = logging.getLogger("crypted.vault")

SALT_LENGTH = 32
NONCE_SIZE = 16
TAG_LENGTH = 16  # GCM tag
KEY_LENGTH = 32  # AES-256
KDF_ITERATIONS = 100_000

HEADER_SIZE = SALT_LENGTH + NONCE_SIZE + TAG_LENGTH

_BYTES_WRAPPER_KEY = "__vault_bytes_b64__"


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def _kdf(salt: bytes, iterations: int) -> PBKDF2HMAC:
    return PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=iterations,
    )


def derive_key(password: str, salt: bytes, iterations: int = KDF_ITERATIONS) -> bytes:
    """Derive a 32-byte encryption key from a password using PBKDF2-SHA256.

    Args:
        password: Master password.
        salt: Random salt embedded in the envelope or digest.
        iterations: PBKDF2 work factor.

    Returns:
        32-byte derived key.
    """
    return _kdf(salt, iterations).derive(password.encode("utf-8"))


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------

def seal(
    plaintext: bytes,
    password: str,
    *,
    salt: Optional[bytes] = None,
    nonce: Optional[bytes] = None,
    iterations: int = KDF_ITERATIONS,
) -> bytes:
    """Encrypt plaintext under a password-derived key.

    Format: [salt 32B][nonce 16B][tag 16B][ciphertext]

    Args:
        plaintext: Data to encrypt.
        password: Password used for key derivation.
        salt: Fixed salt (tests only); random when omitted.
        nonce: Fixed nonce (tests only); random when omitted.
        iterations: PBKDF2 work factor.

    Returns:
        Sealed envelope bytes.
    """
    salt = salt if salt is not None else os.urandom(SALT_LENGTH)
    nonce = nonce if nonce is not None else os.urandom(NONCE_SIZE)
    if len(salt) != SALT_LENGTH or len(nonce) != NONCE_SIZE:
        raise ValueError("Invalid salt or nonce length")
    key = derive_key(password, salt, iterations)
    ct = AESGCM(key).encrypt(nonce, plaintext, None)
    # AESGCM appends the tag; the envelope stores it ahead of the ciphertext
    return salt + nonce + ct[-TAG_LENGTH:] + ct[:-TAG_LENGTH]


def unseal(envelope: bytes, password: str, *, iterations: int = KDF_ITERATIONS) -> bytes:
    """Decrypt a sealed envelope.

    Args:
        envelope: Bytes produced by ``seal``.
        password: Password used for key derivation.
        iterations: PBKDF2 work factor.

    Returns:
        Decrypted plaintext bytes.

    Raises:
        AuthenticationFailed: Wrong password, truncated, corrupted or
            tampered envelope.
    """
    if len(envelope) < HEADER_SIZE:
        raise AuthenticationFailed()
    salt = envelope[:SALT_LENGTH]
    nonce = envelope[SALT_LENGTH:SALT_LENGTH + NONCE_SIZE]
    tag = envelope[SALT_LENGTH + NONCE_SIZE:HEADER_SIZE]
    ct = envelope[HEADER_SIZE:]
    key = derive_key(password, salt, iterations)
    try:
        return AESGCM(key).decrypt(nonce, ct + tag, None)
    except InvalidTag as err:
        raise AuthenticationFailed() from err


def encode_envelope(envelope: bytes) -> str:
    """Encode an envelope as base64 text for storage."""
    return base64.b64encode(envelope).decode("ascii")


def decode_envelope(data: str) -> bytes:
    """Decode a base64 envelope read from storage.

    Raises:
        AuthenticationFailed: If the text is not valid base64.
    """
    try:
        return base64.b64decode(data.strip(), validate=True)
    except (binascii.Error, ValueError) as err:
        raise AuthenticationFailed() from err


# ---------------------------------------------------------------------------
# Master password digest
# ---------------------------------------------------------------------------

def hash_password(
    password: str,
    *,
    salt: Optional[bytes] = None,
    iterations: int = KDF_ITERATIONS,
) -> str:
    """Hash a password for later verification.

    Returns:
        base64 of [salt 32B][digest 32B].
    """
    salt = salt if salt is not None else os.urandom(SALT_LENGTH)
    digest = derive_key(password, salt, iterations)
    return base64.b64encode(salt + digest).decode("ascii")


def verify_password(
    password: str,
    password_hash: str,
    *,
    iterations: int = KDF_ITERATIONS,
) -> bool:
    """Check a password against a digest from ``hash_password``.

    The comparison is constant-time. Malformed digests never verify.
    """
    try:
        combined = base64.b64decode(password_hash, validate=True)
    except (binascii.Error, ValueError):
        logger.warning("Stored password hash is not valid base64")
        return False
    if len(combined) != SALT_LENGTH + KEY_LENGTH:
        logger.warning("Stored password hash has unexpected length")
        return False
    salt, digest = combined[:SALT_LENGTH], combined[SALT_LENGTH:]
    try:
        _kdf(salt, iterations).verify(password.encode("utf-8"), digest)
    except InvalidKey:
        return False
    return True


# ---------------------------------------------------------------------------
# Value serialization
# ---------------------------------------------------------------------------

def _wrap_bytes(value: Any) -> Any:
    if isinstance(value, bytes):
        return {_BYTES_WRAPPER_KEY: base64.b64encode(value).decode("ascii")}
    if isinstance(value, dict):
        return {k: _wrap_bytes(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_wrap_bytes(v) for v in value]
    return value


def _unwrap_bytes(value: Any) -> Any:
    if isinstance(value, dict):
        if _BYTES_WRAPPER_KEY in value and len(value) == 1:
            return base64.b64decode(value[_BYTES_WRAPPER_KEY])
        return {k: _unwrap_bytes(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_unwrap_bytes(v) for v in value]
    return value


def serialize_value(value: Any) -> bytes:
    """Serialize a Python value to canonical bytes for sealing.

    Supports: str, int, float, dict, list, bytes, bool, None.
    Keys are sorted so equal payloads always produce equal bytes.
    bytes values are wrapped as {"__vault_bytes_b64__": "<base64>"}.

    Args:
        value: Python value to serialize.

    Returns:
        orjson-encoded bytes.
    """
    return orjson.dumps(_wrap_bytes(value), option=orjson.OPT_SORT_KEYS)


def deserialize_value(data: bytes) -> Any:
    """Deserialize bytes produced by ``serialize_value``."""
    return _unwrap_bytes(orjson.loads(data))
