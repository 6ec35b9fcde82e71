"""Cryptographic helpers for the credential vault.

Implements authenticated encryption of provider API keys with PyNaCl
SecretBox (XSalsa20-Poly1305, 24-byte nonce), plus the one-way key hash
stored next to the ciphertext.

- Master key is loaded from QUERYGENIE_KEY_ENCRYPTION_KEY (base64, 32 bytes)
- A fresh random nonce is generated for every encryption
- key_hash is the SHA-256 hex digest of the plaintext; it is used for
  duplicate detection and is never reversed

Security invariants:
- Never log plaintext keys or ciphertext
- Decryption fails if nonce, ciphertext or master key is wrong
"""

import base64
import binascii
import hashlib
import os
from functools import lru_cache

from nacl.exceptions import CryptoError as NaclCryptoError
from nacl.secret import SecretBox

from querygenie.logging import get_logger

logger = get_logger(__name__)

MASTER_KEY_ENV = "QUERYGENIE_KEY_ENCRYPTION_KEY"
NONCE_SIZE = SecretBox.NONCE_SIZE
MASTER_KEY_SIZE = SecretBox.KEY_SIZE

# Current master key version (no rotation implemented yet)
CURRENT_MASTER_KEY_VERSION = 1


class CryptoError(Exception):
    """Raised when cryptographic operations fail."""

    pass


@lru_cache(maxsize=1)
def _get_master_key() -> bytes:
    """Load, decode and size-check the master key. Cached after first load."""
    key_b64 = os.environ.get(MASTER_KEY_ENV)
    if not key_b64:
        raise CryptoError(f"{MASTER_KEY_ENV} environment variable is not set")

    try:
        key = base64.b64decode(key_b64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise CryptoError(f"{MASTER_KEY_ENV} is not valid base64") from e

    if len(key) != MASTER_KEY_SIZE:
        raise CryptoError(f"{MASTER_KEY_ENV} must be {MASTER_KEY_SIZE} bytes, got {len(key)}")

    return key


def clear_master_key_cache() -> None:
    """Clear the cached master key (tests, key rotation)."""
    _get_master_key.cache_clear()


def compute_key_hash(api_key: str) -> str:
    """Deterministic one-way fingerprint of an API key."""
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()


def encrypt_api_key(plaintext: str) -> tuple[bytes, bytes, int, str]:
    """Encrypt an API key for storage.

    Returns:
        Tuple of (ciphertext, nonce, master_key_version, key_hash)

    Raises:
        CryptoError: If the master key is missing/invalid or encryption fails.
    """
    box = SecretBox(_get_master_key())
    nonce = os.urandom(NONCE_SIZE)

    # SecretBox.encrypt prefixes the nonce; the nonce is stored in its own column.
    encrypted = box.encrypt(plaintext.encode("utf-8"), nonce=nonce)

    return encrypted.ciphertext, nonce, CURRENT_MASTER_KEY_VERSION, compute_key_hash(plaintext)


def decrypt_api_key(ciphertext: bytes, nonce: bytes, version: int) -> str:
    """Decrypt an API key from storage.

    Raises:
        CryptoError: If version is unknown or authentication fails.
    """
    if version != CURRENT_MASTER_KEY_VERSION:
        raise CryptoError(f"Unknown key version: {version}")
    if len(nonce) != NONCE_SIZE:
        raise CryptoError(f"Nonce must be {NONCE_SIZE} bytes, got {len(nonce)}")

    box = SecretBox(_get_master_key())
    try:
        plaintext = box.decrypt(bytes(ciphertext), nonce=bytes(nonce))
    except NaclCryptoError as e:
        logger.error("decryption_failed")
        raise CryptoError("Decryption failed") from e

    return plaintext.decode("utf-8")
