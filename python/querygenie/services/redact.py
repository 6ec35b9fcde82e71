"""Redaction, hashing, and log guard utilities.

Never-log policy:
- API keys (plaintext, ciphertext, or decrypted)
- Invitation tokens and redemption links
- Bearer tokens
- Message content and SQL text

Allowed (with suffix):
- _chars, _length: length of text
- _sha256, _hash, _prefix: hash of text (hash_prefix for correlation)
"""

import hashlib
import os

import structlog

FORBIDDEN_KEYS = frozenset(
    {
        "content",
        "sql_query",
        "api_key",
        "key",
        "encrypted_key",
        "bearer",
        "token",
        "invite_url",
        "link",
        "secret",
        "password",
        "raw_body",
    }
)

REDACTED_SUFFIXES = ("_sha256", "_hash", "_prefix", "_length", "_chars")

# Hex characters of the sha256 digest kept in logs for correlation
HASH_PREFIX_LENGTH = 12


def hash_text(value: str) -> str:
    """SHA-256 hex digest of a string.

    Stable: same input always produces same output.
    """
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def hash_prefix(value: str) -> str:
    """Short digest prefix for log correlation of secret values."""
    return hash_text(value)[:HASH_PREFIX_LENGTH]


def _has_redacted_suffix(key: str) -> bool:
    return any(key.endswith(suffix) for suffix in REDACTED_SUFFIXES)


def safe_kv(*, _env: str | None = None, **kwargs) -> dict:
    """Validate that no forbidden keys are present unless already redacted.

    Raises ValueError in local/test environments if a forbidden key is used
    without a redacted suffix. In staging/prod, logs a warning and drops the
    offending keys instead.

    Usage:
        logger.info("invitation_created", **safe_kv(
            invitation_id=str(invitation.id),
            token_hash_prefix=hash_prefix(token),   # OK: _prefix suffix
            # token=token,                           # BLOCKED
        ))
    """
    violations = [key for key in kwargs if key in FORBIDDEN_KEYS and not _has_redacted_suffix(key)]

    if violations:
        msg = f"Forbidden log keys without redacted suffix: {violations}"
        env = _env or os.environ.get("QUERYGENIE_ENV", "local")
        if env in ("local", "test"):
            raise ValueError(msg)

        structlog.get_logger("querygenie.services.redact").warning(
            "safe_kv_violation", forbidden_keys=violations
        )
        return {key: value for key, value in kwargs.items() if key not in violations}

    return kwargs
