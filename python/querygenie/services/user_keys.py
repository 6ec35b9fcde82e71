"""User API key service layer (credential vault).

Handles per-user, per-provider LLM API keys:
- Upsert keys with encryption (one row per (user_id, provider))
- List keys with a fixed mask
- Reveal a key as prefix + mask + suffix
- Update name / active flag, hard delete
- Resolve a usable credential for an outbound provider call

Security invariants:
- Plaintext keys never persist beyond request scope
- Never log plaintext keys or ciphertext
- encrypted_key, key_nonce, master_key_version and key_hash never returned to clients
- A key owned by someone else is indistinguishable from a missing key (E_KEY_NOT_FOUND)
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import delete, func, select, text
from sqlalchemy.orm import Session

from querygenie.db.models import LLMProvider, UserApiKey
from querygenie.db.session import transaction
from querygenie.errors import ApiError, ApiErrorCode, NotFoundError
from querygenie.logging import get_logger
from querygenie.schemas.keys import (
    ApiKeyCheckOut,
    ProviderAvailabilityOut,
    RevealedKeyOut,
    UserApiKeyOut,
)
from querygenie.services.crypto import CryptoError, decrypt_api_key, encrypt_api_key

logger = get_logger(__name__)

LIST_MASK = "••••••••••••"
REVEAL_MASK = "••••••••"
REVEAL_VISIBLE_CHARS = 4

# Models usable with a key for each provider
PROVIDER_MODELS: dict[str, list[str]] = {
    LLMProvider.gemini.value: ["gemini"],
    LLMProvider.openai.value: ["gpt-3.5-turbo", "gpt-4"],
    LLMProvider.anthropic.value: ["claude"],
}


@dataclass
class ResolvedCredential:
    """A decrypted key, valid for the current request only."""

    api_key: str
    provider: str
    user_key_id: UUID

    def __repr__(self) -> str:
        return f"ResolvedCredential(provider={self.provider!r}, user_key_id={self.user_key_id!r})"


def mask_for_reveal(plaintext: str) -> str:
    """First and last four characters around a fixed mask; short keys are fully masked."""
    if len(plaintext) <= 2 * REVEAL_VISIBLE_CHARS:
        return REVEAL_MASK
    return plaintext[:REVEAL_VISIBLE_CHARS] + REVEAL_MASK + plaintext[-REVEAL_VISIBLE_CHARS:]


def _key_out(key: UserApiKey) -> UserApiKeyOut:
    return UserApiKeyOut(
        id=key.id,
        provider=key.provider,
        name=key.name,
        masked_key=LIST_MASK,
        is_active=key.is_active,
        last_used_at=key.last_used_at,
        usage_count=key.usage_count,
        created_at=key.created_at,
        updated_at=key.updated_at,
    )


def _get_owned_key_or_404(db: Session, user_id: UUID, key_id: UUID) -> UserApiKey:
    stmt = select(UserApiKey).where(UserApiKey.id == key_id, UserApiKey.user_id == user_id)
    key = db.scalars(stmt).first()
    if key is None:
        raise NotFoundError(ApiErrorCode.E_KEY_NOT_FOUND, "API key not found")
    return key


def list_user_keys(db: Session, user_id: UUID) -> list[UserApiKeyOut]:
    """List all API keys for a user, ordered by provider. Secrets are always masked."""
    stmt = (
        select(UserApiKey).where(UserApiKey.user_id == user_id).order_by(UserApiKey.provider)
    )
    return [_key_out(key) for key in db.scalars(stmt).all()]


def upsert_user_key(
    db: Session,
    user_id: UUID,
    provider: str,
    name: str,
    api_key: str,
) -> tuple[UserApiKeyOut, bool]:
    """Add or replace the caller's key for a provider.

    A single INSERT ... ON CONFLICT (user_id, provider) DO UPDATE, so two
    concurrent submissions converge on one row. Re-submitting re-encrypts
    with a fresh nonce and re-activates the key; the row id is kept.

    Returns:
        Tuple of (UserApiKeyOut, is_created) where is_created is True for a new row.
    """
    ciphertext, nonce, version, key_hash = encrypt_api_key(api_key)

    with transaction(db):
        row = db.execute(
            text("""
                INSERT INTO user_api_keys (
                    user_id, provider, name, encrypted_key, key_nonce,
                    master_key_version, key_hash, is_active
                )
                VALUES (
                    :user_id, :provider, :name, :encrypted_key, :key_nonce,
                    :master_key_version, :key_hash, true
                )
                ON CONFLICT (user_id, provider) DO UPDATE
                SET name = EXCLUDED.name,
                    encrypted_key = EXCLUDED.encrypted_key,
                    key_nonce = EXCLUDED.key_nonce,
                    master_key_version = EXCLUDED.master_key_version,
                    key_hash = EXCLUDED.key_hash,
                    is_active = true,
                    updated_at = now()
                RETURNING id, (xmax = 0) AS created
            """),
            {
                "user_id": user_id,
                "provider": provider,
                "name": name,
                "encrypted_key": ciphertext,
                "key_nonce": nonce,
                "master_key_version": version,
                "key_hash": key_hash,
            },
        ).fetchone()

    key_id, created = row[0], bool(row[1])

    logger.info(
        "user_key_created" if created else "user_key_updated",
        user_id=str(user_id),
        key_id=str(key_id),
        provider=provider,
    )

    key = db.get(UserApiKey, key_id, populate_existing=True)
    return _key_out(key), created


def reveal_user_key(db: Session, user_id: UUID, key_id: UUID) -> RevealedKeyOut:
    """Decrypt a key and return it re-masked. The full value never leaves this function."""
    key = _get_owned_key_or_404(db, user_id, key_id)

    try:
        plaintext = decrypt_api_key(key.encrypted_key, key.key_nonce, key.master_key_version)
    except CryptoError as e:
        logger.error("user_key_decrypt_failed", key_id=str(key_id), provider=key.provider)
        raise ApiError(ApiErrorCode.E_INTERNAL, "Failed to decrypt API key") from e

    return RevealedKeyOut(id=key.id, provider=key.provider, masked_key=mask_for_reveal(plaintext))


def update_user_key(
    db: Session,
    user_id: UUID,
    key_id: UUID,
    is_active: bool | None = None,
    name: str | None = None,
) -> UserApiKeyOut:
    """Update name and/or active flag of an owned key."""
    with transaction(db):
        key = _get_owned_key_or_404(db, user_id, key_id)
        if is_active is not None:
            key.is_active = is_active
        if name is not None:
            key.name = name
        key.updated_at = func.now()
        db.flush()

    db.refresh(key)
    logger.info(
        "user_key_updated",
        user_id=str(user_id),
        key_id=str(key_id),
        is_active=key.is_active,
    )
    return _key_out(key)


def delete_user_key(db: Session, user_id: UUID, key_id: UUID) -> None:
    """Hard delete an owned key."""
    with transaction(db):
        result = db.execute(
            delete(UserApiKey).where(UserApiKey.id == key_id, UserApiKey.user_id == user_id)
        )
        if result.rowcount == 0:
            raise NotFoundError(ApiErrorCode.E_KEY_NOT_FOUND, "API key not found")

    logger.info("user_key_deleted", user_id=str(user_id), key_id=str(key_id))


def resolve_credential(db: Session, user_id: UUID, provider: str) -> ResolvedCredential | None:
    """Decrypt the caller's active key for a provider and record its use.

    Reads the vault on every call; nothing is cached across requests and
    nothing is written to the process environment.

    Returns:
        ResolvedCredential, or None when there is no active key or it cannot
        be decrypted (logged).
    """
    try:
        with transaction(db):
            row = db.execute(
                text("""
                    UPDATE user_api_keys
                    SET usage_count = usage_count + 1, last_used_at = now()
                    WHERE user_id = :user_id AND provider = :provider AND is_active
                    RETURNING id, encrypted_key, key_nonce, master_key_version
                """),
                {"user_id": user_id, "provider": provider},
            ).fetchone()
            if row is None:
                return None
            api_key = decrypt_api_key(row[1], row[2], row[3])
    except CryptoError:
        logger.error("user_key_decrypt_failed", user_id=str(user_id), provider=provider)
        return None

    return ResolvedCredential(api_key=api_key, provider=provider, user_key_id=row[0])


def available_providers(db: Session, user_id: UUID) -> ApiKeyCheckOut:
    """Providers the caller holds an active key for, with their models."""
    stmt = select(UserApiKey.provider).where(
        UserApiKey.user_id == user_id, UserApiKey.is_active.is_(True)
    )
    active = set(db.scalars(stmt).all())

    providers = [
        ProviderAvailabilityOut(provider=p, models=models)
        for p, models in PROVIDER_MODELS.items()
        if p in active
    ]
    return ApiKeyCheckOut(providers=providers, has_any=bool(providers))
