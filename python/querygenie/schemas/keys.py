"""User API key Pydantic schemas.

Contains request and response models for the /settings/api-keys endpoints.

- No secrets ever leave the backend
- Keys are encrypted at rest
- Responses never include encrypted_key, key_nonce, master_key_version or key_hash
- List responses carry a fixed mask; reveal carries a prefix/suffix mask
"""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# Valid providers - must match DB constraint
VALID_PROVIDERS = {"gemini", "openai", "anthropic"}
LLMProviderValue = Literal["gemini", "openai", "anthropic"]


# =============================================================================
# Request Schemas
# =============================================================================


class UserApiKeyCreate(BaseModel):
    """Request schema for adding or replacing an API key.

    This is an upsert: a second key for the same provider overwrites the
    first, keeping the row id.
    """

    name: str = Field(..., min_length=1, max_length=100)
    provider: LLMProviderValue = Field(..., description="LLM provider (gemini, openai, anthropic)")
    key: str = Field(..., description="The plaintext API key to store")

    @field_validator("provider", mode="before")
    @classmethod
    def normalize_provider(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("key")
    @classmethod
    def validate_key_length(cls, v: str) -> str:
        """Strip surrounding whitespace, then require 10..500 characters."""
        v = v.strip()
        if len(v) < 10:
            raise ValueError("API key too short")
        if len(v) > 500:
            raise ValueError("API key too long")
        return v


class UserApiKeyUpdate(BaseModel):
    """Request schema for PATCH /settings/api-keys/{id}."""

    is_active: bool | None = None
    name: str | None = Field(default=None, min_length=1, max_length=100)

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Response Schemas
# =============================================================================


class UserApiKeyOut(BaseModel):
    """Response schema for a user API key.

    SECURITY: masked_key is always a mask, never key material.
    """

    id: UUID
    provider: str
    name: str
    masked_key: str
    is_active: bool
    last_used_at: datetime | None = None
    usage_count: int
    created_at: datetime
    updated_at: datetime


class RevealedKeyOut(BaseModel):
    """First and last four characters of the key around a fixed mask."""

    id: UUID
    provider: str
    masked_key: str


class ProviderAvailabilityOut(BaseModel):
    provider: str
    models: list[str]


class ApiKeyCheckOut(BaseModel):
    """Which providers (and their models) the caller can currently use."""

    providers: list[ProviderAvailabilityOut]
    has_any: bool
