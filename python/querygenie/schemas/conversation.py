"""Conversation and Message Pydantic schemas.

Contains request and response models for conversation and message
endpoints. Request bodies accept camelCase field names (workspaceId,
isActive, sqlQuery, ...) as well as snake_case; responses are snake_case.

AppendMessageRequest is loose on value ranges: range and
enum checks run in services.conversations.validate_message_input so that
every offending field is reported together.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# Pagination bounds
DEFAULT_CONVERSATION_LIMIT = 20
DEFAULT_MESSAGE_LIMIT = 50
MAX_LIMIT = 100

_REQUEST_CONFIG = ConfigDict(
    alias_generator=to_camel,
    populate_by_name=True,
)


# =============================================================================
# Request Schemas
# =============================================================================


class CreateConversationRequest(BaseModel):
    """Request body for creating a conversation.

    When title is omitted the service derives "{connection name} - {date}".
    """

    workspace_id: UUID
    connection_id: UUID
    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=500)
    is_active: bool = False

    model_config = _REQUEST_CONFIG


class UpdateConversationRequest(BaseModel):
    """Request body for updating a conversation. Setting is_active=true demotes siblings."""

    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=500)
    is_active: bool | None = None

    model_config = _REQUEST_CONFIG


class AppendMessageRequest(BaseModel):
    """Request body for appending a message to a conversation."""

    role: str
    content: str
    sql_query: str | None = None
    explanation: str | None = None
    confidence: int | None = None
    execution_time: int | None = None
    rows_affected: int | None = None
    error: str | None = None
    metadata: dict[str, Any] | None = None

    model_config = _REQUEST_CONFIG


# =============================================================================
# Response Schemas
# =============================================================================


class ConversationOut(BaseModel):
    """Response schema for a conversation."""

    id: UUID
    workspace_id: UUID
    connection_id: UUID
    created_by_id: UUID
    title: str
    description: str | None = None
    is_active: bool
    message_count: int
    last_activity_at: datetime
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MessageOut(BaseModel):
    """Response schema for a message. Messages are immutable after insert."""

    id: UUID
    conversation_id: UUID
    role: str
    content: str
    sql_query: str | None = None
    explanation: str | None = None
    confidence: int | None = None
    execution_time: int | None = None
    rows_affected: int | None = None
    error: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class AppendMessageOut(BaseModel):
    """Response for POST /conversations/{id}/messages."""

    message: MessageOut
    conversation_id: UUID


class ConversationDetailOut(BaseModel):
    """A conversation together with a page of its messages, oldest first."""

    conversation: ConversationOut
    messages: list[MessageOut]
    limit: int
    offset: int
    has_more: bool


class ConversationListOut(BaseModel):
    conversations: list[ConversationOut]
    total: int
    limit: int
    offset: int
    has_more: bool
