"""Conversation and Message service layer.

Owns the conversation activity state machine:

    inactive <-> active      (user message, create/update with is_active)
    inactive/active -> deleted (soft delete; terminal, clears is_active)

For a given (connection_id, created_by_id) pair at most one non-deleted
conversation is active. Every transition that activates a conversation
locks the whole sibling group FOR UPDATE in id order, demotes the
siblings, then promotes the target, all inside one transaction. The
partial unique index uix_conversations_active_per_connection_user backs
this up; a violation surfaces as E_CONVERSATION_CONFLICT.

Service functions correspond 1:1 with route handlers.
Routes are transport-only and call exactly one service function.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import bindparam, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Row
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from querygenie.auth.permissions import is_active_member
from querygenie.db.models import MessageRole
from querygenie.db.session import is_constraint_violation, transaction
from querygenie.errors import (
    ApiErrorCode,
    ConflictError,
    ForbiddenError,
    InvalidRequestError,
    NotFoundError,
    ValidationFailedError,
)
from querygenie.logging import get_logger
from querygenie.schemas.conversation import (
    DEFAULT_CONVERSATION_LIMIT,
    DEFAULT_MESSAGE_LIMIT,
    MAX_LIMIT,
    AppendMessageOut,
    ConversationDetailOut,
    ConversationListOut,
    ConversationOut,
    MessageOut,
)

logger = get_logger(__name__)

# =============================================================================
# Constants
# =============================================================================

ACTIVE_INDEX = "uix_conversations_active_per_connection_user"

MIN_CONFIDENCE = 0
MAX_CONFIDENCE = 100
# execution_time and rows_affected are stored in INTEGER columns
MAX_COUNTER = 2_147_483_647

VALID_MESSAGE_ROLES = frozenset(r.value for r in MessageRole)

_CONVERSATION_COLUMNS = """
    id, workspace_id, connection_id, created_by_id, title, description,
    is_active, message_count, last_activity_at, created_at, updated_at
"""

_MESSAGE_COLUMNS = """
    id, conversation_id, role, content, sql_query, explanation, confidence,
    execution_time, rows_affected, error, metadata, created_at
"""

_INSERT_MESSAGE = text(f"""
    INSERT INTO messages (
        conversation_id, role, content, sql_query, explanation, confidence,
        execution_time, rows_affected, error, metadata
    )
    VALUES (
        :conversation_id, :role, :content, :sql_query, :explanation, :confidence,
        :execution_time, :rows_affected, :error, :metadata
    )
    RETURNING {_MESSAGE_COLUMNS}
""").bindparams(bindparam("metadata", type_=JSONB))


# =============================================================================
# Helper Functions
# =============================================================================


def validate_page(limit: int, offset: int) -> None:
    """Reject limit outside 1..MAX_LIMIT and negative offsets."""
    if limit < 1 or limit > MAX_LIMIT:
        raise InvalidRequestError(message=f"Limit must be between 1 and {MAX_LIMIT}")
    if offset < 0:
        raise InvalidRequestError(message="Offset must be non-negative")


def validate_message_input(
    role: str,
    content: str,
    confidence: int | None = None,
    execution_time: int | None = None,
    rows_affected: int | None = None,
) -> None:
    """Check every message field and report all offending ones together.

    Raises:
        ValidationFailedError: with one {"field", "message"} entry per bad field.
    """
    details: list[dict[str, Any]] = []

    if role not in VALID_MESSAGE_ROLES:
        details.append(
            {"field": "role", "message": "Role must be one of: assistant, system, user"}
        )
    if not content or not content.strip():
        details.append({"field": "content", "message": "Content must not be empty"})
    if confidence is not None and not MIN_CONFIDENCE <= confidence <= MAX_CONFIDENCE:
        details.append(
            {
                "field": "confidence",
                "message": f"Confidence must be between {MIN_CONFIDENCE} and {MAX_CONFIDENCE}",
            }
        )
    if execution_time is not None and not 0 <= execution_time <= MAX_COUNTER:
        details.append(
            {
                "field": "execution_time",
                "message": f"Execution time must be between 0 and {MAX_COUNTER}",
            }
        )
    if rows_affected is not None and not 0 <= rows_affected <= MAX_COUNTER:
        details.append(
            {
                "field": "rows_affected",
                "message": f"Rows affected must be between 0 and {MAX_COUNTER}",
            }
        )

    if details:
        raise ValidationFailedError(details)


def default_title(connection_name: str, now: datetime | None = None) -> str:
    """Title used when a conversation is created without one."""
    now = now or datetime.now(UTC)
    return f"{connection_name} - {now.date().isoformat()}"[:255]


def _welcome_message(connection_name: str, connection_type: str) -> str:
    return (
        f"Hello! I'm your AI SQL Assistant for the {connection_name} database. "
        "I can help you generate SQL queries from natural language descriptions. "
        f"What would you like to explore in your {connection_type} database?"
    )


def _conversation_out(row: Row) -> ConversationOut:
    return ConversationOut(**row._mapping)


def _message_out(row: Row) -> MessageOut:
    return MessageOut(**row._mapping)


def _fetch_conversation(db: Session, conversation_id: UUID) -> Row:
    """Load a non-deleted conversation.

    Raises:
        NotFoundError(E_CONVERSATION_NOT_FOUND): missing or soft-deleted.
    """
    row = db.execute(
        text(f"""
            SELECT {_CONVERSATION_COLUMNS}
            FROM conversations
            WHERE id = :id AND deleted_at IS NULL
        """),
        {"id": conversation_id},
    ).fetchone()
    if row is None:
        raise NotFoundError(ApiErrorCode.E_CONVERSATION_NOT_FOUND, "Conversation not found")
    return row


def _require_access(db: Session, viewer_id: UUID, conversation: Row) -> None:
    """Creator, or any active member of the conversation's workspace."""
    if conversation.created_by_id == viewer_id:
        return
    if not is_active_member(db, viewer_id, conversation.workspace_id):
        raise ForbiddenError(message="Access denied")


def _require_creator(viewer_id: UUID, conversation: Row) -> None:
    if conversation.created_by_id != viewer_id:
        raise ForbiddenError(message="Only the conversation creator can modify it")


def lock_sibling_group(db: Session, connection_id: UUID, created_by_id: UUID) -> list[UUID]:
    """Lock every non-deleted conversation of a (connection, creator) pair.

    Rows are locked in id order so that concurrent activations on the same
    group always acquire locks in the same sequence.

    MUST be called within an open transaction.
    """
    rows = db.execute(
        text("""
            SELECT id
            FROM conversations
            WHERE connection_id = :connection_id
              AND created_by_id = :created_by_id
              AND deleted_at IS NULL
            ORDER BY id
            FOR UPDATE
        """),
        {"connection_id": connection_id, "created_by_id": created_by_id},
    ).fetchall()
    return [r[0] for r in rows]


def demote_siblings(
    db: Session,
    connection_id: UUID,
    created_by_id: UUID,
    keep_id: UUID | None = None,
) -> int:
    """Clear is_active on every active sibling except keep_id. Returns rows changed.

    Callers must hold the group lock from lock_sibling_group().
    """
    result = db.execute(
        text("""
            UPDATE conversations
            SET is_active = false, updated_at = now()
            WHERE connection_id = :connection_id
              AND created_by_id = :created_by_id
              AND deleted_at IS NULL
              AND is_active
              AND (CAST(:keep_id AS uuid) IS NULL OR id <> :keep_id)
        """),
        {"connection_id": connection_id, "created_by_id": created_by_id, "keep_id": keep_id},
    )
    return result.rowcount


def _raise_if_active_conflict(exc: IntegrityError) -> None:
    if is_constraint_violation(exc, ACTIVE_INDEX):
        logger.warning("conversation_active_conflict")
        raise ConflictError(
            ApiErrorCode.E_CONVERSATION_CONFLICT,
            "Another conversation for this connection became active concurrently",
        ) from exc


# =============================================================================
# Conversation CRUD
# =============================================================================


def create_conversation(
    db: Session,
    viewer_id: UUID,
    workspace_id: UUID,
    connection_id: UUID,
    title: str | None = None,
    description: str | None = None,
    is_active: bool = False,
) -> ConversationOut:
    """Create a conversation on a connection, seeded with an assistant welcome message.

    The conversation starts inactive unless is_active is True, in which case
    its siblings are demoted in the same transaction.

    Raises:
        ForbiddenError: viewer is not an active member of the workspace.
        NotFoundError(E_CONNECTION_NOT_FOUND): connection missing, inactive,
            deleted, or not in workspace_id.
        ConflictError(E_CONVERSATION_CONFLICT): lost an activation race.
    """
    if not is_active_member(db, viewer_id, workspace_id):
        raise ForbiddenError(message="Access denied to workspace")

    connection = db.execute(
        text("""
            SELECT id, name, type
            FROM connections
            WHERE id = :id
              AND workspace_id = :workspace_id
              AND is_active
              AND deleted_at IS NULL
        """),
        {"id": connection_id, "workspace_id": workspace_id},
    ).fetchone()
    if connection is None:
        raise NotFoundError(ApiErrorCode.E_CONNECTION_NOT_FOUND, "Connection not found or inactive")

    try:
        with transaction(db):
            if is_active:
                lock_sibling_group(db, connection_id, viewer_id)
                demote_siblings(db, connection_id, viewer_id)

            row = db.execute(
                text("""
                    INSERT INTO conversations (
                        workspace_id, connection_id, created_by_id, title,
                        description, is_active, message_count
                    )
                    VALUES (
                        :workspace_id, :connection_id, :created_by_id, :title,
                        :description, :is_active, 1
                    )
                    RETURNING id
                """),
                {
                    "workspace_id": workspace_id,
                    "connection_id": connection_id,
                    "created_by_id": viewer_id,
                    "title": title or default_title(connection.name),
                    "description": description,
                    "is_active": is_active,
                },
            ).fetchone()
            conversation_id = row[0]

            db.execute(
                _INSERT_MESSAGE,
                {
                    "conversation_id": conversation_id,
                    "role": MessageRole.assistant.value,
                    "content": _welcome_message(connection.name, connection.type),
                    "sql_query": None,
                    "explanation": None,
                    "confidence": None,
                    "execution_time": None,
                    "rows_affected": None,
                    "error": None,
                    "metadata": {"isWelcome": True},
                },
            )

            created = _fetch_conversation(db, conversation_id)
    except IntegrityError as exc:
        _raise_if_active_conflict(exc)
        raise

    logger.info(
        "conversation_created",
        conversation_id=str(conversation_id),
        workspace_id=str(workspace_id),
        is_active=is_active,
    )
    return _conversation_out(created)


def list_conversations(
    db: Session,
    viewer_id: UUID,
    workspace_id: UUID,
    connection_id: UUID | None = None,
    limit: int = DEFAULT_CONVERSATION_LIMIT,
    offset: int = 0,
) -> ConversationListOut:
    """List the viewer's non-deleted conversations in a workspace, newest activity first."""
    validate_page(limit, offset)

    if not is_active_member(db, viewer_id, workspace_id):
        raise ForbiddenError(message="Access denied to workspace")

    params = {
        "workspace_id": workspace_id,
        "viewer_id": viewer_id,
        "connection_id": connection_id,
    }
    where = """
        workspace_id = :workspace_id
        AND created_by_id = :viewer_id
        AND deleted_at IS NULL
        AND (CAST(:connection_id AS uuid) IS NULL OR connection_id = :connection_id)
    """

    total = db.execute(
        text(f"SELECT count(*) FROM conversations WHERE {where}"), params
    ).scalar_one()

    rows = db.execute(
        text(f"""
            SELECT {_CONVERSATION_COLUMNS}
            FROM conversations
            WHERE {where}
            ORDER BY last_activity_at DESC, id DESC
            LIMIT :limit OFFSET :offset
        """),
        {**params, "limit": limit, "offset": offset},
    ).fetchall()

    return ConversationListOut(
        conversations=[_conversation_out(r) for r in rows],
        total=total,
        limit=limit,
        offset=offset,
        has_more=offset + limit < total,
    )


def get_conversation(
    db: Session,
    viewer_id: UUID,
    conversation_id: UUID,
    limit: int = DEFAULT_MESSAGE_LIMIT,
    offset: int = 0,
) -> ConversationDetailOut:
    """Return a conversation and a page of its messages, oldest first.

    Raises:
        NotFoundError(E_CONVERSATION_NOT_FOUND): missing or soft-deleted.
        ForbiddenError: neither creator nor active workspace member.
    """
    validate_page(limit, offset)

    conversation = _fetch_conversation(db, conversation_id)
    _require_access(db, viewer_id, conversation)

    rows = db.execute(
        text(f"""
            SELECT {_MESSAGE_COLUMNS}
            FROM messages
            WHERE conversation_id = :conversation_id
            ORDER BY created_at ASC, id ASC
            LIMIT :limit OFFSET :offset
        """),
        {"conversation_id": conversation_id, "limit": limit, "offset": offset},
    ).fetchall()

    return ConversationDetailOut(
        conversation=_conversation_out(conversation),
        messages=[_message_out(r) for r in rows],
        limit=limit,
        offset=offset,
        has_more=offset + limit < conversation.message_count,
    )


def update_conversation(
    db: Session,
    viewer_id: UUID,
    conversation_id: UUID,
    title: str | None = None,
    description: str | None = None,
    is_active: bool | None = None,
) -> ConversationOut:
    """Update title, description or activity. Creator only.

    None leaves a field unchanged. is_active=True demotes the siblings;
    is_active=False simply deactivates.
    """
    conversation = _fetch_conversation(db, conversation_id)
    _require_creator(viewer_id, conversation)

    try:
        with transaction(db):
            if is_active:
                locked = lock_sibling_group(
                    db, conversation.connection_id, conversation.created_by_id
                )
                if conversation_id not in locked:
                    # Soft-deleted between the read above and the lock
                    raise NotFoundError(
                        ApiErrorCode.E_CONVERSATION_NOT_FOUND, "Conversation not found"
                    )
                demote_siblings(
                    db,
                    conversation.connection_id,
                    conversation.created_by_id,
                    keep_id=conversation_id,
                )

            db.execute(
                text("""
                    UPDATE conversations
                    SET title = COALESCE(:title, title),
                        description = COALESCE(:description, description),
                        is_active = COALESCE(:is_active, is_active),
                        last_activity_at = CASE
                            WHEN CAST(:is_active AS boolean) IS NULL THEN last_activity_at
                            ELSE now()
                        END,
                        updated_at = now()
                    WHERE id = :id AND deleted_at IS NULL
                """),
                {
                    "id": conversation_id,
                    "title": title,
                    "description": description,
                    "is_active": is_active,
                },
            )

            updated = _fetch_conversation(db, conversation_id)
    except IntegrityError as exc:
        _raise_if_active_conflict(exc)
        raise

    logger.info(
        "conversation_updated",
        conversation_id=str(conversation_id),
        is_active=updated.is_active,
    )
    return _conversation_out(updated)


def delete_conversation(db: Session, viewer_id: UUID, conversation_id: UUID) -> None:
    """Soft delete. Clears is_active so the pair's active slot is released. Creator only."""
    conversation = _fetch_conversation(db, conversation_id)
    _require_creator(viewer_id, conversation)

    with transaction(db):
        db.execute(
            text("""
                UPDATE conversations
                SET deleted_at = now(), is_active = false, updated_at = now()
                WHERE id = :id AND deleted_at IS NULL
            """),
            {"id": conversation_id},
        )

    logger.info("conversation_deleted", conversation_id=str(conversation_id))


# =============================================================================
# Message append
# =============================================================================


def append_message(
    db: Session,
    viewer_id: UUID,
    conversation_id: UUID,
    *,
    role: str,
    content: str,
    sql_query: str | None = None,
    explanation: str | None = None,
    confidence: int | None = None,
    execution_time: int | None = None,
    rows_affected: int | None = None,
    error: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> AppendMessageOut:
    """Append a message and drive the activity state machine.

    Validation runs before anything is read or written. Then, in one
    transaction:
    1. lock the conversation's sibling group (the conversation included) in id order
    2. for a user message, demote every active sibling
    3. bump message_count and activity timestamps; a user message also
       sets is_active
    4. insert the message

    Raises:
        ValidationFailedError(E_VALIDATION): one detail per offending field.
        NotFoundError(E_CONVERSATION_NOT_FOUND): missing or soft-deleted.
        ForbiddenError: neither creator nor active workspace member.
        ConflictError(E_CONVERSATION_CONFLICT): active-pair index violated.
    """
    validate_message_input(role, content, confidence, execution_time, rows_affected)

    conversation = _fetch_conversation(db, conversation_id)
    _require_access(db, viewer_id, conversation)

    promote = role == MessageRole.user.value

    try:
        with transaction(db):
            locked = lock_sibling_group(
                db, conversation.connection_id, conversation.created_by_id
            )
            if conversation_id not in locked:
                raise NotFoundError(
                    ApiErrorCode.E_CONVERSATION_NOT_FOUND, "Conversation not found"
                )

            if promote:
                demote_siblings(
                    db,
                    conversation.connection_id,
                    conversation.created_by_id,
                    keep_id=conversation_id,
                )

            db.execute(
                text("""
                    UPDATE conversations
                    SET message_count = message_count + 1,
                        last_activity_at = now(),
                        updated_at = now(),
                        is_active = CASE WHEN :promote THEN true ELSE is_active END
                    WHERE id = :id
                """),
                {"id": conversation_id, "promote": promote},
            )

            message_row = db.execute(
                _INSERT_MESSAGE,
                {
                    "conversation_id": conversation_id,
                    "role": role,
                    "content": content,
                    "sql_query": sql_query,
                    "explanation": explanation,
                    "confidence": confidence,
                    "execution_time": execution_time,
                    "rows_affected": rows_affected,
                    "error": error,
                    "metadata": metadata or {},
                },
            ).fetchone()
    except IntegrityError as exc:
        _raise_if_active_conflict(exc)
        raise

    logger.info(
        "message_appended",
        conversation_id=str(conversation_id),
        message_id=str(message_row.id),
        role=role,
        content_chars=len(content),
    )

    return AppendMessageOut(message=_message_out(message_row), conversation_id=conversation_id)
