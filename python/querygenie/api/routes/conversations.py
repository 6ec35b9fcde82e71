"""Conversation routes.

Routes are transport-only: each calls exactly one service function.

Endpoints:
- GET /conversations: the viewer's conversations in a workspace
- POST /conversations: create a conversation on a connection
- GET /conversations/{conversation_id}: conversation + messages
- PATCH /conversations/{conversation_id}: title/description/activity (creator only)
- DELETE /conversations/{conversation_id}: soft delete (creator only)
- POST /conversations/{conversation_id}/messages: append a message

Response envelope: {"data": ...}
Error envelope: {"error": {"code", "message", "request_id", "details"?}}
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from querygenie.api.deps import get_db
from querygenie.auth.middleware import Viewer, get_viewer
from querygenie.responses import success_response
from querygenie.schemas.conversation import (
    DEFAULT_CONVERSATION_LIMIT,
    DEFAULT_MESSAGE_LIMIT,
    MAX_LIMIT,
    AppendMessageRequest,
    CreateConversationRequest,
    UpdateConversationRequest,
)
from querygenie.services import conversations as conversations_service

router = APIRouter()


@router.get("/conversations")
def list_conversations(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    workspace_id: Annotated[UUID, Query(alias="workspaceId")],
    connection_id: Annotated[UUID | None, Query(alias="connectionId")] = None,
    limit: Annotated[int, Query(ge=1, le=MAX_LIMIT)] = DEFAULT_CONVERSATION_LIMIT,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> dict:
    """List the viewer's non-deleted conversations, most recent activity first.

    Errors:
        E_FORBIDDEN (403): Viewer is not an active member of the workspace.
    """
    result = conversations_service.list_conversations(
        db,
        viewer_id=viewer.user_id,
        workspace_id=workspace_id,
        connection_id=connection_id,
        limit=limit,
        offset=offset,
    )
    return success_response(result.model_dump(mode="json"))


@router.post("/conversations", status_code=201)
def create_conversation(
    body: CreateConversationRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Create a conversation.

    Errors:
        E_CONNECTION_NOT_FOUND (404): Connection missing, inactive or in another workspace.
        E_FORBIDDEN (403): Viewer is not an active member of the workspace.
        E_CONVERSATION_CONFLICT (409): Concurrent activation on the same connection.
    """
    conversation = conversations_service.create_conversation(
        db,
        viewer_id=viewer.user_id,
        workspace_id=body.workspace_id,
        connection_id=body.connection_id,
        title=body.title,
        description=body.description,
        is_active=body.is_active,
    )
    return success_response(conversation.model_dump(mode="json"))


@router.get("/conversations/{conversation_id}")
def get_conversation(
    conversation_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    limit: Annotated[int, Query(ge=1, le=MAX_LIMIT)] = DEFAULT_MESSAGE_LIMIT,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> dict:
    """Get a conversation with a page of its messages, oldest first."""
    detail = conversations_service.get_conversation(
        db,
        viewer_id=viewer.user_id,
        conversation_id=conversation_id,
        limit=limit,
        offset=offset,
    )
    return success_response(detail.model_dump(mode="json"))


@router.patch("/conversations/{conversation_id}")
def update_conversation(
    conversation_id: UUID,
    body: UpdateConversationRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Update a conversation. Setting isActive=true deactivates its siblings."""
    conversation = conversations_service.update_conversation(
        db,
        viewer_id=viewer.user_id,
        conversation_id=conversation_id,
        title=body.title,
        description=body.description,
        is_active=body.is_active,
    )
    return success_response(conversation.model_dump(mode="json"))


@router.delete("/conversations/{conversation_id}", status_code=204)
def delete_conversation(
    conversation_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> Response:
    """Soft delete a conversation."""
    conversations_service.delete_conversation(
        db, viewer_id=viewer.user_id, conversation_id=conversation_id
    )
    return Response(status_code=204)


@router.post("/conversations/{conversation_id}/messages", status_code=201)
def append_message(
    conversation_id: UUID,
    body: AppendMessageRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Append a message. A user message makes this the active conversation.

    Returns:
        201 Created: {"data": {"message": MessageOut, "conversation_id": "..."}}

    Errors:
        E_VALIDATION (400): One detail per offending field.
        E_CONVERSATION_NOT_FOUND (404): Missing or soft-deleted.
        E_FORBIDDEN (403): Neither creator nor active workspace member.
        E_CONVERSATION_CONFLICT (409): Concurrent activation on the same connection.
    """
    result = conversations_service.append_message(
        db,
        viewer_id=viewer.user_id,
        conversation_id=conversation_id,
        role=body.role,
        content=body.content,
        sql_query=body.sql_query,
        explanation=body.explanation,
        confidence=body.confidence,
        execution_time=body.execution_time,
        rows_affected=body.rows_affected,
        error=body.error,
        metadata=body.metadata,
    )
    return success_response(result.model_dump(mode="json"))
