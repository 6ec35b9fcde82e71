"""Workspace member routes.

Routes are transport-only: each calls exactly one service function.

- GET /workspaces/{workspace_id}/members: members + pending invitations
- POST /workspaces/{workspace_id}/members: invite by email
- DELETE /workspaces/{workspace_id}/invitations/{invitation_id}: revoke

Response envelope: {"data": ...}
Error envelope: {"error": {"code": "...", "message": "...", "request_id": "..."}}
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from querygenie.api.deps import get_db, get_email_sender, get_request_meta
from querygenie.auth.middleware import Viewer, get_viewer
from querygenie.responses import success_response
from querygenie.schemas.members import InviteMemberRequest, MemberSortField, SortOrder
from querygenie.services import members as members_service
from querygenie.services.audit import RequestMeta
from querygenie.services.email import EmailSender

router = APIRouter()


@router.get("/workspaces/{workspace_id}/members")
def list_members(
    workspace_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    sort: MemberSortField = "created_at",
    order: SortOrder = "desc",
) -> dict:
    """List active members and pending invitations of a workspace.

    Errors:
        E_FORBIDDEN (403): Viewer is not an active member.
        E_INVALID_REQUEST (400): Bad page/limit/sort/order.
    """
    result = members_service.list_members(
        db,
        viewer_id=viewer.user_id,
        workspace_id=workspace_id,
        page=page,
        limit=limit,
        sort=sort,
        order=order,
    )
    return success_response(result.model_dump(mode="json"))


@router.post("/workspaces/{workspace_id}/members", status_code=201)
def invite_member(
    workspace_id: UUID,
    body: InviteMemberRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    sender: Annotated[EmailSender, Depends(get_email_sender)],
    meta: Annotated[RequestMeta, Depends(get_request_meta)],
) -> dict:
    """Invite a user by email.

    Returns:
        201 Created: {"data": {"id", "email", "role", "expires_at"}}

    Errors:
        E_FORBIDDEN (403): Viewer may not invite.
        E_MEMBER_EXISTS (409): Email belongs to an active member.
        E_INVITE_EXISTS (409): A pending invitation already exists.
    """
    summary = members_service.invite(
        db,
        viewer_id=viewer.user_id,
        workspace_id=workspace_id,
        email=body.email,
        role=body.role,
        message=body.message,
        sender=sender,
        meta=meta,
    )
    return success_response(summary.model_dump(mode="json"))


@router.delete("/workspaces/{workspace_id}/invitations/{invitation_id}", status_code=204)
def revoke_invitation(
    workspace_id: UUID,
    invitation_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    meta: Annotated[RequestMeta, Depends(get_request_meta)],
) -> Response:
    """Revoke a pending invitation.

    Errors:
        E_FORBIDDEN (403): Viewer may not invite.
        E_INVITE_NOT_FOUND (404): No such invitation in this workspace.
        E_INVITE_NOT_PENDING (409): Already accepted, expired or revoked.
    """
    members_service.revoke_invitation(
        db,
        viewer_id=viewer.user_id,
        workspace_id=workspace_id,
        invitation_id=invitation_id,
        meta=meta,
    )
    return Response(status_code=204)
