"""Invitation redemption route.

POST /invitations/{token}/accept redeems an invitation for the
authenticated viewer. The token is a path segment; request logging
replaces it with a placeholder (see middleware.request_id.loggable_path).
"""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from querygenie.api.deps import get_db, get_request_meta
from querygenie.auth.middleware import Viewer, get_viewer
from querygenie.responses import success_response
from querygenie.services import members as members_service
from querygenie.services.audit import RequestMeta

router = APIRouter()


@router.post("/invitations/{token}/accept")
def accept_invitation(
    token: str,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    meta: Annotated[RequestMeta, Depends(get_request_meta)],
) -> dict:
    """Accept an invitation.

    Returns:
        200 OK: {"data": {"workspace_id", "user_id", "role", "invitation_id"}}

    Errors:
        E_INVITE_NOT_FOUND (404): Unknown token.
        E_INVITE_NOT_PENDING (409): Already accepted, expired or revoked.
        E_INVITE_EXPIRED (410): Past expires_at.
        E_INVITE_EMAIL_MISMATCH (403): Invited email differs from the viewer's.
    """
    membership = members_service.redeem_invitation(
        db,
        user_id=viewer.user_id,
        user_email=viewer.email,
        token=token,
        meta=meta,
    )
    return success_response(membership.model_dump(mode="json"))
