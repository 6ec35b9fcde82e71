"""Workspace membership and invitation service layer.

All member-domain business logic lives here. Routes call exactly one
function from this module.

Invitation lifecycle:
    pending -> accepted   (redeem_invitation)
    pending -> expired    (lazily, on invite or redeem once expires_at has passed)
    pending -> revoked    (revoke_invitation)

The invitation token is a bearer secret: it is returned by nothing here,
and only its hash prefix is ever logged.
"""

import math
import secrets
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from querygenie.auth.permissions import is_workspace_owner, require_permission
from querygenie.config import Settings, get_settings
from querygenie.db.session import is_constraint_violation, transaction
from querygenie.errors import (
    ApiError,
    ApiErrorCode,
    ConflictError,
    ForbiddenError,
    InvalidRequestError,
    NotFoundError,
)
from querygenie.logging import get_logger
from querygenie.schemas.members import (
    AcceptedMembershipOut,
    InvitationSummaryOut,
    MemberOut,
    MembersListOut,
    PaginationOut,
    PendingInvitationOut,
)
from querygenie.services.audit import RequestMeta, write_audit_log
from querygenie.services.email import EmailSender, build_invitation_email
from querygenie.services.redact import hash_prefix, safe_kv

logger = get_logger(__name__)

MAX_MEMBERS_LIMIT = 100
TOKEN_BYTES = 32

MEMBER_EXISTS_MESSAGE = "User is already a member of this workspace"
INVITE_EXISTS_MESSAGE = "An invitation has already been sent to this email"

# Whitelisted ORDER BY expressions for list_members
_MEMBER_SORT_COLUMNS = {
    "created_at": "m.created_at",
    "role": "m.role",
    "email": "u.email",
}


def normalize_email(email: str) -> str:
    return email.strip().lower()


# =============================================================================
# Listing
# =============================================================================


def list_members(
    db: Session,
    viewer_id: UUID,
    workspace_id: UUID,
    page: int = 1,
    limit: int = 20,
    sort: str = "created_at",
    order: str = "desc",
) -> MembersListOut:
    """List active members plus pending, unexpired invitations.

    Auth: workspace:view.

    Raises:
        InvalidRequestError: page < 1, limit outside 1..100, unknown sort/order.
        ForbiddenError: viewer may not view the workspace.
    """
    if page < 1:
        raise InvalidRequestError(message="Page must be at least 1")
    if limit < 1 or limit > MAX_MEMBERS_LIMIT:
        raise InvalidRequestError(message=f"Limit must be between 1 and {MAX_MEMBERS_LIMIT}")
    sort_column = _MEMBER_SORT_COLUMNS.get(sort)
    if sort_column is None:
        raise InvalidRequestError(message=f"Unknown sort field: {sort}")
    if order not in ("asc", "desc"):
        raise InvalidRequestError(message="Order must be 'asc' or 'desc'")

    require_permission(db, viewer_id, workspace_id, "workspace", "view")

    total = db.execute(
        text("""
            SELECT count(*) FROM memberships
            WHERE workspace_id = :wid AND is_active
        """),
        {"wid": workspace_id},
    ).scalar_one()

    # sort_column and order are whitelisted above
    member_rows = db.execute(
        text(f"""
            SELECT m.id, u.id, u.name, u.email, u.avatar_url, m.role, m.created_at
            FROM memberships m
            JOIN users u ON u.id = m.user_id
            WHERE m.workspace_id = :wid AND m.is_active
            ORDER BY {sort_column} {order.upper()}, m.id {order.upper()}
            LIMIT :limit OFFSET :offset
        """),
        {"wid": workspace_id, "limit": limit, "offset": (page - 1) * limit},
    ).fetchall()

    invitation_rows = db.execute(
        text("""
            SELECT id, email, role, created_at, expires_at
            FROM invitations
            WHERE workspace_id = :wid
              AND status = 'pending'
              AND expires_at > now()
            ORDER BY created_at DESC, id DESC
        """),
        {"wid": workspace_id},
    ).fetchall()

    return MembersListOut(
        members=[
            MemberOut(
                id=r[0],
                user_id=r[1],
                name=r[2],
                email=r[3],
                avatar_url=r[4],
                role=r[5],
                joined_at=r[6],
            )
            for r in member_rows
        ],
        invitations=[
            PendingInvitationOut(
                id=r[0], email=r[1], role=r[2], invited_at=r[3], expires_at=r[4]
            )
            for r in invitation_rows
        ],
        pagination=PaginationOut(
            page=page,
            limit=limit,
            total=total,
            pages=math.ceil(total / limit) if total else 0,
        ),
    )


# =============================================================================
# Invite
# =============================================================================


def invite(
    db: Session,
    viewer_id: UUID,
    workspace_id: UUID,
    email: str,
    role: str,
    message: str | None = None,
    *,
    sender: EmailSender,
    settings: Settings | None = None,
    meta: RequestMeta | None = None,
) -> InvitationSummaryOut:
    """Invite an email address to a workspace.

    Auth: workspace:invite. Only owners may invite with role owner.

    Checks run in a fixed order and each one short-circuits:
    1. an active member with this email -> E_MEMBER_EXISTS
    2. a pending, unexpired invitation for this email -> E_INVITE_EXISTS
       (stale pending invitations are moved to expired first)
    3. insert; a race on uix_invitations_pending_once -> E_INVITE_EXISTS

    After commit the invitation email is sent and the audit row written.
    Neither failure affects the invitation.
    """
    settings = settings or get_settings()
    email = normalize_email(email)

    require_permission(db, viewer_id, workspace_id, "workspace", "invite")
    if role == "owner" and not is_workspace_owner(db, viewer_id, workspace_id):
        raise ForbiddenError(message="Only owners can invite owners")

    token = secrets.token_urlsafe(TOKEN_BYTES)

    try:
        with transaction(db):
            member_exists = db.execute(
                text("""
                    SELECT 1
                    FROM memberships m
                    JOIN users u ON u.id = m.user_id
                    WHERE m.workspace_id = :wid
                      AND u.email = :email
                      AND m.is_active
                    LIMIT 1
                """),
                {"wid": workspace_id, "email": email},
            ).fetchone()
            if member_exists is not None:
                raise ConflictError(ApiErrorCode.E_MEMBER_EXISTS, MEMBER_EXISTS_MESSAGE)

            db.execute(
                text("""
                    UPDATE invitations
                    SET status = 'expired'
                    WHERE workspace_id = :wid
                      AND email = :email
                      AND status = 'pending'
                      AND expires_at <= now()
                """),
                {"wid": workspace_id, "email": email},
            )

            pending_exists = db.execute(
                text("""
                    SELECT 1 FROM invitations
                    WHERE workspace_id = :wid AND email = :email AND status = 'pending'
                """),
                {"wid": workspace_id, "email": email},
            ).fetchone()
            if pending_exists is not None:
                raise ConflictError(ApiErrorCode.E_INVITE_EXISTS, INVITE_EXISTS_MESSAGE)

            row = db.execute(
                text("""
                    INSERT INTO invitations
                        (workspace_id, email, role, invited_by_id, token, status, expires_at)
                    VALUES
                        (:wid, :email, :role, :inviter, :token, 'pending',
                         now() + :ttl_days * interval '1 day')
                    RETURNING id, email, role, expires_at
                """),
                {
                    "wid": workspace_id,
                    "email": email,
                    "role": role,
                    "inviter": viewer_id,
                    "token": token,
                    "ttl_days": settings.invitation_ttl_days,
                },
            ).fetchone()

            context = db.execute(
                text("""
                    SELECT w.name, COALESCE(u.name, u.email)
                    FROM workspaces w
                    LEFT JOIN users u ON u.id = :inviter
                    WHERE w.id = :wid
                """),
                {"wid": workspace_id, "inviter": viewer_id},
            ).fetchone()
    except IntegrityError as exc:
        if is_constraint_violation(exc, "uix_invitations_pending_once"):
            raise ConflictError(ApiErrorCode.E_INVITE_EXISTS, INVITE_EXISTS_MESSAGE) from exc
        raise

    summary = InvitationSummaryOut(id=row[0], email=row[1], role=row[2], expires_at=row[3])

    logger.info(
        "invitation_created",
        **safe_kv(
            invitation_id=str(summary.id),
            workspace_id=str(workspace_id),
            role=role,
            email_hash_prefix=hash_prefix(email),
            token_hash_prefix=hash_prefix(token),
        ),
    )

    email_message = build_invitation_email(
        to=email,
        invite_url=f"{settings.invitation_base_url}/invitations/{token}",
        workspace_name=context[0],
        role=role,
        inviter_name=context[1],
        personal_message=message,
        expires_in_days=settings.invitation_ttl_days,
    )
    if not sender.send(email_message):
        logger.warning("invitation_email_failed", invitation_id=str(summary.id))

    write_audit_log(
        db,
        action="member.invited",
        resource="invitation",
        user_id=viewer_id,
        workspace_id=workspace_id,
        resource_id=summary.id,
        metadata={"email": email, "role": role},
        meta=meta,
    )

    return summary


# =============================================================================
# Redeem
# =============================================================================


def redeem_invitation(
    db: Session,
    user_id: UUID,
    user_email: str | None,
    token: str,
    meta: RequestMeta | None = None,
) -> AcceptedMembershipOut:
    """Accept an invitation on behalf of the authenticated user.

    Transactional: lock invitation -> state checks -> accept -> membership upsert.

    An expired invitation is marked expired and committed before
    E_INVITE_EXPIRED is raised; no membership is created.

    Raises:
        NotFoundError: Unknown token.
        ConflictError: Invitation is not pending.
        ApiError: E_INVITE_EXPIRED (410).
        ForbiddenError: Caller's email differs from the invited email.
    """
    expired = False

    with transaction(db):
        inv = db.execute(
            text("""
                SELECT id, workspace_id, email, role, status, expires_at <= now() AS is_expired
                FROM invitations
                WHERE token = :token
                FOR UPDATE
            """),
            {"token": token},
        ).fetchone()

        if inv is None:
            raise NotFoundError(ApiErrorCode.E_INVITE_NOT_FOUND, "Invitation not found")

        invitation_id, workspace_id, invited_email, role, status, is_expired = inv

        if status != "pending":
            raise ConflictError(ApiErrorCode.E_INVITE_NOT_PENDING, "Invitation is not pending")

        if is_expired:
            db.execute(
                text("UPDATE invitations SET status = 'expired' WHERE id = :id"),
                {"id": invitation_id},
            )
            expired = True
        else:
            if user_email is None or normalize_email(user_email) != invited_email:
                raise ForbiddenError(
                    ApiErrorCode.E_INVITE_EMAIL_MISMATCH,
                    "This invitation was sent to a different email address",
                )

            db.execute(
                text("""
                    UPDATE invitations
                    SET status = 'accepted', accepted_at = now()
                    WHERE id = :id
                """),
                {"id": invitation_id},
            )

            db.execute(
                text("""
                    INSERT INTO memberships (workspace_id, user_id, role, is_active)
                    VALUES (:wid, :uid, :role, true)
                    ON CONFLICT (workspace_id, user_id)
                    DO UPDATE SET role = EXCLUDED.role, is_active = true
                """),
                {"wid": workspace_id, "uid": user_id, "role": role},
            )

    if expired:
        logger.info("invitation_expired", invitation_id=str(invitation_id))
        raise ApiError(ApiErrorCode.E_INVITE_EXPIRED, "Invitation has expired")

    logger.info(
        "invitation_accepted",
        invitation_id=str(invitation_id),
        workspace_id=str(workspace_id),
        role=role,
    )

    write_audit_log(
        db,
        action="member.joined",
        resource="membership",
        user_id=user_id,
        workspace_id=workspace_id,
        resource_id=invitation_id,
        metadata={"role": role},
        meta=meta,
    )

    return AcceptedMembershipOut(
        workspace_id=workspace_id,
        user_id=user_id,
        role=role,
        invitation_id=invitation_id,
    )


# =============================================================================
# Revoke
# =============================================================================


def revoke_invitation(
    db: Session,
    viewer_id: UUID,
    workspace_id: UUID,
    invitation_id: UUID,
    meta: RequestMeta | None = None,
) -> None:
    """Revoke a pending invitation. Auth: workspace:invite."""
    require_permission(db, viewer_id, workspace_id, "workspace", "invite")

    with transaction(db):
        row = db.execute(
            text("""
                SELECT status FROM invitations
                WHERE id = :id AND workspace_id = :wid
                FOR UPDATE
            """),
            {"id": invitation_id, "wid": workspace_id},
        ).fetchone()

        if row is None:
            raise NotFoundError(ApiErrorCode.E_INVITE_NOT_FOUND, "Invitation not found")
        if row[0] != "pending":
            raise ConflictError(ApiErrorCode.E_INVITE_NOT_PENDING, "Invitation is not pending")

        db.execute(
            text("UPDATE invitations SET status = 'revoked' WHERE id = :id"),
            {"id": invitation_id},
        )

    logger.info(
        "invitation_revoked",
        invitation_id=str(invitation_id),
        workspace_id=str(workspace_id),
    )

    write_audit_log(
        db,
        action="member.invitation_revoked",
        resource="invitation",
        user_id=viewer_id,
        workspace_id=workspace_id,
        resource_id=invitation_id,
        meta=meta,
    )
