"""Workspace member and invitation Pydantic schemas.

Contains request and response models for the members and invitation
endpoints. Invitation tokens never appear in any response model here.
"""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field

WorkspaceRoleValue = Literal["owner", "admin", "editor", "viewer"]
MemberSortField = Literal["created_at", "role", "email"]
SortOrder = Literal["asc", "desc"]

__all__ = [
    "WorkspaceRoleValue",
    "MemberSortField",
    "SortOrder",
    "InviteMemberRequest",
    "MemberOut",
    "PendingInvitationOut",
    "PaginationOut",
    "MembersListOut",
    "InvitationSummaryOut",
    "AcceptedMembershipOut",
]

# =============================================================================
# Request Schemas
# =============================================================================


class InviteMemberRequest(BaseModel):
    """Request body for inviting a user to a workspace by email."""

    email: EmailStr = Field(..., description="Invitee email address")
    role: WorkspaceRoleValue = Field(..., description="Role granted on acceptance")
    message: str | None = Field(
        default=None, max_length=500, description="Optional personal note for the email"
    )


# =============================================================================
# Response Schemas
# =============================================================================


class MemberOut(BaseModel):
    """An active workspace member."""

    id: UUID
    user_id: UUID
    name: str | None = None
    email: str | None = None
    avatar_url: str | None = None
    role: str
    joined_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PendingInvitationOut(BaseModel):
    """A pending, unexpired invitation. Never carries the token."""

    id: UUID
    email: str
    role: str
    invited_at: datetime
    expires_at: datetime


class PaginationOut(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class MembersListOut(BaseModel):
    """Response for GET /workspaces/{id}/members."""

    members: list[MemberOut]
    invitations: list[PendingInvitationOut]
    pagination: PaginationOut


class InvitationSummaryOut(BaseModel):
    """Returned after an invitation is issued."""

    id: UUID
    email: str
    role: str
    expires_at: datetime


class AcceptedMembershipOut(BaseModel):
    """Returned after an invitation is redeemed."""

    workspace_id: UUID
    user_id: UUID
    role: str
    invitation_id: UUID
