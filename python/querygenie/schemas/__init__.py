"""Pydantic schemas for request/response models.

All schemas are re-exported here for convenient imports.
"""

from querygenie.schemas.conversation import (
    AppendMessageOut,
    AppendMessageRequest,
    ConversationDetailOut,
    ConversationListOut,
    ConversationOut,
    CreateConversationRequest,
    MessageOut,
    UpdateConversationRequest,
)
from querygenie.schemas.keys import (
    ApiKeyCheckOut,
    ProviderAvailabilityOut,
    RevealedKeyOut,
    UserApiKeyCreate,
    UserApiKeyOut,
    UserApiKeyUpdate,
)
from querygenie.schemas.members import (
    AcceptedMembershipOut,
    InvitationSummaryOut,
    InviteMemberRequest,
    MemberOut,
    MembersListOut,
    PaginationOut,
    PendingInvitationOut,
)

__all__ = [
    # Conversation schemas
    "CreateConversationRequest",
    "UpdateConversationRequest",
    "AppendMessageRequest",
    "ConversationOut",
    "MessageOut",
    "AppendMessageOut",
    "ConversationDetailOut",
    "ConversationListOut",
    # API key schemas
    "UserApiKeyCreate",
    "UserApiKeyUpdate",
    "UserApiKeyOut",
    "RevealedKeyOut",
    "ProviderAvailabilityOut",
    "ApiKeyCheckOut",
    # Member schemas
    "InviteMemberRequest",
    "MemberOut",
    "PendingInvitationOut",
    "PaginationOut",
    "MembersListOut",
    "InvitationSummaryOut",
    "AcceptedMembershipOut",
]
