"""Business logic services.

This module contains service-layer functions that implement business logic.
Services are called by route handlers and orchestrate database operations.
"""

from querygenie.services.bootstrap import ensure_user
from querygenie.services.conversations import append_message, create_conversation
from querygenie.services.members import invite, redeem_invitation
from querygenie.services.user_keys import resolve_credential, upsert_user_key

__all__ = [
    "ensure_user",
    "create_conversation",
    "append_message",
    "invite",
    "redeem_invitation",
    "upsert_user_key",
    "resolve_credential",
]
