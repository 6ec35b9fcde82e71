"""Database module for QueryGenie.

Provides engine creation, session management, transaction helpers, and ORM models.
"""

from querygenie.db.engine import create_db_engine, get_engine
from querygenie.db.models import (
    AuditLog,
    Base,
    Connection,
    Conversation,
    Invitation,
    InvitationStatus,
    LLMProvider,
    Membership,
    Message,
    MessageRole,
    User,
    UserApiKey,
    Workspace,
    WorkspaceRole,
)
from querygenie.db.session import get_db, transaction

__all__ = [
    # Engine and session
    "create_db_engine",
    "get_engine",
    "get_db",
    "transaction",
    # Base
    "Base",
    # Enums
    "WorkspaceRole",
    "InvitationStatus",
    "MessageRole",
    "LLMProvider",
    # Models
    "User",
    "Workspace",
    "Membership",
    "Invitation",
    "Connection",
    "AuditLog",
    "Conversation",
    "Message",
    "UserApiKey",
]
