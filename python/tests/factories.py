"""Test data factories.

Centralizes helper functions that create database rows for tests.
Each factory knows the full schema requirements for its table,
so individual tests don't need to track NOT NULL constraints.

Factories only flush (session.execute); callers using direct_db commit
themselves and register cleanups.
"""

from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4

from sqlalchemy import text
from sqlalchemy.orm import Session

from tests.helpers import unique_email

# =============================================================================
# Users & Workspaces
# =============================================================================


def create_test_user(
    session: Session,
    email: str | None = None,
    name: str | None = "Test User",
    user_id: UUID | None = None,
) -> tuple[UUID, str]:
    """Create a user. Returns (user_id, email)."""
    user_id = user_id or uuid4()
    email = (email or unique_email()).lower()
    session.execute(
        text("INSERT INTO users (id, email, name) VALUES (:id, :email, :name)"),
        {"id": user_id, "email": email, "name": name},
    )
    return user_id, email


def create_test_workspace(
    session: Session,
    owner_id: UUID,
    name: str = "Test Workspace",
    is_active: bool = True,
) -> UUID:
    """Create a workspace plus the owner's membership."""
    workspace_id = uuid4()
    session.execute(
        text("""
            INSERT INTO workspaces (id, name, slug, owner_id, is_active)
            VALUES (:id, :name, :slug, :owner_id, :is_active)
        """),
        {
            "id": workspace_id,
            "name": name,
            "slug": f"ws-{workspace_id.hex[:12]}",
            "owner_id": owner_id,
            "is_active": is_active,
        },
    )
    add_membership(session, workspace_id, owner_id, "owner")
    return workspace_id


def add_membership(
    session: Session,
    workspace_id: UUID,
    user_id: UUID,
    role: str,
    is_active: bool = True,
) -> UUID:
    membership_id = uuid4()
    session.execute(
        text("""
            INSERT INTO memberships (id, workspace_id, user_id, role, is_active)
            VALUES (:id, :wid, :uid, :role, :is_active)
        """),
        {
            "id": membership_id,
            "wid": workspace_id,
            "uid": user_id,
            "role": role,
            "is_active": is_active,
        },
    )
    return membership_id


def create_member(session: Session, workspace_id: UUID, role: str) -> tuple[UUID, str]:
    """Create a user who is an active member with the given role."""
    user_id, email = create_test_user(session)
    add_membership(session, workspace_id, user_id, role)
    return user_id, email


# =============================================================================
# Invitations
# =============================================================================


def create_test_invitation(
    session: Session,
    workspace_id: UUID,
    email: str,
    role: str = "editor",
    status: str = "pending",
    expires_at: datetime | None = None,
    invited_by_id: UUID | None = None,
    token: str | None = None,
) -> tuple[UUID, str]:
    """Insert an invitation directly. Returns (invitation_id, token)."""
    invitation_id = uuid4()
    token = token or f"tok-{uuid4().hex}"
    session.execute(
        text("""
            INSERT INTO invitations (
                id, workspace_id, email, role, invited_by_id, token, status,
                expires_at, accepted_at
            )
            VALUES (
                :id, :wid, :email, :role, :inviter, :token, :status,
                :expires_at, CASE WHEN CAST(:status AS text) = 'accepted' THEN now() ELSE NULL END
            )
        """),
        {
            "id": invitation_id,
            "wid": workspace_id,
            "email": email.lower(),
            "role": role,
            "inviter": invited_by_id,
            "token": token,
            "status": status,
            "expires_at": expires_at or datetime.now(UTC) + timedelta(days=7),
        },
    )
    return invitation_id, token


# =============================================================================
# Connections, Conversations & Messages
# =============================================================================


def create_test_connection(
    session: Session,
    workspace_id: UUID,
    name: str = "Analytics DB",
    type_: str = "postgresql",
    is_active: bool = True,
) -> UUID:
    connection_id = uuid4()
    session.execute(
        text("""
            INSERT INTO connections (id, workspace_id, name, type, is_active)
            VALUES (:id, :wid, :name, :type, :is_active)
        """),
        {
            "id": connection_id,
            "wid": workspace_id,
            "name": name,
            "type": type_,
            "is_active": is_active,
        },
    )
    return connection_id


def create_test_conversation(
    session: Session,
    workspace_id: UUID,
    connection_id: UUID,
    created_by_id: UUID,
    title: str = "Test conversation",
    is_active: bool = False,
    conversation_id: UUID | None = None,
) -> UUID:
    """Insert a conversation row directly (no welcome message)."""
    conversation_id = conversation_id or uuid4()
    session.execute(
        text("""
            INSERT INTO conversations (
                id, workspace_id, connection_id, created_by_id, title, is_active
            )
            VALUES (:id, :wid, :cid, :uid, :title, :is_active)
        """),
        {
            "id": conversation_id,
            "wid": workspace_id,
            "cid": connection_id,
            "uid": created_by_id,
            "title": title,
            "is_active": is_active,
        },
    )
    return conversation_id


def active_conversation_ids(session: Session, connection_id: UUID, user_id: UUID) -> list[UUID]:
    """Ids of the non-deleted active conversations for a (connection, creator) pair."""
    rows = session.execute(
        text("""
            SELECT id FROM conversations
            WHERE connection_id = :cid AND created_by_id = :uid
              AND is_active AND deleted_at IS NULL
        """),
        {"cid": connection_id, "uid": user_id},
    ).fetchall()
    return [r[0] for r in rows]


# =============================================================================
# Workspace fixture bundle
# =============================================================================


def create_workspace_with_roles(session: Session) -> dict:
    """A workspace with one active user per role and a connection.

    Returns a dict with keys: workspace_id, connection_id, and for each role
    "<role>" -> (user_id, email).
    """
    owner_id, owner_email = create_test_user(session, name="Owner")
    workspace_id = create_test_workspace(session, owner_id)
    bundle = {
        "workspace_id": workspace_id,
        "owner": (owner_id, owner_email),
        "admin": create_member(session, workspace_id, "admin"),
        "editor": create_member(session, workspace_id, "editor"),
        "viewer": create_member(session, workspace_id, "viewer"),
        "connection_id": create_test_connection(session, workspace_id),
    }
    return bundle


def cleanup_workspace_bundle(direct_db, bundle: dict) -> None:
    """Register cleanups for everything create_workspace_with_roles made."""
    for role in ("owner", "admin", "editor", "viewer"):
        direct_db.register_cleanup("users", "id", bundle[role][0])
    direct_db.register_cleanup("workspaces", "id", bundle["workspace_id"])
    direct_db.register_cleanup("audit_logs", "workspace_id", bundle["workspace_id"])
