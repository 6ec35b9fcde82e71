"""Workspace permission oracle.

Answers "may this user perform this action on this kind of resource in
this workspace?" from the role stored on the user's membership row.

All functions:
- Accept an explicit SQLAlchemy Session
- Return booleans or mappings only (no HTTP exceptions)
- Fail closed: a missing user, missing or inactive workspace, inactive
  membership, or unknown resource/action all yield False
- Never consult client-supplied role claims

Routes turn a False into ForbiddenError via require_permission().
"""

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from querygenie.db.models import Membership, Workspace, WorkspaceRole
from querygenie.errors import ForbiddenError
from querygenie.logging import get_logger

logger = get_logger(__name__)

OWNER = WorkspaceRole.owner.value
ADMIN = WorkspaceRole.admin.value
EDITOR = WorkspaceRole.editor.value
VIEWER = WorkspaceRole.viewer.value

ALL_ROLES = frozenset({OWNER, ADMIN, EDITOR, VIEWER})
MANAGERS = frozenset({OWNER, ADMIN})
CONTRIBUTORS = frozenset({OWNER, ADMIN, EDITOR})
OWNER_ONLY = frozenset({OWNER})

# resource -> action -> roles allowed
PERMISSIONS: dict[str, dict[str, frozenset[str]]] = {
    "workspace": {
        "view": ALL_ROLES,
        "edit": MANAGERS,
        "delete": OWNER_ONLY,
        "invite": MANAGERS,
        "removeMembers": MANAGERS,
        "changeMemberRoles": MANAGERS,
    },
    "connections": {
        "view": ALL_ROLES,
        "create": MANAGERS,
        "edit": MANAGERS,
        "delete": MANAGERS,
        "test": CONTRIBUTORS,
        "ingestSchema": MANAGERS,
    },
    "queries": {
        "view": ALL_ROLES,
        "execute": CONTRIBUTORS,
        "save": CONTRIBUTORS,
        "delete": CONTRIBUTORS,
        "share": CONTRIBUTORS,
        "export": ALL_ROLES,
    },
    "docs": {
        "view": ALL_ROLES,
        "create": CONTRIBUTORS,
        "edit": CONTRIBUTORS,
        "delete": CONTRIBUTORS,
        "publish": MANAGERS,
    },
    "settings": {
        "view": MANAGERS,
        "edit": MANAGERS,
        "billing": OWNER_ONLY,
        "apiKeys": MANAGERS,
    },
}


def role_allows(role: str | None, resource: str, action: str) -> bool:
    """Pure matrix lookup. Unknown role, resource or action -> False."""
    if role is None:
        return False
    allowed = PERMISSIONS.get(resource, {}).get(action)
    if allowed is None:
        return False
    return role in allowed


def get_user_workspace_role(session: Session, user_id: UUID, workspace_id: UUID) -> str | None:
    """Return the user's role in an active workspace, or None.

    None covers: no membership, inactive membership, workspace missing,
    workspace inactive.
    """
    query = (
        select(Membership.role)
        .join(Workspace, Workspace.id == Membership.workspace_id)
        .where(
            Membership.workspace_id == workspace_id,
            Membership.user_id == user_id,
            Membership.is_active.is_(True),
            Workspace.is_active.is_(True),
        )
    )
    return session.execute(query).scalar_one_or_none()


def check_permission(
    session: Session,
    user_id: UUID,
    workspace_id: UUID,
    resource: str,
    action: str,
) -> bool:
    """Answer allow (True) or deny (False) for one action."""
    if PERMISSIONS.get(resource, {}).get(action) is None:
        logger.warning("permission_unknown_action", resource=resource, action=action)
        return False

    role = get_user_workspace_role(session, user_id, workspace_id)
    return role_allows(role, resource, action)


def check_multiple_permissions(
    session: Session,
    user_id: UUID,
    workspace_id: UUID,
    checks: Iterable[tuple[str, str]],
) -> dict[str, bool]:
    """Evaluate several (resource, action) pairs with a single role lookup.

    Returns:
        Mapping of "resource:action" -> bool.
    """
    role = get_user_workspace_role(session, user_id, workspace_id)
    return {
        f"{resource}:{action}": role_allows(role, resource, action) for resource, action in checks
    }


def require_permission(
    session: Session,
    user_id: UUID,
    workspace_id: UUID,
    resource: str,
    action: str,
) -> None:
    """Raise ForbiddenError unless check_permission allows the action."""
    if not check_permission(session, user_id, workspace_id, resource, action):
        logger.info(
            "permission_denied",
            workspace_id=str(workspace_id),
            resource=resource,
            action=action,
        )
        raise ForbiddenError(message="You do not have permission to perform this action")


def is_workspace_owner(session: Session, user_id: UUID, workspace_id: UUID) -> bool:
    return get_user_workspace_role(session, user_id, workspace_id) == OWNER


def is_workspace_admin(session: Session, user_id: UUID, workspace_id: UUID) -> bool:
    """True for owners and admins."""
    return get_user_workspace_role(session, user_id, workspace_id) in MANAGERS


def can_edit_content(session: Session, user_id: UUID, workspace_id: UUID) -> bool:
    """True for owners, admins and editors."""
    return get_user_workspace_role(session, user_id, workspace_id) in CONTRIBUTORS


def can_view_content(session: Session, user_id: UUID, workspace_id: UUID) -> bool:
    """True for any active member."""
    return get_user_workspace_role(session, user_id, workspace_id) in ALL_ROLES


def is_active_member(session: Session, user_id: UUID, workspace_id: UUID) -> bool:
    """Alias of can_view_content used by conversation access checks."""
    return can_view_content(session, user_id, workspace_id)


def list_user_workspaces(session: Session, user_id: UUID) -> list[tuple[UUID, str]]:
    """Return (workspace_id, role) for every active workspace the user belongs to."""
    query = (
        select(Membership.workspace_id, Membership.role)
        .join(Workspace, Workspace.id == Membership.workspace_id)
        .where(
            Membership.user_id == user_id,
            Membership.is_active.is_(True),
            Workspace.is_active.is_(True),
        )
        .order_by(Workspace.name)
    )
    return [(row.workspace_id, row.role) for row in session.execute(query)]
