"""Audit trail writer.

Audit records are written after the audited mutation has committed, in
their own short transaction. A failed audit write is logged and
swallowed: it never fails or rolls back the operation being audited.
"""

from dataclasses import dataclass
from typing import Any
from uuid import UUID

from fastapi import Request
from sqlalchemy import bindparam, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from querygenie.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RequestMeta:
    """Network identity of the caller, recorded on audit entries."""

    ip_address: str | None = None
    user_agent: str | None = None

    @classmethod
    def from_request(cls, request: Request) -> "RequestMeta":
        """Read values captured by RequestIDMiddleware, falling back to headers."""
        ip = getattr(request.state, "client_ip", None)
        if ip is None:
            forwarded = request.headers.get("x-forwarded-for")
            ip = forwarded.split(",")[0].strip() if forwarded else request.headers.get("x-real-ip")
        user_agent = getattr(request.state, "user_agent", None) or request.headers.get(
            "user-agent"
        )
        return cls(ip_address=ip, user_agent=user_agent)


def write_audit_log(
    db: Session,
    *,
    action: str,
    resource: str,
    user_id: UUID | None,
    workspace_id: UUID | None = None,
    resource_id: UUID | str | None = None,
    metadata: dict[str, Any] | None = None,
    meta: RequestMeta | None = None,
) -> bool:
    """Insert one audit row. Returns False (after logging) if the write failed.

    Args:
        action: Dotted action name, e.g. "member.invited".
        resource: Resource kind, e.g. "invitation".
        metadata: Free-form details. Must not contain secrets.
    """
    meta = meta or RequestMeta()
    try:
        db.execute(
            text("""
                INSERT INTO audit_logs (
                    workspace_id, user_id, action, resource, resource_id,
                    metadata, ip_address, user_agent
                )
                VALUES (
                    :workspace_id, :user_id, :action, :resource, :resource_id,
                    :metadata, :ip_address, :user_agent
                )
            """).bindparams(bindparam("metadata", type_=JSONB)),
            {
                "workspace_id": workspace_id,
                "user_id": user_id,
                "action": action,
                "resource": resource,
                "resource_id": str(resource_id) if resource_id is not None else None,
                "metadata": metadata or {},
                "ip_address": meta.ip_address,
                "user_agent": meta.user_agent,
            },
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(
            "audit_write_failed",
            action=action,
            resource=resource,
            error_type=type(e).__name__,
        )
        return False

    return True
