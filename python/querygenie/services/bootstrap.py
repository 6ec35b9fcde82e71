"""User bootstrap service.

Mirrors the authenticated identity into the users table on each request so
that memberships, invitations and conversations can reference it, and so
that invitations can be matched to accounts by email.
"""

import logging
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from querygenie.db.session import transaction

logger = logging.getLogger(__name__)

_UPSERT_USER = text("""
    INSERT INTO users (id, email, name)
    VALUES (:user_id, :email, :name)
    ON CONFLICT (id) DO UPDATE
    SET email = COALESCE(EXCLUDED.email, users.email),
        name = COALESCE(users.name, EXCLUDED.name)
    WHERE users.email IS DISTINCT FROM COALESCE(EXCLUDED.email, users.email)
       OR (users.name IS NULL AND EXCLUDED.name IS NOT NULL)
""")


def ensure_user(db: Session, user_id: UUID, email: str | None, name: str | None = None) -> None:
    """Ensure a users row exists for the caller and carries the latest email.

    Race-safe and idempotent: concurrent first requests converge via
    ON CONFLICT. If the email is already held by a different user id
    (identity provider re-issued an account), the row is still created but
    without the email, and the collision is logged.
    """
    email = email.strip().lower() if email else None
    params = {"user_id": user_id, "email": email, "name": name}

    try:
        with transaction(db):
            db.execute(_UPSERT_USER, params)
    except IntegrityError:
        logger.warning("user_email_conflict", extra={"user_id": str(user_id)})
        with transaction(db):
            db.execute(_UPSERT_USER, {**params, "email": None})


def create_bootstrap_callback(session_factory: sessionmaker[Session]):
    """Build the AuthMiddleware callback; each call uses its own session."""

    def bootstrap(user_id: UUID, email: str | None, name: str | None = None) -> None:
        db = session_factory()
        try:
            ensure_user(db, user_id, email, name)
        finally:
            db.close()

    return bootstrap
