"""Database session management and transaction helpers.

Provides:
- Request-scoped database sessions via get_db() dependency
- transaction(): commit-or-rollback scope for a write sequence
- is_constraint_violation(): map an IntegrityError to the constraint that raised it
"""

from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from querygenie.db.engine import get_engine

_SessionLocal: sessionmaker[Session] | None = None


def create_session_factory(engine: Any = None) -> sessionmaker[Session]:
    """Create a session factory bound to an engine (default engine if None)."""
    if engine is None:
        engine = get_engine()

    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


def get_session_factory() -> sessionmaker[Session]:
    """Get or create the default session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = create_session_factory()
    return _SessionLocal


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency that provides a database session.

    Usage:
        @router.get("/endpoint")
        def endpoint(db: Annotated[Session, Depends(get_db)]):
            ...
    """
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session) -> Generator[None, None, None]:
    """Run a write sequence atomically.

    Commits on success. On any exception (including client-disconnect
    cancellation surfacing as an exception) the whole sequence is rolled
    back, so callers never leave rows half-transitioned.

    Usage:
        with transaction(db):
            db.execute(...)
            db.execute(...)
    """
    try:
        yield
        db.commit()
    except Exception:
        db.rollback()
        raise


def is_constraint_violation(exc: IntegrityError, constraint: str) -> bool:
    """True if the IntegrityError was raised by the named constraint or index."""
    diag = getattr(exc.orig, "diag", None)
    constraint_name = getattr(diag, "constraint_name", None) or ""
    return constraint_name == constraint or constraint in str(exc.orig)
