"""Test utilities for database isolation.

Two isolation strategies:
- TestDatabaseManager: one connection, outer transaction rolled back after
  the test; service commits become savepoint releases.
- DirectSessionManager: independent, really-committing sessions for tests
  that need several connections (HTTP round trips, row-lock races). Rows
  are removed afterwards via registered cleanups.
"""

import time
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import Connection, Engine, text
from sqlalchemy.orm import Session


class DirectSessionManager:
    """Manager for tests that need direct DB access without savepoint isolation.

    WARNING: Tests using this do NOT auto-rollback. They must register
    cleanup data or manually clean up.

    Usage:
        def test_something(self, direct_db: DirectSessionManager):
            # Register parents first; cleanup runs in reverse order
            direct_db.register_cleanup("workspaces", "id", workspace_id)
            direct_db.register_cleanup("conversations", "workspace_id", workspace_id)

            with direct_db.committed() as s:
                s.execute(...)
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self._cleanup_items: list[tuple[str, str, Any]] = []

    def session(self) -> Session:
        """Create a new independent session. Caller commits and closes."""
        return Session(self.engine)

    @contextmanager
    def committed(self) -> Generator[Session, None, None]:
        """Session that commits on clean exit."""
        with Session(self.engine) as session:
            yield session
            session.commit()

    def register_cleanup(self, table: str, column: str, value: Any) -> None:
        """Register rows to delete after the test (LIFO order).

        Register parent tables before child tables.
        """
        self._cleanup_items.append((table, column, value))

    def cleanup(self) -> None:
        """Delete all registered test data in reverse order."""
        if not self._cleanup_items:
            return

        with Session(self.engine) as session:
            for table, column, value in reversed(self._cleanup_items):
                session.execute(
                    text(f"DELETE FROM {table} WHERE {column} = :value"),
                    {"value": value},
                )
            session.commit()
        self._cleanup_items.clear()


class TestDatabaseManager:
    """Savepoint-isolated session for a single test.

    Usage in conftest.py:
        @pytest.fixture
        def db_session(engine):
            with TestDatabaseManager(engine) as session:
                yield session
    """

    __test__ = False

    def __init__(self, engine: Engine):
        self.engine = engine
        self._connection: Connection | None = None
        self._session: Session | None = None

    def __enter__(self) -> Session:
        self._connection = self.engine.connect()
        self._connection.begin()

        self._session = Session(
            bind=self._connection,
            join_transaction_mode="create_savepoint",
        )
        return self._session

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._session:
            self._session.close()
        if self._connection:
            self._connection.rollback()
            self._connection.close()


def wait_for_lock_waiter(engine: Engine, timeout_s: float = 10.0) -> None:
    """Block until some other backend in this database is waiting on a lock.

    Lets a test hold a transaction open until a concurrent writer is known
    to be queued behind it.
    """
    deadline = time.monotonic() + timeout_s
    while time.monotonic() < deadline:
        with engine.connect() as conn:
            waiting = conn.execute(
                text("""
                    SELECT count(*)
                    FROM pg_stat_activity
                    WHERE datname = current_database()
                      AND wait_event_type = 'Lock'
                      AND pid <> pg_backend_pid()
                """)
            ).scalar()
        if waiting:
            return
        time.sleep(0.05)
    raise AssertionError(f"no backend waited on a lock within {timeout_s}s")
