"""Pytest configuration and fixtures for QueryGenie tests.

Test isolation strategy:
- Tests that use db_session get a nested transaction (savepoint) that rolls back
- Tests needing multiple connections (HTTP round trips, lock races) use direct_db
- Auth tests use auth_client with test JWT tokens minted by tests.helpers
- Tests that touch the database are skipped when DATABASE_URL is not set
"""

import base64
import os
from collections.abc import Generator

# Settings are read lazily; make the process look like a test deployment
# before anything imports querygenie.config.
_DATABASE_URL = os.environ.get("DATABASE_URL")
os.environ.setdefault("QUERYGENIE_ENV", "test")
os.environ.setdefault("DATABASE_URL", "postgresql+psycopg://localhost:5432/querygenie_test")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import Engine, create_engine, text
from sqlalchemy.orm import Session

from querygenie.app import create_app
from querygenie.config import clear_settings_cache
from querygenie.services.crypto import MASTER_KEY_ENV, MASTER_KEY_SIZE, clear_master_key_cache
from querygenie.services.email import LogEmailSender
from tests.support.email import RecordingEmailSender
from tests.support.test_verifier import MockJwtVerifier
from tests.utils.db import DirectSessionManager, TestDatabaseManager

TEST_MASTER_KEY = b"test_master_key_for_encryption!!"


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    """Database engine shared across the test session.

    Skips the requesting test when no database is configured, and fails
    fast with a helpful message when migrations have not been run.
    """
    if not _DATABASE_URL:
        pytest.skip("DATABASE_URL not set; skipping database tests")

    engine = create_engine(_DATABASE_URL)

    with engine.connect() as conn:
        schema_exists = conn.execute(
            text(
                "SELECT EXISTS ("
                "SELECT 1 FROM information_schema.tables "
                "WHERE table_schema = 'public' AND table_name = 'conversations'"
                ")"
            )
        ).scalar()

    if not schema_exists:
        pytest.fail(
            "Database schema not found. Run migrations first:\n"
            "  cd migrations && alembic upgrade head"
        )

    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine: Engine) -> Generator[Session, None, None]:
    """Provide a database session with savepoint isolation.

    Note: Do not use this fixture for tests that need multiple independent
    connections. Use direct_db instead.
    """
    with TestDatabaseManager(engine) as session:
        yield session


@pytest.fixture
def direct_db(engine: Engine) -> Generator[DirectSessionManager, None, None]:
    """Provide direct database access without savepoint isolation.

    Data registered via register_cleanup() is deleted after the test in
    reverse order.
    """
    manager = DirectSessionManager(engine)
    yield manager
    manager.cleanup()


@pytest.fixture
def client() -> Generator[TestClient, None, None]:
    """FastAPI test client without authentication, for public endpoints."""
    app = create_app(skip_auth_middleware=True, email_sender=LogEmailSender())
    with TestClient(app) as client:
        yield client


@pytest.fixture
def outbox() -> RecordingEmailSender:
    """Email sender that keeps every message for inspection."""
    return RecordingEmailSender()


@pytest.fixture
def auth_app(engine: Engine, outbox: RecordingEmailSender):
    """App with auth middleware backed by the test verifier.

    The bootstrap callback and route sessions use the default session
    factory, which points at DATABASE_URL, the same database as `engine`.
    """
    return create_app(token_verifier=MockJwtVerifier(), email_sender=outbox)


@pytest.fixture
def auth_client(auth_app) -> Generator[TestClient, None, None]:
    """Client for authenticated requests; pair with tests.helpers.auth_headers()."""
    with TestClient(auth_app) as client:
        yield client


@pytest.fixture
def master_key(monkeypatch) -> Generator[bytes, None, None]:
    """Deterministic vault master key."""
    clear_master_key_cache()
    assert len(TEST_MASTER_KEY) == MASTER_KEY_SIZE
    monkeypatch.setenv(MASTER_KEY_ENV, base64.b64encode(TEST_MASTER_KEY).decode("ascii"))
    yield TEST_MASTER_KEY
    clear_master_key_cache()


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Reset the settings cache before each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()
