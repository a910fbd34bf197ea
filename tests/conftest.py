"""
Pytest fixtures for backend tests.

Usage:
    pytest tests/ --cov=. --cov-report=html
"""
import os
import pytest
from typing import Generator
from unittest.mock import MagicMock

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

# Set test environment before importing app modules
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-secret-key-for-testing-only")
os.environ.setdefault("ADMIN_EMAIL", "admin@example.com")
os.environ.setdefault("DATABASE_URL", "sqlite://")

from database import Base, get_db
from main import app
from auth.jwt_handler import create_access_token
from routers.sql import get_sql_channel
from utils.rate_limiter import clear_rate_limits
from tests.fixtures.sql_fixtures import FakeExecSqlChannel, SAMPLE_USER_ROWS


ADMIN_EMAIL = os.environ["ADMIN_EMAIL"]

# In-memory SQLite for fast tests (no external DB dependency)
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"

test_engine = create_engine(
    SQLALCHEMY_TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(autouse=True)
def reset_rate_limits():
    """Rate limiter state is process-wide; start every test clean."""
    clear_rate_limits()
    yield
    clear_rate_limits()


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """
    Create a fresh database session for each test.
    Tables are created before and dropped after each test.
    """
    # Create all tables
    Base.metadata.create_all(bind=test_engine)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        # Drop all tables after test
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def fake_channel() -> FakeExecSqlChannel:
    """Execution channel returning two user rows by default."""
    return FakeExecSqlChannel(result=SAMPLE_USER_ROWS)


@pytest.fixture(scope="function")
def client(db_session: Session, fake_channel: FakeExecSqlChannel) -> Generator[TestClient, None, None]:
    """
    FastAPI test client with overridden database and execution channel dependencies.
    """
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_sql_channel] = lambda: fake_channel

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def mock_db() -> MagicMock:
    """
    Mock database session for unit tests that don't need real DB.
    """
    return MagicMock(spec=Session)


# ============================================================================
# Auth Fixtures
# ============================================================================

@pytest.fixture
def admin_token() -> str:
    """Access token for the designated admin."""
    return create_access_token({"sub": "00000000-0000-0000-0000-000000000001", "email": ADMIN_EMAIL})


@pytest.fixture
def admin_headers(admin_token: str) -> dict:
    return {"Authorization": f"Bearer {admin_token}"}


@pytest.fixture
def user_headers() -> dict:
    """Valid token for a signed-in user who is not the admin."""
    token = create_access_token({"sub": "00000000-0000-0000-0000-000000000002", "email": "someone@example.com"})
    return {"Authorization": f"Bearer {token}"}
