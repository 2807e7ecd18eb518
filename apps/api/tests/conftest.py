"""Pytest configuration and fixtures."""

import os

# Must be set before trustline_api builds its engine
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")

from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from trustline_api.auth.api_key import issue_operator_key
from trustline_api.auth.context import CallerContext
from trustline_api.auth.scopes import PLATFORM_SCOPE
from trustline_api.db.base import Base
from trustline_api import models  # noqa: F401

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")

TENANT_SCOPES = frozenset(
    {"ledger:read", "ledger:export", "sessions:write", "detection:run", "identity:write"}
)


class FixedClock:
    """Deterministic clock; call it like ``utcnow``."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture(scope="function")
def engine():
    """
    Fresh schema per test.

    Set TEST_DATABASE_URL to run against PostgreSQL instead of in-memory SQLite.
    """
    if TEST_DATABASE_URL.startswith("sqlite"):
        engine = create_engine(
            TEST_DATABASE_URL,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(TEST_DATABASE_URL)

    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db(engine):
    """Create a test database session."""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2026, 3, 2, 12, 0, 0))


@pytest.fixture
def platform_caller() -> CallerContext:
    """Superuser caller."""
    return CallerContext(user_id="admin-1", scopes=frozenset({PLATFORM_SCOPE}), request_id="req-test")


@pytest.fixture
def tenant_caller() -> CallerContext:
    """Tenant admin pinned to tenant-a."""
    return CallerContext(user_id="ops-a", tenant_id="tenant-a", scopes=TENANT_SCOPES)


@pytest.fixture
def other_tenant_caller() -> CallerContext:
    """Tenant admin pinned to tenant-b."""
    return CallerContext(user_id="ops-b", tenant_id="tenant-b", scopes=TENANT_SCOPES)


@pytest.fixture
def client(db):
    """TestClient bound to the test database session."""
    from fastapi.testclient import TestClient

    from trustline_api.db.session import get_db
    from trustline_api.main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def api_headers(db):
    """Factory issuing an operator key and returning request headers for it."""

    def make(scopes, tenant_id=None, user_id="operator-1"):
        raw_key, _ = issue_operator_key(db, user_id, list(scopes), tenant_id=tenant_id)
        return {"x-api-key": raw_key}

    return make
