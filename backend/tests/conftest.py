"""Pytest configuration and fixtures."""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, get_db
from main import app
from api.plaid import _get_plaid_client, get_key_cache
# Pytest fixtures - imported to make them available to tests
from tests.fixtures import (  # noqa: F401
    account,
    encryption,
    item,
    key_cache,
    link_token,
    practice_client,
)
from tests.fixtures.mocks import MockPlaidClient


@pytest.fixture(name="db")
def db_fixture():
    """Create an in-memory SQLite database for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(name="mock_plaid")
def mock_plaid_fixture():
    """A scripted Plaid double with no links registered."""
    return MockPlaidClient()


@pytest.fixture(name="client")
def client_fixture(db, mock_plaid, key_cache):
    """Create a test client with the test database and the Plaid double."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[_get_plaid_client] = lambda: mock_plaid
    app.dependency_overrides[get_key_cache] = lambda: key_cache
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()
