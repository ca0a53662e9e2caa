"""Pytest configuration for funnelboard integration tests

WHAT: Provides shared fixtures for HTTP endpoint and service-level tests
WHY: Every test gets its own in-memory database and an app whose upstream
     clients can be swapped for fakes through dependency_overrides
REFERENCES:
    - funnelboard/main.py: FastAPI application
    - funnelboard/database.py: Database configuration
    - funnelboard/deps.py: Settings and client providers
"""

import os
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment before anything imports funnelboard.main
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("FACEBOOK_ACCESS_TOKEN", "test-facebook-token")
os.environ.setdefault("FACEBOOK_AD_ACCOUNT_ID", "act_1234567890")
os.environ.setdefault("GHL_API_KEY", "test-ghl-key")
os.environ.setdefault("GHL_LOCATION_ID", "test-location")
os.environ.setdefault("DEEPGRAM_API_KEY", "test-deepgram-key")


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
def test_db_engine():
    """Create in-memory test database engine."""
    # StaticPool keeps one connection so every session sees the same database
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    from funnelboard.models import Base
    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(test_db_engine):
    """Session factory bound to the test engine (for worker code)."""
    return sessionmaker(autocommit=False, autoflush=False, bind=test_db_engine)


@pytest.fixture
def test_db_session(session_factory) -> Generator[Session, None, None]:
    """Create test database session with rollback."""
    session = session_factory()
    yield session
    session.rollback()
    session.close()


# ============================================================================
# Application & Client Fixtures
# ============================================================================

@pytest.fixture
def app(test_db_session):
    """Create FastAPI test application."""
    from funnelboard.database import get_db
    from funnelboard.main import create_app

    test_app = create_app()

    def override_get_db():
        yield test_db_session

    test_app.dependency_overrides[get_db] = override_get_db
    return test_app


@pytest.fixture
def client(app) -> TestClient:
    """Create TestClient for HTTP testing."""
    return TestClient(app)
