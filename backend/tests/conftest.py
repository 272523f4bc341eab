from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.main as main_module
from app.config import settings
from app.database import Base, get_db
from app.main import app
from app.middleware.rate_limit import limiter
from app.services.agent_key_registry import AgentKeyRegistry
from app.services.certification_engine import seed_default_criteria
from app.services.crypto_utils import build_password_hasher
from tests.test_utils import CHEAP_ARGON2, TEST_API_KEY, TEST_TOKEN_SECRET, make_settings


@pytest.fixture
def db_session():
    """Create a fresh in-memory database for each test."""
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


@pytest.fixture
def test_settings():
    return make_settings()


@pytest.fixture
def registry(db_session, test_settings):
    return AgentKeyRegistry(db_session, build_password_hasher(test_settings), test_settings.agent_key_prefix)


@pytest.fixture
def criteria(db_session):
    """Default certification criteria, as seeded by migrations."""
    seed_default_criteria(db_session)


@pytest.fixture
def patched_settings():
    """Point the application settings at test secrets and cheap hashing."""
    overrides = {"token_secret": TEST_TOKEN_SECRET, "internal_api_key": TEST_API_KEY, **CHEAP_ARGON2}
    patchers = [patch.object(settings, name, value) for name, value in overrides.items()]
    for patcher in patchers:
        patcher.start()
    yield settings
    for patcher in reversed(patchers):
        patcher.stop()


@pytest.fixture
def client(db_session, patched_settings):
    """Create a test client with the test database and disabled rate limiting."""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    # Disable rate limiting for tests
    limiter.enabled = False

    # Override the engine used by check_database_tables() so it checks the test database
    original_engine = main_module.engine
    main_module.engine = db_session.get_bind()

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    limiter.enabled = True
    main_module.engine = original_engine


@pytest.fixture
def api_headers():
    return {"X-API-Key": TEST_API_KEY}
