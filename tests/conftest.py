import os

# Must be set before formdesk modules read their configuration
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("API_KEY_HASH_ROUNDS", "4")
os.environ["APP_ENV"] = "test"

from datetime import datetime, timezone  # noqa: E402
from unittest.mock import AsyncMock, MagicMock  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from formdesk.db.session import (  # noqa: E402
    close_db,
    create_engine,
    create_session_factory,
    init_db,
)
from formdesk.schemas.api_keys_schemas import APIKeyRecord  # noqa: E402
from formdesk.services.security_service import SecurityService  # noqa: E402

TEST_JWT_SECRET = "test-secret"


@pytest.fixture
async def db_engine():
    """Fresh in-memory SQLite database per test"""
    engine = create_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    await init_db(engine)
    yield engine
    await close_db(engine)


@pytest.fixture
def security_service(db_engine):
    """SecurityService backed by the in-memory database"""
    return SecurityService(
        session_factory=create_session_factory(db_engine),
        jwt_secret=TEST_JWT_SECRET,
        hash_rounds=4,
    )


@pytest.fixture
def make_record():
    """Build an APIKeyRecord without touching the database"""

    def _make(**overrides) -> APIKeyRecord:
        now = datetime.now(timezone.utc)
        values = {
            "id": "key_123",
            "key_hash": "$2b$04$notarealhashnotarealhashnotarealhashnotarealhashnot",
            "name": "test-key",
            "permissions": ["forms:read"],
            "rate_limit_per_hour": 1000,
            "is_active": True,
            "created_by": "admin",
            "created_at": now,
            "updated_at": now,
        }
        values.update(overrides)
        return APIKeyRecord(**values)

    return _make


@pytest.fixture
def mock_security_service():
    """
    Real token and permission logic, mocked store-backed operations
    """
    service = SecurityService(
        session_factory=MagicMock(), jwt_secret=TEST_JWT_SECRET, hash_rounds=4
    )
    service.authenticate = AsyncMock()
    service.create_api_key = AsyncMock()
    service.get_api_key_by_id = AsyncMock()
    service.list_api_keys = AsyncMock()
    service.update_api_key = AsyncMock()
    service.deactivate_api_key = AsyncMock()
    service.delete_api_key = AsyncMock()
    service.regenerate_api_key = AsyncMock()
    return service


@pytest.fixture
def client(mock_security_service):
    """Create a test client with dependency overrides"""
    from formdesk.main import app
    from formdesk.services.security_service import get_security_service

    app.dependency_overrides[get_security_service] = lambda: mock_security_service

    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client

    # Clean up
    app.dependency_overrides.clear()
