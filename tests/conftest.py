"""
Pytest configuration and fixtures for tracker tests.
"""

from typing import Callable, Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from tracker.auth import PasswordParams, create_user
from tracker.codec import SymmetricCodec
from tracker.config import Settings
from tracker.database import SessionLocal, configure_engine, init_db
from tracker.main import create_app
from tracker.sharing import AccessPolicy

TEST_KEY = "0123456789abcdef0123456789abcdef"
PASSWORD = "correct horse battery staple"

# Cheap Argon2 cost so the suite stays fast
FAST_PARAMS = PasswordParams(memory_cost=1024, time_cost=1, parallelism=1)


# =============================================================================
# Settings
# =============================================================================

def get_test_settings(tmp_path, **overrides) -> Settings:
    """Return settings configured for testing."""
    values = dict(
        environment="test",
        debug=False,
        log_level="WARNING",
        database_url="sqlite://",
        encryption_key=TEST_KEY,
        argon2_memory_cost=FAST_PARAMS.memory_cost,
        argon2_time_cost=FAST_PARAMS.time_cost,
        argon2_parallelism=FAST_PARAMS.parallelism,
        upload_dir=str(tmp_path / "uploads"),
        max_upload_bytes=64 * 1024,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return get_test_settings(tmp_path)


@pytest.fixture
def codec() -> SymmetricCodec:
    return SymmetricCodec.from_setting(TEST_KEY)


@pytest.fixture
def policy() -> AccessPolicy:
    return AccessPolicy()


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture
def engine():
    """In-memory SQLite shared by the test and the app through one connection."""
    engine = configure_engine("sqlite://", poolclass=StaticPool)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine) -> Generator[Session, None, None]:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def alice(db):
    return create_user(db, "alice", PASSWORD, person_name="Alice", params=FAST_PARAMS)


@pytest.fixture
def bob(db):
    return create_user(db, "bob", PASSWORD, person_name="Bob", params=FAST_PARAMS)


@pytest.fixture
def carol(db):
    return create_user(db, "carol", PASSWORD, person_name="Carol", params=FAST_PARAMS)


# =============================================================================
# Application Fixtures
# =============================================================================

@pytest.fixture
def make_client(engine, tmp_path) -> Generator[Callable[..., TestClient], None, None]:
    """Build a started TestClient, optionally with settings overrides."""
    clients = []

    def factory(**overrides) -> TestClient:
        app = create_app(get_test_settings(tmp_path, **overrides), engine=engine)
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client

    yield factory

    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client) -> TestClient:
    return make_client()


@pytest.fixture
def login(client) -> Callable[[str], dict]:
    """Log a user in and return the Authorization header for them."""

    def do_login(username: str, password: str = PASSWORD) -> dict:
        response = client.post("/api/login", json={"username": username, "password": password})
        assert response.status_code == 200, response.text
        return {"Authorization": f"Bearer {response.json()['token']}"}

    return do_login


def add_transaction(client: TestClient, headers: dict, merchant: str, occurred_at: str, amount: float = 10.0, tags=None):
    """Create one transaction through the API and return its id."""
    response = client.post(
        "/api/transactions/add",
        json=[{
            "amount": amount,
            "currency": "CAD",
            "occurredAt": occurred_at,
            "merchant": merchant,
            "card": "visa",
            "category": "food",
            "tags": tags or [],
        }],
        headers=headers,
    )
    assert response.status_code == 201, response.text
    listing = client.get("/api/transactions", headers=headers).json()
    return next(t["id"] for t in listing if t["merchant"] == merchant and t["occurredAt"].startswith(occurred_at[:19]))
