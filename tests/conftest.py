"""
Pytest configuration: temp-dir settings, a fresh database per test, each
store, and a TestClient whose push transport is a Mock.
"""

from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from lifehub.config import SessionSecret, Settings
from lifehub.database import Database
from lifehub.main import create_app
from lifehub.push import NotificationRelay
from lifehub.services import AccountStore, SessionIssuer
from lifehub.storage import PublicPageResolver, SubscriptionStore, WidgetStore

PASSWORD = "correct horse battery"


# ==================== Database fixtures ====================

@pytest.fixture
def settings(tmp_path):
    return Settings(data_dir=tmp_path / "data", bcrypt_rounds=4)


@pytest.fixture
def db(settings):
    database = Database(settings.db_path)
    database.init_schema()
    return database


@pytest.fixture
def accounts(db):
    return AccountStore(db, rounds=4)


@pytest.fixture
def alice(accounts):
    return accounts.create_account("alice", PASSWORD)


@pytest.fixture
def bob(accounts):
    return accounts.create_account("bob", PASSWORD)


@pytest.fixture
def widgets(db):
    return WidgetStore(db)


@pytest.fixture
def resolver(db):
    return PublicPageResolver(db)


@pytest.fixture
def subscriptions(db):
    return SubscriptionStore(db)


@pytest.fixture
def issuer():
    return SessionIssuer(SessionSecret.generate())


# ==================== Push fixtures ====================

@pytest.fixture
def push_transport():
    return Mock(return_value=Mock(status_code=201))


@pytest.fixture
def relay(push_transport):
    return NotificationRelay("private-key", "mailto:test@example.com", ttl=30, transport=push_transport)


# ==================== API fixtures ====================

@pytest.fixture
def app(settings, push_transport):
    return create_app(settings, push_transport=push_transport)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def logged_in(client):
    """A client that has registered and logged in as alice (token held in the cookie jar)."""
    assert client.post("/api/auth/register", json={"username": "alice", "password": PASSWORD}).status_code == 201
    response = client.post("/api/auth/login", json={"username": "alice", "password": PASSWORD})
    assert response.status_code == 200
    return client
