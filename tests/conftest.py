"""
ManageEase - Test Configuration and Fixtures
"""
import os
from types import SimpleNamespace

# Must be set before the application modules read their settings.
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["REMINDERS_ENABLED"] = "false"
os.environ["JWT_SECRET"] = "test-jwt-secret-for-testing-only"
os.environ["SMTP_USER"] = ""
os.environ["SMTP_PASSWORD"] = ""

import mongomock
import pytest
from fastapi.testclient import TestClient

import database
import notifications
from auth import create_access_token, hash_password
from database import USERS, create_document
from email_service import get_mailer
from main import app
from notifications import InMemoryBroker
from schemas import Principal, Role, User
from task_store import TaskStore
from user_store import UserStore

from .fakes import PASSWORD, FakeMailer


@pytest.fixture
def db(monkeypatch):
    """Fresh in-memory MongoDB per test, wired in wherever the app asks for one"""
    mock_db = mongomock.MongoClient()["manageease_test"]
    monkeypatch.setattr(database, "db", mock_db)
    database.ensure_indexes(mock_db)
    return mock_db


@pytest.fixture
def broker(monkeypatch):
    fresh = InMemoryBroker()
    monkeypatch.setattr(notifications, "broker", fresh)
    return fresh


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def client(db, broker, mailer):
    app.dependency_overrides[get_mailer] = lambda: mailer
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def task_store(db):
    return TaskStore(db)


@pytest.fixture
def user_store(db):
    return UserStore(db)


@pytest.fixture
def make_user(db):
    def _make(name: str, email: str, role: Role = Role.USER) -> SimpleNamespace:
        user_id = create_document(db, USERS, User(
            name=name, email=email, password_hash=hash_password(PASSWORD), role=role,
        ))
        token = create_access_token(user_id, role.value)
        return SimpleNamespace(
            id=user_id,
            name=name,
            email=email,
            token=token,
            principal=Principal(id=user_id, role=role),
            headers={"Authorization": f"Bearer {token}"},
        )
    return _make


@pytest.fixture
def admin(make_user):
    return make_user("Admin User", "admin@example.com", Role.ADMIN)


@pytest.fixture
def alice(make_user):
    return make_user("Alice Doe", "alice@example.com")


@pytest.fixture
def bob(make_user):
    return make_user("Bob Smith", "bob@example.com")
