"""
Pytest fixtures for the catering workflow backend tests.

Provides test database setup, users per role, identity tokens, an
in-memory attachment store, and the test client.
"""

from datetime import datetime, timedelta, timezone

import jwt
import pytest
from flask import Response

from catering import create_app
from catering.config import TestingConfig
from catering.extensions import db
from catering.models import Department, ServiceRequest, User
from catering.services import request_service
from catering.services.storage_service import STORAGE_EXTENSION_KEY, StoredFile


class MemoryStorage:
    """Attachment store that keeps bytes in a dict and records every call."""

    def __init__(self):
        self.files = {}
        self.saved = []
        self.deleted = []

    def url_for(self, key):
        return f"memory://{key}"

    def save(self, *, file_name, content, content_type):
        key = f"{len(self.saved) + 1}_{file_name}"
        self.files[key] = content
        self.saved.append(key)
        return StoredFile(key=key, url=self.url_for(key), size=len(content))

    def send(self, key, *, download_name, mimetype):
        return Response(self.files[key], mimetype=mimetype)

    def delete(self, key):
        self.files.pop(key, None)
        self.deleted.append(key)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestingConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def storage(app, monkeypatch):
    """Replace the attachment store for one test."""
    store = MemoryStorage()
    monkeypatch.setitem(app.extensions, STORAGE_EXTENSION_KEY, store)
    return store


def make_user(db_session, *, name, role="REQUESTER", phone="0241234567", email=None) -> User:
    slug = name.lower().replace(" ", ".")
    user = User(
        external_id=f"ext-{slug}",
        email=email or f"{slug}@university.edu",
        name=name,
        role=role,
        phone=phone,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def requester(db_session):
    return make_user(db_session, name="Rita Requester")


@pytest.fixture(scope='function')
def other_requester(db_session):
    return make_user(db_session, name="Omar Other")


@pytest.fixture(scope='function')
def approver(db_session):
    return make_user(db_session, name="Ada Approver", role="APPROVER")


@pytest.fixture(scope='function')
def finance_officer(db_session):
    return make_user(db_session, name="Fiona Finance", role="FINANCE_OFFICER")


@pytest.fixture(scope='function')
def finance_clerk(db_session):
    return make_user(db_session, name="Carl Clerk", role="FINANCE_CLERK")


@pytest.fixture(scope='function')
def admin(db_session):
    return make_user(db_session, name="Alex Admin", role="ADMIN")


@pytest.fixture(scope='function')
def department(db_session, approver):
    """Department whose designated approver is the approver fixture."""
    dept = Department(name="Computer Science", code="CS", approver_id=approver.id)
    db_session.add(dept)
    db_session.commit()
    return dept


def request_payload(department_id, **overrides) -> dict:
    payload = {
        "event_name": "Faculty Retreat",
        "event_date": "2026-11-20",
        "venue": "Great Hall",
        "attendees": 50,
        "estimate_amount_cents": 1000,
        "funding_source": "Department budget",
        "department_id": department_id,
    }
    payload.update(overrides)
    return payload


@pytest.fixture(scope='function')
def submitted_request(db_session, requester, department) -> ServiceRequest:
    return request_service.create_request(requester, request_payload(department.id))


@pytest.fixture(scope='function')
def approved_request(db_session, submitted_request, approver) -> ServiceRequest:
    return request_service.approve_request(approver, submitted_request.id)


def set_status(db_session, entity, status):
    """Force an entity into a status for guard tests."""
    entity.status = status
    db_session.commit()
    return entity


def make_token(user: User, secret: str = "test-identity-secret", **claims) -> str:
    payload = {
        "sub": user.external_id,
        "email": user.email,
        "name": user.name,
        "exp": datetime.now(timezone.utc) + timedelta(hours=1),
    }
    payload.update(claims)
    return jwt.encode(payload, secret, algorithm="HS256")


def auth_headers(user: User, **claims) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {make_token(user, **claims)}'}
