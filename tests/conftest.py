"""
Shared pytest fixtures for the Annual Report Portal test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_user / auth_headers: user factory and bearer headers
    - admin, contributor, viewer: ready-made users
    - fake_gateway: in-memory attachment gateway
    - upload_tmp: temp dir used for spooled uploads
"""

import os

# Cheap bcrypt cost for the whole session (read at hash time)
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest

from portal import create_app
from portal.core.exceptions import GatewayError, NotFoundError
from portal.integrations.attachment_gateway import StoredFile
from portal.models import db as _db
from portal.services.jwt_service import generate_access_token
from portal.services.user_service import create_user

DEFAULT_PASSWORD = "SecurePass123!"


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Users & tokens ───────────────────────────────────────────────────────


@pytest.fixture()
def make_user():
    """Factory: create a user with an explicit role / permission set."""
    counter = {"n": 0}

    def _make(role="contributor", permissions=None, username=None, department="Computer Science"):
        counter["n"] += 1
        name = username or f"{role}{counter['n']}"
        return create_user(
            username=name,
            email=f"{name}@stateuni.edu",
            password=DEFAULT_PASSWORD,
            department=department,
            role=role,
            permissions=permissions,
        )

    return _make


def auth_headers(user):
    """Bearer header for ``user`` with its current role / permissions."""
    token = generate_access_token(user.id, user.role, list(user.permission_set))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def headers_for():
    return auth_headers


@pytest.fixture()
def admin(make_user):
    return make_user(role="admin", username="admin")


@pytest.fixture()
def contributor(make_user):
    return make_user(role="contributor", username="alice")


@pytest.fixture()
def viewer(make_user):
    return make_user(role="viewer", username="victor")


# ── Reports ──────────────────────────────────────────────────────────────


def report_payload(**overrides):
    body = {
        "title": "FY24 CS Report",
        "academic_year": "2024",
        "metadata": {
            "institution": {"name": "State University", "address": "1 Campus Way", "contact": "office@stateuni.edu"},
            "department": "Computer Science",
            "tags": ["annual", "cs"],
        },
    }
    body.update(overrides)
    return body


@pytest.fixture()
def payload():
    return report_payload


@pytest.fixture()
def create_report(client):
    """Factory: create a report through the API as ``user``; returns the JSON body."""

    def _create(user, **overrides):
        res = client.post("/api/v1/reports", json=report_payload(**overrides), headers=auth_headers(user))
        assert res.status_code == 201, res.get_json()
        return res.get_json()

    return _create


# ── Attachments ──────────────────────────────────────────────────────────


class FakeGateway:
    """In-memory stand-in for the attachment gateway."""

    def __init__(self):
        self.files = {}
        self.deleted = []
        self.seen_paths = []
        self.fail_store = False

    def store(self, stream, metadata):
        path = getattr(stream, "name", None)
        self.seen_paths.append((path, os.path.exists(path) if path else False))
        if self.fail_store:
            raise GatewayError("object store unavailable", status_code=503)
        file_id = f"f{len(self.files) + 1}"
        stored = StoredFile(
            id=file_id,
            url=f"https://files.example.edu/{file_id}",
            name=metadata.get("name"),
            content_type=metadata.get("content_type"),
            size=len(stream.read()),
        )
        self.files[file_id] = stored
        return stored

    def get(self, file_id):
        if file_id not in self.files:
            raise NotFoundError("File", file_id)
        return self.files[file_id]

    def delete(self, file_id):
        self.deleted.append(file_id)
        self.files.pop(file_id, None)


@pytest.fixture()
def fake_gateway(app):
    original = app.extensions["attachment_gateway"]
    gateway = FakeGateway()
    app.extensions["attachment_gateway"] = gateway
    yield gateway
    app.extensions["attachment_gateway"] = original


@pytest.fixture()
def upload_tmp(app, tmp_path):
    """Point upload spooling at an isolated directory."""
    spool = tmp_path / "spool"
    spool.mkdir()
    original = app.config.get("UPLOAD_TMP_DIR")
    app.config["UPLOAD_TMP_DIR"] = str(spool)
    yield spool
    app.config["UPLOAD_TMP_DIR"] = original
