import os
import tempfile

# Must be set before anything imports mailbridge.config / mailbridge.database
_DB_DIR = tempfile.mkdtemp(prefix="mailbridge-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["GOOGLE_CLIENT_ID"] = "test-client-id.apps.googleusercontent.com"
os.environ["GOOGLE_CLIENT_SECRET"] = "test-client-secret"
os.environ["GOOGLE_REDIRECT_URL"] = "http://localhost:3000/oauth/callback"

import pytest
from fastapi.testclient import TestClient

import mailbridge.models  # noqa: F401
from main import app
from mailbridge.api.deps import get_sender_factory
from mailbridge.database import Base, SessionLocal, engine
from mailbridge.services import credential_service, history_service, user_service
from mailbridge.services.security import create_access_token, hash_password
from tests.fakes import FakeSender


@pytest.fixture(autouse=True)
def reset_database():
    history_service.wait_pending(timeout=10)
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    history_service.wait_pending(timeout=10)
    app.dependency_overrides.clear()


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def fake_sender():
    sender = FakeSender()
    app.dependency_overrides[get_sender_factory] = lambda: (lambda credential: sender)
    return sender


@pytest.fixture
def user(db):
    return user_service.create_user(
        db,
        name="Ada Lovelace",
        email="ada@example.com",
        password_hash=hash_password("secret123"),
    )


@pytest.fixture
def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(user.id, user.email)}"}


@pytest.fixture
def linked_credential(db, user):
    return credential_service.upsert_gmail_credential(
        db,
        user_id=user.id,
        access_token="ya29.access",
        refresh_token="1//refresh",
        token_type="Bearer",
        scope="https://www.googleapis.com/auth/gmail.send",
    )
