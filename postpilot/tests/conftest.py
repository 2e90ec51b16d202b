import os
import tempfile

# Settings are read at import time, so the environment is pinned before postpilot loads
_TMP = tempfile.mkdtemp(prefix="postpilot-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP, 'test.db')}"
os.environ["UPLOADS_DIR"] = os.path.join(_TMP, "uploads")
os.environ["TEMPLATES_DIR"] = os.path.join(_TMP, "uploads", "templates")
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["SECRET_KEY"] = "test-secret-key-with-enough-length-for-hs256"
os.environ["BASE_URL"] = "https://app.postpilot.test"
os.environ.pop("SMTP_HOST", None)

import pytest
from fastapi.testclient import TestClient

from postpilot.db import SessionLocal, engine
from postpilot.main import app
from postpilot.models import Base, Client, User, ROLE_ADMIN, ROLE_MANAGER
from postpilot.security.auth import get_password_hash, token_for_user
from postpilot.security.crypto import encrypt_token
from postpilot.services.insights import clear_cache

PASSWORD = "correct-horse-battery"

@pytest.fixture(autouse=True)
def fresh_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    clear_cache()
    yield

@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()

@pytest.fixture
def api():
    return TestClient(app)

def make_user(db, email="manager@agency.example.com", role=ROLE_MANAGER, name="Morgan Manager"):
    user = User(name=name, email=email, password_hash=get_password_hash(PASSWORD), role=role, is_active=True)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user

@pytest.fixture
def user(db):
    return make_user(db)

@pytest.fixture
def admin_user(db):
    return make_user(db, email="admin@agency.example.com", role=ROLE_ADMIN, name="Ada Admin")

@pytest.fixture
def auth_headers(user):
    return {"Authorization": f"Bearer {token_for_user(user)}"}

def make_client(db, owner, **overrides):
    data = {
        "name": "Sunrise Bakery",
        "email": "hello@sunrise.example.com",
        "platform": "instagram",
        "ig_user_id": "17841400000000001",
        "page_id": "100200300",
        "page_access_token": encrypt_token("EAAG-page-token"),
    }
    data.update(overrides)
    client = Client(owner_id=owner.id, **data)
    db.add(client)
    db.commit()
    db.refresh(client)
    return client

@pytest.fixture
def ig_client(db, user):
    return make_client(db, user)

@pytest.fixture
def manual_client(db, user):
    return make_client(db, user, name="Walk-in Florist", email="florist@shop.example.com", platform="manual",
                       ig_user_id=None, page_id=None, page_access_token=None)

@pytest.fixture
def password():
    return PASSWORD

@pytest.fixture
def other_user(db):
    return make_user(db, email="other@agency.example.com", name="Olive Other")

@pytest.fixture
def client_factory(db):
    def factory(owner, **overrides):
        return make_client(db, owner, **overrides)
    return factory
