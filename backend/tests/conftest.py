# backend/tests/conftest.py
"""
Pytest configuration.

Every test gets a fresh in-memory SQLite database. The engine uses a
StaticPool so the test session, the route sessions and the coordinator's
worker-thread sessions all see the same database.
"""

import os

# Set before any socialchat import so Settings picks it up
os.environ.setdefault("ENVIRONMENT", "test")
os.environ["R2_ENABLED"] = "false"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from socialchat.auth import create_access_token
from socialchat.database import Base, get_db
from socialchat.main import create_app
from socialchat.models.conversation import Conversation
from socialchat.models.user import User
from socialchat.services.attachment_service import AttachmentService
from socialchat.services.messaging.coordinator import MessagingCoordinator
from socialchat.services.messaging.presence import PresenceRegistry
from socialchat.services.messaging.rooms import RoomRegistry
from socialchat.services.storage_null_client import NullStorageClient

test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=test_engine, expire_on_commit=False
)


class FakeSocket:
    """Stands in for a WebSocket; records every frame sent to it."""

    def __init__(self, fail: bool = False):
        self.frames: list = []
        self.fail = fail

    async def send_json(self, data, mode: str = "text") -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.frames.append(data)

    def events(self) -> list:
        return [frame["event"] for frame in self.frames]

    def of(self, event: str) -> list:
        return [frame["data"] for frame in self.frames if frame["event"] == event]


@pytest.fixture(scope="function")
def db():
    """Create a new database session for each test."""
    Base.metadata.create_all(bind=test_engine)
    session = TestSessionLocal()

    yield session

    session.rollback()
    session.close()
    Base.metadata.drop_all(bind=test_engine)


def _make_user(db: Session, name: str) -> User:
    user = User(name=name, profile_image=f"https://img.example.com/{name.lower()}.png")
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def alice(db: Session) -> User:
    return _make_user(db, "Alice")


@pytest.fixture
def bob(db: Session) -> User:
    return _make_user(db, "Bob")


@pytest.fixture
def carol(db: Session) -> User:
    return _make_user(db, "Carol")


@pytest.fixture
def conversation(db: Session, alice: User, bob: User) -> Conversation:
    conv = Conversation(user1_id=alice.id, user2_id=bob.id)
    db.add(conv)
    db.commit()
    return conv


def make_token(user: User) -> str:
    return create_access_token(data={"sub": user.id})


def headers_for(user: User) -> dict:
    return {"Authorization": f"Bearer {make_token(user)}"}


@pytest.fixture
def socket_factory():
    return FakeSocket


@pytest.fixture
def auth_headers_for():
    return headers_for


@pytest.fixture
def token_for():
    return make_token


@pytest.fixture
def auth_headers_alice(alice: User) -> dict:
    return headers_for(alice)


@pytest.fixture
def auth_headers_bob(bob: User) -> dict:
    return headers_for(bob)


@pytest.fixture
def storage() -> NullStorageClient:
    return NullStorageClient("https://media.test")


@pytest.fixture
def attachments(storage: NullStorageClient) -> AttachmentService:
    return AttachmentService(storage)


@pytest.fixture
def coordinator(db: Session, attachments: AttachmentService) -> MessagingCoordinator:
    """Coordinator wired to the test database, for driving events directly."""
    return MessagingCoordinator(
        presence=PresenceRegistry(),
        rooms=RoomRegistry(),
        attachments=attachments,
        session_factory=TestSessionLocal,
    )


@pytest.fixture
def app(db: Session, storage: NullStorageClient):
    application = create_app(session_factory=TestSessionLocal, storage=storage)

    def override_get_db():
        try:
            yield db
        finally:
            pass

    application.dependency_overrides[get_db] = override_get_db
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
def client(app):
    """Test client with the lifespan running (coordinator on app.state)."""
    with TestClient(app) as test_client:
        yield test_client
