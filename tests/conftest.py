import itertools
import os
import tempfile

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="chat-uploads-"))
os.environ.setdefault("JWT_SECRET", "test-secret")

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool
from app.core.config import DefaultRoom
from app.database.postgres import Base
from app.models.user import User
from app.core.security import create_access_token, hash_password
from app.services.room_service import RoomService
from app.services.session_coordinator import SessionCoordinator

DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class RecordingWebsocketManager:
    """Stands in for WebsocketManager and remembers every event it was asked to deliver."""

    def __init__(self):
        self.sent = []

    async def send_personal_message(self, connection_id, message):
        self.sent.append((connection_id, message))
        return True

    async def broadcast(self, connection_ids, message):
        recipients = set(connection_ids)
        for connection_id in recipients:
            await self.send_personal_message(connection_id, message)
        return len(recipients)

    def events(self, connection_id, event_type=None):
        return [
            message["data"]
            for recipient, message in self.sent
            if recipient == connection_id and (event_type is None or message["type"] == event_type)
        ]

    def types(self, connection_id):
        return [message["type"] for recipient, message in self.sent if recipient == connection_id]

    def clear(self):
        self.sent.clear()


@pytest.fixture
async def async_session():
    engine = create_async_engine(
        DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async_session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    async with async_session_factory() as session:
        yield session
    await engine.dispose()

@pytest.fixture
async def test_user(async_session):
    user = User(
        username="testuser",
        hashed_password=hash_password("password123")
    )
    async_session.add(user)
    await async_session.commit()
    await async_session.refresh(user)
    return user

@pytest.fixture
def test_token(test_user):
    return create_access_token({"username": test_user.username})


@pytest.fixture
async def session_factory(tmp_path):
    """A file-backed database so concurrent handlers each get their own connection."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'chat.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    async with factory() as db:
        await RoomService(db).ensure_defaults(
            [DefaultRoom(name="general", topic="General Chat"), DefaultRoom(name="random", topic="Off topic")]
        )
    yield factory
    await engine.dispose()

@pytest.fixture
def ws_manager():
    return RecordingWebsocketManager()

@pytest.fixture
def coordinator(ws_manager, session_factory):
    return SessionCoordinator(websocket_manager=ws_manager, session_factory=session_factory)

@pytest.fixture
def login(coordinator):
    """Opens a connection and binds a username to it. Returns the connection id."""
    counter = itertools.count(1)

    async def _login(username):
        connection_id = f"{username}-{next(counter)}"
        coordinator.connect(connection_id)
        await coordinator.set_identity(connection_id, username)
        return connection_id

    return _login
