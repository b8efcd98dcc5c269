"""WebSocket relay tests for ``/api/v1/chat/{id}/ws``.

The socket handler and every database call run on the TestClient's own
event loop, so this module builds its database through ``client.portal``
instead of the async fixtures in conftest.
"""
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from starlette.websockets import WebSocketDisconnect

import unimatch.models  # noqa: F401  (registers every table on Base.metadata)
from unimatch.api.deps import get_session_factory
from unimatch.database import Base, get_db
from unimatch.main import app
from unimatch.models.user import User
from unimatch.services.conversation_service import ConversationService
from unimatch.services.matching_service import MatchingService
from unimatch.services.notification_service import InMemoryNotificationBridge

API = "/api/v1"


def as_user(user_id):
    return {"X-User-Id": str(user_id)}


@asynccontextmanager
async def _no_lifespan(app):
    yield


@dataclass
class SocketEnv:
    client: TestClient
    sessions: async_sessionmaker

    def run(self, fn, *args):
        return self.client.portal.call(fn, self.sessions, *args)


class DroppedBridge(InMemoryNotificationBridge):
    """Bridge whose subscriptions fail as soon as they start."""

    async def subscribe(self, channel):
        raise ConnectionError("subscription lost")
        yield


@pytest.fixture
def socket_env(monkeypatch):
    monkeypatch.setattr(app.router, "lifespan_context", _no_lifespan)
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    sessions = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with sessions() as session:
            yield session

    async def create_tables():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: sessions
    app.state.notifications = InMemoryNotificationBridge()
    try:
        with TestClient(app) as client:
            client.portal.call(create_tables)
            yield SocketEnv(client, sessions)
            client.portal.call(engine.dispose)
    finally:
        app.dependency_overrides.clear()


def _profile(**overrides) -> User:
    fields = dict(
        email=f"{uuid.uuid4().hex[:10]}@uni.edu",
        is_email_verified=True,
        first_name="Test",
        last_name="Student",
        age=21,
        gender="female",
        interested_in="male",
        university="uni.edu",
        course="Biology",
        year=2,
        bio="Coffee and climbing.",
        photos=[{"url": f"https://cdn.example/{uuid.uuid4().hex}.jpg", "is_main": True}],
    )
    fields.update(overrides)
    user = User(**fields)
    user.refresh_profile_completed()
    return user


async def _open_chat(sessions):
    a = _profile(gender="female", interested_in="male")
    b = _profile(gender="male", interested_in="female")
    outsider = _profile(gender="male", interested_in="female")
    async with sessions() as db:
        db.add_all([a, b, outsider])
        await db.commit()
        ids = (a.id, b.id, outsider.id)

    matching = MatchingService()
    async with sessions() as db:
        await matching.like(ids[0], ids[1], db)
        await matching.like(ids[1], ids[0], db)
        conversation = await ConversationService().get_or_create(ids[0], ids[1], db)
    return (*ids, conversation.id)


async def _is_online(sessions, user_id):
    async with sessions() as db:
        return (await db.get(User, user_id)).is_online


class TestConversationSocket:

    def test_relays_new_messages_and_tracks_presence(self, socket_env):
        a, b, _, conversation_id = socket_env.run(_open_chat)

        with socket_env.client.websocket_connect(
            f"{API}/chat/{conversation_id}/ws", headers=as_user(a)
        ) as ws:
            assert socket_env.run(_is_online, a) is True

            response = socket_env.client.post(
                f"{API}/chat/{conversation_id}/messages",
                json={"content": "hi there"},
                headers=as_user(b),
            )
            assert response.status_code == 201
            payload = ws.receive_json()

        assert payload["event"] == "message-appended"
        assert payload["conversation_id"] == str(conversation_id)
        assert payload["message"]["content"] == "hi there"
        assert payload["message"]["sender_id"] == str(b)
        assert socket_env.run(_is_online, a) is False

    def test_identity_via_query_parameter(self, socket_env):
        a, _, _, conversation_id = socket_env.run(_open_chat)

        with socket_env.client.websocket_connect(
            f"{API}/chat/{conversation_id}/ws?user_id={a}"
        ):
            assert socket_env.run(_is_online, a) is True

        assert socket_env.run(_is_online, a) is False

    def test_non_participant_rejected(self, socket_env):
        _, _, outsider, conversation_id = socket_env.run(_open_chat)

        with pytest.raises(WebSocketDisconnect) as excinfo:
            with socket_env.client.websocket_connect(
                f"{API}/chat/{conversation_id}/ws", headers=as_user(outsider)
            ):
                pass

        assert excinfo.value.code == 1008
        assert socket_env.run(_is_online, outsider) is False

    def test_missing_identity_rejected(self, socket_env):
        *_, conversation_id = socket_env.run(_open_chat)

        with pytest.raises(WebSocketDisconnect) as excinfo:
            with socket_env.client.websocket_connect(f"{API}/chat/{conversation_id}/ws"):
                pass

        assert excinfo.value.code == 1008

    def test_relay_failure_closes_socket_and_clears_presence(self, socket_env):
        a, _, _, conversation_id = socket_env.run(_open_chat)
        app.state.notifications = DroppedBridge()

        with socket_env.client.websocket_connect(
            f"{API}/chat/{conversation_id}/ws", headers=as_user(a)
        ) as ws:
            with pytest.raises(WebSocketDisconnect) as excinfo:
                ws.receive_text()

        assert excinfo.value.code == 1011
        assert socket_env.run(_is_online, a) is False
