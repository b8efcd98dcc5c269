"""HTTP-level tests: routing, identity header, and error mapping."""
import uuid

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from unimatch.database import get_db
from unimatch.main import app

API = "/api/v1"


@pytest_asyncio.fixture
async def client(session_factory, bridge):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.state.notifications = bridge
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def as_user(user_id):
    return {"X-User-Id": str(user_id)}


class TestHealthAndAuth:

    @pytest.mark.asyncio
    async def test_liveness(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    @pytest.mark.asyncio
    async def test_missing_identity(self, client):
        response = await client.get(f"{API}/users/me")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_malformed_identity(self, client):
        response = await client.get(f"{API}/users/me", headers={"X-User-Id": "nope"})
        assert response.status_code == 401


class TestUsersApi:

    @pytest.mark.asyncio
    async def test_register_and_fetch(self, client):
        response = await client.post(
            f"{API}/users/",
            json={
                "email": "ana@cam.ac.uk",
                "first_name": "Ana",
                "last_name": "Lopez",
                "age": 23,
                "gender": "female",
                "interested_in": "both",
            },
        )
        assert response.status_code == 201
        body = response.json()
        assert body["university"] == "cam.ac.uk"
        assert body["profile_completed"] is False

        me = await client.get(f"{API}/users/me", headers=as_user(body["id"]))
        assert me.status_code == 200
        assert me.json()["email"] == "ana@cam.ac.uk"

    @pytest.mark.asyncio
    async def test_validation_error_body(self, client):
        response = await client.post(
            f"{API}/users/",
            json={
                "email": "ana@gmail.com",
                "first_name": "Ana",
                "last_name": "Lopez",
                "age": 23,
                "gender": "female",
                "interested_in": "both",
            },
        )
        assert response.status_code == 422
        assert response.json()["field"] == "email"

    @pytest.mark.asyncio
    async def test_unknown_user(self, client, make_user):
        me = await make_user()
        response = await client.get(f"{API}/users/{uuid.uuid4()}", headers=as_user(me.id))
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_preferences(self, client, make_user):
        me = await make_user()
        response = await client.put(
            f"{API}/users/me/preferences",
            json={"age_min": 20, "max_distance_km": 25},
            headers=as_user(me.id),
        )
        assert response.status_code == 200
        assert response.json() == {"age_min": 20, "age_max": 30, "max_distance_km": 25}


class TestMatchAndChatApi:

    @pytest.mark.asyncio
    async def test_incomplete_profile_cannot_browse(self, client, make_user):
        me = await make_user(photos=[])
        response = await client.get(f"{API}/match/candidates", headers=as_user(me.id))
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_like_match_and_chat(self, client, make_user, bridge):
        a = await make_user(gender="female", interested_in="male")
        b = await make_user(gender="male", interested_in="female")

        candidates = await client.get(f"{API}/match/candidates", headers=as_user(a.id))
        assert [c["id"] for c in candidates.json()["candidates"]] == [str(b.id)]

        first = await client.post(f"{API}/match/like/{b.id}", headers=as_user(a.id))
        assert first.json()["is_match"] is False

        again = await client.post(f"{API}/match/like/{b.id}", headers=as_user(a.id))
        assert again.status_code == 409

        second = await client.post(f"{API}/match/like/{a.id}", headers=as_user(b.id))
        assert second.json()["is_match"] is True
        assert second.json()["matched_user"]["id"] == str(a.id)

        matches = await client.get(f"{API}/match/matches", headers=as_user(a.id))
        assert [m["id"] for m in matches.json()["matches"]] == [str(b.id)]

        chat = await client.get(f"{API}/chat/with/{b.id}", headers=as_user(a.id))
        assert chat.status_code == 200
        conversation_id = chat.json()["id"]

        sent = await client.post(
            f"{API}/chat/{conversation_id}/messages",
            json={"content": "hi!"},
            headers=as_user(a.id),
        )
        assert sent.status_code == 201
        message_id = sent.json()["id"]

        listing = await client.get(f"{API}/chat/", headers=as_user(b.id))
        assert listing.json()[0]["unread_count"] == 1

        read = await client.put(f"{API}/chat/{conversation_id}/read", headers=as_user(b.id))
        assert read.json() == {"marked": 1}

        page = await client.get(f"{API}/chat/{conversation_id}/messages", headers=as_user(b.id))
        assert page.json()["has_more"] is False
        assert [m["content"] for m in page.json()["messages"]] == ["hi!"]

        forbidden = await client.delete(
            f"{API}/chat/{conversation_id}/messages/{message_id}", headers=as_user(b.id)
        )
        assert forbidden.status_code == 403

        deleted = await client.delete(
            f"{API}/chat/{conversation_id}/messages/{message_id}", headers=as_user(a.id)
        )
        assert deleted.status_code == 200

        events = [e.event for e in bridge.events]
        assert events == ["match-formed", "message-appended"]

    @pytest.mark.asyncio
    async def test_chat_requires_match(self, client, make_user):
        a = await make_user()
        b = await make_user(gender="male", interested_in="female")
        response = await client.get(f"{API}/chat/with/{b.id}", headers=as_user(a.id))
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_unmatch_unmatched_is_ok(self, client, make_user):
        a = await make_user()
        b = await make_user(gender="male", interested_in="female")
        response = await client.delete(f"{API}/match/unmatch/{b.id}", headers=as_user(a.id))
        assert response.status_code == 200
        assert response.json()["message"] == "Users were not matched"
