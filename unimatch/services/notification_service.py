"""
UniMatch — Notification Bridge

The matching and chat services only *produce* events; delivering them to
live connections is the bridge's job.  Two events exist:

  match-formed      {user_a, user_b}            → channels user:{a}, user:{b}
  message-appended  {conversation_id, message}  → channel conversation:{id}

``RedisNotificationBridge`` publishes the JSON-encoded event on Redis
pub/sub so that any API replica holding the recipient's WebSocket can relay
it.  ``InMemoryNotificationBridge`` keeps events in process and is used for
tests and single-process development.

Publication is fire-and-forget: ``publish_event`` logs failures and never
raises, so a broken transport cannot undo a committed write.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, AsyncIterator, Literal, Union
from uuid import UUID

import structlog
from pydantic import BaseModel

from unimatch.schemas.chat import MessageResponse

logger = structlog.get_logger("unimatch.notification_service")


def user_channel(user_id: UUID | str) -> str:
    return f"user:{user_id}"


def conversation_channel(conversation_id: UUID | str) -> str:
    return f"conversation:{conversation_id}"


# ──────────────────────────────────────────────────────────────────────────────
# Events
# ──────────────────────────────────────────────────────────────────────────────

class MatchFormed(BaseModel):
    event: Literal["match-formed"] = "match-formed"
    user_a: UUID
    user_b: UUID

    def channels(self) -> list[str]:
        return [user_channel(self.user_a), user_channel(self.user_b)]


class MessageAppended(BaseModel):
    event: Literal["message-appended"] = "message-appended"
    conversation_id: UUID
    message: MessageResponse

    def channels(self) -> list[str]:
        return [conversation_channel(self.conversation_id)]


NotificationEvent = Union[MatchFormed, MessageAppended]


# ──────────────────────────────────────────────────────────────────────────────
# Bridges
# ──────────────────────────────────────────────────────────────────────────────

class NotificationBridge(ABC):
    """Outbound event sink plus per-channel subscription for live relays."""

    @abstractmethod
    async def publish(self, event: NotificationEvent) -> None:
        ...

    @abstractmethod
    def subscribe(self, channel: str) -> AsyncIterator[str]:
        """Yield JSON payloads published on ``channel`` until cancelled."""
        ...


class InMemoryNotificationBridge(NotificationBridge):
    """Process-local bridge; records every event in ``events``."""

    def __init__(self) -> None:
        self.events: list[NotificationEvent] = []
        self._subscribers: dict[str, set[asyncio.Queue[str]]] = defaultdict(set)

    async def publish(self, event: NotificationEvent) -> None:
        self.events.append(event)
        payload = event.model_dump_json()
        for channel in event.channels():
            for queue in list(self._subscribers.get(channel, ())):
                queue.put_nowait(payload)

    async def subscribe(self, channel: str) -> AsyncIterator[str]:
        queue: asyncio.Queue[str] = asyncio.Queue()
        self._subscribers[channel].add(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._subscribers[channel].discard(queue)
            if not self._subscribers[channel]:
                del self._subscribers[channel]


class RedisNotificationBridge(NotificationBridge):
    """Publishes events on Redis pub/sub channels."""

    def __init__(self, redis_client: Any) -> None:
        self._redis = redis_client

    async def publish(self, event: NotificationEvent) -> None:
        payload = event.model_dump_json()
        for channel in event.channels():
            receivers = await self._redis.publish(channel, payload)
            logger.debug("event_published", channel=channel, event=event.event, receivers=receivers)

    async def subscribe(self, channel: str) -> AsyncIterator[str]:
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(channel)
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                data = message["data"]
                yield data.decode() if isinstance(data, bytes) else data
        finally:
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()


async def publish_event(bridge: NotificationBridge | None, event: NotificationEvent) -> None:
    """Hand ``event`` to the bridge without letting delivery errors escape."""
    if bridge is None:
        return
    try:
        await bridge.publish(event)
    except Exception:
        logger.exception("event_publish_failed", event=event.event, channels=event.channels())
