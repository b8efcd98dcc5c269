"""
UniMatch — Chat API

REST endpoints for conversations and messages, plus a WebSocket that
relays ``message-appended`` events for one conversation and keeps the
caller's presence up to date while connected.
"""

from __future__ import annotations

import asyncio
import uuid

import structlog
from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.websockets import WebSocketState

from unimatch.api.deps import (
    USER_ID_HEADER,
    get_conversation_service,
    get_current_user_id,
    get_session_factory,
)
from unimatch.database import get_db
from unimatch.models.conversation import Conversation
from unimatch.schemas.chat import (
    ConversationListItem,
    ConversationResponse,
    MarkReadResponse,
    MessageCreate,
    MessagePage,
    MessageResponse,
)
from unimatch.schemas.match import ActionResponse
from unimatch.services.conversation_service import ConversationService
from unimatch.services.notification_service import conversation_channel
from unimatch.services.profile_service import ProfileService
from unimatch.utils.errors import UniMatchError

logger = structlog.get_logger("unimatch.api.chat")

router = APIRouter()


@router.get("/", response_model=list[ConversationListItem], summary="List my conversations")
async def list_conversations(
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    chats: ConversationService = Depends(get_conversation_service),
) -> list[ConversationListItem]:
    return await chats.list_for_user(user_id, db)


@router.get(
    "/with/{other_user_id}",
    response_model=ConversationResponse,
    summary="Open the conversation with a matched user",
)
async def open_conversation(
    other_user_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    chats: ConversationService = Depends(get_conversation_service),
) -> Conversation:
    return await chats.get_or_create(user_id, other_user_id, db)


@router.get(
    "/{conversation_id}/messages",
    response_model=MessagePage,
    summary="Get a page of messages",
)
async def get_messages(
    conversation_id: uuid.UUID,
    page: int = Query(1, ge=1),
    page_size: int | None = Query(None, ge=1, le=100),
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    chats: ConversationService = Depends(get_conversation_service),
) -> MessagePage:
    return await chats.list_messages(
        conversation_id, user_id, db, page=page, page_size=page_size
    )


@router.post(
    "/{conversation_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Send a message",
)
async def send_message(
    conversation_id: uuid.UUID,
    payload: MessageCreate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    chats: ConversationService = Depends(get_conversation_service),
) -> MessageResponse:
    return await chats.send_message(
        conversation_id, user_id, payload.content, db, payload.message_type
    )


@router.put(
    "/{conversation_id}/read",
    response_model=MarkReadResponse,
    summary="Mark all messages as read",
)
async def mark_read(
    conversation_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    chats: ConversationService = Depends(get_conversation_service),
) -> MarkReadResponse:
    marked = await chats.mark_read(conversation_id, user_id, db)
    return MarkReadResponse(marked=marked)


@router.delete(
    "/{conversation_id}/messages/{message_id}",
    response_model=ActionResponse,
    summary="Delete one of my messages",
)
async def delete_message(
    conversation_id: uuid.UUID,
    message_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    chats: ConversationService = Depends(get_conversation_service),
) -> ActionResponse:
    await chats.delete_message(conversation_id, message_id, user_id, db)
    return ActionResponse(message="Message deleted")


# ──────────────────────────────────────────────────────────────────────────────
# WebSocket relay
# ──────────────────────────────────────────────────────────────────────────────

def _websocket_user(websocket: WebSocket) -> uuid.UUID | None:
    raw = websocket.headers.get(USER_ID_HEADER) or websocket.query_params.get("user_id")
    try:
        return uuid.UUID(raw) if raw else None
    except ValueError:
        return None


@router.websocket("/{conversation_id}/ws")
async def conversation_socket(
    websocket: WebSocket,
    conversation_id: uuid.UUID,
    sessions: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> None:
    """Stream new messages of one conversation to a participant.

    The connection marks the user online; disconnecting marks them offline.
    Sending is done through the REST endpoint, so inbound frames are only
    read to detect the disconnect.  If the relay stops (for example the
    pub/sub connection drops) the socket is closed so the client reconnects.
    """
    user_id = _websocket_user(websocket)
    if user_id is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    bridge = getattr(websocket.app.state, "notifications", None)
    chats = ConversationService()
    profiles = ProfileService()
    log = logger.bind(user_id=str(user_id), conversation_id=str(conversation_id))

    try:
        async with sessions() as db:
            await chats.get_for_participant(conversation_id, user_id, db)
            await profiles.set_presence(user_id, True, db)
    except UniMatchError as exc:
        log.info("chat_socket_rejected", reason=exc.message)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    log.info("chat_socket_connected")

    async def drain() -> None:
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            log.info("chat_socket_disconnected")

    async def relay() -> None:
        async for payload in bridge.subscribe(conversation_channel(conversation_id)):
            await websocket.send_text(payload)

    drain_task = asyncio.create_task(drain())
    tasks = {drain_task}
    relay_task = None
    if bridge is not None:
        relay_task = asyncio.create_task(relay())
        tasks.add(relay_task)

    try:
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            if relay_task in done and drain_task not in done:
                log.warning("chat_socket_relay_stopped")
                if websocket.client_state == WebSocketState.CONNECTED:
                    await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        finally:
            for task in tasks:
                task.cancel()
            for task in tasks:
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                except Exception:
                    log.exception("chat_socket_task_failed")
    finally:
        async with sessions() as db:
            await profiles.set_presence(user_id, False, db)
