"""
UniMatch — Shared API dependencies

The caller's identity is established upstream by the authentication
gateway, which forwards the verified user id in the ``X-User-Id`` header.
"""

from __future__ import annotations

import uuid

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from unimatch.database import async_session_factory
from unimatch.services.conversation_service import ConversationService
from unimatch.services.matching_service import MatchingService
from unimatch.services.notification_service import NotificationBridge
from unimatch.services.profile_service import ProfileService

USER_ID_HEADER = "X-User-Id"


def parse_user_header(value: str | None) -> uuid.UUID:
    if not value:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No token, authorization denied",
        )
    try:
        return uuid.UUID(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token is not valid",
        ) from None


async def get_current_user_id(
    x_user_id: str | None = Header(default=None, alias=USER_ID_HEADER),
) -> uuid.UUID:
    return parse_user_header(x_user_id)


def get_notifications(request: Request) -> NotificationBridge | None:
    return getattr(request.app.state, "notifications", None)


def get_profile_service() -> ProfileService:
    return ProfileService()


def get_matching_service(
    notifications: NotificationBridge | None = Depends(get_notifications),
) -> MatchingService:
    return MatchingService(notifications=notifications)


def get_conversation_service(
    notifications: NotificationBridge | None = Depends(get_notifications),
) -> ConversationService:
    return ConversationService(notifications=notifications)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for long-lived connections that open short sessions."""
    return async_session_factory
