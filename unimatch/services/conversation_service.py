"""
UniMatch — Conversation Store

One conversation per matched pair, created lazily when either user opens
the chat.  Messages are appended with a per-conversation sequence number
taken under the conversation lock, so concurrent sends are both kept and
ordered consistently.

The ``last_message_*`` columns are a materialised view of the conversation
tail and are only ever written by ``_apply_last_message``: on send (the new
message) and on delete (whatever message is now the newest, or nothing).

Read receipts are one row per (message, user); ``mark_read`` only inserts
the missing ones, which makes it idempotent.
"""

from __future__ import annotations

import uuid
from collections import defaultdict

import structlog
from sqlalchemy import delete, exists, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from unimatch.config import get_settings
from unimatch.database import unit_of_work, utcnow
from unimatch.models.conversation import Conversation, Message, MessageRead, MessageType
from unimatch.models.match import canonical_pair
from unimatch.models.user import User
from unimatch.schemas.chat import (
    ConversationListItem,
    LastMessage,
    MessagePage,
    MessageResponse,
    ReadReceipt,
)
from unimatch.schemas.user import UserSummary
from unimatch.services.matching_service import is_matched
from unimatch.services.notification_service import (
    MessageAppended,
    NotificationBridge,
    publish_event,
)
from unimatch.services.profile_service import fetch_user, fetch_users
from unimatch.utils.errors import ForbiddenError, NotFoundError, NotMatchedError, ValidationError
from unimatch.utils.locks import KeyedLock, conversation_locks, user_locks
from unimatch.utils.validators import parse_id, validate_choice, validate_message_content

logger = structlog.get_logger("unimatch.conversation_service")

MAX_PAGE_SIZE = 100


def _apply_last_message(conversation: Conversation, tail: Message | None) -> None:
    """Point the last-message view at ``tail``, or clear it."""
    if tail is None:
        conversation.last_message_content = None
        conversation.last_message_sender_id = None
        conversation.last_message_at = None
    else:
        conversation.last_message_content = tail.content
        conversation.last_message_sender_id = tail.sender_id
        conversation.last_message_at = tail.created_at


def _message_view(message: Message, reads: list[MessageRead]) -> MessageResponse:
    return MessageResponse(
        id=message.id,
        conversation_id=message.conversation_id,
        seq=message.seq,
        sender_id=message.sender_id,
        content=message.content,
        message_type=message.message_type,
        created_at=message.created_at,
        read_by=[ReadReceipt(user_id=r.user_id, read_at=r.read_at) for r in reads],
    )


class ConversationService:
    """Chat identity, message history and read-receipt bookkeeping."""

    def __init__(
        self,
        notifications: NotificationBridge | None = None,
        locks: KeyedLock | None = None,
        pair_locks: KeyedLock | None = None,
    ) -> None:
        self.notifications = notifications
        self.locks = locks or conversation_locks
        # Keyed by user id and shared with MatchingService, so opening a
        # chat and unmatching the same pair never interleave.
        self.pair_locks = pair_locks or user_locks
        self.default_page_size: int = get_settings().MESSAGE_PAGE_SIZE

    # ── Conversation identity ────────────────────────────────────────────

    async def get_or_create(
        self,
        user_id: uuid.UUID | str,
        other_user_id: uuid.UUID | str,
        db_session: AsyncSession,
    ) -> Conversation:
        """Return the pair's conversation, creating it on first access.

        Raises ``NotMatchedError`` unless the two users are matched.  A
        conversation closed by an earlier unmatch is reopened.
        """
        user_id = parse_id(user_id, "user_id")
        other_user_id = parse_id(other_user_id, "other_user_id")
        if user_id == other_user_id:
            raise ValidationError("A conversation needs two different users")

        low, high = canonical_pair(user_id, other_user_id)
        log = logger.bind(user_id=str(user_id), other_user_id=str(other_user_id))

        async with self.pair_locks.acquire(low, high):
            try:
                conversation, created = await self._get_or_create_locked(low, high, db_session)
            except IntegrityError:
                # Another process inserted the pair first; the unique
                # constraint kept it single, so use theirs.
                log.info("conversation_create_race")
                conversation, created = await self._get_or_create_locked(low, high, db_session)

        log.info("conversation_opened", conversation_id=str(conversation.id), created=created)
        return conversation

    async def _get_or_create_locked(
        self,
        low: uuid.UUID,
        high: uuid.UUID,
        db_session: AsyncSession,
    ) -> tuple[Conversation, bool]:
        created = False
        async with unit_of_work(db_session):
            await fetch_users(db_session, [low, high], for_update=True)
            if not await is_matched(db_session, low, high):
                raise NotMatchedError("You can only chat with matched users")

            stmt = select(Conversation).where(
                Conversation.user_low_id == low,
                Conversation.user_high_id == high,
            )
            conversation = (await db_session.execute(stmt)).scalar_one_or_none()

            if conversation is None:
                conversation = Conversation(user_low_id=low, user_high_id=high)
                db_session.add(conversation)
                created = True
            elif not conversation.is_active:
                conversation.is_active = True

            await db_session.flush()
        return conversation, created

    async def get_for_participant(
        self,
        conversation_id: uuid.UUID | str,
        user_id: uuid.UUID | str,
        db_session: AsyncSession,
        *,
        for_update: bool = False,
    ) -> Conversation:
        """Load a conversation the user takes part in.

        Raises ``NotFoundError`` if it does not exist and ``ForbiddenError``
        if ``user_id`` is not one of the two participants.
        """
        conversation_id = parse_id(conversation_id, "conversation_id")
        user_id = parse_id(user_id, "user_id")

        stmt = select(Conversation).where(Conversation.id == conversation_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        conversation = (await db_session.execute(stmt)).scalar_one_or_none()

        if conversation is None:
            raise NotFoundError("Chat not found", {"conversation_id": str(conversation_id)})
        if not conversation.has_participant(user_id):
            raise ForbiddenError("Access denied")
        return conversation

    # ── Listing ──────────────────────────────────────────────────────────

    async def list_for_user(
        self,
        user_id: uuid.UUID | str,
        db_session: AsyncSession,
    ) -> list[ConversationListItem]:
        """Active conversations of ``user_id``, most recent activity first.

        Conversations without messages are ranked by their creation time.
        """
        user_id = parse_id(user_id, "user_id")
        await fetch_user(db_session, user_id)

        activity = func.coalesce(Conversation.last_message_at, Conversation.created_at)
        stmt = (
            select(Conversation)
            .where(
                or_(Conversation.user_low_id == user_id, Conversation.user_high_id == user_id),
                Conversation.is_active.is_(True),
            )
            .order_by(activity.desc(), Conversation.id)
        )
        conversations = (await db_session.execute(stmt)).scalars().all()
        if not conversations:
            return []

        other_ids = {c.other(user_id) for c in conversations}
        users_stmt = select(User).where(User.id.in_(other_ids))
        users = {u.id: u for u in (await db_session.execute(users_stmt)).scalars().all()}

        unread = await self._unread_counts(
            [c.id for c in conversations], user_id, db_session
        )

        items: list[ConversationListItem] = []
        for conversation in conversations:
            other = users.get(conversation.other(user_id))
            last = conversation.last_message
            items.append(
                ConversationListItem(
                    id=conversation.id,
                    other_user=UserSummary.model_validate(other) if other else None,
                    last_message=LastMessage(**last) if last else None,
                    unread_count=unread.get(conversation.id, 0),
                    updated_at=conversation.last_message_at or conversation.created_at,
                )
            )

        logger.info("conversations_listed", user_id=str(user_id), count=len(items))
        return items

    async def _unread_counts(
        self,
        conversation_ids: list[uuid.UUID],
        user_id: uuid.UUID,
        db_session: AsyncSession,
    ) -> dict[uuid.UUID, int]:
        has_read = exists().where(
            MessageRead.message_id == Message.id,
            MessageRead.user_id == user_id,
        )
        stmt = (
            select(Message.conversation_id, func.count(Message.id))
            .where(Message.conversation_id.in_(conversation_ids), ~has_read)
            .group_by(Message.conversation_id)
        )
        rows = (await db_session.execute(stmt)).all()
        return {conversation_id: count for conversation_id, count in rows}

    # ── Messages ─────────────────────────────────────────────────────────

    async def list_messages(
        self,
        conversation_id: uuid.UUID | str,
        requester_id: uuid.UUID | str,
        db_session: AsyncSession,
        *,
        page: int = 1,
        page_size: int | None = None,
    ) -> MessagePage:
        """Return one page of history in chronological order.

        Pages count back from the newest message: page 1 holds the newest
        ``page_size`` messages.  ``has_more`` is true when older messages
        remain beyond this page.
        """
        if page_size is None:
            page_size = self.default_page_size
        if page < 1:
            raise ValidationError("page must be at least 1", {"field": "page"})
        if not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ValidationError(
                f"page_size must be between 1 and {MAX_PAGE_SIZE}",
                {"field": "page_size"},
            )

        conversation = await self.get_for_participant(conversation_id, requester_id, db_session)

        total_stmt = select(func.count(Message.id)).where(
            Message.conversation_id == conversation.id
        )
        total = (await db_session.execute(total_stmt)).scalar_one()

        skip = (page - 1) * page_size
        stmt = (
            select(Message)
            .where(Message.conversation_id == conversation.id)
            .order_by(Message.seq.desc())
            .offset(skip)
            .limit(page_size)
        )
        messages = list((await db_session.execute(stmt)).scalars().all())
        messages.reverse()

        reads = await self._reads_for([m.id for m in messages], db_session)
        return MessagePage(
            messages=[_message_view(m, reads.get(m.id, [])) for m in messages],
            has_more=total > skip + page_size,
        )

    async def _reads_for(
        self,
        message_ids: list[uuid.UUID],
        db_session: AsyncSession,
    ) -> dict[uuid.UUID, list[MessageRead]]:
        if not message_ids:
            return {}
        stmt = (
            select(MessageRead)
            .where(MessageRead.message_id.in_(message_ids))
            .order_by(MessageRead.read_at, MessageRead.id)
        )
        grouped: dict[uuid.UUID, list[MessageRead]] = defaultdict(list)
        for read in (await db_session.execute(stmt)).scalars():
            grouped[read.message_id].append(read)
        return grouped

    async def send_message(
        self,
        conversation_id: uuid.UUID | str,
        sender_id: uuid.UUID | str,
        content: str,
        db_session: AsyncSession,
        message_type: MessageType | str = MessageType.TEXT,
    ) -> MessageResponse:
        """Append a message and emit ``message-appended`` once committed.

        The sender's own read receipt is recorded at send time.
        """
        content = validate_message_content(content)
        message_type = validate_choice(message_type, MessageType, "message_type")
        conversation_id = parse_id(conversation_id, "conversation_id")
        sender_id = parse_id(sender_id, "sender_id")

        async with self.locks.acquire(conversation_id):
            async with unit_of_work(db_session):
                conversation = await self.get_for_participant(
                    conversation_id, sender_id, db_session, for_update=True
                )
                if not conversation.is_active:
                    raise NotMatchedError("This conversation has been closed")

                now = utcnow()
                conversation.message_seq += 1
                message = Message(
                    id=uuid.uuid4(),
                    conversation_id=conversation.id,
                    seq=conversation.message_seq,
                    sender_id=sender_id,
                    content=content,
                    message_type=message_type.value,
                    created_at=now,
                )
                db_session.add(message)
                await db_session.flush()

                receipt = MessageRead(message_id=message.id, user_id=sender_id, read_at=now)
                db_session.add(receipt)
                _apply_last_message(conversation, message)
                await db_session.flush()

        view = _message_view(message, [receipt])
        logger.info(
            "message_sent",
            conversation_id=str(conversation_id),
            message_id=str(message.id),
            seq=message.seq,
            message_type=message_type.value,
        )
        await publish_event(
            self.notifications,
            MessageAppended(conversation_id=conversation_id, message=view),
        )
        return view

    async def mark_read(
        self,
        conversation_id: uuid.UUID | str,
        requester_id: uuid.UUID | str,
        db_session: AsyncSession,
    ) -> int:
        """Add a read receipt for every message the requester has not read.

        Returns the number of receipts added (0 on a repeated call).
        """
        conversation_id = parse_id(conversation_id, "conversation_id")
        requester_id = parse_id(requester_id, "requester_id")

        async with self.locks.acquire(conversation_id):
            async with unit_of_work(db_session):
                conversation = await self.get_for_participant(
                    conversation_id, requester_id, db_session, for_update=True
                )
                already_read = exists().where(
                    MessageRead.message_id == Message.id,
                    MessageRead.user_id == requester_id,
                )
                stmt = select(Message.id).where(
                    Message.conversation_id == conversation.id,
                    ~already_read,
                )
                unread_ids = (await db_session.execute(stmt)).scalars().all()

                now = utcnow()
                db_session.add_all(
                    MessageRead(message_id=message_id, user_id=requester_id, read_at=now)
                    for message_id in unread_ids
                )
                await db_session.flush()

        logger.info(
            "messages_marked_read",
            conversation_id=str(conversation_id),
            user_id=str(requester_id),
            marked=len(unread_ids),
        )
        return len(unread_ids)

    async def delete_message(
        self,
        conversation_id: uuid.UUID | str,
        message_id: uuid.UUID | str,
        requester_id: uuid.UUID | str,
        db_session: AsyncSession,
    ) -> None:
        """Delete one of the requester's own messages and repair the tail view."""
        conversation_id = parse_id(conversation_id, "conversation_id")
        message_id = parse_id(message_id, "message_id")
        requester_id = parse_id(requester_id, "requester_id")

        async with self.locks.acquire(conversation_id):
            async with unit_of_work(db_session):
                conversation = await self.get_for_participant(
                    conversation_id, requester_id, db_session, for_update=True
                )

                stmt = select(Message).where(
                    Message.id == message_id,
                    Message.conversation_id == conversation.id,
                )
                message = (await db_session.execute(stmt)).scalar_one_or_none()
                if message is None:
                    raise NotFoundError("Message not found", {"message_id": str(message_id)})
                if message.sender_id != requester_id:
                    raise ForbiddenError("You can only delete your own messages")

                await db_session.execute(
                    delete(MessageRead).where(MessageRead.message_id == message.id)
                )
                await db_session.delete(message)
                await db_session.flush()

                tail_stmt = (
                    select(Message)
                    .where(Message.conversation_id == conversation.id)
                    .order_by(Message.seq.desc())
                    .limit(1)
                )
                tail = (await db_session.execute(tail_stmt)).scalar_one_or_none()
                _apply_last_message(conversation, tail)

        logger.info(
            "message_deleted",
            conversation_id=str(conversation_id),
            message_id=str(message_id),
            conversation_empty=tail is None,
        )
