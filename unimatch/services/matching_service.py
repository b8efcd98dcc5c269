"""
UniMatch — Matching Engine

Candidate discovery and swipe reconciliation:

  get_candidates: same-university pool filtered by verification, profile
                  completion, age range, mutual gender interest and (when
                  the actor is located) haversine distance; newest activity
                  first, capped at ``CANDIDATE_LIMIT``.
  like:           records a like edge; if the target already likes the
                  actor, writes the single match row for the pair and emits
                  ``match-formed``.
  dislike:        records a dislike edge for the actor only.
  unmatch:        removes the match and both like edges, closes the chat.

Likes, dislikes and unmatches lock both user ids (in-process keyed locks
plus ``SELECT ... FOR UPDATE`` on both rows) for the whole transaction, so
two users liking each other at the same moment always end with exactly one
match row.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass
from typing import Optional

import structlog
from sqlalchemy import and_, delete, not_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from unimatch.config import get_settings
from unimatch.database import unit_of_work
from unimatch.models.conversation import Conversation
from unimatch.models.match import Match, Swipe, SwipeKind, canonical_pair
from unimatch.models.user import InterestedIn, User
from unimatch.schemas.user import CandidateResponse, UserSummary
from unimatch.services.notification_service import (
    MatchFormed,
    NotificationBridge,
    publish_event,
)
from unimatch.services.profile_service import fetch_user, fetch_users
from unimatch.utils.errors import (
    AlreadyDislikedError,
    AlreadyLikedError,
    ProfileIncompleteError,
    ValidationError,
)
from unimatch.utils.geo import bounding_box, haversine_distance, within_radius
from unimatch.utils.locks import KeyedLock, user_locks
from unimatch.utils.validators import parse_id

logger = structlog.get_logger("unimatch.matching_service")


@dataclass
class LikeResult:
    is_match: bool
    matched_user: Optional[UserSummary] = None


# ──────────────────────────────────────────────────────────────────────────────
# Query helpers
# ──────────────────────────────────────────────────────────────────────────────

async def get_swipe(
    db_session: AsyncSession,
    actor_id: uuid.UUID,
    target_id: uuid.UUID,
) -> Swipe | None:
    stmt = select(Swipe).where(Swipe.actor_id == actor_id, Swipe.target_id == target_id)
    result = await db_session.execute(stmt)
    return result.scalar_one_or_none()


async def get_match(
    db_session: AsyncSession,
    user_a_id: uuid.UUID,
    user_b_id: uuid.UUID,
) -> Match | None:
    low, high = canonical_pair(user_a_id, user_b_id)
    stmt = select(Match).where(Match.user_low_id == low, Match.user_high_id == high)
    result = await db_session.execute(stmt)
    return result.scalar_one_or_none()


async def is_matched(
    db_session: AsyncSession,
    user_a_id: uuid.UUID,
    user_b_id: uuid.UUID,
) -> bool:
    return await get_match(db_session, user_a_id, user_b_id) is not None


def round_km(distance_km: float) -> int:
    """Round half up to the nearest kilometre for display."""
    return int(math.floor(distance_km + 0.5))


class MatchingService:
    """Candidate filtering and like/dislike/unmatch reconciliation.

    Dependencies are injected at construction so that the service can be
    tested with an in-memory notification bridge.
    """

    def __init__(
        self,
        notifications: NotificationBridge | None = None,
        locks: KeyedLock | None = None,
    ) -> None:
        self.notifications = notifications
        self.locks = locks or user_locks
        settings = get_settings()
        self.candidate_limit: int = settings.CANDIDATE_LIMIT
        self.scan_batch_size: int = settings.CANDIDATE_SCAN_BATCH

    # ── Discovery ────────────────────────────────────────────────────────

    async def get_candidates(
        self,
        user_id: uuid.UUID | str,
        db_session: AsyncSession,
    ) -> list[CandidateResponse]:
        """Return up to ``CANDIDATE_LIMIT`` candidates for ``user_id``.

        Filters, all of which must hold:
          1. not the user, and not already liked or disliked by them
          2. same university
          3. target verified and profile-complete
          4. target age inside the user's preferred range
          5. the user's interest matches the target's gender (unless
             "both") AND the target's interest matches the user's gender
             (or is "both")
          6. when the user is located: target located and within
             ``max_distance_km`` by great-circle distance

        Ordering is by ``last_active`` descending.  ``distance_km`` is set
        only when both parties are located.
        """
        user_id = parse_id(user_id, "user_id")
        user = await fetch_user(db_session, user_id)
        log = logger.bind(user_id=str(user_id))

        if not user.is_profile_complete():
            log.info("candidates_profile_incomplete")
            raise ProfileIncompleteError("Please complete your profile first")

        swiped = select(Swipe.target_id).where(Swipe.actor_id == user.id)

        stmt = select(User).where(
            User.id != user.id,
            User.id.not_in(swiped),
            User.university == user.university,
            User.is_email_verified.is_(True),
            User.profile_completed.is_(True),
            User.age >= user.age_min,
            User.age <= user.age_max,
            or_(
                User.interested_in == user.gender,
                User.interested_in == InterestedIn.BOTH.value,
            ),
        )
        if user.interested_in != InterestedIn.BOTH.value:
            stmt = stmt.where(User.gender == user.interested_in)

        geo_active = user.has_location
        if geo_active:
            box = bounding_box(user.latitude, user.longitude, user.max_distance_km)
            stmt = stmt.where(
                not_(and_(User.latitude == 0, User.longitude == 0)),
                User.latitude >= box.min_lat,
                User.latitude <= box.max_lat,
            )
            if box.min_lon is not None:
                stmt = stmt.where(
                    User.longitude >= box.min_lon,
                    User.longitude <= box.max_lon,
                )

        stmt = stmt.order_by(User.last_active.desc(), User.id)

        # The box over-selects (its corners, and the whole latitude band when
        # the longitude bound is dropped), so located searches page through
        # it until enough rows pass the exact distance check.
        batch_size = self.scan_batch_size if geo_active else self.candidate_limit
        candidates: list[CandidateResponse] = []
        offset = 0
        while len(candidates) < self.candidate_limit:
            batch = (
                await db_session.execute(stmt.offset(offset).limit(batch_size))
            ).scalars().all()

            for target in batch:
                distance_km: int | None = None
                if geo_active:
                    if not within_radius(
                        user.latitude, user.longitude,
                        target.latitude, target.longitude,
                        user.max_distance_km,
                    ):
                        continue
                    distance_km = round_km(
                        haversine_distance(
                            user.latitude, user.longitude, target.latitude, target.longitude
                        )
                    )

                candidate = CandidateResponse.model_validate(target)
                candidate.distance_km = distance_km
                candidates.append(candidate)
                if len(candidates) >= self.candidate_limit:
                    break

            if len(batch) < batch_size:
                break
            offset += batch_size

        log.info("candidates_computed", count=len(candidates), geo_filtered=geo_active)
        return candidates

    # ── Swipes ───────────────────────────────────────────────────────────

    async def like(
        self,
        actor_id: uuid.UUID | str,
        target_id: uuid.UUID | str,
        db_session: AsyncSession,
    ) -> LikeResult:
        """Like ``target_id``; report whether this completed a mutual match.

        A repeated like raises ``AlreadyLikedError``.  A previous dislike of
        the same target is turned into a like.
        """
        actor_id = parse_id(actor_id, "actor_id")
        target_id = parse_id(target_id, "target_id")
        if actor_id == target_id:
            raise ValidationError("You cannot like yourself")

        log = logger.bind(actor_id=str(actor_id), target_id=str(target_id))

        async with self.locks.acquire(actor_id, target_id):
            async with unit_of_work(db_session):
                users = await fetch_users(db_session, [actor_id, target_id], for_update=True)

                edge = await get_swipe(db_session, actor_id, target_id)
                if edge is not None and edge.kind == SwipeKind.LIKE.value:
                    log.info("like_rejected_duplicate")
                    raise AlreadyLikedError("User already liked")

                if edge is None:
                    db_session.add(
                        Swipe(actor_id=actor_id, target_id=target_id, kind=SwipeKind.LIKE.value)
                    )
                else:
                    edge.kind = SwipeKind.LIKE.value

                reverse = await get_swipe(db_session, target_id, actor_id)
                is_match = reverse is not None and reverse.kind == SwipeKind.LIKE.value

                if is_match and await get_match(db_session, actor_id, target_id) is None:
                    low, high = canonical_pair(actor_id, target_id)
                    db_session.add(Match(user_low_id=low, user_high_id=high))

                await db_session.flush()

        log.info("like_complete", is_match=is_match)

        if not is_match:
            return LikeResult(is_match=False)

        await publish_event(self.notifications, MatchFormed(user_a=actor_id, user_b=target_id))
        return LikeResult(
            is_match=True,
            matched_user=UserSummary.model_validate(users[target_id]),
        )

    async def dislike(
        self,
        actor_id: uuid.UUID | str,
        target_id: uuid.UUID | str,
        db_session: AsyncSession,
    ) -> None:
        """Record a dislike.  Only the actor's own edge is written.

        Disliking a user the actor currently likes raises
        ``AlreadyLikedError``; the like has to be withdrawn with ``unmatch``.
        """
        actor_id = parse_id(actor_id, "actor_id")
        target_id = parse_id(target_id, "target_id")
        if actor_id == target_id:
            raise ValidationError("You cannot dislike yourself")

        async with self.locks.acquire(actor_id, target_id):
            async with unit_of_work(db_session):
                await fetch_users(db_session, [actor_id, target_id], for_update=True)

                edge = await get_swipe(db_session, actor_id, target_id)
                if edge is not None:
                    if edge.kind == SwipeKind.DISLIKE.value:
                        raise AlreadyDislikedError("User already disliked")
                    raise AlreadyLikedError("User already liked; unmatch first")

                db_session.add(
                    Swipe(actor_id=actor_id, target_id=target_id, kind=SwipeKind.DISLIKE.value)
                )
                await db_session.flush()

        logger.info("dislike_complete", actor_id=str(actor_id), target_id=str(target_id))

    async def unmatch(
        self,
        actor_id: uuid.UUID | str,
        target_id: uuid.UUID | str,
        db_session: AsyncSession,
    ) -> bool:
        """Dissolve a match and purge both like edges.

        Unmatching a pair that is not matched is a no-op, not an error.
        The pair's conversation, if any, is closed (``is_active = False``).

        Returns True when a match row was actually removed.
        """
        actor_id = parse_id(actor_id, "actor_id")
        target_id = parse_id(target_id, "target_id")
        if actor_id == target_id:
            raise ValidationError("You cannot unmatch yourself")

        low, high = canonical_pair(actor_id, target_id)

        async with self.locks.acquire(actor_id, target_id):
            async with unit_of_work(db_session):
                await fetch_users(db_session, [actor_id, target_id], for_update=True)

                removed = await db_session.execute(
                    delete(Match).where(Match.user_low_id == low, Match.user_high_id == high)
                )
                await db_session.execute(
                    delete(Swipe).where(
                        Swipe.kind == SwipeKind.LIKE.value,
                        or_(
                            and_(Swipe.actor_id == actor_id, Swipe.target_id == target_id),
                            and_(Swipe.actor_id == target_id, Swipe.target_id == actor_id),
                        ),
                    )
                )
                await db_session.execute(
                    update(Conversation)
                    .where(Conversation.user_low_id == low, Conversation.user_high_id == high)
                    .values(is_active=False)
                )

        was_matched = bool(removed.rowcount)
        logger.info(
            "unmatch_complete",
            actor_id=str(actor_id),
            target_id=str(target_id),
            was_matched=was_matched,
        )
        return was_matched

    # ── Matches ──────────────────────────────────────────────────────────

    async def list_matches(
        self,
        user_id: uuid.UUID | str,
        db_session: AsyncSession,
    ) -> list[UserSummary]:
        """Return the user's matches, most recent first."""
        user_id = parse_id(user_id, "user_id")
        await fetch_user(db_session, user_id)

        stmt = (
            select(Match)
            .where(or_(Match.user_low_id == user_id, Match.user_high_id == user_id))
            .order_by(Match.created_at.desc(), Match.id)
        )
        matches = (await db_session.execute(stmt)).scalars().all()
        if not matches:
            return []

        other_ids = [m.other(user_id) for m in matches]
        users_stmt = select(User).where(User.id.in_(other_ids))
        users = {u.id: u for u in (await db_session.execute(users_stmt)).scalars().all()}

        return [UserSummary.model_validate(users[uid]) for uid in other_ids if uid in users]
