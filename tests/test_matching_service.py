"""Tests for MatchingService — candidate filtering and swipe reconciliation."""
import asyncio
import uuid

import pytest
from sqlalchemy import func, select

from unimatch.models.match import Match, Swipe
from unimatch.services.matching_service import MatchingService, round_km
from unimatch.services.notification_service import MatchFormed
from unimatch.utils.errors import (
    AlreadyDislikedError,
    AlreadyLikedError,
    NotFoundError,
    ProfileIncompleteError,
    ValidationError,
)

# ~10 km north of (0, 10)
TEN_KM_NORTH = (0.0899, 10.0)


@pytest.fixture
def matching_service(bridge, locks):
    return MatchingService(notifications=bridge, locks=locks)


@pytest.fixture
def make_pair(make_user):
    """An actor (female, into men) and a compatible target (male, into women)."""

    async def _make(actor_kwargs=None, target_kwargs=None):
        actor = await make_user(gender="female", interested_in="male", **(actor_kwargs or {}))
        target = await make_user(gender="male", interested_in="female", **(target_kwargs or {}))
        return actor, target

    return _make


async def _count(db, model):
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()


async def _candidate_ids(service, user, db):
    return [c.id for c in await service.get_candidates(user.id, db)]


class TestCandidateFilters:

    @pytest.mark.asyncio
    async def test_compatible_target_is_returned(self, matching_service, make_pair, db):
        actor, target = await make_pair()
        candidates = await matching_service.get_candidates(actor.id, db)
        assert [c.id for c in candidates] == [target.id]
        assert candidates[0].distance_km is None

    @pytest.mark.asyncio
    async def test_other_university_never_returned(self, matching_service, make_pair, db):
        actor, _ = await make_pair(target_kwargs={"university": "other.edu"})
        assert await _candidate_ids(matching_service, actor, db) == []

    @pytest.mark.asyncio
    async def test_unverified_target_excluded(self, matching_service, make_pair, db):
        actor, _ = await make_pair(target_kwargs={"is_email_verified": False})
        assert await _candidate_ids(matching_service, actor, db) == []

    @pytest.mark.asyncio
    async def test_incomplete_target_excluded(self, matching_service, make_pair, db):
        actor, _ = await make_pair(target_kwargs={"photos": []})
        assert await _candidate_ids(matching_service, actor, db) == []

    @pytest.mark.asyncio
    async def test_age_range_applied(self, matching_service, make_pair, db):
        actor, target = await make_pair(
            actor_kwargs={"age_min": 20, "age_max": 22},
            target_kwargs={"age": 23},
        )
        assert await _candidate_ids(matching_service, actor, db) == []

    @pytest.mark.asyncio
    async def test_gender_interest_must_be_mutual(self, matching_service, make_user, db):
        actor = await make_user(gender="female", interested_in="male")
        await make_user(gender="female", interested_in="female")   # actor not interested
        await make_user(gender="male", interested_in="male")       # target not interested
        into_both = await make_user(gender="male", interested_in="both")
        assert await _candidate_ids(matching_service, actor, db) == [into_both.id]

    @pytest.mark.asyncio
    async def test_non_binary_only_sees_targets_open_to_both(self, matching_service, make_user, db):
        actor = await make_user(gender="non-binary", interested_in="both")
        await make_user(gender="female", interested_in="male")
        open_target = await make_user(gender="male", interested_in="both")
        assert await _candidate_ids(matching_service, actor, db) == [open_target.id]

    @pytest.mark.asyncio
    async def test_swiped_targets_excluded(self, matching_service, make_pair, make_user, db):
        actor, liked = await make_pair()
        disliked = await make_user(gender="male", interested_in="female")
        await matching_service.like(actor.id, liked.id, db)
        await matching_service.dislike(actor.id, disliked.id, db)
        assert await _candidate_ids(matching_service, actor, db) == []

    @pytest.mark.asyncio
    async def test_ordered_by_activity_and_capped(self, matching_service, make_user, db):
        actor = await make_user(gender="female", interested_in="male")
        targets = [
            await make_user(gender="male", interested_in="female", minutes_ago=i)
            for i in range(12)
        ]
        ids = await _candidate_ids(matching_service, actor, db)
        assert ids == [t.id for t in targets[:10]]

    @pytest.mark.asyncio
    async def test_incomplete_actor_rejected(self, matching_service, make_user, db):
        actor = await make_user(bio=None)
        with pytest.raises(ProfileIncompleteError):
            await matching_service.get_candidates(actor.id, db)


class TestCandidateDistance:

    @pytest.mark.asyncio
    async def test_within_max_distance(self, matching_service, make_pair, db):
        lat, lon = TEN_KM_NORTH
        actor, target = await make_pair(
            actor_kwargs={"latitude": 0.0, "longitude": 10.0, "max_distance_km": 50},
            target_kwargs={"latitude": lat, "longitude": lon},
        )
        candidates = await matching_service.get_candidates(actor.id, db)
        assert [c.id for c in candidates] == [target.id]
        assert candidates[0].distance_km == 10

    @pytest.mark.asyncio
    async def test_beyond_max_distance(self, matching_service, make_pair, db):
        lat, lon = TEN_KM_NORTH
        actor, _ = await make_pair(
            actor_kwargs={"latitude": 0.0, "longitude": 10.0, "max_distance_km": 5},
            target_kwargs={"latitude": lat, "longitude": lon},
        )
        assert await _candidate_ids(matching_service, actor, db) == []

    @pytest.mark.asyncio
    async def test_unlocated_target_excluded_for_located_actor(self, matching_service, make_pair, db):
        actor, _ = await make_pair(actor_kwargs={"latitude": 0.0, "longitude": 10.0})
        assert await _candidate_ids(matching_service, actor, db) == []

    @pytest.mark.asyncio
    async def test_unlocated_actor_skips_distance(self, matching_service, make_pair, db):
        actor, target = await make_pair(target_kwargs={"latitude": 60.0, "longitude": 25.0})
        candidates = await matching_service.get_candidates(actor.id, db)
        assert [c.id for c in candidates] == [target.id]
        assert candidates[0].distance_km is None

    @pytest.mark.asyncio
    async def test_scan_pages_past_rows_outside_radius(self, matching_service, make_user, db):
        # Near the antimeridian the box keeps only its latitude band, so the
        # two distant targets are fetched first and rejected by distance.
        actor = await make_user(
            gender="female", interested_in="male",
            latitude=0.0, longitude=179.9, max_distance_km=50,
        )
        for minutes_ago, longitude in ((0, 45.0), (1, 90.0)):
            await make_user(
                minutes_ago=minutes_ago, gender="male", interested_in="female",
                latitude=0.0, longitude=longitude,
            )
        across = await make_user(
            minutes_ago=5, gender="male", interested_in="female",
            latitude=0.0, longitude=-179.95,
        )

        matching_service.scan_batch_size = 1
        candidates = await matching_service.get_candidates(actor.id, db)
        assert [c.id for c in candidates] == [across.id]
        assert candidates[0].distance_km == 17

    def test_round_half_up(self):
        assert round_km(9.5) == 10
        assert round_km(10.49) == 10
        assert round_km(0.2) == 0


class TestLike:

    @pytest.mark.asyncio
    async def test_one_sided_like(self, matching_service, make_pair, bridge, db):
        actor, target = await make_pair()
        result = await matching_service.like(actor.id, target.id, db)
        assert result.is_match is False
        assert result.matched_user is None
        assert await _count(db, Match) == 0
        assert bridge.events == []

    @pytest.mark.asyncio
    async def test_reciprocal_like_matches_once(self, matching_service, make_pair, bridge, db):
        actor, target = await make_pair()
        await matching_service.like(actor.id, target.id, db)
        result = await matching_service.like(target.id, actor.id, db)

        assert result.is_match is True
        assert result.matched_user.id == actor.id
        assert await _count(db, Match) == 1

        assert len(bridge.events) == 1
        event = bridge.events[0]
        assert isinstance(event, MatchFormed)
        assert {event.user_a, event.user_b} == {actor.id, target.id}

        assert [u.id for u in await matching_service.list_matches(actor.id, db)] == [target.id]
        assert [u.id for u in await matching_service.list_matches(target.id, db)] == [actor.id]

    @pytest.mark.asyncio
    async def test_concurrent_reciprocal_likes(self, matching_service, make_pair, session_factory, db):
        actor, target = await make_pair()

        async with session_factory() as s1, session_factory() as s2:
            results = await asyncio.gather(
                matching_service.like(actor.id, target.id, s1),
                matching_service.like(target.id, actor.id, s2),
            )

        assert sorted(r.is_match for r in results) == [False, True]
        assert await _count(db, Match) == 1

    @pytest.mark.asyncio
    async def test_repeat_like_rejected(self, matching_service, make_pair, db):
        actor, target = await make_pair()
        await matching_service.like(actor.id, target.id, db)
        with pytest.raises(AlreadyLikedError):
            await matching_service.like(actor.id, target.id, db)

    @pytest.mark.asyncio
    async def test_like_after_dislike_converts(self, matching_service, make_pair, db):
        actor, target = await make_pair()
        await matching_service.dislike(actor.id, target.id, db)
        await matching_service.like(actor.id, target.id, db)

        swipes = (await db.execute(select(Swipe))).scalars().all()
        assert [(s.actor_id, s.kind) for s in swipes] == [(actor.id, "like")]

    @pytest.mark.asyncio
    async def test_cannot_like_self(self, matching_service, make_user, db):
        user = await make_user()
        with pytest.raises(ValidationError):
            await matching_service.like(user.id, user.id, db)

    @pytest.mark.asyncio
    async def test_unknown_target(self, matching_service, make_user, db):
        user = await make_user()
        with pytest.raises(NotFoundError):
            await matching_service.like(user.id, uuid.uuid4(), db)


class TestDislike:

    @pytest.mark.asyncio
    async def test_only_actor_side_changes(self, matching_service, make_pair, db):
        actor, target = await make_pair()
        await matching_service.dislike(actor.id, target.id, db)

        assert await _candidate_ids(matching_service, actor, db) == []
        assert await _candidate_ids(matching_service, target, db) == [actor.id]

    @pytest.mark.asyncio
    async def test_repeat_dislike_rejected(self, matching_service, make_pair, db):
        actor, target = await make_pair()
        await matching_service.dislike(actor.id, target.id, db)
        with pytest.raises(AlreadyDislikedError):
            await matching_service.dislike(actor.id, target.id, db)

    @pytest.mark.asyncio
    async def test_dislike_after_like_rejected(self, matching_service, make_pair, db):
        actor, target = await make_pair()
        await matching_service.like(actor.id, target.id, db)
        with pytest.raises(AlreadyLikedError):
            await matching_service.dislike(actor.id, target.id, db)


class TestUnmatch:

    @pytest.mark.asyncio
    async def test_unmatch_clears_edges_and_allows_rematch(self, matching_service, make_pair, db):
        actor, target = await make_pair()
        await matching_service.like(actor.id, target.id, db)
        await matching_service.like(target.id, actor.id, db)

        assert await matching_service.unmatch(actor.id, target.id, db) is True
        assert await _count(db, Match) == 0
        assert await _count(db, Swipe) == 0
        assert await matching_service.list_matches(target.id, db) == []

        await matching_service.like(target.id, actor.id, db)
        result = await matching_service.like(actor.id, target.id, db)
        assert result.is_match is True
        assert await _count(db, Match) == 1

    @pytest.mark.asyncio
    async def test_unmatch_unmatched_pair_is_noop(self, matching_service, make_pair, db):
        actor, target = await make_pair()
        assert await matching_service.unmatch(actor.id, target.id, db) is False

    @pytest.mark.asyncio
    async def test_unmatch_keeps_dislikes(self, matching_service, make_pair, db):
        actor, target = await make_pair()
        await matching_service.dislike(target.id, actor.id, db)
        await matching_service.unmatch(actor.id, target.id, db)
        assert await _count(db, Swipe) == 1
