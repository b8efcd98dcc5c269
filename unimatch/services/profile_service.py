"""
UniMatch — User Directory

Owns every write to a user profile: registration data, bio and course
details, photos and the main-photo flag, location, matching preferences and
presence.  ``profile_completed`` is never set directly; each mutation ends
with ``User.refresh_profile_completed()``.

All writes for one user are serialised on the shared ``user_locks``
registry and on a ``SELECT ... FOR UPDATE`` of the user row, so a
preference update cannot overwrite a concurrent like (or vice versa).
"""

from __future__ import annotations

import uuid
from typing import Iterable, Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from unimatch.config import get_settings
from unimatch.database import unit_of_work, utcnow
from unimatch.models.user import Gender, InterestedIn, User
from unimatch.schemas.user import ProfileUpdate, UserCreate
from unimatch.utils.errors import ConflictError, NotFoundError, ValidationError
from unimatch.utils.locks import KeyedLock, user_locks
from unimatch.utils.validators import (
    parse_id,
    university_from_email,
    validate_age,
    validate_age_range,
    validate_bio,
    validate_choice,
    validate_coordinates,
    validate_max_distance,
    validate_name,
    validate_university_email,
    validate_year,
)

logger = structlog.get_logger("unimatch.profile_service")


# ──────────────────────────────────────────────────────────────────────────────
# Lookup helpers (shared with the matching and chat services)
# ──────────────────────────────────────────────────────────────────────────────

async def fetch_user(
    db_session: AsyncSession,
    user_id: uuid.UUID,
    *,
    for_update: bool = False,
) -> User:
    """Load a user or raise ``NotFoundError``."""
    stmt = select(User).where(User.id == user_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await db_session.execute(stmt)
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFoundError("User not found", {"user_id": str(user_id)})
    return user


async def fetch_users(
    db_session: AsyncSession,
    user_ids: Sequence[uuid.UUID],
    *,
    for_update: bool = False,
) -> dict[uuid.UUID, User]:
    """Load several users at once; raise ``NotFoundError`` if any is missing.

    Rows are locked in primary-key order so two transactions touching the
    same pair can never deadlock.
    """
    wanted = set(user_ids)
    stmt = select(User).where(User.id.in_(wanted)).order_by(User.id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await db_session.execute(stmt)
    users = {user.id: user for user in result.scalars().all()}

    missing = wanted - users.keys()
    if missing:
        raise NotFoundError(
            "User not found",
            {"user_ids": sorted(str(uid) for uid in missing)},
        )
    return users


class ProfileService:
    """Profile, photo, location and preference management."""

    def __init__(self, locks: KeyedLock | None = None) -> None:
        self.locks = locks or user_locks
        self.max_photos: int = get_settings().MAX_PHOTOS

    # ── Registration & lookup ────────────────────────────────────────────

    async def create_user(self, data: UserCreate, db_session: AsyncSession) -> User:
        """Create an (incomplete) profile for a newly registered account.

        The university is derived from the email domain.  Password handling
        and email verification live in the authentication service; the new
        account starts unverified.
        """
        email = validate_university_email(data.email)
        log = logger.bind(email=email)
        log.info("create_user_start")

        user = User(
            email=email,
            first_name=validate_name(data.first_name, "first_name"),
            last_name=validate_name(data.last_name, "last_name"),
            age=validate_age(data.age),
            gender=validate_choice(data.gender, Gender, "gender").value,
            interested_in=validate_choice(data.interested_in, InterestedIn, "interested_in").value,
            university=university_from_email(email),
            course=data.course.strip() if data.course else None,
            year=validate_year(data.year),
            bio=validate_bio(data.bio),
            photos=[],
            max_distance_km=get_settings().DEFAULT_MAX_DISTANCE_KM,
        )
        user.refresh_profile_completed()

        async with unit_of_work(db_session):
            existing = await db_session.execute(select(User.id).where(User.email == email))
            if existing.scalar_one_or_none() is not None:
                log.warning("create_user_duplicate_email")
                raise ConflictError("A user with this email already exists.", {"field": "email"})
            db_session.add(user)
            await db_session.flush()

        log.info("create_user_complete", user_id=str(user.id), university=user.university)
        return user

    async def get_user(self, user_id: uuid.UUID | str, db_session: AsyncSession) -> User:
        return await fetch_user(db_session, parse_id(user_id, "user_id"))

    async def mark_email_verified(self, user_id: uuid.UUID | str, db_session: AsyncSession) -> User:
        """Record a successful verification reported by the auth service."""
        user_id = parse_id(user_id, "user_id")
        async with self.locks.acquire(user_id):
            async with unit_of_work(db_session):
                user = await fetch_user(db_session, user_id, for_update=True)
                user.is_email_verified = True
        logger.info("email_verified", user_id=str(user_id))
        return user

    # ── Profile fields ───────────────────────────────────────────────────

    async def update_profile(
        self,
        user_id: uuid.UUID | str,
        data: ProfileUpdate,
        db_session: AsyncSession,
    ) -> User:
        """Apply the fields present in ``data``; absent fields are untouched."""
        user_id = parse_id(user_id, "user_id")
        updates = data.model_dump(exclude_unset=True)

        cleaned: dict = {}
        for field, value in updates.items():
            if field in ("first_name", "last_name"):
                cleaned[field] = validate_name(value, field)
            elif field == "age":
                cleaned[field] = validate_age(value)
            elif field == "year":
                cleaned[field] = validate_year(value)
            elif field == "bio":
                cleaned[field] = validate_bio(value)
            elif field == "interested_in":
                cleaned[field] = validate_choice(value, InterestedIn, field).value
            elif field == "course":
                cleaned[field] = value.strip() if value else None

        async with self.locks.acquire(user_id):
            async with unit_of_work(db_session):
                user = await fetch_user(db_session, user_id, for_update=True)
                for field, value in cleaned.items():
                    setattr(user, field, value)
                user.refresh_profile_completed()

        logger.info(
            "profile_updated",
            user_id=str(user_id),
            updated_fields=list(cleaned.keys()),
            profile_completed=user.profile_completed,
        )
        return user

    # ── Photos ───────────────────────────────────────────────────────────

    async def add_photos(
        self,
        user_id: uuid.UUID | str,
        urls: Iterable[str],
        db_session: AsyncSession,
    ) -> User:
        """Append stored photo URLs to the profile.

        When the profile had no photos the first new one becomes main.  Only
        the most recent ``MAX_PHOTOS`` are kept; if trimming dropped the main
        photo, the oldest remaining one is promoted.
        """
        user_id = parse_id(user_id, "user_id")
        urls = [u for u in urls if u]
        if not urls:
            raise ValidationError("No photos uploaded", {"field": "photos"})

        async with self.locks.acquire(user_id):
            async with unit_of_work(db_session):
                user = await fetch_user(db_session, user_id, for_update=True)
                photos = [dict(p) for p in user.photos or []]
                was_empty = not photos

                for index, url in enumerate(urls):
                    photos.append({"url": url, "is_main": was_empty and index == 0})

                if len(photos) > self.max_photos:
                    photos = photos[-self.max_photos:]

                user.photos = _ensure_single_main(photos)
                user.refresh_profile_completed()

        logger.info("photos_added", user_id=str(user_id), added=len(urls), total=len(user.photos))
        return user

    async def set_main_photo(
        self,
        user_id: uuid.UUID | str,
        url: str,
        db_session: AsyncSession,
    ) -> User:
        user_id = parse_id(user_id, "user_id")
        async with self.locks.acquire(user_id):
            async with unit_of_work(db_session):
                user = await fetch_user(db_session, user_id, for_update=True)
                photos = [dict(p) for p in user.photos or []]
                if not any(p["url"] == url for p in photos):
                    raise NotFoundError("Photo not found", {"url": url})
                for photo in photos:
                    photo["is_main"] = photo["url"] == url
                user.photos = photos

        logger.info("main_photo_set", user_id=str(user_id))
        return user

    async def delete_photo(
        self,
        user_id: uuid.UUID | str,
        url: str,
        db_session: AsyncSession,
    ) -> User:
        """Remove a photo; if it was main, the first remaining photo takes over."""
        user_id = parse_id(user_id, "user_id")
        async with self.locks.acquire(user_id):
            async with unit_of_work(db_session):
                user = await fetch_user(db_session, user_id, for_update=True)
                photos = [dict(p) for p in user.photos or []]
                index = next((i for i, p in enumerate(photos) if p["url"] == url), None)
                if index is None:
                    raise NotFoundError("Photo not found", {"url": url})

                photos.pop(index)
                user.photos = _ensure_single_main(photos)
                user.refresh_profile_completed()

        logger.info(
            "photo_deleted",
            user_id=str(user_id),
            remaining=len(user.photos),
            profile_completed=user.profile_completed,
        )
        return user

    # ── Location, preferences, presence ──────────────────────────────────

    async def update_location(
        self,
        user_id: uuid.UUID | str,
        latitude: float,
        longitude: float,
        db_session: AsyncSession,
    ) -> User:
        user_id = parse_id(user_id, "user_id")
        latitude, longitude = validate_coordinates(latitude, longitude)

        async with self.locks.acquire(user_id):
            async with unit_of_work(db_session):
                user = await fetch_user(db_session, user_id, for_update=True)
                user.latitude = latitude
                user.longitude = longitude

        logger.info("location_updated", user_id=str(user_id), located=user.has_location)
        return user

    async def update_preferences(
        self,
        user_id: uuid.UUID | str,
        db_session: AsyncSession,
        *,
        age_min: int | None = None,
        age_max: int | None = None,
        max_distance_km: int | None = None,
    ) -> User:
        """Update the age range and/or search radius.

        A partial age range is completed from the stored value before the
        ``min <= max`` check.
        """
        user_id = parse_id(user_id, "user_id")
        if max_distance_km is not None:
            validate_max_distance(max_distance_km)

        async with self.locks.acquire(user_id):
            async with unit_of_work(db_session):
                user = await fetch_user(db_session, user_id, for_update=True)
                if age_min is not None or age_max is not None:
                    new_min = age_min if age_min is not None else user.age_min
                    new_max = age_max if age_max is not None else user.age_max
                    user.age_min, user.age_max = validate_age_range(new_min, new_max)
                if max_distance_km is not None:
                    user.max_distance_km = max_distance_km

        logger.info(
            "preferences_updated",
            user_id=str(user_id),
            age_min=user.age_min,
            age_max=user.age_max,
            max_distance_km=user.max_distance_km,
        )
        return user

    async def set_presence(
        self,
        user_id: uuid.UUID | str,
        online: bool,
        db_session: AsyncSession,
    ) -> User:
        """Record a connect/disconnect and bump ``last_active``."""
        user_id = parse_id(user_id, "user_id")
        async with self.locks.acquire(user_id):
            async with unit_of_work(db_session):
                user = await fetch_user(db_session, user_id, for_update=True)
                user.is_online = online
                user.last_active = utcnow()
        logger.debug("presence_updated", user_id=str(user_id), online=online)
        return user


def _ensure_single_main(photos: list[dict]) -> list[dict]:
    """Keep exactly one main photo when any photos exist."""
    main_seen = False
    for photo in photos:
        if photo.get("is_main") and not main_seen:
            main_seen = True
        else:
            photo["is_main"] = False
    if photos and not main_seen:
        photos[0]["is_main"] = True
    return photos
