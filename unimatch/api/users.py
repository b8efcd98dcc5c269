"""
UniMatch — Users API

Profile registration, profile edits, photos, location and preferences.
All mutations go through ``ProfileService`` so that ``profile_completed``
is re-derived after every change.
"""

from __future__ import annotations

import asyncio
import uuid

import structlog
from fastapi import APIRouter, Depends, File, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from unimatch.api.deps import get_current_user_id, get_profile_service
from unimatch.database import get_db
from unimatch.models.user import User
from unimatch.schemas.user import (
    LocationUpdate,
    PhotoUrlRequest,
    Preferences,
    PreferencesUpdate,
    ProfileUpdate,
    UserCreate,
    UserResponse,
    UserSummary,
)
from unimatch.services.profile_service import ProfileService
from unimatch.utils import storage
from unimatch.utils.errors import ValidationError

logger = structlog.get_logger("unimatch.api.users")

router = APIRouter()


# ──────────────────────────────────────────────────────────────────────────────
# POST / — Create a new user
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a new user profile",
)
async def create_user(
    payload: UserCreate,
    db: AsyncSession = Depends(get_db),
    profiles: ProfileService = Depends(get_profile_service),
) -> User:
    """Register the profile of a newly signed-up student.

    Email ownership is verified separately; the profile starts unverified
    and incomplete.
    """
    return await profiles.create_user(payload, db)


# ──────────────────────────────────────────────────────────────────────────────
# GET /me — Current user's profile
# ──────────────────────────────────────────────────────────────────────────────

@router.get("/me", response_model=UserResponse, summary="Get my profile")
async def get_me(
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    profiles: ProfileService = Depends(get_profile_service),
) -> User:
    return await profiles.get_user(user_id, db)


@router.put("/me", response_model=UserResponse, summary="Update my profile")
async def update_me(
    payload: ProfileUpdate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    profiles: ProfileService = Depends(get_profile_service),
) -> User:
    return await profiles.update_profile(user_id, payload, db)


@router.post("/me/verify", response_model=UserResponse, summary="Mark my email as verified")
async def verify_me(
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    profiles: ProfileService = Depends(get_profile_service),
) -> User:
    return await profiles.mark_email_verified(user_id, db)


# ──────────────────────────────────────────────────────────────────────────────
# Photos
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/me/photos",
    response_model=UserResponse,
    summary="Upload profile photos",
)
async def upload_photos(
    files: list[UploadFile] = File(...),
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    profiles: ProfileService = Depends(get_profile_service),
) -> User:
    """Upload up to ``MAX_PHOTOS`` images and append them to the profile."""
    log = logger.bind(user_id=str(user_id), count=len(files))
    if len(files) > profiles.max_photos:
        raise ValidationError(
            f"At most {profiles.max_photos} photos per upload",
            {"field": "files"},
        )

    urls: list[str] = []
    for upload in files:
        data = await upload.read()
        url = await asyncio.to_thread(
            storage.upload_photo,
            user_id,
            data,
            upload.content_type or "application/octet-stream",
            upload.filename,
        )
        urls.append(url)

    log.info("photos_uploaded")
    return await profiles.add_photos(user_id, urls, db)


@router.put("/me/photos/main", response_model=UserResponse, summary="Set main photo")
async def set_main_photo(
    payload: PhotoUrlRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    profiles: ProfileService = Depends(get_profile_service),
) -> User:
    return await profiles.set_main_photo(user_id, payload.url, db)


@router.delete("/me/photos", response_model=UserResponse, summary="Delete a photo")
async def delete_photo(
    payload: PhotoUrlRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    profiles: ProfileService = Depends(get_profile_service),
) -> User:
    """Remove the photo from the profile, then from storage."""
    user = await profiles.delete_photo(user_id, payload.url, db)
    try:
        await asyncio.to_thread(storage.delete_photo, payload.url)
    except Exception:
        # The profile no longer references the object; an orphaned blob is
        # left for the bucket lifecycle rule.
        logger.exception("photo_blob_delete_failed", user_id=str(user_id))
    return user


# ──────────────────────────────────────────────────────────────────────────────
# Location & preferences
# ──────────────────────────────────────────────────────────────────────────────

@router.put("/me/location", response_model=UserResponse, summary="Update my location")
async def update_location(
    payload: LocationUpdate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    profiles: ProfileService = Depends(get_profile_service),
) -> User:
    return await profiles.update_location(user_id, payload.latitude, payload.longitude, db)


@router.put("/me/preferences", response_model=Preferences, summary="Update my preferences")
async def update_preferences(
    payload: PreferencesUpdate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    profiles: ProfileService = Depends(get_profile_service),
) -> User:
    return await profiles.update_preferences(
        user_id,
        db,
        age_min=payload.age_min,
        age_max=payload.age_max,
        max_distance_km=payload.max_distance_km,
    )


# ──────────────────────────────────────────────────────────────────────────────
# GET /{user_id} — Public profile
# ──────────────────────────────────────────────────────────────────────────────

@router.get("/{user_id}", response_model=UserSummary, summary="Get a user's public profile")
async def get_user(
    user_id: uuid.UUID,
    _: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    profiles: ProfileService = Depends(get_profile_service),
) -> User:
    return await profiles.get_user(user_id, db)
