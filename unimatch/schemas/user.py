from pydantic import BaseModel
from uuid import UUID
from datetime import datetime
from typing import Optional


class Photo(BaseModel):
    url: str
    is_main: bool = False


class UserCreate(BaseModel):
    email: str
    first_name: str
    last_name: str
    age: int
    gender: str
    interested_in: str
    course: Optional[str] = None
    year: Optional[int] = None
    bio: Optional[str] = None


class ProfileUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    age: Optional[int] = None
    course: Optional[str] = None
    year: Optional[int] = None
    bio: Optional[str] = None
    interested_in: Optional[str] = None


class PhotoUrlRequest(BaseModel):
    url: str


class LocationUpdate(BaseModel):
    latitude: float
    longitude: float


class PreferencesUpdate(BaseModel):
    age_min: Optional[int] = None
    age_max: Optional[int] = None
    max_distance_km: Optional[int] = None


class Preferences(BaseModel):
    age_min: int
    age_max: int
    max_distance_km: int

    model_config = {"from_attributes": True}


class UserResponse(BaseModel):
    id: UUID
    email: str
    is_email_verified: bool
    first_name: str
    last_name: str
    age: int
    gender: str
    interested_in: str
    university: str
    course: Optional[str]
    year: Optional[int]
    bio: Optional[str]
    photos: list[Photo] = []
    latitude: float
    longitude: float
    age_min: int
    age_max: int
    max_distance_km: int
    is_online: bool
    last_active: datetime
    profile_completed: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class UserSummary(BaseModel):
    """Profile excerpt shown for matches and chat counterparts."""

    id: UUID
    first_name: str
    last_name: str
    photos: list[Photo] = []
    bio: Optional[str] = None
    university: str
    course: Optional[str] = None
    is_online: bool
    last_active: datetime

    model_config = {"from_attributes": True}


class CandidateResponse(BaseModel):
    id: UUID
    first_name: str
    last_name: str
    age: int
    bio: Optional[str]
    photos: list[Photo] = []
    university: str
    course: Optional[str]
    year: Optional[int]
    last_active: datetime
    distance_km: Optional[int] = None

    model_config = {"from_attributes": True}
