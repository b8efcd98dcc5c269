"""Boundary checks shared by the profile, matching and chat services.

Each helper returns the normalised value or raises ``ValidationError``.
"""

from __future__ import annotations

import re
import uuid
from enum import Enum
from typing import Optional, TypeVar

from unimatch.utils.errors import ValidationError

MIN_AGE = 18
MAX_AGE = 30
MIN_YEAR = 1
MAX_YEAR = 7
MAX_BIO_LENGTH = 500
MIN_DISTANCE_KM = 1
MAX_DISTANCE_KM = 100
MAX_MESSAGE_LENGTH = 1000

UNIVERSITY_EMAIL_RE = re.compile(
    r"^[^\s@]+@[^\s@]+\.(edu|ac\.uk|edu\.au|ac\.in)$", re.IGNORECASE
)

E = TypeVar("E", bound=Enum)


def validate_university_email(email: str) -> str:
    email = (email or "").strip().lower()
    if not UNIVERSITY_EMAIL_RE.match(email):
        raise ValidationError(
            "Please use a valid university email address",
            {"field": "email"},
        )
    return email


def university_from_email(email: str) -> str:
    """The university is identified by the email domain."""
    return email.rsplit("@", 1)[1]


def validate_name(value: str, field: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(f"{field} must not be empty", {"field": field})
    return value


def _validate_int_range(value: int, low: int, high: int, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer", {"field": field})
    if not low <= value <= high:
        raise ValidationError(
            f"{field} must be between {low} and {high}",
            {"field": field, "min": low, "max": high},
        )
    return value


def validate_age(age: int, field: str = "age") -> int:
    return _validate_int_range(age, MIN_AGE, MAX_AGE, field)


def validate_year(year: Optional[int]) -> Optional[int]:
    if year is None:
        return None
    return _validate_int_range(year, MIN_YEAR, MAX_YEAR, "year")


def validate_bio(bio: Optional[str]) -> Optional[str]:
    if bio is None:
        return None
    if len(bio) > MAX_BIO_LENGTH:
        raise ValidationError(
            f"bio must be at most {MAX_BIO_LENGTH} characters",
            {"field": "bio"},
        )
    return bio


def validate_age_range(age_min: int, age_max: int) -> tuple[int, int]:
    validate_age(age_min, "age_min")
    validate_age(age_max, "age_max")
    if age_min > age_max:
        raise ValidationError(
            "Minimum age cannot be greater than maximum age",
            {"field": "age_min"},
        )
    return age_min, age_max


def validate_max_distance(max_distance_km: int) -> int:
    return _validate_int_range(max_distance_km, MIN_DISTANCE_KM, MAX_DISTANCE_KM, "max_distance_km")


def validate_coordinates(latitude: float, longitude: float) -> tuple[float, float]:
    if not -90.0 <= latitude <= 90.0:
        raise ValidationError("latitude must be between -90 and 90", {"field": "latitude"})
    if not -180.0 <= longitude <= 180.0:
        raise ValidationError("longitude must be between -180 and 180", {"field": "longitude"})
    return float(latitude), float(longitude)


def validate_message_content(content: str) -> str:
    content = (content or "").strip()
    if not 1 <= len(content) <= MAX_MESSAGE_LENGTH:
        raise ValidationError(
            f"Message content must be between 1 and {MAX_MESSAGE_LENGTH} characters",
            {"field": "content"},
        )
    return content


def validate_choice(value, enum_cls: type[E], field: str) -> E:
    """Coerce ``value`` to a member of ``enum_cls``."""
    try:
        return enum_cls(value)
    except ValueError:
        allowed = [member.value for member in enum_cls]
        raise ValidationError(
            f"{field} must be one of {', '.join(allowed)}",
            {"field": field, "allowed": allowed},
        ) from None


def parse_id(value, field: str = "id") -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise ValidationError(f"{field} is not a valid id", {"field": field}) from None
