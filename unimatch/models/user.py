"""
UniMatch — User model.
"""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, Boolean, DateTime, Float, Integer, String, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from unimatch.database import Base, utcnow
from unimatch.utils.geo import is_located


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    NON_BINARY = "non-binary"


class InterestedIn(str, Enum):
    MALE = "male"
    FEMALE = "female"
    BOTH = "both"


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String, unique=True, index=True, nullable=False)
    is_email_verified: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false", nullable=False
    )

    # ── Profile ────────────────────────────────────────────────────
    first_name: Mapped[str] = mapped_column(String, nullable=False)
    last_name: Mapped[str] = mapped_column(String, nullable=False)
    age: Mapped[int] = mapped_column(Integer, nullable=False)
    gender: Mapped[str] = mapped_column(String, nullable=False)
    interested_in: Mapped[str] = mapped_column(String, nullable=False)
    university: Mapped[str] = mapped_column(String, index=True, nullable=False)
    course: Mapped[str | None] = mapped_column(String, nullable=True)
    year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    bio: Mapped[str | None] = mapped_column(Text, nullable=True)
    photos: Mapped[list] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        default=list,
        nullable=False,
        comment="Ordered array of {url, is_main}",
    )

    # ── Location & preferences ─────────────────────────────────────
    latitude: Mapped[float] = mapped_column(Float, default=0.0, server_default="0", nullable=False)
    longitude: Mapped[float] = mapped_column(Float, default=0.0, server_default="0", nullable=False)
    age_min: Mapped[int] = mapped_column(Integer, default=18, server_default="18", nullable=False)
    age_max: Mapped[int] = mapped_column(Integer, default=30, server_default="30", nullable=False)
    max_distance_km: Mapped[int] = mapped_column(
        Integer, default=50, server_default="50", nullable=False
    )

    # ── Activity ───────────────────────────────────────────────────
    is_online: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false", nullable=False
    )
    last_active: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, index=True, nullable=False
    )
    profile_completed: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false", nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=utcnow, nullable=True
    )

    @property
    def has_location(self) -> bool:
        return is_located(self.latitude, self.longitude)

    @property
    def main_photo(self) -> str | None:
        for photo in self.photos or []:
            if photo.get("is_main"):
                return photo["url"]
        return None

    def is_profile_complete(self) -> bool:
        return bool(
            self.first_name
            and self.last_name
            and self.age
            and self.gender
            and self.interested_in
            and self.university
            and self.bio
            and len(self.photos or []) > 0
        )

    def refresh_profile_completed(self) -> None:
        """Recompute the derived ``profile_completed`` flag."""
        self.profile_completed = self.is_profile_complete()

    def __repr__(self) -> str:
        return f"<User {self.id} {self.email!r}>"
