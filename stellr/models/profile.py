"""
Stellr Matching — Profile model (discovery attributes + scoring inputs).
"""

import uuid
from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, Float, Index, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from stellr.database import Base


class Profile(Base):
    __tablename__ = "profiles"
    __table_args__ = (
        Index("ix_profiles_discovery", "onboarding_completed", "discovery_enabled", "incognito_mode"),
        Index("ix_profiles_zodiac_sign", "zodiac_sign"),
        Index("ix_profiles_age", "age"),
    )

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    display_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    avatar_url: Mapped[str | None] = mapped_column(String, nullable=True)
    bio: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # ── Demographics ───────────────────────────────────────────────
    age: Mapped[int | None] = mapped_column(Integer, nullable=True)
    gender: Mapped[str | None] = mapped_column(String(32), nullable=True)
    birth_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    zodiac_sign: Mapped[str | None] = mapped_column(
        String(16), nullable=True, comment="Sun sign; derived from birth_date when NULL"
    )
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    onboarding_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # ── Preferences ────────────────────────────────────────────────
    gender_preference: Mapped[list | None] = mapped_column(
        JSONB, nullable=True, comment="Array of gender labels; empty / 'any' means no restriction"
    )
    min_age: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_age: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_distance_km: Mapped[float | None] = mapped_column(Float, nullable=True)
    discovery_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    incognito_mode: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    activity_preferences: Mapped[list | None] = mapped_column(JSONB, nullable=True)

    # ── Scoring inputs ─────────────────────────────────────────────
    questionnaire_responses: Mapped[list | None] = mapped_column(
        JSONB, nullable=True, comment="Ordered answers, up to 25"
    )
    natal_chart_data: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    scoring_inputs_updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    is_premium: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_active: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )

    def __repr__(self) -> str:
        return f"<Profile id={self.id} onboarded={self.onboarding_completed}>"
