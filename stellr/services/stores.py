"""
Stellr Matching — Profile, swipe and block stores.

The matching core only talks to these interfaces.  The SQLAlchemy
implementations share the request's ``AsyncSession`` and are used
sequentially by the ranker (viewer, swipes, blocks, candidate pool); they
are never called from concurrent scoring tasks.

Driver-level failures (``DBAPIError``) are translated to
``TransientStoreError`` so callers can retry without knowing the backend.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

import structlog
from pydantic import ValidationError
from sqlalchemy import case, func, literal, nulls_last, or_, select
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from stellr.errors import TransientStoreError
from stellr.models.match import Swipe, UserBlock
from stellr.models.profile import Profile
from stellr.schemas.match import CandidateQuery
from stellr.schemas.profile import UserProfile, is_any_activity
from stellr.utils.zodiac import canonical_sign, is_any_sign

logger = structlog.get_logger("stellr.stores")


# ──────────────────────────────────────────────────────────────────────────────
# Interfaces
# ──────────────────────────────────────────────────────────────────────────────

class ProfileStore(ABC):
    @abstractmethod
    async def get(self, user_id: str) -> Optional[UserProfile]:
        """Return one profile, or None if it does not exist."""

    @abstractmethod
    async def query_candidates(self, query: CandidateQuery) -> list[UserProfile]:
        """Return up to ``query.limit`` discoverable profiles passing the cheap filters."""


class SwipeStore(ABC):
    @abstractmethod
    async def has_swiped(self, swiper_id: str, swiped_id: str) -> bool:
        ...

    @abstractmethod
    async def swiped_ids(self, swiper_id: str) -> set[str]:
        """Every id ``swiper_id`` has liked or passed."""


class BlockStore(ABC):
    @abstractmethod
    async def is_blocked(self, user_a_id: str, user_b_id: str) -> bool:
        """True when either user has blocked the other."""

    @abstractmethod
    async def blocked_ids(self, user_id: str) -> set[str]:
        """Ids blocked by ``user_id`` plus ids that have blocked ``user_id``."""


# ──────────────────────────────────────────────────────────────────────────────
# Row conversion
# ──────────────────────────────────────────────────────────────────────────────

def profile_from_row(row: Profile) -> UserProfile:
    """Build the domain profile from an ORM row.  Raises ``ValidationError``."""
    location = None
    if row.latitude is not None and row.longitude is not None:
        location = {"lat": row.latitude, "lng": row.longitude}

    return UserProfile.model_validate({
        "id": row.id,
        "display_name": row.display_name or "",
        "avatar_url": row.avatar_url,
        "bio": row.bio or "",
        "age": row.age,
        "gender": row.gender,
        "birth_date": row.birth_date,
        "zodiac_sign": row.zodiac_sign,
        "onboarding_completed": row.onboarding_completed,
        "location": location,
        "preferences": {
            "gender_preference": row.gender_preference,
            "min_age": row.min_age,
            "max_age": row.max_age,
            "max_distance_km": row.max_distance_km,
            "discovery_enabled": row.discovery_enabled,
            "incognito_mode": row.incognito_mode,
        },
        "questionnaire_responses": row.questionnaire_responses,
        "attribute_data": row.natal_chart_data,
        "activity_preferences": row.activity_preferences,
        "is_premium": row.is_premium,
        "last_active": row.last_active,
        "scoring_inputs_updated_at": row.scoring_inputs_updated_at,
    })


# ──────────────────────────────────────────────────────────────────────────────
# SQLAlchemy implementations
# ──────────────────────────────────────────────────────────────────────────────

class SqlProfileStore(ProfileStore):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, user_id: str) -> Optional[UserProfile]:
        try:
            row = await self.session.get(Profile, str(user_id))
        except DBAPIError as exc:
            raise TransientStoreError("profiles", str(exc.orig)) from exc
        if row is None:
            return None
        try:
            return profile_from_row(row)
        except ValidationError as exc:
            logger.warning("profile_row_invalid", user_id=row.id, errors=exc.error_count())
            return None

    async def query_candidates(self, query: CandidateQuery) -> list[UserProfile]:
        stmt = select(Profile).where(
            Profile.id != query.viewer_id,
            Profile.onboarding_completed.is_(True),
            Profile.discovery_enabled.is_(True),
            Profile.incognito_mode.is_(False),
        )
        if query.exclude_ids:
            stmt = stmt.where(Profile.id.not_in(sorted(query.exclude_ids)))

        if not is_any_sign(query.zodiac):
            sign = canonical_sign(query.zodiac)
            stmt = stmt.where(func.lower(Profile.zodiac_sign) == (sign or query.zodiac).lower())

        # Unknown ages pass, matching the eligibility filter.
        if query.min_age is not None:
            stmt = stmt.where(or_(Profile.age.is_(None), Profile.age >= query.min_age))
        if query.max_age is not None:
            stmt = stmt.where(or_(Profile.age.is_(None), Profile.age <= query.max_age))

        if not is_any_activity(query.activity):
            # Non-array values (NULL, legacy objects) expand to no elements.
            as_array = case(
                (func.jsonb_typeof(Profile.activity_preferences) == "array", Profile.activity_preferences),
                else_=literal([], type_=JSONB),
            )
            activities = func.jsonb_array_elements_text(as_array).table_valued("value")
            stmt = stmt.where(
                select(literal(1))
                .select_from(activities)
                .where(func.lower(activities.c.value) == query.activity.strip().lower())
                .exists()
            )

        stmt = stmt.order_by(
            Profile.is_premium.desc(),
            nulls_last(Profile.last_active.desc()),
            Profile.id,
        ).limit(query.limit)

        try:
            result = await self.session.execute(stmt)
        except DBAPIError as exc:
            raise TransientStoreError("profiles", str(exc.orig)) from exc

        profiles: list[UserProfile] = []
        for row in result.scalars().all():
            try:
                profiles.append(profile_from_row(row))
            except ValidationError as exc:
                # One corrupt row must not take the whole page down.
                logger.warning("profile_row_invalid", user_id=row.id, errors=exc.error_count())
        return profiles


class SqlSwipeStore(SwipeStore):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def has_swiped(self, swiper_id: str, swiped_id: str) -> bool:
        stmt = select(Swipe.id).where(
            Swipe.swiper_id == swiper_id, Swipe.swiped_id == swiped_id
        ).limit(1)
        try:
            result = await self.session.execute(stmt)
        except DBAPIError as exc:
            raise TransientStoreError("swipes", str(exc.orig)) from exc
        return result.first() is not None

    async def swiped_ids(self, swiper_id: str) -> set[str]:
        try:
            result = await self.session.execute(
                select(Swipe.swiped_id).where(Swipe.swiper_id == swiper_id)
            )
        except DBAPIError as exc:
            raise TransientStoreError("swipes", str(exc.orig)) from exc
        return {str(v) for v in result.scalars().all()}


class SqlBlockStore(BlockStore):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def is_blocked(self, user_a_id: str, user_b_id: str) -> bool:
        stmt = select(UserBlock.id).where(
            or_(
                (UserBlock.blocker_id == user_a_id) & (UserBlock.blocked_id == user_b_id),
                (UserBlock.blocker_id == user_b_id) & (UserBlock.blocked_id == user_a_id),
            )
        ).limit(1)
        try:
            result = await self.session.execute(stmt)
        except DBAPIError as exc:
            raise TransientStoreError("user_blocks", str(exc.orig)) from exc
        return result.first() is not None

    async def blocked_ids(self, user_id: str) -> set[str]:
        stmt = select(UserBlock.blocker_id, UserBlock.blocked_id).where(
            or_(UserBlock.blocker_id == user_id, UserBlock.blocked_id == user_id)
        )
        try:
            result = await self.session.execute(stmt)
        except DBAPIError as exc:
            raise TransientStoreError("user_blocks", str(exc.orig)) from exc
        ids: set[str] = set()
        for blocker_id, blocked_id in result.all():
            ids.add(str(blocked_id) if str(blocker_id) == str(user_id) else str(blocker_id))
        return ids
