"""Shared pytest fixtures for Stellr matching tests."""
import pytest
from datetime import datetime, timedelta, timezone

from stellr.errors import TransientStoreError
from stellr.schemas.profile import UserProfile, is_any_activity
from stellr.services.compatibility_cache import InMemoryCompatibilityCache
from stellr.services.stores import BlockStore, ProfileStore, SwipeStore
from stellr.utils.zodiac import canonical_sign, is_any_sign


NOW = datetime(2025, 10, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock for cache freshness tests."""

    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class InMemoryProfileStore(ProfileStore):
    """Applies the same cheap filters as the SQL store."""

    def __init__(self, profiles=()):
        self.profiles = {p.id: p for p in profiles}
        self.queries = []
        self.fail_with = None

    def add(self, *profiles):
        for p in profiles:
            self.profiles[p.id] = p

    async def get(self, user_id):
        if self.fail_with is not None:
            raise self.fail_with
        return self.profiles.get(str(user_id))

    async def query_candidates(self, query):
        if self.fail_with is not None:
            raise self.fail_with
        self.queries.append(query)
        sign = None if is_any_sign(query.zodiac) else canonical_sign(query.zodiac)
        activity = None if is_any_activity(query.activity) else query.activity.strip().lower()

        matches = []
        for p in self.profiles.values():
            if p.id == query.viewer_id or p.id in query.exclude_ids:
                continue
            if not p.is_discoverable:
                continue
            if sign is not None and p.zodiac_sign != sign:
                continue
            if query.min_age is not None and p.age is not None and p.age < query.min_age:
                continue
            if query.max_age is not None and p.age is not None and p.age > query.max_age:
                continue
            if activity is not None and activity not in {a.lower() for a in p.activity_preferences}:
                continue
            matches.append(p)

        matches.sort(key=lambda p: (
            not p.is_premium,
            p.last_active is None,
            -(p.last_active.timestamp() if p.last_active else 0.0),
            p.id,
        ))
        return matches[:query.limit]


class InMemorySwipeStore(SwipeStore):
    def __init__(self):
        self.swipes = {}

    def record(self, swiper_id, swiped_id, decision="like"):
        self.swipes[(swiper_id, swiped_id)] = decision

    async def has_swiped(self, swiper_id, swiped_id):
        return (swiper_id, swiped_id) in self.swipes

    async def swiped_ids(self, swiper_id):
        return {b for (a, b) in self.swipes if a == swiper_id}


class InMemoryBlockStore(BlockStore):
    def __init__(self):
        self.blocks = set()

    def block(self, blocker_id, blocked_id):
        self.blocks.add((blocker_id, blocked_id))

    async def is_blocked(self, user_a_id, user_b_id):
        return (user_a_id, user_b_id) in self.blocks or (user_b_id, user_a_id) in self.blocks

    async def blocked_ids(self, user_id):
        ids = set()
        for blocker, blocked in self.blocks:
            if blocker == user_id:
                ids.add(blocked)
            elif blocked == user_id:
                ids.add(blocker)
        return ids


@pytest.fixture
def make_profile():
    """Factory for onboarded, discoverable profiles with sensible defaults."""

    def _make(user_id, **overrides):
        data = {
            "id": user_id,
            "display_name": f"User {user_id}",
            "age": 30,
            "gender": "female",
            "onboarding_completed": True,
            "location": {"lat": 40.7128, "lng": -74.0060},
            "preferences": {},
            "questionnaire_responses": [3] * 25,
            "last_active": NOW - timedelta(hours=1),
        }
        data.update(overrides)
        return UserProfile.model_validate(data)

    return _make


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_cache(clock):
    return InMemoryCompatibilityCache(
        max_entries=1000,
        freshness=timedelta(days=7),
        retention=timedelta(days=30),
        clock=clock,
    )


@pytest.fixture
def profile_store():
    return InMemoryProfileStore()


@pytest.fixture
def swipe_store():
    return InMemorySwipeStore()


@pytest.fixture
def block_store():
    return InMemoryBlockStore()


@pytest.fixture
def transient_error():
    return TransientStoreError("profiles", "connection refused")


@pytest.fixture
def chart_placements():
    """Snake-case ``placements`` shape."""
    return {
        "placements": {
            "Sun": {"sign": "Leo", "degree": 10.0},
            "Moon": {"sign": "Aries", "degree": 12.0},
            "Ascendant": {"sign": "Sagittarius", "degree": 5.0},
            "Mercury": {"sign": "Virgo", "degree": 2.0},
            "Venus": {"sign": "Cancer", "degree": 20.0},
            "Mars": {"sign": "Gemini", "degree": 15.0},
        }
    }


@pytest.fixture
def chart_core_placements():
    """Capitalised ``CorePlacements`` shape with explicit absolute degrees."""
    return {
        "CorePlacements": {
            "Sun": {"Sign": "Aries", "Degree": 11.0, "AbsoluteDegree": 11.0},
            "Moon": {"Sign": "Leo", "Degree": 9.0, "AbsoluteDegree": 129.0},
            "Venus": {"Sign": "Gemini", "Degree": 14.0, "AbsoluteDegree": 74.0},
            "Mars": {"Sign": "Libra", "Degree": 3.0, "AbsoluteDegree": 183.0},
        }
    }


@pytest.fixture
def chart_planets():
    """``chartData.planets`` list shape."""
    return {
        "chartData": {
            "planets": [
                {"name": "Sun", "sign": "Capricorn", "degree": 25.0},
                {"name": "Moon", "sign": "Cancer", "degree": 25.0},
                {"name": "Jupiter", "sign": "Pisces", "degree": 1.0},
            ]
        }
    }
