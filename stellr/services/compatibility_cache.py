"""
Stellr Matching — Compatibility cache.

One cached ``CompatibilityScore`` per *unordered* pair of users.  Keys are
canonicalised by sorting the two ids, so ``get(a, b)`` and ``get(b, a)``
address the same entry.

Freshness:
  age <= CACHE_FRESHNESS_DAYS          -> fresh  (served as-is)
  older                                -> stale  (recomputed by the caller)
  age >  CACHE_RETENTION_DAYS          -> removed by ``sweep_expired``

Backends (``CACHE_BACKEND``):
  memory    bounded LRU, process local; used in tests and single-node dev
  redis     JSON values with a TTL of the retention window
  database  ``compatibility_scores`` table, upsert on the pair

There is no locking.  Concurrent writers for the same pair are last write
wins; both compute the same deterministic value.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Literal, Optional

import structlog
from pydantic import ValidationError
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from stellr.config import Settings, get_settings
from stellr.errors import TransientStoreError
from stellr.models.match import CompatibilityScoreRecord
from stellr.schemas.match import CompatibilityScore

logger = structlog.get_logger("stellr.compatibility_cache")

Clock = Callable[[], datetime]
CacheStatus = Literal["absent", "fresh", "stale"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def canonical_pair(user_a_id: str, user_b_id: str) -> tuple[str, str]:
    """Order two ids so the lexicographically smaller one comes first."""
    a, b = str(user_a_id), str(user_b_id)
    return (a, b) if a <= b else (b, a)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class CacheLookup:
    status: CacheStatus
    entry: Optional[CompatibilityScore] = None

    @property
    def is_fresh(self) -> bool:
        return self.status == "fresh"


ABSENT = CacheLookup("absent")


# ──────────────────────────────────────────────────────────────────────────────
# Interface
# ──────────────────────────────────────────────────────────────────────────────

class CompatibilityCache(ABC):
    """Pair-keyed score cache with a freshness window."""

    backend: str = "abstract"

    def __init__(
        self,
        freshness: timedelta | None = None,
        retention: timedelta | None = None,
        clock: Clock = utcnow,
    ) -> None:
        settings = get_settings()
        self.freshness = freshness or timedelta(days=settings.CACHE_FRESHNESS_DAYS)
        self.retention = retention or timedelta(days=settings.CACHE_RETENTION_DAYS)
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    def classify(self, entry: Optional[CompatibilityScore]) -> CacheLookup:
        if entry is None:
            return ABSENT
        age = self.now() - _aware(entry.calculated_at)
        return CacheLookup("fresh" if age <= self.freshness else "stale", entry)

    @abstractmethod
    async def get(self, user_a_id: str, user_b_id: str) -> CacheLookup:
        """Look up the entry for an unordered pair."""

    @abstractmethod
    async def put(self, user_a_id: str, user_b_id: str, score: CompatibilityScore) -> CompatibilityScore:
        """Insert or replace the entry for a pair; ``calculated_at`` is set to now."""

    @abstractmethod
    async def invalidate(self, user_a_id: str, user_b_id: str) -> None:
        """Drop the entry for a pair, if any."""

    @abstractmethod
    async def sweep_expired(self) -> int:
        """Remove entries older than the retention window; return how many."""

    def _stamp(self, user_a_id: str, user_b_id: str, score: CompatibilityScore) -> CompatibilityScore:
        a, b = canonical_pair(user_a_id, user_b_id)
        return score.model_copy(update={"user_a_id": a, "user_b_id": b, "calculated_at": self.now()})


# ──────────────────────────────────────────────────────────────────────────────
# In-memory LRU
# ──────────────────────────────────────────────────────────────────────────────

class InMemoryCompatibilityCache(CompatibilityCache):
    backend = "memory"

    def __init__(self, max_entries: int | None = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.max_entries = max_entries or get_settings().CACHE_MAX_ENTRIES
        self._entries: OrderedDict[tuple[str, str], CompatibilityScore] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, user_a_id: str, user_b_id: str) -> CacheLookup:
        key = canonical_pair(user_a_id, user_b_id)
        entry = self._entries.get(key)
        if entry is not None:
            self._entries.move_to_end(key)
        return self.classify(entry)

    async def put(self, user_a_id: str, user_b_id: str, score: CompatibilityScore) -> CompatibilityScore:
        stored = self._stamp(user_a_id, user_b_id, score)
        key = (stored.user_a_id, stored.user_b_id)
        self._entries[key] = stored
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
        return stored

    async def invalidate(self, user_a_id: str, user_b_id: str) -> None:
        self._entries.pop(canonical_pair(user_a_id, user_b_id), None)

    async def sweep_expired(self) -> int:
        cutoff = self.now() - self.retention
        expired = [k for k, e in self._entries.items() if _aware(e.calculated_at) < cutoff]
        for key in expired:
            del self._entries[key]
        return len(expired)


# ──────────────────────────────────────────────────────────────────────────────
# Redis
# ──────────────────────────────────────────────────────────────────────────────

class RedisCompatibilityCache(CompatibilityCache):
    """JSON entries under ``<prefix>:<user_a>:<user_b>``.

    The key TTL is the retention window, not the freshness window, so a
    stale entry is still readable and reported as ``stale``.
    """

    backend = "redis"

    def __init__(self, redis: Any = None, key_prefix: str | None = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._redis = redis
        self.key_prefix = key_prefix or get_settings().CACHE_KEY_PREFIX

    async def _get_redis(self) -> Any:
        """Return an async Redis client, creating it on first call."""
        if self._redis is None:
            import redis.asyncio as aioredis

            settings = get_settings()
            self._redis = aioredis.from_url(
                settings.REDIS_URL,
                decode_responses=True,
                socket_connect_timeout=5,
            )
            logger.info("compatibility_cache_redis_connected")
        return self._redis

    def key(self, user_a_id: str, user_b_id: str) -> str:
        a, b = canonical_pair(user_a_id, user_b_id)
        return f"{self.key_prefix}:{a}:{b}"

    async def get(self, user_a_id: str, user_b_id: str) -> CacheLookup:
        key = self.key(user_a_id, user_b_id)
        try:
            raw = await (await self._get_redis()).get(key)
        except (RedisConnectionError, RedisTimeoutError) as exc:
            raise TransientStoreError("redis", str(exc)) from exc
        if raw is None:
            return ABSENT
        try:
            entry = CompatibilityScore.model_validate_json(raw)
        except ValidationError:
            # Unreadable payloads (older schema, manual edits) are recomputed.
            logger.warning("compatibility_cache_entry_unreadable", key=key)
            return ABSENT
        return self.classify(entry)

    async def put(self, user_a_id: str, user_b_id: str, score: CompatibilityScore) -> CompatibilityScore:
        stored = self._stamp(user_a_id, user_b_id, score)
        try:
            await (await self._get_redis()).set(
                self.key(stored.user_a_id, stored.user_b_id),
                stored.model_dump_json(),
                ex=int(self.retention.total_seconds()),
            )
        except (RedisConnectionError, RedisTimeoutError) as exc:
            raise TransientStoreError("redis", str(exc)) from exc
        return stored

    async def invalidate(self, user_a_id: str, user_b_id: str) -> None:
        try:
            await (await self._get_redis()).delete(self.key(user_a_id, user_b_id))
        except (RedisConnectionError, RedisTimeoutError) as exc:
            raise TransientStoreError("redis", str(exc)) from exc

    async def sweep_expired(self) -> int:
        # Redis expires keys on its own via the TTL set in ``put``.
        return 0


# ──────────────────────────────────────────────────────────────────────────────
# Relational table
# ──────────────────────────────────────────────────────────────────────────────

class SqlCompatibilityCache(CompatibilityCache):
    """``compatibility_scores`` table, one short-lived session per operation.

    Scoring tasks run concurrently, and an ``AsyncSession`` must not be
    shared between tasks, so this backend never reuses a request session.
    """

    backend = "database"

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._session_factory = session_factory

    @staticmethod
    def _to_schema(row: CompatibilityScoreRecord) -> CompatibilityScore:
        return CompatibilityScore(
            user_a_id=row.user_a_id,
            user_b_id=row.user_b_id,
            overall_score=row.overall_score,
            grade=row.grade,
            questionnaire_score=row.questionnaire_score,
            questionnaire_grade=row.questionnaire_grade,
            attribute_score=row.attribute_score,
            attribute_grade=row.attribute_grade,
            is_recommended=row.is_recommended,
            calculated_at=row.calculated_at,
            algorithm_version=row.algorithm_version,
            details=row.details or {},
        )

    async def get(self, user_a_id: str, user_b_id: str) -> CacheLookup:
        a, b = canonical_pair(user_a_id, user_b_id)
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(CompatibilityScoreRecord).where(
                        CompatibilityScoreRecord.user_a_id == a,
                        CompatibilityScoreRecord.user_b_id == b,
                    )
                )
                row = result.scalar_one_or_none()
        except DBAPIError as exc:
            raise TransientStoreError("compatibility_scores", str(exc.orig)) from exc
        return self.classify(self._to_schema(row) if row is not None else None)

    async def put(self, user_a_id: str, user_b_id: str, score: CompatibilityScore) -> CompatibilityScore:
        stored = self._stamp(user_a_id, user_b_id, score)
        # Round-trip through JSON so the JSONB column only sees plain types.
        values = json.loads(stored.model_dump_json())
        values["calculated_at"] = stored.calculated_at
        stmt = pg_insert(CompatibilityScoreRecord).values(**values)
        stmt = stmt.on_conflict_do_update(
            constraint="uq_compatibility_pair",
            set_={
                column: stmt.excluded[column]
                for column in values
                if column not in ("user_a_id", "user_b_id")
            },
        )
        try:
            async with self._session_factory() as session:
                await session.execute(stmt)
                await session.commit()
        except DBAPIError as exc:
            raise TransientStoreError("compatibility_scores", str(exc.orig)) from exc
        return stored

    async def invalidate(self, user_a_id: str, user_b_id: str) -> None:
        a, b = canonical_pair(user_a_id, user_b_id)
        try:
            async with self._session_factory() as session:
                await session.execute(
                    delete(CompatibilityScoreRecord).where(
                        CompatibilityScoreRecord.user_a_id == a,
                        CompatibilityScoreRecord.user_b_id == b,
                    )
                )
                await session.commit()
        except DBAPIError as exc:
            raise TransientStoreError("compatibility_scores", str(exc.orig)) from exc

    async def sweep_expired(self) -> int:
        cutoff = self.now() - self.retention
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    delete(CompatibilityScoreRecord).where(
                        CompatibilityScoreRecord.calculated_at < cutoff
                    )
                )
                await session.commit()
        except DBAPIError as exc:
            raise TransientStoreError("compatibility_scores", str(exc.orig)) from exc
        removed = result.rowcount or 0
        logger.info("compatibility_cache_swept", backend=self.backend, removed=removed)
        return removed


# ──────────────────────────────────────────────────────────────────────────────
# Factory
# ──────────────────────────────────────────────────────────────────────────────

def build_compatibility_cache(
    settings: Settings | None = None,
    redis: Any = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> CompatibilityCache:
    """Instantiate the backend named by ``CACHE_BACKEND``."""
    settings = settings or get_settings()
    backend = settings.CACHE_BACKEND

    if backend == "memory":
        cache: CompatibilityCache = InMemoryCompatibilityCache(max_entries=settings.CACHE_MAX_ENTRIES)
    elif backend == "redis":
        cache = RedisCompatibilityCache(redis=redis, key_prefix=settings.CACHE_KEY_PREFIX)
    else:
        if session_factory is None:
            from stellr.database import get_session_factory

            session_factory = get_session_factory()
        cache = SqlCompatibilityCache(session_factory)

    logger.info("compatibility_cache_built", backend=cache.backend)
    return cache
