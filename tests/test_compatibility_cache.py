"""Unit tests for the compatibility cache backends."""
import json
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.exc import DBAPIError

from stellr.errors import TransientStoreError
from stellr.models.match import CompatibilityScoreRecord
from stellr.schemas.match import CompatibilityScore
from stellr.services.compatibility_cache import (
    InMemoryCompatibilityCache,
    RedisCompatibilityCache,
    SqlCompatibilityCache,
    build_compatibility_cache,
    canonical_pair,
)


def _score(user_a_id="u1", user_b_id="u2", overall=82, calculated_at=None):
    return CompatibilityScore(
        user_a_id=user_a_id,
        user_b_id=user_b_id,
        overall_score=overall,
        grade="B",
        questionnaire_score=82,
        questionnaire_grade="B",
        is_recommended=True,
        calculated_at=calculated_at or datetime(2020, 1, 1, tzinfo=timezone.utc),
        algorithm_version="2025.2",
        details={"weights": {"questionnaire": 0.5, "attribute": 0.5}},
    )


def _db_error():
    return DBAPIError("SELECT 1", {}, Exception("connection reset by peer"))


@pytest.fixture
def redis_client():
    client = AsyncMock()
    client.get.return_value = None
    return client


@pytest.fixture
def redis_cache(redis_client, clock):
    return RedisCompatibilityCache(redis=redis_client, key_prefix="test:compat", clock=clock)


@pytest.fixture
def session():
    session = AsyncMock()
    session.execute.return_value = MagicMock()
    return session


@pytest.fixture
def sql_cache(session, clock):
    factory = MagicMock()
    factory.return_value.__aenter__.return_value = session
    factory.return_value.__aexit__.return_value = False
    return SqlCompatibilityCache(factory, clock=clock)


class TestCanonicalPair:

    def test_orders_ids(self):
        assert canonical_pair("b", "a") == ("a", "b")
        assert canonical_pair("a", "b") == ("a", "b")

    def test_stringifies(self):
        assert canonical_pair(10, 2) == ("10", "2")


class TestInMemoryCache:
    """Bounded LRU with a freshness window."""

    @pytest.mark.asyncio
    async def test_absent(self, memory_cache):
        lookup = await memory_cache.get("u1", "u2")
        assert lookup.status == "absent"
        assert lookup.entry is None

    @pytest.mark.asyncio
    async def test_put_canonicalises_and_stamps(self, memory_cache, clock):
        stored = await memory_cache.put("u2", "u1", _score("u2", "u1"))
        assert (stored.user_a_id, stored.user_b_id) == ("u1", "u2")
        assert stored.calculated_at == clock.now

        lookup = await memory_cache.get("u2", "u1")
        assert lookup.is_fresh
        assert lookup.entry == stored

    @pytest.mark.asyncio
    async def test_fresh_until_seven_days_then_stale(self, memory_cache, clock):
        await memory_cache.put("u1", "u2", _score())
        clock.advance(days=7)
        assert (await memory_cache.get("u1", "u2")).status == "fresh"
        clock.advance(seconds=1)
        lookup = await memory_cache.get("u1", "u2")
        assert lookup.status == "stale"
        assert lookup.entry.overall_score == 82

    @pytest.mark.asyncio
    async def test_put_replaces_existing_entry(self, memory_cache):
        await memory_cache.put("u1", "u2", _score(overall=82))
        await memory_cache.put("u2", "u1", _score(overall=64))
        assert len(memory_cache) == 1
        assert (await memory_cache.get("u1", "u2")).entry.overall_score == 64

    @pytest.mark.asyncio
    async def test_least_recently_used_is_evicted(self, clock):
        cache = InMemoryCompatibilityCache(max_entries=2, clock=clock)
        await cache.put("a", "b", _score("a", "b"))
        await cache.put("a", "c", _score("a", "c"))
        await cache.get("a", "b")
        await cache.put("a", "d", _score("a", "d"))

        assert len(cache) == 2
        assert (await cache.get("a", "c")).status == "absent"
        assert (await cache.get("a", "b")).status == "fresh"

    @pytest.mark.asyncio
    async def test_invalidate(self, memory_cache):
        await memory_cache.put("u1", "u2", _score())
        await memory_cache.invalidate("u2", "u1")
        assert (await memory_cache.get("u1", "u2")).status == "absent"

    @pytest.mark.asyncio
    async def test_sweep_removes_only_entries_past_retention(self, memory_cache, clock):
        await memory_cache.put("u1", "u2", _score())
        clock.advance(days=20)
        await memory_cache.put("u1", "u3", _score("u1", "u3"))
        clock.advance(days=11)

        removed = await memory_cache.sweep_expired()
        assert removed == 1
        assert (await memory_cache.get("u1", "u2")).status == "absent"
        assert (await memory_cache.get("u1", "u3")).status == "stale"


class TestRedisCache:

    @pytest.mark.asyncio
    async def test_put_writes_json_with_retention_ttl(self, redis_cache, redis_client, clock):
        stored = await redis_cache.put("u2", "u1", _score("u2", "u1"))

        key, payload = redis_client.set.call_args[0]
        assert key == "test:compat:u1:u2"
        assert redis_client.set.call_args[1]["ex"] == 30 * 24 * 3600
        assert json.loads(payload)["overall_score"] == 82
        assert stored.calculated_at == clock.now

    @pytest.mark.asyncio
    async def test_get_absent(self, redis_cache, redis_client):
        lookup = await redis_cache.get("u1", "u2")
        assert lookup.status == "absent"
        redis_client.get.assert_awaited_once_with("test:compat:u1:u2")

    @pytest.mark.asyncio
    async def test_get_classifies_stored_entry(self, redis_cache, redis_client, clock):
        redis_client.get.return_value = _score(calculated_at=clock.now - timedelta(days=3)).model_dump_json()
        lookup = await redis_cache.get("u2", "u1")
        assert lookup.status == "fresh"
        assert lookup.entry.overall_score == 82

        redis_client.get.return_value = _score(calculated_at=clock.now - timedelta(days=9)).model_dump_json()
        assert (await redis_cache.get("u1", "u2")).status == "stale"

    @pytest.mark.asyncio
    async def test_unreadable_payload_is_absent(self, redis_cache, redis_client):
        redis_client.get.return_value = '{"overall_score": "lots"}'
        assert (await redis_cache.get("u1", "u2")).status == "absent"

        redis_client.get.return_value = "not json"
        assert (await redis_cache.get("u1", "u2")).status == "absent"

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self, redis_cache, redis_client):
        redis_client.get.side_effect = RedisConnectionError("Connection refused")
        with pytest.raises(TransientStoreError) as exc_info:
            await redis_cache.get("u1", "u2")
        assert exc_info.value.store == "redis"

        redis_client.set.side_effect = RedisConnectionError("Connection refused")
        with pytest.raises(TransientStoreError):
            await redis_cache.put("u1", "u2", _score())

    @pytest.mark.asyncio
    async def test_invalidate_deletes_key(self, redis_cache, redis_client):
        await redis_cache.invalidate("u2", "u1")
        redis_client.delete.assert_awaited_once_with("test:compat:u1:u2")

    @pytest.mark.asyncio
    async def test_sweep_is_left_to_key_expiry(self, redis_cache, redis_client):
        assert await redis_cache.sweep_expired() == 0
        redis_client.delete.assert_not_called()


class TestSqlCache:

    @pytest.mark.asyncio
    async def test_get_converts_row(self, sql_cache, session, clock):
        row = CompatibilityScoreRecord(
            user_a_id="u1",
            user_b_id="u2",
            overall_score=71,
            grade="C",
            questionnaire_score=None,
            questionnaire_grade=None,
            attribute_score=71,
            attribute_grade="C",
            is_recommended=True,
            algorithm_version="2025.2",
            details=None,
            calculated_at=clock.now - timedelta(days=1),
        )
        session.execute.return_value.scalar_one_or_none.return_value = row

        lookup = await sql_cache.get("u2", "u1")
        assert lookup.status == "fresh"
        assert lookup.entry.attribute_score == 71
        assert lookup.entry.details == {}

    @pytest.mark.asyncio
    async def test_get_absent(self, sql_cache, session):
        session.execute.return_value.scalar_one_or_none.return_value = None
        assert (await sql_cache.get("u1", "u2")).status == "absent"

    @pytest.mark.asyncio
    async def test_put_upserts_and_commits(self, sql_cache, session, clock):
        stored = await sql_cache.put("u2", "u1", _score("u2", "u1"))
        assert (stored.user_a_id, stored.user_b_id) == ("u1", "u2")
        assert stored.calculated_at == clock.now
        session.execute.assert_awaited_once()
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_driver_error_is_transient(self, sql_cache, session):
        session.execute.side_effect = _db_error()
        with pytest.raises(TransientStoreError) as exc_info:
            await sql_cache.get("u1", "u2")
        assert exc_info.value.store == "compatibility_scores"

        with pytest.raises(TransientStoreError):
            await sql_cache.put("u1", "u2", _score())

    @pytest.mark.asyncio
    async def test_sweep_reports_deleted_rows(self, sql_cache, session):
        session.execute.return_value.rowcount = 4
        assert await sql_cache.sweep_expired() == 4
        session.commit.assert_awaited_once()


class TestBuildCompatibilityCache:

    def _settings(self, backend):
        settings = MagicMock()
        settings.CACHE_BACKEND = backend
        settings.CACHE_MAX_ENTRIES = 10
        settings.CACHE_KEY_PREFIX = "test:compat"
        return settings

    def test_memory(self):
        cache = build_compatibility_cache(self._settings("memory"))
        assert isinstance(cache, InMemoryCompatibilityCache)
        assert cache.max_entries == 10

    def test_redis(self):
        cache = build_compatibility_cache(self._settings("redis"), redis=AsyncMock())
        assert isinstance(cache, RedisCompatibilityCache)
        assert cache.key("b", "a") == "test:compat:a:b"

    def test_database(self):
        cache = build_compatibility_cache(self._settings("database"), session_factory=MagicMock())
        assert isinstance(cache, SqlCompatibilityCache)
        assert cache.backend == "database"

    def test_default_windows_come_from_settings(self):
        cache = build_compatibility_cache(self._settings("memory"))
        assert cache.freshness == timedelta(days=7)
        assert cache.retention == timedelta(days=30)
