"""Unit tests for the SQLAlchemy-backed stores (mocked session)."""
import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import DBAPIError

from stellr.errors import TransientStoreError
from stellr.models.profile import Profile
from stellr.schemas.match import CandidateQuery
from stellr.services.stores import (
    SqlBlockStore,
    SqlProfileStore,
    SqlSwipeStore,
    profile_from_row,
)


def _row(user_id="u1", **overrides):
    values = dict(
        id=user_id,
        display_name="Ada",
        avatar_url=None,
        bio="",
        age=29,
        gender="Female",
        birth_date=None,
        zodiac_sign="leo",
        latitude=40.7128,
        longitude=-74.0060,
        onboarding_completed=True,
        gender_preference=["Males"],
        min_age=25,
        max_age=40,
        max_distance_km=80.0,
        discovery_enabled=True,
        incognito_mode=False,
        activity_preferences=["Coffee"],
        questionnaire_responses=["Agree", 5, 1],
        natal_chart_data={"placements": {"Sun": {"sign": "Leo", "degree": 4}}},
        scoring_inputs_updated_at=None,
        is_premium=False,
        last_active=datetime(2025, 9, 30, tzinfo=timezone.utc),
    )
    values.update(overrides)
    return Profile(**values)


def _compiled(stmt):
    return str(stmt.compile(dialect=postgresql.dialect()))


@pytest.fixture
def session():
    session = AsyncMock()
    session.execute.return_value = MagicMock()
    return session


class TestProfileFromRow:

    def test_maps_columns(self):
        profile = profile_from_row(_row())
        assert profile.zodiac_sign == "Leo"
        assert profile.location.lat == pytest.approx(40.7128)
        assert profile.preferences.gender_preference == ["Males"]
        assert profile.preferences.max_distance_km == 80.0
        assert profile.questionnaire_responses == [4, 5, 1]
        assert profile.attribute_data["placements"]["Sun"]["sign"] == "Leo"

    def test_partial_location_is_unknown(self):
        assert profile_from_row(_row(longitude=None)).location is None

    def test_null_json_columns(self):
        profile = profile_from_row(
            _row(gender_preference=None, activity_preferences=None, questionnaire_responses=None)
        )
        assert profile.preferences.accepts_any_gender is True
        assert profile.activity_preferences == []
        assert profile.questionnaire_responses == []


class TestSqlProfileStore:

    @pytest.mark.asyncio
    async def test_get(self, session):
        session.get.return_value = _row()
        profile = await SqlProfileStore(session).get("u1")
        assert profile.id == "u1"

    @pytest.mark.asyncio
    async def test_get_missing(self, session):
        session.get.return_value = None
        assert await SqlProfileStore(session).get("u1") is None

    @pytest.mark.asyncio
    async def test_invalid_row_is_skipped_with_warning(self, session):
        session.get.return_value = _row(age=-3)
        with patch("stellr.services.stores.logger") as mock_logger:
            assert await SqlProfileStore(session).get("u1") is None
        assert mock_logger.warning.call_args[0][0] == "profile_row_invalid"

    @pytest.mark.asyncio
    async def test_driver_error_is_transient(self, session):
        session.get.side_effect = DBAPIError("SELECT", {}, Exception("connection reset"))
        with pytest.raises(TransientStoreError) as exc_info:
            await SqlProfileStore(session).get("u1")
        assert exc_info.value.store == "profiles"

    @pytest.mark.asyncio
    async def test_query_candidates_builds_filters(self, session):
        session.execute.return_value.scalars.return_value.all.return_value = [
            _row("u2"),
            _row("u3", latitude=95.0),  # out of range, skipped
        ]
        query = CandidateQuery(
            viewer_id="u1",
            exclude_ids={"u9"},
            zodiac="LEO",
            min_age=21,
            max_age=35,
            activity="coffee",
            limit=40,
        )
        profiles = await SqlProfileStore(session).query_candidates(query)
        assert [p.id for p in profiles] == ["u2"]

        sql = _compiled(session.execute.call_args[0][0])
        assert "NOT IN" in sql
        assert "lower(profiles.zodiac_sign)" in sql
        assert "profiles.age IS NULL" in sql
        assert "jsonb_array_elements_text" in sql
        assert "NULLS LAST" in sql
        assert "LIMIT" in sql

    @pytest.mark.asyncio
    async def test_open_filters_are_not_applied(self, session):
        session.execute.return_value.scalars.return_value.all.return_value = []
        query = CandidateQuery(viewer_id="u1", zodiac="any", activity="Any Date", limit=10)
        await SqlProfileStore(session).query_candidates(query)

        sql = _compiled(session.execute.call_args[0][0])
        assert "zodiac_sign" not in sql.split("WHERE", 1)[1]
        assert "jsonb_array_elements_text" not in sql
        assert "NOT IN" not in sql


class TestSqlSwipeAndBlockStores:

    @pytest.mark.asyncio
    async def test_swiped_ids(self, session):
        session.execute.return_value.scalars.return_value.all.return_value = ["u2", "u3"]
        assert await SqlSwipeStore(session).swiped_ids("u1") == {"u2", "u3"}

    @pytest.mark.asyncio
    async def test_has_swiped(self, session):
        session.execute.return_value.first.return_value = None
        assert await SqlSwipeStore(session).has_swiped("u1", "u2") is False

    @pytest.mark.asyncio
    async def test_blocked_ids_are_bidirectional(self, session):
        session.execute.return_value.all.return_value = [("u1", "u2"), ("u3", "u1")]
        assert await SqlBlockStore(session).blocked_ids("u1") == {"u2", "u3"}

    @pytest.mark.asyncio
    async def test_is_blocked(self, session):
        session.execute.return_value.first.return_value = ("block-id",)
        assert await SqlBlockStore(session).is_blocked("u2", "u1") is True

    @pytest.mark.asyncio
    async def test_driver_error_is_transient(self, session):
        session.execute.side_effect = DBAPIError("SELECT", {}, Exception("timeout"))
        with pytest.raises(TransientStoreError):
            await SqlSwipeStore(session).swiped_ids("u1")
        with pytest.raises(TransientStoreError):
            await SqlBlockStore(session).blocked_ids("u1")
