"""
Stellr Matching — Candidate ranking.

Pipeline for one viewer request:
  1. Validate paging and filter parameters
  2. Load the viewer (must exist and have completed onboarding)
  3. Read swiped ids and bidirectional blocked ids, once
  4. Fetch a bounded candidate pool with the cheap store filters
       pool size = (offset + limit) x RANKER_OVERFETCH_FACTOR
  5. Eligibility filter (request max distance overrides the preference)
  6. Score through the shared compatibility path, bounded concurrency
  7. Sort and paginate

Sort modes:
  priority_distance_recency   premium desc, distance asc, last_active desc, id
                              (only the returned page is scored)
  compatibility_desc          score desc, then the keys above
                              (every eligible candidate is scored)
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Optional, get_args

import structlog

from stellr.config import get_settings
from stellr.errors import InvalidArgument, NotFound
from stellr.schemas.match import (
    CandidateQuery,
    CompatibilityScore,
    MatchCandidateResult,
    RankedPage,
    RankingParams,
    SortMode,
)
from stellr.schemas.profile import UserProfile
from stellr.services.compatibility_service import CompatibilityService
from stellr.services.eligibility_service import EligibilityFilter
from stellr.services.stores import BlockStore, ProfileStore, SwipeStore
from stellr.utils.zodiac import canonical_sign, is_any_sign

logger = structlog.get_logger("stellr.ranking_service")

SORT_MODES: tuple[str, ...] = get_args(SortMode)

_Eligible = tuple[UserProfile, Optional[float]]


def _timestamp(value: Optional[datetime]) -> float:
    if value is None:
        return 0.0
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def _priority_key(item: _Eligible) -> tuple:
    candidate, distance = item
    return (
        not candidate.is_premium,
        distance is None,
        distance if distance is not None else 0.0,
        candidate.last_active is None,
        -_timestamp(candidate.last_active),
        candidate.id,
    )


class CandidateRanker:
    """Ranked, paginated candidate discovery for one viewer."""

    def __init__(
        self,
        profile_store: ProfileStore,
        swipe_store: SwipeStore,
        block_store: BlockStore,
        compatibility: CompatibilityService,
        eligibility: EligibilityFilter | None = None,
    ) -> None:
        settings = get_settings()
        self.profiles = profile_store
        self.swipes = swipe_store
        self.blocks = block_store
        self.compatibility = compatibility
        self.eligibility = eligibility or EligibilityFilter()

        self.default_limit: int = settings.DEFAULT_PAGE_LIMIT
        self.max_limit: int = settings.MAX_PAGE_LIMIT
        self.default_sort_mode: str = settings.DEFAULT_SORT_MODE
        self.overfetch_factor: int = settings.RANKER_OVERFETCH_FACTOR
        self.concurrency: int = settings.SCORING_CONCURRENCY

    # ── Validation ────────────────────────────────────────────────────────

    def _validate(self, params: RankingParams) -> tuple[int, int, str]:
        limit = self.default_limit if params.limit is None else params.limit
        if limit < 1 or limit > self.max_limit:
            raise InvalidArgument("limit", f"must be between 1 and {self.max_limit}")
        if params.offset < 0:
            raise InvalidArgument("offset", "must be >= 0")

        sort_mode = params.sort_mode or self.default_sort_mode
        if sort_mode not in SORT_MODES:
            raise InvalidArgument("sort_mode", f"must be one of {', '.join(SORT_MODES)}")

        if params.min_age is not None and params.min_age < 0:
            raise InvalidArgument("min_age", "must be >= 0")
        if params.max_age is not None and params.max_age < 0:
            raise InvalidArgument("max_age", "must be >= 0")
        if (
            params.min_age is not None
            and params.max_age is not None
            and params.min_age > params.max_age
        ):
            raise InvalidArgument("min_age", "must be <= max_age")
        if params.max_distance_km is not None and params.max_distance_km < 0:
            raise InvalidArgument("max_distance_km", "must be >= 0")
        if not is_any_sign(params.zodiac) and canonical_sign(params.zodiac) is None:
            raise InvalidArgument("zodiac", f"unknown zodiac sign {params.zodiac!r}")

        return limit, params.offset, sort_mode

    # ── Scoring ───────────────────────────────────────────────────────────

    async def _score_all(
        self, viewer: UserProfile, candidates: list[UserProfile]
    ) -> list[CompatibilityScore]:
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _score(candidate: UserProfile) -> CompatibilityScore:
            async with semaphore:
                return await self.compatibility.score_pair(viewer, candidate)

        tasks = [asyncio.ensure_future(_score(c)) for c in candidates]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            # First failure (or caller cancellation) ends the request; stop the rest.
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    @staticmethod
    def _to_result(
        candidate: UserProfile, distance: Optional[float], score: CompatibilityScore
    ) -> MatchCandidateResult:
        return MatchCandidateResult(
            id=candidate.id,
            display_name=candidate.display_name,
            avatar_url=candidate.avatar_url,
            bio=candidate.bio,
            age=candidate.age,
            gender=candidate.gender,
            zodiac_sign=candidate.zodiac_sign,
            is_premium=candidate.is_premium,
            last_active=candidate.last_active,
            distance_km=round(distance, 1) if distance is not None else None,
            compatibility_score=score.overall_score,
            grade=score.grade,
            is_recommended=score.is_recommended,
        )

    # ── Public API ────────────────────────────────────────────────────────

    async def rank_candidates(
        self, viewer_id: str, params: RankingParams | None = None
    ) -> RankedPage:
        """Return one ranked page of eligible candidates for ``viewer_id``.

        Raises
        ------
        InvalidArgument
            Malformed paging or filter values.
        NotFound
            The viewer does not exist or has not completed onboarding.
        TransientStoreError
            A store or the cache is unavailable.
        """
        params = params or RankingParams()
        limit, offset, sort_mode = self._validate(params)

        log = logger.bind(viewer_id=viewer_id, sort_mode=sort_mode, limit=limit, offset=offset)
        log.info("rank_candidates_start")

        viewer = await self.profiles.get(viewer_id)
        if viewer is None or not viewer.onboarding_completed:
            raise NotFound("viewer", viewer_id)

        swiped = await self.swipes.swiped_ids(viewer.id)
        blocked = await self.blocks.blocked_ids(viewer.id)

        pool = await self.profiles.query_candidates(
            CandidateQuery(
                viewer_id=viewer.id,
                exclude_ids=set(params.exclude_ids) | swiped | blocked,
                zodiac=params.zodiac,
                min_age=params.min_age,
                max_age=params.max_age,
                activity=params.activity,
                limit=(offset + limit) * self.overfetch_factor,
            )
        )

        eligible: list[_Eligible] = []
        for candidate in pool:
            decision = self.eligibility.evaluate(
                viewer,
                candidate,
                swiped_ids=swiped,
                blocked_ids=blocked,
                max_distance_km=params.max_distance_km,
            )
            if decision.eligible:
                eligible.append((candidate, decision.distance_km))

        log.info("candidate_pool_filtered", pool_size=len(pool), eligible=len(eligible))

        eligible.sort(key=_priority_key)

        if sort_mode == "compatibility_desc":
            scores = await self._score_all(viewer, [c for c, _ in eligible])
            ranked = sorted(
                zip(eligible, scores),
                key=lambda pair: (-pair[1].overall_score, _priority_key(pair[0])),
            )
            page = [
                self._to_result(candidate, distance, score)
                for (candidate, distance), score in ranked[offset:offset + limit]
            ]
        else:
            window = eligible[offset:offset + limit]
            scores = await self._score_all(viewer, [c for c, _ in window])
            page = [
                self._to_result(candidate, distance, score)
                for (candidate, distance), score in zip(window, scores)
            ]

        log.info("rank_candidates_complete", returned=len(page), eligible=len(eligible))

        return RankedPage(
            items=page,
            limit=limit,
            offset=offset,
            sort_mode=sort_mode,
            eligible_count=len(eligible),
        )
