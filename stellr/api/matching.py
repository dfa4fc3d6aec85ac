"""
Stellr Matching — Matching API

Endpoints for ranked candidate discovery and pairwise compatibility
details.  Both go through the same cache-aware scoring path.
"""

from __future__ import annotations

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from stellr.database import get_db
from stellr.errors import InvalidArgument, MatchingError, NotFound, TransientStoreError
from stellr.schemas.match import (
    CompatibilityDetailsResponse,
    RankedPage,
    RankingParams,
    SubScoreDetail,
)
from stellr.services.compatibility_cache import CompatibilityCache, build_compatibility_cache
from stellr.services.compatibility_service import CompatibilityService
from stellr.services.ranking_service import CandidateRanker
from stellr.services.scoring import GRADE_DESCRIPTIONS
from stellr.services.stores import SqlBlockStore, SqlProfileStore, SqlSwipeStore

logger = structlog.get_logger("stellr.api.matching")

router = APIRouter()

RETRY_AFTER_SECONDS = 5

# ── Service singletons ────────────────────────────────────────────────────────

_compatibility_cache: CompatibilityCache | None = None


def get_compatibility_cache() -> CompatibilityCache:
    global _compatibility_cache
    if _compatibility_cache is None:
        from stellr.main import get_redis

        _compatibility_cache = build_compatibility_cache(redis=get_redis())
    return _compatibility_cache


# ── Per-request dependencies ──────────────────────────────────────────────────

def get_compatibility_service(
    db: AsyncSession = Depends(get_db),
    cache: CompatibilityCache = Depends(get_compatibility_cache),
) -> CompatibilityService:
    return CompatibilityService(cache=cache, profile_store=SqlProfileStore(db))


def get_candidate_ranker(
    db: AsyncSession = Depends(get_db),
    compatibility: CompatibilityService = Depends(get_compatibility_service),
) -> CandidateRanker:
    return CandidateRanker(
        profile_store=SqlProfileStore(db),
        swipe_store=SqlSwipeStore(db),
        block_store=SqlBlockStore(db),
        compatibility=compatibility,
    )


def _http_error(exc: MatchingError) -> HTTPException:
    if isinstance(exc, NotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, InvalidArgument):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"field": exc.field, "message": exc.message},
        )
    if isinstance(exc, TransientStoreError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Matching temporarily unavailable, please retry",
            headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
        )
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


# ──────────────────────────────────────────────────────────────────────────────
# GET /candidates/{viewer_id}: ranked candidate page
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/candidates/{viewer_id}",
    response_model=RankedPage,
    summary="Ranked, paginated candidates for a viewer",
)
async def list_candidates(
    viewer_id: str,
    limit: Optional[int] = Query(default=None, description="Page size (1..MAX_PAGE_LIMIT)"),
    offset: int = Query(default=0),
    sort_mode: Optional[str] = Query(default=None),
    zodiac: Optional[str] = Query(default=None, description="Sun sign, or any / all"),
    min_age: Optional[int] = Query(default=None),
    max_age: Optional[int] = Query(default=None),
    max_distance_km: Optional[float] = Query(default=None),
    activity: Optional[str] = Query(default=None, description="Date activity, or any / all / any date"),
    exclude_ids: list[str] = Query(default=[]),
    ranker: CandidateRanker = Depends(get_candidate_ranker),
) -> RankedPage:
    """Eligible candidates for ``viewer_id``, scored and sorted.

    ``sort_mode`` is ``priority_distance_recency`` (premium first, then
    nearest, then most recently active) or ``compatibility_desc``.
    """
    log = logger.bind(viewer_id=viewer_id)
    params = RankingParams(
        exclude_ids=set(exclude_ids),
        zodiac=zodiac,
        min_age=min_age,
        max_age=max_age,
        max_distance_km=max_distance_km,
        activity=activity,
        limit=limit,
        offset=offset,
        sort_mode=sort_mode,
    )
    try:
        page = await ranker.rank_candidates(viewer_id, params)
    except MatchingError as exc:
        log.warning("list_candidates_failed", error=str(exc), error_type=type(exc).__name__)
        raise _http_error(exc) from exc

    log.info("list_candidates_served", returned=len(page.items), eligible=page.eligible_count)
    return page


# ──────────────────────────────────────────────────────────────────────────────
# GET /compatibility/{user_a_id}/{user_b_id}: pairwise details
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/compatibility/{user_a_id}/{user_b_id}",
    response_model=CompatibilityDetailsResponse,
    summary="Compatibility breakdown between two users",
)
async def get_compatibility_details(
    user_a_id: str,
    user_b_id: str,
    service: CompatibilityService = Depends(get_compatibility_service),
) -> CompatibilityDetailsResponse:
    """Overall score and grade plus the questionnaire and attribute sub-scores.

    A sub-score without usable data on both sides is reported with
    ``available: false`` and no score.
    """
    try:
        score = await service.get_compatibility(user_a_id, user_b_id)
    except MatchingError as exc:
        logger.warning(
            "compatibility_details_failed",
            user_a_id=user_a_id,
            user_b_id=user_b_id,
            error=str(exc),
        )
        raise _http_error(exc) from exc

    def _detail(sub_score: Optional[int], grade: Optional[str]) -> SubScoreDetail:
        return SubScoreDetail(
            score=sub_score,
            grade=grade,
            description=GRADE_DESCRIPTIONS.get(grade) if grade else None,
            available=sub_score is not None,
        )

    return CompatibilityDetailsResponse(
        user_a_id=score.user_a_id,
        user_b_id=score.user_b_id,
        overall_score=score.overall_score,
        grade=score.grade,
        overall_description=GRADE_DESCRIPTIONS[score.grade],
        is_recommended=score.is_recommended,
        questionnaire=_detail(score.questionnaire_score, score.questionnaire_grade),
        attribute=_detail(score.attribute_score, score.attribute_grade),
        calculated_at=score.calculated_at,
        algorithm_version=score.algorithm_version,
        details=score.details,
    )
