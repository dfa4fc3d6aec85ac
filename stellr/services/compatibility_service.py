"""
Stellr Matching — Compatibility aggregation & the shared scoring path.

Combines the two sub-scores into one overall score:
  both available   overall = round(w_q x questionnaire + w_a x attribute)
  one available    overall = that sub-score
  none available   overall = 50 (grade C)

Default weights: questionnaire=0.5, attribute=0.5 (normalised to sum 1).
is_recommended = overall >= RECOMMENDATION_THRESHOLD (70).

``CompatibilityService.score_pair`` is the single cache-then-compute path
used by both the candidate ranker and the pairwise compatibility lookup.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from stellr.config import get_settings
from stellr.errors import InvalidArgument, NotFound
from stellr.schemas.match import CompatibilityScore, SubScoreResult
from stellr.schemas.profile import UserProfile
from stellr.services.astrology_service import AttributeCompatibilityCalculator
from stellr.services.compatibility_cache import CompatibilityCache, canonical_pair
from stellr.services.questionnaire_service import QuestionnaireCompatibilityCalculator
from stellr.services.scoring import (
    NEUTRAL_GRADE,
    NEUTRAL_SCORE,
    SubScoreCalculator,
    letter_grade,
    round_half_up,
)
from stellr.services.stores import ProfileStore

logger = structlog.get_logger("stellr.compatibility_service")

# Bump whenever a calculator or the aggregation changes; cached entries
# from another version are recomputed.
ALGORITHM_VERSION = "2025.2"


class CompatibilityAggregator:
    """Fixed-weight combination of the questionnaire and attribute scores.

    Calculator exceptions never escape: a failing calculator is logged and
    treated exactly like one with no data.
    """

    def __init__(
        self,
        questionnaire: SubScoreCalculator | None = None,
        attribute: SubScoreCalculator | None = None,
        questionnaire_weight: float | None = None,
        attribute_weight: float | None = None,
        recommendation_threshold: int | None = None,
    ) -> None:
        settings = get_settings()
        self.questionnaire = questionnaire or QuestionnaireCompatibilityCalculator()
        self.attribute = attribute or AttributeCompatibilityCalculator()

        w_q = settings.QUESTIONNAIRE_WEIGHT if questionnaire_weight is None else questionnaire_weight
        w_a = settings.ATTRIBUTE_WEIGHT if attribute_weight is None else attribute_weight
        total = w_q + w_a
        if total <= 0:
            raise ValueError("questionnaire and attribute weights cannot both be 0")
        self.w_questionnaire: float = w_q / total
        self.w_attribute: float = w_a / total
        self.threshold: int = (
            settings.RECOMMENDATION_THRESHOLD
            if recommendation_threshold is None
            else recommendation_threshold
        )

    def _run(
        self,
        calculator: SubScoreCalculator,
        profile_a: UserProfile,
        profile_b: UserProfile,
    ) -> Optional[SubScoreResult]:
        try:
            return calculator.compute_for(profile_a, profile_b)
        except Exception as exc:
            logger.warning(
                "calculator_failed",
                calculator=calculator.name,
                user_a_id=profile_a.id,
                user_b_id=profile_b.id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return None

    def aggregate(self, profile_a: UserProfile, profile_b: UserProfile) -> CompatibilityScore:
        """Score one pair.  Argument order does not affect the result."""
        if profile_b.id < profile_a.id:
            profile_a, profile_b = profile_b, profile_a

        questionnaire = self._run(self.questionnaire, profile_a, profile_b)
        attribute = self._run(self.attribute, profile_a, profile_b)

        q_score = questionnaire.score if questionnaire and questionnaire.available else None
        a_score = attribute.score if attribute and attribute.available else None

        grade = None
        if q_score is not None and a_score is not None:
            overall = round_half_up(self.w_questionnaire * q_score + self.w_attribute * a_score)
        elif q_score is not None:
            overall = q_score
        elif a_score is not None:
            overall = a_score
        else:
            overall = NEUTRAL_SCORE
            grade = NEUTRAL_GRADE
        overall = max(0, min(100, overall))

        return CompatibilityScore(
            user_a_id=profile_a.id,
            user_b_id=profile_b.id,
            overall_score=overall,
            grade=grade or letter_grade(overall),
            questionnaire_score=q_score,
            questionnaire_grade=letter_grade(q_score) if q_score is not None else None,
            attribute_score=a_score,
            attribute_grade=letter_grade(a_score) if a_score is not None else None,
            is_recommended=overall >= self.threshold,
            calculated_at=datetime.now(timezone.utc),
            algorithm_version=ALGORITHM_VERSION,
            details={
                "weights": {
                    "questionnaire": self.w_questionnaire,
                    "attribute": self.w_attribute,
                },
                "questionnaire": _breakdown(questionnaire),
                "attribute": _breakdown(attribute),
            },
        )


def _breakdown(result: Optional[SubScoreResult]) -> dict[str, Any]:
    if result is None:
        return {"available": False, "reason": "calculator_failed"}
    return {"available": result.available, **result.details}


class CompatibilityService:
    """Cache-aware compatibility for pairs of users."""

    def __init__(
        self,
        cache: CompatibilityCache,
        aggregator: CompatibilityAggregator | None = None,
        profile_store: ProfileStore | None = None,
    ) -> None:
        self.cache = cache
        self.aggregator = aggregator or CompatibilityAggregator()
        self.profile_store = profile_store

    @staticmethod
    def _inputs_changed(entry: CompatibilityScore, *profiles: UserProfile) -> bool:
        calculated_at = entry.calculated_at
        if calculated_at.tzinfo is None:
            calculated_at = calculated_at.replace(tzinfo=timezone.utc)
        for profile in profiles:
            updated = profile.scoring_inputs_updated_at
            if updated is None:
                continue
            if updated.tzinfo is None:
                updated = updated.replace(tzinfo=timezone.utc)
            if updated > calculated_at:
                return True
        return False

    async def score_pair(self, profile_a: UserProfile, profile_b: UserProfile) -> CompatibilityScore:
        """Return the pair's score from a fresh cache entry, or compute and store it.

        Cache errors (``TransientStoreError``) propagate.  The cache write is
        shielded, so cancelling the caller does not abort a write in flight.
        """
        user_a_id, user_b_id = canonical_pair(profile_a.id, profile_b.id)
        log = logger.bind(user_a_id=user_a_id, user_b_id=user_b_id)

        lookup = await self.cache.get(user_a_id, user_b_id)
        if (
            lookup.is_fresh
            and lookup.entry is not None
            and lookup.entry.algorithm_version == ALGORITHM_VERSION
            and not self._inputs_changed(lookup.entry, profile_a, profile_b)
        ):
            log.debug("compatibility_cache_hit")
            return lookup.entry

        log.debug("compatibility_cache_miss", status=lookup.status)
        score = self.aggregator.aggregate(profile_a, profile_b)
        stored = await asyncio.shield(self.cache.put(user_a_id, user_b_id, score))
        log.debug("compatibility_computed", overall_score=stored.overall_score, grade=stored.grade)
        return stored

    async def get_compatibility(self, user_a_id: str, user_b_id: str) -> CompatibilityScore:
        """Compatibility between two explicit users.

        Raises
        ------
        InvalidArgument
            Both ids are the same user.
        NotFound
            Either profile does not exist.
        """
        if self.profile_store is None:
            raise RuntimeError("CompatibilityService needs a profile store for lookups by id")
        if str(user_a_id) == str(user_b_id):
            raise InvalidArgument("user_b_id", "must differ from user_a_id")

        profile_a = await self.profile_store.get(user_a_id)
        if profile_a is None:
            raise NotFound("profile", user_a_id)
        profile_b = await self.profile_store.get(user_b_id)
        if profile_b is None:
            raise NotFound("profile", user_b_id)

        score = await self.score_pair(profile_a, profile_b)
        logger.info(
            "compatibility_served",
            user_a_id=score.user_a_id,
            user_b_id=score.user_b_id,
            overall_score=score.overall_score,
        )
        return score
