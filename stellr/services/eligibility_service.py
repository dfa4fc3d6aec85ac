"""
Stellr Matching — Eligibility filter.

Hard pass/fail gating of a (viewer, candidate) pair before any scoring.
Every check is evaluated, so a rejected decision lists *all* violated
constraints.  Checks are bidirectional where a preference exists on both
sides (age range, gender preference).

Missing data fails open: an unknown age, gender or location never rejects
a candidate on its own.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Collection, Optional

import structlog

from stellr.schemas.profile import UserProfile
from stellr.utils.geo import haversine_km

logger = structlog.get_logger("stellr.eligibility_service")

DEFAULT_MIN_AGE = 18
DEFAULT_MAX_AGE = 100

# Reason codes
SELF = "self"
ONBOARDING_INCOMPLETE = "onboarding_incomplete"
ALREADY_SWIPED = "already_swiped"
BLOCKED = "blocked"
AGE_OUTSIDE_VIEWER_RANGE = "age_outside_viewer_range"
AGE_OUTSIDE_CANDIDATE_RANGE = "age_outside_candidate_range"
GENDER_NOT_PREFERRED_BY_VIEWER = "gender_not_preferred_by_viewer"
GENDER_NOT_PREFERRED_BY_CANDIDATE = "gender_not_preferred_by_candidate"
DISTANCE_EXCEEDED = "distance_exceeded"
DISCOVERY_DISABLED = "discovery_disabled"
INCOGNITO = "incognito"


@dataclass(frozen=True)
class EligibilityDecision:
    eligible: bool
    reasons: tuple[str, ...] = field(default_factory=tuple)
    distance_km: Optional[float] = None


def _within(value: Optional[int], low: Optional[int], high: Optional[int]) -> bool:
    if value is None:
        return True
    if low is not None and value < low:
        return False
    if high is not None and value > high:
        return False
    return True


class EligibilityFilter:
    """Decides whether a candidate may be shown to a viewer."""

    def __init__(
        self,
        default_min_age: int = DEFAULT_MIN_AGE,
        default_max_age: int = DEFAULT_MAX_AGE,
    ) -> None:
        self.default_min_age = default_min_age
        self.default_max_age = default_max_age

    def distance_between(self, viewer: UserProfile, candidate: UserProfile) -> Optional[float]:
        if viewer.location is None or candidate.location is None:
            return None
        return haversine_km(
            viewer.location.lat,
            viewer.location.lng,
            candidate.location.lat,
            candidate.location.lng,
        )

    def evaluate(
        self,
        viewer: UserProfile,
        candidate: UserProfile,
        swiped_ids: Collection[str] = frozenset(),
        blocked_ids: Collection[str] = frozenset(),
        max_distance_km: Optional[float] = None,
    ) -> EligibilityDecision:
        """Run every hard constraint for one pair.

        Parameters
        ----------
        viewer, candidate:
            The two profiles.
        swiped_ids:
            Ids the viewer has already swiped on (like or pass).
        blocked_ids:
            Ids blocked by, or blocking, the viewer.
        max_distance_km:
            Per-request distance limit; overrides the viewer's stored
            preference when given.

        Returns
        -------
        EligibilityDecision
            ``eligible`` plus every violated reason code and the computed
            distance (``None`` when either location is unknown).
        """
        reasons: list[str] = []
        prefs = viewer.preferences

        if candidate.id == viewer.id:
            reasons.append(SELF)
        if not candidate.onboarding_completed:
            reasons.append(ONBOARDING_INCOMPLETE)
        if candidate.id in swiped_ids:
            reasons.append(ALREADY_SWIPED)
        if candidate.id in blocked_ids:
            reasons.append(BLOCKED)

        # ── Age, both directions ───────────────────────────────────────
        viewer_min = prefs.min_age if prefs.min_age is not None else self.default_min_age
        viewer_max = prefs.max_age if prefs.max_age is not None else self.default_max_age
        if not _within(candidate.age, viewer_min, viewer_max):
            reasons.append(AGE_OUTSIDE_VIEWER_RANGE)
        if not _within(viewer.age, candidate.preferences.min_age, candidate.preferences.max_age):
            reasons.append(AGE_OUTSIDE_CANDIDATE_RANGE)

        # ── Gender, both directions ────────────────────────────────────
        if not prefs.accepts_gender(candidate.gender):
            reasons.append(GENDER_NOT_PREFERRED_BY_VIEWER)
        if not candidate.preferences.accepts_gender(viewer.gender):
            reasons.append(GENDER_NOT_PREFERRED_BY_CANDIDATE)

        # ── Distance ───────────────────────────────────────────────────
        distance = self.distance_between(viewer, candidate)
        limit = max_distance_km if max_distance_km is not None else prefs.max_distance_km
        if limit is not None and distance is not None and distance > limit:
            reasons.append(DISTANCE_EXCEEDED)

        # ── Candidate visibility ───────────────────────────────────────
        if not candidate.preferences.discovery_enabled:
            reasons.append(DISCOVERY_DISABLED)
        if candidate.preferences.incognito_mode:
            reasons.append(INCOGNITO)

        if reasons:
            logger.debug(
                "candidate_ineligible",
                viewer_id=viewer.id,
                candidate_id=candidate.id,
                reasons=reasons,
            )

        return EligibilityDecision(
            eligible=not reasons,
            reasons=tuple(reasons),
            distance_km=distance,
        )
