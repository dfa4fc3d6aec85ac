"""
Stellr Matching — Shared scoring primitives.

Grade thresholds shared by every calculator and the aggregator:
  >= 90 -> A,  >= 80 -> B,  >= 70 -> C,  >= 60 -> D,  else F

Every sub-score calculator implements ``compute(data_a, data_b)`` and returns
a ``SubScoreResult``.  Calculators are pure: no I/O, no clock, no randomness.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from typing import Any

from stellr.schemas.match import SubScoreResult
from stellr.schemas.profile import UserProfile

NEUTRAL_SCORE = 50
NEUTRAL_GRADE = "C"

_GRADE_THRESHOLDS: list[tuple[float, str]] = [
    (90.0, "A"),
    (80.0, "B"),
    (70.0, "C"),
    (60.0, "D"),
]

GRADE_DESCRIPTIONS: dict[str, str] = {
    "A": "Excellent",
    "B": "Good",
    "C": "Average",
    "D": "Below Average",
    "F": "Poor",
}


def letter_grade(score: float) -> str:
    """Letter grade for a 0-100 score (out-of-range input is clamped)."""
    score = max(0.0, min(100.0, score))
    for threshold, grade in _GRADE_THRESHOLDS:
        if score >= threshold:
            return grade
    return "F"


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 going up (no banker's rounding).

    Values within float noise of a half (``32.499999999999996``) count as
    the half.
    """
    return int(math.floor(round(value, 9) + 0.5))


def clamp_score(value: float) -> int:
    return max(0, min(100, round_half_up(value)))


def neutral_result(reason: str) -> SubScoreResult:
    """The 50 / C result used when a calculator has nothing to compare."""
    return SubScoreResult(
        score=NEUTRAL_SCORE,
        grade=NEUTRAL_GRADE,
        available=False,
        details={"reason": reason},
    )


class SubScoreCalculator(ABC):
    """One pluggable compatibility algorithm."""

    #: Stable identifier used in logs and in the cached breakdown.
    name: str = "calculator"

    @abstractmethod
    def extract(self, profile: UserProfile) -> Any:
        """Pull this calculator's input out of a profile."""

    @abstractmethod
    def compute(self, data_a: Any, data_b: Any) -> SubScoreResult:
        """Score two users' inputs.  Must be symmetric in its arguments."""

    def compute_for(self, profile_a: UserProfile, profile_b: UserProfile) -> SubScoreResult:
        return self.compute(self.extract(profile_a), self.extract(profile_b))
