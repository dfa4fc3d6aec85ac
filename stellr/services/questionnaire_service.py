"""
Stellr Matching — Questionnaire compatibility.

Up to 25 Likert answers (1-5) per user, paired by question index and split
into thematic groups of five:

  G1  Q1-Q5    communication, expectations & conflict resolution
  G2  Q6-Q10   emotional connection, intimacy & affection
  G3  Q11-Q15  shared life, practicalities & future vision
  G4  Q16-Q20  individuality, boundaries & personal beliefs
  G5  Q21-Q25  relationship dynamics, growth & outlook

Per question:   raw = 4 - |answer_a - answer_b|          (0..4)
Per group:      mean(raw) / 4 x 100                       (0..100)
Overall:        simple mean of the scored groups, rounded half-up
"""

from __future__ import annotations

from typing import Any, Sequence

import structlog

from stellr.schemas.match import SubScoreResult
from stellr.schemas.profile import LIKERT_MAX, LIKERT_MIN, UserProfile, normalize_answers
from stellr.services.scoring import (
    SubScoreCalculator,
    letter_grade,
    neutral_result,
    round_half_up,
)

logger = structlog.get_logger("stellr.questionnaire_service")

MAX_QUESTIONS = 25
GROUP_SIZE = 5
RAW_QUESTION_MAX_SCORE = float(LIKERT_MAX - LIKERT_MIN)  # 4.0


class QuestionnaireCompatibilityCalculator(SubScoreCalculator):
    """Divergence-based Likert compatibility across thematic groups."""

    name = "questionnaire"

    def extract(self, profile: UserProfile) -> list[int]:
        return profile.questionnaire_responses

    def compute(self, data_a: Sequence[Any] | None, data_b: Sequence[Any] | None) -> SubScoreResult:
        # Re-normalising is idempotent for profile data and keeps direct
        # callers with raw payloads on the same 1-5 scale.
        answers_a = normalize_answers(data_a)
        answers_b = normalize_answers(data_b)

        if not answers_a or not answers_b:
            return neutral_result("questionnaire_missing")

        n_questions = min(len(answers_a), len(answers_b), MAX_QUESTIONS)
        group_raw: dict[int, list[float]] = {}

        for index in range(n_questions):
            divergence = abs(answers_a[index] - answers_b[index])
            group_raw.setdefault(index // GROUP_SIZE, []).append(
                RAW_QUESTION_MAX_SCORE - divergence
            )

        group_scores = {
            f"G{group + 1}": sum(raws) / len(raws) / RAW_QUESTION_MAX_SCORE * 100.0
            for group, raws in sorted(group_raw.items())
        }
        overall = round_half_up(sum(group_scores.values()) / len(group_scores))

        logger.debug(
            "questionnaire_compatibility_calculated",
            questions_compared=n_questions,
            groups_scored=len(group_scores),
            score=overall,
        )

        return SubScoreResult(
            score=overall,
            grade=letter_grade(overall),
            available=True,
            details={
                "group_scores": {g: round(s, 2) for g, s in group_scores.items()},
                "questions_compared": n_questions,
            },
        )
