from pydantic import BaseModel, Field
from datetime import datetime
from typing import Any, Literal, Optional

SortMode = Literal["priority_distance_recency", "compatibility_desc"]
Grade = Literal["A", "B", "C", "D", "F"]


class SubScoreResult(BaseModel):
    """Output of one sub-score calculator for one pair."""
    score: int = Field(ge=0, le=100)
    grade: Grade
    available: bool  # False when the neutral default was used
    details: dict[str, Any] = {}


class CompatibilityScore(BaseModel):
    """Cached compatibility for an unordered pair (ids in canonical order)."""
    user_a_id: str
    user_b_id: str
    overall_score: int = Field(ge=0, le=100)
    grade: Grade
    questionnaire_score: Optional[int] = None
    questionnaire_grade: Optional[Grade] = None
    attribute_score: Optional[int] = None
    attribute_grade: Optional[Grade] = None
    is_recommended: bool
    calculated_at: datetime
    algorithm_version: str
    details: dict[str, Any] = {}


class RankingParams(BaseModel):
    """Options for one ``rank_candidates`` call.

    Range checks are done by the ranker so that bad values surface as
    ``InvalidArgument`` rather than a schema error.
    """
    exclude_ids: set[str] = set()
    zodiac: Optional[str] = None
    min_age: Optional[int] = None
    max_age: Optional[int] = None
    max_distance_km: Optional[float] = None
    activity: Optional[str] = None
    limit: Optional[int] = None
    offset: int = 0
    sort_mode: Optional[str] = None


class CandidateQuery(BaseModel):
    """Cheap store-level filters for fetching the candidate pool."""
    viewer_id: str
    exclude_ids: set[str] = set()
    zodiac: Optional[str] = None
    min_age: Optional[int] = None
    max_age: Optional[int] = None
    activity: Optional[str] = None
    limit: int


class MatchCandidateResult(BaseModel):
    id: str
    display_name: str
    avatar_url: Optional[str] = None
    bio: str = ""
    age: Optional[int] = None
    gender: Optional[str] = None
    zodiac_sign: Optional[str] = None
    is_premium: bool = False
    last_active: Optional[datetime] = None
    distance_km: Optional[float] = None
    compatibility_score: int
    grade: Grade
    is_recommended: bool


class RankedPage(BaseModel):
    items: list[MatchCandidateResult]
    limit: int
    offset: int
    sort_mode: SortMode
    eligible_count: int


class SubScoreDetail(BaseModel):
    score: Optional[int] = None
    grade: Optional[Grade] = None
    description: Optional[str] = None
    available: bool


class CompatibilityDetailsResponse(BaseModel):
    user_a_id: str
    user_b_id: str
    overall_score: int
    grade: Grade
    overall_description: str
    is_recommended: bool
    questionnaire: SubScoreDetail
    attribute: SubScoreDetail
    calculated_at: datetime
    algorithm_version: str
    details: dict[str, Any] = {}
