"""
Stellr Matching — Profile schemas.

``UserProfile`` is the in-process view of one user that the eligibility
filter, calculators and ranker operate on.  Questionnaire answers arrive in
several historical shapes (numbers, numeric strings, Likert labels, objects
with an ``answer`` key); they are normalised here, once, to integers 1-5.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from stellr.utils.zodiac import canonical_sign, sun_sign_for_date

LIKERT_MIN = 1
LIKERT_MAX = 5
NEUTRAL_ANSWER = 3

LIKERT_LABELS: dict[str, int] = {
    "stronglydisagree": 1,
    "disagree": 2,
    "neutral": 3,
    "agree": 4,
    "stronglyagree": 5,
}

_LABEL_NOISE = re.compile(r"[\s_\-]+")
_ANSWER_KEYS = ("answer", "value", "response")

# Gender-preference labels that mean "no restriction"
ANY_GENDER_VALUES = frozenset({"any", "all", "both", "everyone"})

# Activity filter values that mean "no restriction"
ANY_ACTIVITY_VALUES = frozenset({"", "any", "all", "any date"})

_GENDER_ALIASES: dict[str, str] = {
    "male": "male",
    "males": "male",
    "man": "male",
    "men": "male",
    "female": "female",
    "females": "female",
    "woman": "female",
    "women": "female",
    "non-binary": "non-binary",
    "nonbinary": "non-binary",
    "non binary": "non-binary",
    "non_binary": "non-binary",
    "other": "non-binary",
}


# ──────────────────────────────────────────────────────────────────────────────
# Normalisation helpers
# ──────────────────────────────────────────────────────────────────────────────

def normalize_answer(raw: Any) -> int:
    """Map one questionnaire answer of any accepted shape to 1-5.

    Unrecognised or missing answers are treated as neutral (3).
    """
    if isinstance(raw, bool) or raw is None:
        return NEUTRAL_ANSWER
    if isinstance(raw, (int, float)):
        if isinstance(raw, float) and not math.isfinite(raw):
            return NEUTRAL_ANSWER
        return max(LIKERT_MIN, min(LIKERT_MAX, int(math.floor(raw + 0.5))))
    if isinstance(raw, str):
        text = raw.strip()
        try:
            return normalize_answer(float(text))
        except ValueError:
            pass
        return LIKERT_LABELS.get(_LABEL_NOISE.sub("", text.lower()), NEUTRAL_ANSWER)
    if isinstance(raw, dict):
        for key in _ANSWER_KEYS:
            if key in raw:
                return normalize_answer(raw[key])
    return NEUTRAL_ANSWER


def normalize_answers(raw: Any) -> list[int]:
    """Normalise a whole answer payload; anything but a sequence is empty."""
    if raw is None or isinstance(raw, (str, bytes, dict)):
        return []
    try:
        return [normalize_answer(item) for item in raw]
    except TypeError:
        return []


def normalize_gender(value: Optional[str]) -> Optional[str]:
    """Lower-case a gender label and fold plural / alias forms together."""
    if value is None:
        return None
    key = value.strip().lower()
    if not key:
        return None
    return _GENDER_ALIASES.get(key, key)


def is_any_activity(value: Optional[str]) -> bool:
    return value is None or value.strip().lower() in ANY_ACTIVITY_VALUES


# ──────────────────────────────────────────────────────────────────────────────
# Models
# ──────────────────────────────────────────────────────────────────────────────

class Location(BaseModel):
    lat: float = Field(ge=-90.0, le=90.0)
    lng: float = Field(ge=-180.0, le=180.0)


class MatchPreferences(BaseModel):
    """A user's stated preferences.  Unset fields mean "no preference"."""

    gender_preference: list[str] = Field(default_factory=list)
    min_age: Optional[int] = Field(default=None, ge=0)
    max_age: Optional[int] = Field(default=None, ge=0)
    max_distance_km: Optional[float] = Field(default=None, ge=0)
    discovery_enabled: bool = True
    incognito_mode: bool = False

    @field_validator("gender_preference", mode="before")
    @classmethod
    def _coerce_gender_preference(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return [str(item) for item in v if item is not None]

    @property
    def accepts_any_gender(self) -> bool:
        labels = {g.strip().lower() for g in self.gender_preference if g.strip()}
        return not labels or bool(labels & ANY_GENDER_VALUES)

    def accepts_gender(self, gender: Optional[str]) -> bool:
        """True when ``gender`` satisfies this preference.

        An unknown gender is never treated as an explicit mismatch.
        """
        if self.accepts_any_gender:
            return True
        normalized = normalize_gender(gender)
        if normalized is None:
            return True
        wanted = {normalize_gender(g) for g in self.gender_preference}
        return normalized in wanted


class UserProfile(BaseModel):
    id: str
    display_name: str = ""
    avatar_url: Optional[str] = None
    bio: str = ""
    age: Optional[int] = Field(default=None, ge=0)
    gender: Optional[str] = None
    birth_date: Optional[date] = None
    zodiac_sign: Optional[str] = None
    onboarding_completed: bool = False
    location: Optional[Location] = None
    preferences: MatchPreferences = Field(default_factory=MatchPreferences)
    questionnaire_responses: list[int] = Field(default_factory=list)
    attribute_data: Optional[dict[str, Any]] = None
    activity_preferences: list[str] = Field(default_factory=list)
    is_premium: bool = False
    last_active: Optional[datetime] = None
    scoring_inputs_updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, v: Any) -> str:
        return str(v)

    @field_validator("questionnaire_responses", mode="before")
    @classmethod
    def _normalize_questionnaire(cls, v: Any) -> list[int]:
        return normalize_answers(v)

    @field_validator("attribute_data", mode="before")
    @classmethod
    def _empty_attribute_data_is_none(cls, v: Any) -> Any:
        # Anything that is not a mapping is left for the attribute
        # calculator to reject, so one bad record only affects one pair.
        if v is None or (isinstance(v, dict) and not v):
            return None
        if not isinstance(v, dict):
            return {"_raw": v}
        return v

    @field_validator("activity_preferences", mode="before")
    @classmethod
    def _coerce_activities(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        if isinstance(v, dict):
            return [str(k) for k, enabled in v.items() if enabled]
        return [str(item) for item in v]

    @model_validator(mode="after")
    def _derive_zodiac_sign(self) -> "UserProfile":
        sign = canonical_sign(self.zodiac_sign)
        if sign is None and self.birth_date is not None:
            sign = sun_sign_for_date(self.birth_date)
        self.zodiac_sign = sign
        return self

    @property
    def is_discoverable(self) -> bool:
        """Match-eligible as a candidate for anyone."""
        return (
            self.onboarding_completed
            and self.preferences.discovery_enabled
            and not self.preferences.incognito_mode
        )
