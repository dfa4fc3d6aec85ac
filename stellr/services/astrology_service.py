"""
Stellr Matching — Astrological (attribute) compatibility.

Synastry between two natal charts restricted to the six core bodies.
For every body of A against every body of B, the angular separation is
matched against the major and minor aspects (tightest orb first):

    Aspect        Angle   Orb   Harmony
    quincunx       150     3     -0.3
    sextile         60     6     +0.7
    conjunction      0     8     +0.3
    square          90     8     -0.7
    trine          120     8     +1.0
    opposition     180     8     -0.5

Each aspect carries a weight (1.0 base, 1.5 when a luminary or the
Ascendant is involved, 2.0 for Sun-Moon, 1.7 for Venus-Mars) scaled by
``1 + 0.5 * tightness``.  The score is ``50 + harmony / weight * 25``
clamped to 0..100, or 50 when no aspect is in orb.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import structlog

from stellr.errors import CalculatorFailure
from stellr.schemas.match import SubScoreResult
from stellr.schemas.profile import UserProfile
from stellr.services.scoring import (
    NEUTRAL_SCORE,
    SubScoreCalculator,
    clamp_score,
    letter_grade,
    neutral_result,
)
from stellr.utils.zodiac import ZODIAC_SIGNS, absolute_degree, canonical_sign

logger = structlog.get_logger("stellr.astrology_service")

CORE_BODIES: tuple[str, ...] = ("Sun", "Moon", "Ascendant", "Mercury", "Venus", "Mars")
_LUMINARIES = frozenset({"Sun", "Moon", "Ascendant"})
_BODY_LOOKUP = {body.lower(): body for body in CORE_BODIES}


@dataclass(frozen=True)
class AspectType:
    name: str
    angle: float
    orb: float
    harmony: float


# Order matters: narrower orbs are checked before the 8 degree majors.
ASPECTS: tuple[AspectType, ...] = (
    AspectType("quincunx", 150.0, 3.0, -0.3),
    AspectType("sextile", 60.0, 6.0, 0.7),
    AspectType("conjunction", 0.0, 8.0, 0.3),
    AspectType("square", 90.0, 8.0, -0.7),
    AspectType("trine", 120.0, 8.0, 1.0),
    AspectType("opposition", 180.0, 8.0, -0.5),
)


@dataclass(frozen=True)
class Placement:
    body: str
    sign: str
    absolute_degree: float


# ---------------------------------------------------------------------------- #
# Chart parsing
# ---------------------------------------------------------------------------- #

def _field(entry: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        if name in entry and entry[name] is not None:
            return entry[name]
    return None


def _to_float(value: Any, body: str) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise CalculatorFailure("attribute", f"non-numeric degree for {body}")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise CalculatorFailure("attribute", f"non-numeric degree for {body}") from exc


def _placement(body: str, entry: Any) -> Optional[Placement]:
    if not isinstance(entry, Mapping):
        raise CalculatorFailure("attribute", f"placement for {body} is not an object")

    raw_sign = _field(entry, "sign", "Sign")
    sign = canonical_sign(raw_sign) if isinstance(raw_sign, str) else None
    explicit = _to_float(
        _field(entry, "absolute_degree", "absoluteDegree", "AbsoluteDegree"), body
    )
    degree = _to_float(_field(entry, "degree", "Degree"), body)

    if sign is None:
        # Unknown or missing sign: skipped unless the absolute longitude
        # alone pins the placement down.
        if explicit is None:
            return None
        longitude = explicit % 360.0
        return Placement(body, ZODIAC_SIGNS[int(longitude // 30) % 12], longitude)

    if explicit is not None:
        return Placement(body, sign, explicit % 360.0)
    return Placement(body, sign, absolute_degree(sign, degree))


def _placements_from_mapping(container: Any) -> dict[str, Placement]:
    if not isinstance(container, Mapping):
        raise CalculatorFailure("attribute", "placements must be an object")
    parsed: dict[str, Placement] = {}
    for key, entry in container.items():
        body = _BODY_LOOKUP.get(str(key).strip().lower())
        if body is None:
            continue
        placement = _placement(body, entry)
        if placement is not None:
            parsed[body] = placement
    return parsed


def _placements_from_planets(planets: Any) -> dict[str, Placement]:
    if not isinstance(planets, list):
        raise CalculatorFailure("attribute", "chartData.planets must be a list")
    parsed: dict[str, Placement] = {}
    for entry in planets:
        if not isinstance(entry, Mapping):
            raise CalculatorFailure("attribute", "planet entry is not an object")
        body = _BODY_LOOKUP.get(str(_field(entry, "name", "Name") or "").strip().lower())
        if body is None or body in parsed:
            continue
        placement = _placement(body, entry)
        if placement is not None:
            parsed[body] = placement
    return parsed


def parse_natal_chart(record: Optional[Mapping[str, Any]]) -> Optional[dict[str, Placement]]:
    """Extract core-body placements from any stored natal chart shape.

    Returns ``None`` when there is no usable chart (missing, empty, or no
    recognisable shape).  Raises ``CalculatorFailure`` for a record whose
    shape is recognised but whose contents are malformed.
    """
    if record is None:
        return None
    if not isinstance(record, Mapping) or "_raw" in record:
        raise CalculatorFailure("attribute", "natal chart is not an object")

    if "placements" in record:
        placements = _placements_from_mapping(record["placements"])
    elif "corePlacements" in record or "CorePlacements" in record:
        core = record.get("corePlacements")
        if core is None:
            core = record.get("CorePlacements")
        placements = _placements_from_mapping(core)
    elif isinstance(record.get("chartData"), Mapping) and "planets" in record["chartData"]:
        placements = _placements_from_planets(record["chartData"]["planets"])
    elif any(str(key).lower() in _BODY_LOOKUP for key in record):
        # Legacy charts stored the bodies at the top level
        placements = _placements_from_mapping(
            {k: v for k, v in record.items() if str(k).lower() in _BODY_LOOKUP}
        )
    else:
        return None

    return placements or None


# ---------------------------------------------------------------------------- #
# Calculator
# ---------------------------------------------------------------------------- #

def aspect_weight(body_a: str, body_b: str) -> float:
    pair = {body_a, body_b}
    if pair == {"Sun", "Moon"}:
        return 2.0
    if pair == {"Venus", "Mars"}:
        return 1.7
    if pair & _LUMINARIES:
        return 1.5
    return 1.0


def angular_separation(deg_a: float, deg_b: float) -> float:
    diff = abs(deg_a - deg_b) % 360.0
    return 360.0 - diff if diff > 180.0 else diff


def find_aspect(deg_a: float, deg_b: float) -> Optional[tuple[AspectType, float]]:
    """Return the matching aspect and its deviation from exact, if any."""
    separation = angular_separation(deg_a, deg_b)
    for aspect in ASPECTS:
        deviation = abs(separation - aspect.angle)
        if deviation <= aspect.orb:
            return aspect, deviation
    return None


class AttributeCompatibilityCalculator(SubScoreCalculator):
    """Aspect-based synastry over the core bodies of two natal charts."""

    name = "attribute"

    def extract(self, profile: UserProfile) -> Optional[dict[str, Any]]:
        return profile.attribute_data

    def compute(self, data_a: Any, data_b: Any) -> SubScoreResult:
        chart_a = parse_natal_chart(data_a)
        chart_b = parse_natal_chart(data_b)
        if not chart_a or not chart_b:
            return neutral_result("natal_chart_missing")

        harmonies: list[float] = []
        weights: list[float] = []
        aspects_found: list[dict[str, Any]] = []

        # Both directions of every cross pair are evaluated so that
        # compute(a, b) == compute(b, a).
        for body_a in CORE_BODIES:
            placement_a = chart_a.get(body_a)
            if placement_a is None:
                continue
            for body_b in CORE_BODIES:
                placement_b = chart_b.get(body_b)
                if placement_b is None:
                    continue
                match = find_aspect(placement_a.absolute_degree, placement_b.absolute_degree)
                if match is None:
                    continue
                aspect, deviation = match
                tightness = max(0.0, min(1.0, 1.0 - deviation / aspect.orb))
                weight = aspect_weight(body_a, body_b) * (1.0 + 0.5 * tightness)
                weights.append(weight)
                harmonies.append(aspect.harmony * weight)
                aspects_found.append({
                    "bodies": sorted((body_a, body_b)),
                    "aspect": aspect.name,
                    "orb": round(deviation, 2),
                })

        # fsum is exactly rounded, so the order of the terms cannot matter
        total_harmony = math.fsum(harmonies)
        total_weight = math.fsum(weights)
        if total_weight <= 0.0:
            score = NEUTRAL_SCORE
        else:
            score = clamp_score(NEUTRAL_SCORE + total_harmony / total_weight * 25.0)

        logger.debug(
            "attribute_compatibility_calculated",
            aspects=len(aspects_found),
            score=score,
        )

        return SubScoreResult(
            score=score,
            grade=letter_grade(score),
            available=True,
            details={
                "aspects": sorted(
                    aspects_found, key=lambda a: (a["bodies"], a["aspect"], a["orb"])
                ),
                "harmony_total": round(total_harmony, 4),
                "weight_total": round(total_weight, 4),
            },
        )
