"""
Stellr Matching — Zodiac helpers.

Sun-sign lookup from a birth date (tropical zodiac) and conversion of a
``(sign, degree-within-sign)`` placement to an absolute ecliptic degree.
"""

from __future__ import annotations

from datetime import date, datetime

ZODIAC_SIGNS: tuple[str, ...] = (
    "Aries", "Taurus", "Gemini", "Cancer", "Leo", "Virgo",
    "Libra", "Scorpio", "Sagittarius", "Capricorn", "Aquarius", "Pisces",
)

SIGN_OFFSETS: dict[str, float] = {
    sign.lower(): index * 30.0 for index, sign in enumerate(ZODIAC_SIGNS)
}

# (sign, first month, first day) in calendar order; each sign runs until the
# next entry starts.  Capricorn wraps the year boundary.
_SIGN_STARTS: list[tuple[str, int, int]] = [
    ("Capricorn", 1, 1),
    ("Aquarius", 1, 20),
    ("Pisces", 2, 19),
    ("Aries", 3, 21),
    ("Taurus", 4, 20),
    ("Gemini", 5, 21),
    ("Cancer", 6, 21),
    ("Leo", 7, 23),
    ("Virgo", 8, 23),
    ("Libra", 9, 23),
    ("Scorpio", 10, 23),
    ("Sagittarius", 11, 22),
    ("Capricorn", 12, 22),
]

# Filter values meaning "no zodiac restriction"
ANY_SIGN_VALUES = frozenset({"", "any", "all", "any sign"})


def sun_sign_for_date(value: date | datetime | str | None) -> str | None:
    """Return the tropical sun sign for a birth date, or None if unparseable.

    Accepts a ``date``/``datetime`` or an ISO ``YYYY-MM-DD`` string (a time
    component after the date is ignored).
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        value = value.date()
    elif isinstance(value, str):
        try:
            value = date.fromisoformat(value.strip()[:10])
        except ValueError:
            return None
    elif not isinstance(value, date):
        return None

    sign = _SIGN_STARTS[0][0]
    for name, month, day in _SIGN_STARTS:
        if (value.month, value.day) >= (month, day):
            sign = name
    return sign


def canonical_sign(value: str | None) -> str | None:
    """Title-case a known sign name; None for anything unrecognised."""
    if not value:
        return None
    key = value.strip().lower()
    if key not in SIGN_OFFSETS:
        return None
    return ZODIAC_SIGNS[int(SIGN_OFFSETS[key] // 30)]


def is_any_sign(value: str | None) -> bool:
    return value is None or value.strip().lower() in ANY_SIGN_VALUES


def absolute_degree(sign: str, degree: float | None) -> float:
    """Absolute ecliptic longitude in ``[0, 360)`` for a sign placement.

    Raises ``ValueError`` for an unknown sign.  ``degree`` is clamped to the
    ``[0, 30]`` range of a single sign.
    """
    offset = SIGN_OFFSETS.get(sign.strip().lower())
    if offset is None:
        raise ValueError(f"Unknown zodiac sign {sign!r}")
    within = max(0.0, min(30.0, float(degree or 0.0)))
    return (offset + within) % 360.0
