"""
Stellr Matching — Error taxonomy.

Only ``NotFound``, ``InvalidArgument`` and ``TransientStoreError`` cross the
ranking / compatibility boundary.  ``CalculatorFailure`` is raised inside a
sub-score calculator and absorbed by the aggregator.
"""

from __future__ import annotations


class MatchingError(Exception):
    """Base exception for matching-core errors."""

    pass


class NotFound(MatchingError):
    """The viewer or an explicitly requested profile does not exist."""

    def __init__(self, resource: str, resource_id: str) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} {resource_id!r} not found")


class InvalidArgument(MatchingError):
    """Malformed pagination or filter parameters."""

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


class TransientStoreError(MatchingError):
    """Profile store or cache temporarily unavailable.  Safe to retry."""

    def __init__(self, store: str, detail: str = "") -> None:
        self.store = store
        self.detail = detail
        super().__init__(f"{store} unavailable" + (f": {detail}" if detail else ""))


class CalculatorFailure(MatchingError):
    """A sub-score calculator could not process one user's data."""

    def __init__(self, calculator: str, reason: str) -> None:
        self.calculator = calculator
        self.reason = reason
        super().__init__(f"{calculator} failed: {reason}")
