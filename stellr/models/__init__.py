"""
Stellr Matching — ORM model registry.

Importing every model here ensures that Alembic (and any other tool that
inspects ``Base.metadata``) discovers all tables automatically.
"""

from stellr.models.profile import Profile
from stellr.models.match import CompatibilityScoreRecord, Swipe, UserBlock

__all__ = [
    "Profile",
    "Swipe",
    "UserBlock",
    "CompatibilityScoreRecord",
]
