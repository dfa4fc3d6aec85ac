"""
Stellr Matching — Swipe, block and cached compatibility models.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID as PgUUID
from sqlalchemy.orm import Mapped, mapped_column

from stellr.database import Base


class Swipe(Base):
    __tablename__ = "swipes"
    __table_args__ = (
        UniqueConstraint("swiper_id", "swiped_id", name="uq_swipe_pair"),
        CheckConstraint("decision IN ('like', 'pass')", name="ck_swipe_decision"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    swiper_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    swiped_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    decision: Mapped[str] = mapped_column(String(8), nullable=False, comment="like / pass")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<Swipe {self.swiper_id} -> {self.swiped_id} {self.decision!r}>"


class UserBlock(Base):
    __tablename__ = "user_blocks"
    __table_args__ = (
        UniqueConstraint("blocker_id", "blocked_id", name="uq_block_pair"),
        Index("ix_user_blocks_blocked_id", "blocked_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    blocker_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    blocked_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<UserBlock {self.blocker_id} x {self.blocked_id}>"


class CompatibilityScoreRecord(Base):
    """One cached score per unordered pair, stored with ``user_a_id < user_b_id``."""

    __tablename__ = "compatibility_scores"
    __table_args__ = (
        UniqueConstraint("user_a_id", "user_b_id", name="uq_compatibility_pair"),
        CheckConstraint('user_a_id COLLATE "C" < user_b_id COLLATE "C"', name="ck_compatibility_canonical_order"),
        Index("ix_compatibility_scores_calculated_at", "calculated_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_a_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    user_b_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    overall_score: Mapped[int] = mapped_column(Integer, nullable=False)
    grade: Mapped[str] = mapped_column(String(1), nullable=False)
    questionnaire_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    questionnaire_grade: Mapped[str | None] = mapped_column(String(1), nullable=True)
    attribute_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    attribute_grade: Mapped[str | None] = mapped_column(String(1), nullable=True)
    is_recommended: Mapped[bool] = mapped_column(Boolean, nullable=False)
    algorithm_version: Mapped[str] = mapped_column(String(32), nullable=False)
    details: Mapped[dict | None] = mapped_column(
        JSONB, nullable=True, comment="Per-calculator breakdown"
    )
    calculated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<CompatibilityScoreRecord {self.user_a_id} <-> {self.user_b_id} "
            f"score={self.overall_score} grade={self.grade}>"
        )
