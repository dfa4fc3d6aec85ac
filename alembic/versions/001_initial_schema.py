"""Initial schema: profiles, swipes, user_blocks, compatibility_scores.

Revision ID: 001_initial
Revises:
Create Date: 2025-09-26 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── 1. profiles ─────────────────────────────────────────────────
    op.create_table(
        "profiles",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("display_name", sa.String(100), nullable=False, server_default=""),
        sa.Column("avatar_url", sa.String, nullable=True),
        sa.Column("bio", sa.Text, nullable=False, server_default=""),
        sa.Column("age", sa.Integer, nullable=True),
        sa.Column("gender", sa.String(32), nullable=True),
        sa.Column("birth_date", sa.Date, nullable=True),
        sa.Column(
            "zodiac_sign",
            sa.String(16),
            nullable=True,
            comment="Sun sign; derived from birth_date when NULL",
        ),
        sa.Column("latitude", sa.Float, nullable=True),
        sa.Column("longitude", sa.Float, nullable=True),
        sa.Column("onboarding_completed", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column(
            "gender_preference",
            postgresql.JSONB,
            nullable=True,
            comment="Array of gender labels; empty / 'any' means no restriction",
        ),
        sa.Column("min_age", sa.Integer, nullable=True),
        sa.Column("max_age", sa.Integer, nullable=True),
        sa.Column("max_distance_km", sa.Float, nullable=True),
        sa.Column("discovery_enabled", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("incognito_mode", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("activity_preferences", postgresql.JSONB, nullable=True),
        sa.Column(
            "questionnaire_responses",
            postgresql.JSONB,
            nullable=True,
            comment="Ordered answers, up to 25",
        ),
        sa.Column("natal_chart_data", postgresql.JSONB, nullable=True),
        sa.Column("scoring_inputs_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_premium", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("last_active", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_profiles_discovery",
        "profiles",
        ["onboarding_completed", "discovery_enabled", "incognito_mode"],
    )
    op.create_index("ix_profiles_zodiac_sign", "profiles", ["zodiac_sign"])
    op.create_index("ix_profiles_age", "profiles", ["age"])

    # ── 2. swipes ───────────────────────────────────────────────────
    op.create_table(
        "swipes",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "swiper_id",
            sa.String(64),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "swiped_id",
            sa.String(64),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("decision", sa.String(8), nullable=False, comment="like / pass"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint("swiper_id", "swiped_id", name="uq_swipe_pair"),
        sa.CheckConstraint("decision IN ('like', 'pass')", name="ck_swipe_decision"),
    )
    op.create_index("ix_swipes_swiper_id", "swipes", ["swiper_id"])

    # ── 3. user_blocks ──────────────────────────────────────────────
    op.create_table(
        "user_blocks",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "blocker_id",
            sa.String(64),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "blocked_id",
            sa.String(64),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint("blocker_id", "blocked_id", name="uq_block_pair"),
    )
    op.create_index("ix_user_blocks_blocker_id", "user_blocks", ["blocker_id"])
    op.create_index("ix_user_blocks_blocked_id", "user_blocks", ["blocked_id"])

    # ── 4. compatibility_scores ─────────────────────────────────────
    op.create_table(
        "compatibility_scores",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "user_a_id",
            sa.String(64),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "user_b_id",
            sa.String(64),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("overall_score", sa.Integer, nullable=False),
        sa.Column("grade", sa.String(1), nullable=False),
        sa.Column("questionnaire_score", sa.Integer, nullable=True),
        sa.Column("questionnaire_grade", sa.String(1), nullable=True),
        sa.Column("attribute_score", sa.Integer, nullable=True),
        sa.Column("attribute_grade", sa.String(1), nullable=True),
        sa.Column("is_recommended", sa.Boolean, nullable=False),
        sa.Column("algorithm_version", sa.String(32), nullable=False),
        sa.Column(
            "details",
            postgresql.JSONB,
            nullable=True,
            comment="Per-calculator breakdown",
        ),
        sa.Column("calculated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("user_a_id", "user_b_id", name="uq_compatibility_pair"),
        sa.CheckConstraint('user_a_id COLLATE "C" < user_b_id COLLATE "C"', name="ck_compatibility_canonical_order"),
    )
    op.create_index(
        "ix_compatibility_scores_calculated_at",
        "compatibility_scores",
        ["calculated_at"],
    )


def downgrade() -> None:
    # Drop in reverse order (children / dependents first).
    op.drop_index("ix_compatibility_scores_calculated_at", table_name="compatibility_scores")
    op.drop_table("compatibility_scores")

    op.drop_index("ix_user_blocks_blocked_id", table_name="user_blocks")
    op.drop_index("ix_user_blocks_blocker_id", table_name="user_blocks")
    op.drop_table("user_blocks")

    op.drop_index("ix_swipes_swiper_id", table_name="swipes")
    op.drop_table("swipes")

    op.drop_index("ix_profiles_age", table_name="profiles")
    op.drop_index("ix_profiles_zodiac_sign", table_name="profiles")
    op.drop_index("ix_profiles_discovery", table_name="profiles")
    op.drop_table("profiles")
