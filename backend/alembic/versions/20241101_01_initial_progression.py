"""Initial progression persistence schema."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "20241101_01_initial_progression"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "learners",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("xp", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("coins", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("level", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("streak", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("friend_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("tournament_wins", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("power_ups", sa.JSON(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_learners_user_id", "learners", ["user_id"], unique=True)

    op.create_table(
        "learner_badges",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("learner_id", sa.String(length=36), sa.ForeignKey("learners.id", ondelete="CASCADE"), nullable=False),
        sa.Column("badge_id", sa.String(length=128), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("rarity", sa.String(length=16), nullable=False, server_default="common"),
        sa.Column("source", sa.String(length=16), nullable=False, server_default="criteria"),
        sa.Column("rewards", sa.JSON(), nullable=False),
        sa.Column("earned_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.UniqueConstraint("learner_id", "badge_id", name="uq_learner_badge"),
    )
    op.create_index("ix_learner_badges_learner", "learner_badges", ["learner_id"])

    op.create_table(
        "track_definitions",
        sa.Column("track_id", sa.String(length=128), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("modules", sa.JSON(), nullable=False),
    )

    op.create_table(
        "badge_definitions",
        sa.Column("badge_id", sa.String(length=128), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
    )

    op.create_table(
        "track_progress",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("track_id", sa.String(length=128), nullable=False),
        sa.Column("completed_modules", sa.JSON(), nullable=False),
        sa.Column("unlocked_modules", sa.JSON(), nullable=False),
        sa.Column("completed_sub_modules", sa.JSON(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("last_accessed", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("user_id", "track_id", name="uq_track_progress_user_track"),
    )
    op.create_index("ix_track_progress_user", "track_progress", ["user_id"])

    op.create_table(
        "quiz_attempts",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("quiz_id", sa.String(length=128), nullable=False),
        sa.Column("percentage", sa.Float(), nullable=False),
        sa.Column("time_taken_seconds", sa.Float(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    )
    op.create_index("ix_quiz_attempts_user_quiz", "quiz_attempts", ["user_id", "quiz_id"])

    op.create_table(
        "persistence_audit_events",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=128), nullable=True),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("actor", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    )
    op.create_index("ix_audit_events_user", "persistence_audit_events", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_audit_events_user", table_name="persistence_audit_events")
    op.drop_table("persistence_audit_events")
    op.drop_index("ix_quiz_attempts_user_quiz", table_name="quiz_attempts")
    op.drop_table("quiz_attempts")
    op.drop_index("ix_track_progress_user", table_name="track_progress")
    op.drop_table("track_progress")
    op.drop_table("badge_definitions")
    op.drop_table("track_definitions")
    op.drop_index("ix_learner_badges_learner", table_name="learner_badges")
    op.drop_table("learner_badges")
    op.drop_index("ix_learners_user_id", table_name="learners")
    op.drop_table("learners")
