"""Profiles, activity log, lesson completions, course progress and streak reward markers."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "20261019_01_studyhall_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "profiles",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("first_name", sa.String(length=128), nullable=True),
        sa.Column("last_name", sa.String(length=128), nullable=True),
        sa.Column("full_name", sa.String(length=256), nullable=True),
        sa.Column("username", sa.String(length=128), nullable=True),
        sa.Column("avatar_url", sa.String(length=1024), nullable=True),
        sa.Column("role", sa.String(length=16), nullable=False, server_default="student"),
        sa.Column("bonus_point", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )
    op.create_index("ix_profiles_username", "profiles", ["username"], unique=True)

    op.create_table(
        "user_daily_activity",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("activity_date", sa.Date(), nullable=False),
        sa.Column("activity_type", sa.String(length=32), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("lessons_completed_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("quizzes_attempted_count", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )
    op.create_index("ix_daily_activity_user_date", "user_daily_activity", ["user_id", "activity_date"])

    op.create_table(
        "user_lessons_completion",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("course_id", sa.String(length=36), nullable=False),
        sa.Column("lesson_id", sa.String(length=36), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.UniqueConstraint("user_id", "lesson_id", name="uq_lesson_completion_user_lesson"),
    )
    op.create_index("ix_user_lessons_completion_user_id", "user_lessons_completion", ["user_id"])

    op.create_table(
        "user_course_progress",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("course_id", sa.String(length=36), nullable=False),
        sa.Column("completed_lessons_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("progress_percentage", sa.Float(), nullable=False, server_default="0"),
        sa.Column("is_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("started_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("last_accessed_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("user_id", "course_id", name="uq_course_progress_user_course"),
    )
    op.create_index("ix_user_course_progress_user_id", "user_course_progress", ["user_id"])

    op.create_table(
        "user_streak_rewards",
        sa.Column("user_id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("last_rewarded_threshold", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("user_streak_rewards")
    op.drop_index("ix_user_course_progress_user_id", table_name="user_course_progress")
    op.drop_table("user_course_progress")
    op.drop_index("ix_user_lessons_completion_user_id", table_name="user_lessons_completion")
    op.drop_table("user_lessons_completion")
    op.drop_index("ix_daily_activity_user_date", table_name="user_daily_activity")
    op.drop_table("user_daily_activity")
    op.drop_index("ix_profiles_username", table_name="profiles")
    op.drop_table("profiles")
