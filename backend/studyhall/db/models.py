"""ORM models backing the local row store."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import Boolean, Date, DateTime, Float, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ..constants import (
    COURSE_PROGRESS_TABLE,
    DAILY_ACTIVITY_TABLE,
    LESSON_COMPLETIONS_TABLE,
    PROFILES_TABLE,
    STREAK_REWARDS_TABLE,
)
from .base import Base, TimestampMixin, _utcnow


def _uuid() -> str:
    return str(uuid.uuid4())


class ProfileModel(TimestampMixin, Base):
    __tablename__ = PROFILES_TABLE
    __table_args__ = (Index("ix_profiles_username", "username", unique=True),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    first_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    full_name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    username: Mapped[str | None] = mapped_column(String(128), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    role: Mapped[str] = mapped_column(String(16), default="student", nullable=False)
    bonus_point: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class DailyActivityModel(TimestampMixin, Base):
    __tablename__ = DAILY_ACTIVITY_TABLE
    __table_args__ = (Index("ix_daily_activity_user_date", "user_id", "activity_date"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    activity_date: Mapped[date] = mapped_column(Date, nullable=False)
    activity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    lessons_completed_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    quizzes_attempted_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class LessonCompletionModel(Base):
    __tablename__ = LESSON_COMPLETIONS_TABLE
    __table_args__ = (UniqueConstraint("user_id", "lesson_id", name="uq_lesson_completion_user_lesson"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    course_id: Mapped[str] = mapped_column(String(36), nullable=False)
    lesson_id: Mapped[str] = mapped_column(String(36), nullable=False)
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)


class CourseProgressModel(Base):
    __tablename__ = COURSE_PROGRESS_TABLE
    __table_args__ = (UniqueConstraint("user_id", "course_id", name="uq_course_progress_user_course"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    course_id: Mapped[str] = mapped_column(String(36), nullable=False)
    completed_lessons_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    progress_percentage: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    last_accessed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class StreakRewardModel(Base):
    __tablename__ = STREAK_REWARDS_TABLE

    user_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    last_rewarded_threshold: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )


MODELS_BY_TABLE: dict[str, type[Base]] = {
    model.__tablename__: model
    for model in (
        ProfileModel,
        DailyActivityModel,
        LessonCompletionModel,
        CourseProgressModel,
        StreakRewardModel,
    )
}

__all__ = [
    "CourseProgressModel",
    "DailyActivityModel",
    "LessonCompletionModel",
    "MODELS_BY_TABLE",
    "ProfileModel",
    "StreakRewardModel",
]
