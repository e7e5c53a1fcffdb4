"""Derived progress: streaks, weekly activity, course completion and bonus rewards."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from pydantic import BaseModel, Field

from .activity import ActivityRecorder, local_today
from .config import get_settings
from .constants import (
    COURSE_PROGRESS_TABLE,
    DAILY_ACTIVITY_TABLE,
    LESSON_COMPLETIONS_TABLE,
    PROFILES_TABLE,
    STREAK_REWARDS_TABLE,
)
from .directory import RowStore
from .errors import DirectoryError
from .telemetry import emit_event

logger = logging.getLogger(__name__)


class LessonCompletion(BaseModel):
    user_id: str
    course_id: str
    lesson_id: str
    completed_at: datetime


class CourseProgress(BaseModel):
    user_id: str
    course_id: str
    completed_lessons_count: int = Field(default=0, ge=0)
    progress_percentage: float = Field(default=0.0, ge=0.0, le=100.0)
    is_completed: bool = False
    started_at: Optional[datetime] = None
    last_accessed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class DailyBucket(BaseModel):
    date: date
    label: str
    value: int = 0


class AchievementTier(BaseModel):
    min_points: int
    title: str
    description: str


ACHIEVEMENT_TIERS: Tuple[AchievementTier, ...] = (
    AchievementTier(min_points=0, title="Novice Learner", description="Just starting out on your learning journey."),
    AchievementTier(min_points=10, title="Apprentice Scholar", description="Building a solid foundation."),
    AchievementTier(min_points=50, title="Knowledge Seeker", description="A true quest for knowledge."),
    AchievementTier(min_points=100, title="Master Mind", description="Unlocking advanced insights."),
    AchievementTier(min_points=250, title="Grand Sage", description="A pillar of wisdom and inspiration."),
    AchievementTier(min_points=500, title="Tech Luminary", description="A beacon in the world of technology."),
)


class DashboardStats(BaseModel):
    completed_lessons: int = 0
    streak: int = 0
    bonus_points: int = 0
    tier: AchievementTier = Field(default_factory=lambda: ACHIEVEMENT_TIERS[0])
    streak_reward_points: int = 0
    weekly_activity: List[DailyBucket] = Field(default_factory=list)
    courses: List[CourseProgress] = Field(default_factory=list)


@dataclass(frozen=True)
class ProgressSnapshot:
    completed: int
    total: int
    percentage: float
    is_completed: bool


@dataclass(frozen=True)
class StreakRewardOutcome:
    streak: int
    threshold: Optional[int] = None
    points_awarded: int = 0
    new_balance: Optional[int] = None

    @property
    def granted(self) -> bool:
        return self.points_awarded > 0


@dataclass(frozen=True)
class LessonCompletionOutcome:
    newly_completed: bool
    progress: CourseProgress
    bonus_balance: Optional[int] = None
    streak_reward: Optional[StreakRewardOutcome] = None


# -- pure derivations --------------------------------------------------------


def as_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value[:10])
    raise TypeError(f"Cannot interpret {value!r} as a calendar date")


def current_streak(dates: Iterable[date], today: date) -> int:
    """Consecutive days with activity ending at ``today``; zero when today has none."""
    days = set(dates)
    streak = 0
    cursor = today
    while cursor in days:
        streak += 1
        cursor -= timedelta(days=1)
    return streak


def longest_streak(dates: Iterable[date]) -> int:
    longest = 0
    run = 0
    previous: Optional[date] = None
    for day in sorted(set(dates)):
        run = run + 1 if previous is not None and day == previous + timedelta(days=1) else 1
        longest = max(longest, run)
        previous = day
    return longest


def weekly_series(records: Iterable[Mapping[str, Any]], today: date) -> List[DailyBucket]:
    """Total minutes per day for the seven days ending ``today``; empty days contribute 0."""
    start = today - timedelta(days=6)
    totals = {start + timedelta(days=offset): 0 for offset in range(7)}
    for record in records:
        day = as_date(record["activity_date"])
        if day in totals:
            totals[day] += int(record.get("duration_minutes") or 0)
    return [DailyBucket(date=day, label=day.strftime("%a"), value=value) for day, value in totals.items()]


def compute_course_progress(completed: int, total: int) -> ProgressSnapshot:
    percentage = (100.0 * completed / total) if total > 0 else 0.0
    return ProgressSnapshot(
        completed=completed,
        total=total,
        percentage=min(percentage, 100.0),
        is_completed=total > 0 and completed == total,
    )


def thresholds_crossed(thresholds: Sequence[int], previous: int, streak: int) -> List[int]:
    return sorted(threshold for threshold in set(thresholds) if previous < threshold <= streak)


def current_tier(points: int, tiers: Sequence[AchievementTier] = ACHIEVEMENT_TIERS) -> AchievementTier:
    """Highest tier whose minimum is met; the lowest tier when none is."""
    ordered = sorted(tiers, key=lambda tier: tier.min_points)
    reached = [tier for tier in ordered if points >= tier.min_points]
    return reached[-1] if reached else ordered[0]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _raise_for(result: Any, action: str) -> None:
    if result.error_code:
        error = result.error or DirectoryError(result.error_message)
        logger.warning("%s failed: %s", action, error)
        raise error


# -- engine ------------------------------------------------------------------


class ProgressEngine:
    """Reads the activity and completion logs and writes course progress and rewards.

    Streaks are recomputed from the activity log on every call; the only persisted
    reward state is the per-user "last rewarded threshold" marker.
    """

    def __init__(
        self,
        rows: RowStore,
        recorder: ActivityRecorder,
        *,
        today: Callable[[], date] = local_today,
        now: Callable[[], datetime] = _utcnow,
        reward_thresholds: Optional[Sequence[int]] = None,
        reward_points: Optional[int] = None,
        lesson_bonus_points: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self._rows = rows
        self._recorder = recorder
        self._today = today
        self._now = now
        self.reward_thresholds = tuple(sorted(set(reward_thresholds or settings.streak_reward_thresholds)))
        self.reward_points = settings.streak_reward_points if reward_points is None else reward_points
        self.lesson_bonus_points = settings.lesson_bonus_points if lesson_bonus_points is None else lesson_bonus_points

    # -- read paths ------------------------------------------------------

    async def activity_dates(self, user_id: str) -> List[date]:
        result = await self._rows.select_rows(DAILY_ACTIVITY_TABLE, {"user_id": user_id}, order_by=("activity_date",))
        _raise_for(result, "Activity read")
        return sorted({as_date(row["activity_date"]) for row in result.rows})

    async def streak(self, user_id: str) -> int:
        return current_streak(await self.activity_dates(user_id), self._today())

    async def weekly_activity(self, user_id: str) -> List[DailyBucket]:
        today = self._today()
        result = await self._rows.select_rows(
            DAILY_ACTIVITY_TABLE,
            {"user_id": user_id, "activity_date__gte": today - timedelta(days=6)},
            order_by=("activity_date",),
        )
        _raise_for(result, "Weekly activity read")
        return weekly_series(result.rows, today)

    async def completed_lesson_ids(self, user_id: str, course_id: Optional[str] = None) -> Set[str]:
        filters = {"user_id": user_id}
        if course_id is not None:
            filters["course_id"] = course_id
        result = await self._rows.select_rows(LESSON_COMPLETIONS_TABLE, filters)
        _raise_for(result, "Lesson completion read")
        return {row["lesson_id"] for row in result.rows}

    async def course_progress(self, user_id: str, course_id: str) -> Optional[CourseProgress]:
        result = await self._rows.read_row(COURSE_PROGRESS_TABLE, {"user_id": user_id, "course_id": course_id})
        if result.not_found:
            return None
        _raise_for(result, "Course progress read")
        return CourseProgress.model_validate(result.row)

    async def bonus_points(self, user_id: str) -> int:
        result = await self._rows.read_row(PROFILES_TABLE, {"id": user_id})
        if result.not_found:
            return 0
        _raise_for(result, "Bonus point read")
        return int((result.row or {}).get("bonus_point") or 0)

    async def dashboard(self, user_id: str) -> DashboardStats:
        """Summarize progress for ``user_id``. Evaluates the streak reward first so the balance includes it."""
        reward = await self.check_streak_reward(user_id)
        completed = await self.completed_lesson_ids(user_id)
        courses = await self._rows.select_rows(
            COURSE_PROGRESS_TABLE, {"user_id": user_id}, order_by=("-last_accessed_at",)
        )
        _raise_for(courses, "Course progress list")
        points = await self.bonus_points(user_id)
        return DashboardStats(
            completed_lessons=len(completed),
            streak=await self.streak(user_id),
            bonus_points=points,
            tier=current_tier(points),
            streak_reward_points=reward.points_awarded,
            weekly_activity=await self.weekly_activity(user_id),
            courses=[CourseProgress.model_validate(row) for row in courses.rows],
        )

    # -- write paths -----------------------------------------------------

    async def update_course_progress(self, user_id: str, course_id: str, total_lessons: int) -> CourseProgress:
        """Recompute progress from the completion log and upsert it. Safe to repeat."""
        if total_lessons < 0:
            raise ValueError("total_lessons cannot be negative")
        completed = len(await self.completed_lesson_ids(user_id, course_id))
        snapshot = compute_course_progress(completed, total_lessons)
        existing = await self.course_progress(user_id, course_id)
        now = self._now()

        completed_at = existing.completed_at if existing else None
        if snapshot.is_completed and (existing is None or not existing.is_completed) and completed_at is None:
            completed_at = now

        progress = CourseProgress(
            user_id=user_id,
            course_id=course_id,
            completed_lessons_count=snapshot.completed,
            progress_percentage=snapshot.percentage,
            is_completed=snapshot.is_completed,
            started_at=existing.started_at if existing and existing.started_at else now,
            last_accessed_at=now,
            completed_at=completed_at,
        )
        changes = progress.model_dump(exclude={"user_id", "course_id", "started_at"})
        keys = {"user_id": user_id, "course_id": course_id}

        if existing is None:
            inserted = await self._rows.insert_row(COURSE_PROGRESS_TABLE, progress.model_dump())
            if not inserted.duplicate:
                _raise_for(inserted, "Course progress insert")
                logger.info("Course progress created for %s in %s: %.1f%%", user_id, course_id, snapshot.percentage)
                return progress
            logger.info("Course progress row appeared concurrently for %s in %s; updating", user_id, course_id)
            changes.pop("completed_at")

        updated = await self._rows.update_row(COURSE_PROGRESS_TABLE, keys, changes)
        _raise_for(updated, "Course progress update")
        logger.info("Course progress updated for %s in %s: %.1f%%", user_id, course_id, snapshot.percentage)
        return progress

    async def mark_lesson_complete(
        self, user_id: str, course_id: str, lesson_id: str, total_lessons: int
    ) -> LessonCompletionOutcome:
        if not (user_id and course_id and lesson_id):
            raise ValueError("user_id, course_id and lesson_id are required to mark a lesson complete")

        completion = LessonCompletion(user_id=user_id, course_id=course_id, lesson_id=lesson_id, completed_at=self._now())
        result = await self._rows.insert_row(LESSON_COMPLETIONS_TABLE, completion.model_dump())
        newly_completed = not result.duplicate
        bonus_balance: Optional[int] = None
        streak_reward: Optional[StreakRewardOutcome] = None

        if result.duplicate:
            logger.info("Lesson %s already complete for %s; recomputing progress", lesson_id, user_id)
        else:
            _raise_for(result, "Lesson completion insert")
            logger.info("Lesson %s marked complete for %s", lesson_id, user_id)
            await self._recorder.record(user_id, "lesson_completed", count=1)
            if self.lesson_bonus_points > 0:
                bonus_balance = await self.grant_bonus_points(user_id, self.lesson_bonus_points)
            streak_reward = await self.check_streak_reward(user_id)
            emit_event("lesson_completed", user_id=user_id, course_id=course_id, lesson_id=lesson_id)

        progress = await self.update_course_progress(user_id, course_id, total_lessons)
        return LessonCompletionOutcome(
            newly_completed=newly_completed,
            progress=progress,
            bonus_balance=bonus_balance,
            streak_reward=streak_reward,
        )

    async def grant_bonus_points(self, user_id: str, amount: int) -> Optional[int]:
        """Add ``amount`` to the profile balance; returns the new balance or ``None`` on failure."""
        if amount < 0:
            raise ValueError("Bonus point grants must be non-negative")
        try:
            current = await self.bonus_points(user_id)
            new_balance = current + amount
            result = await self._rows.update_row(PROFILES_TABLE, {"id": user_id}, {"bonus_point": new_balance})
            _raise_for(result, "Bonus point update")
            if result.count == 0:
                raise DirectoryError(f"No profile row for {user_id}")
        except DirectoryError as exc:
            logger.error("Failed to award %s points to %s: %s", amount, user_id, exc)
            return None
        logger.info("User %s awarded %s points. New total: %s", user_id, amount, new_balance)
        return new_balance

    async def check_streak_reward(self, user_id: str) -> StreakRewardOutcome:
        """Grant streak rewards for thresholds reached since the last grant, at most once each.

        The marker moves with a compare-and-set update, so two clients racing past the
        same threshold grant it only once.
        """
        try:
            streak = await self.streak(user_id)
            if not self.reward_thresholds or streak < self.reward_thresholds[0]:
                return StreakRewardOutcome(streak=streak)

            previous = await self._reward_marker(user_id)
            crossed = thresholds_crossed(self.reward_thresholds, previous, streak)
            if not crossed:
                return StreakRewardOutcome(streak=streak)

            target = crossed[-1]
            if not await self._move_marker(user_id, previous, target):
                logger.info("Streak reward for %s at %s already claimed elsewhere", user_id, target)
                return StreakRewardOutcome(streak=streak)

            points = self.reward_points * len(crossed)
            new_balance = await self.grant_bonus_points(user_id, points)
            if new_balance is None:
                await self._move_marker(user_id, target, previous)
                return StreakRewardOutcome(streak=streak)
        except DirectoryError as exc:
            logger.warning("Streak reward check failed for %s: %s", user_id, exc)
            return StreakRewardOutcome(streak=0)

        emit_event("streak_reward_granted", user_id=user_id, streak=streak, threshold=target, points=points)
        return StreakRewardOutcome(streak=streak, threshold=target, points_awarded=points, new_balance=new_balance)

    async def _reward_marker(self, user_id: str) -> int:
        result = await self._rows.read_row(STREAK_REWARDS_TABLE, {"user_id": user_id})
        if result.not_found:
            created = await self._rows.insert_row(
                STREAK_REWARDS_TABLE, {"user_id": user_id, "last_rewarded_threshold": 0}
            )
            if not created.duplicate:
                _raise_for(created, "Streak reward marker insert")
                return 0
            result = await self._rows.read_row(STREAK_REWARDS_TABLE, {"user_id": user_id})
        _raise_for(result, "Streak reward marker read")
        return int((result.row or {}).get("last_rewarded_threshold") or 0)

    async def _move_marker(self, user_id: str, expected: int, target: int) -> bool:
        result = await self._rows.update_row(
            STREAK_REWARDS_TABLE,
            {"user_id": user_id, "last_rewarded_threshold": expected},
            {"last_rewarded_threshold": target, "updated_at": self._now()},
        )
        _raise_for(result, "Streak reward marker update")
        return result.count == 1


__all__ = [
    "ACHIEVEMENT_TIERS",
    "AchievementTier",
    "CourseProgress",
    "DailyBucket",
    "DashboardStats",
    "LessonCompletion",
    "LessonCompletionOutcome",
    "ProgressEngine",
    "ProgressSnapshot",
    "StreakRewardOutcome",
    "as_date",
    "compute_course_progress",
    "current_streak",
    "current_tier",
    "longest_streak",
    "thresholds_crossed",
    "weekly_series",
]
