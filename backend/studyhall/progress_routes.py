"""Progress endpoints scoped to the signed-in principal."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from .errors import DirectoryError
from .progress import CourseProgress, DashboardStats, longest_streak
from .runtime import StudyhallRuntime, get_runtime

router = APIRouter(prefix="/api/progress", tags=["progress"])
logger = logging.getLogger(__name__)


class LessonCompletionRequest(BaseModel):
    course_id: str = Field(..., min_length=1)
    lesson_id: str = Field(..., min_length=1)
    total_lessons: int = Field(..., ge=0)


class StreakRewardPayload(BaseModel):
    streak: int
    threshold: Optional[int] = None
    points_awarded: int = 0
    new_balance: Optional[int] = None


class LessonCompletionPayload(BaseModel):
    newly_completed: bool
    progress: CourseProgress
    bonus_balance: Optional[int] = None
    streak_reward: Optional[StreakRewardPayload] = None


class StreakPayload(BaseModel):
    current: int
    longest: int
    points_awarded: int = 0


def require_user_id(runtime: StudyhallRuntime = Depends(get_runtime)) -> str:
    state = runtime.sync.get_state()
    if not state.is_ready:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Auth state is not ready yet.")
    if state.user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Sign in required.")
    return state.user_id


def _unavailable(exc: DirectoryError) -> HTTPException:
    logger.warning("Progress request failed: %s", exc)
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=exc.message)


@router.get("/dashboard", response_model=DashboardStats)
async def read_dashboard(
    user_id: str = Depends(require_user_id),
    runtime: StudyhallRuntime = Depends(get_runtime),
) -> DashboardStats:
    try:
        return await runtime.progress.dashboard(user_id)
    except DirectoryError as exc:
        raise _unavailable(exc) from exc


@router.get("/streak", response_model=StreakPayload)
async def read_streak(
    user_id: str = Depends(require_user_id),
    runtime: StudyhallRuntime = Depends(get_runtime),
) -> StreakPayload:
    reward = await runtime.progress.check_streak_reward(user_id)
    try:
        dates = await runtime.progress.activity_dates(user_id)
        current = await runtime.progress.streak(user_id)
    except DirectoryError as exc:
        raise _unavailable(exc) from exc
    return StreakPayload(current=current, longest=longest_streak(dates), points_awarded=reward.points_awarded)


@router.post("/lessons/complete", response_model=LessonCompletionPayload)
async def complete_lesson(
    request: LessonCompletionRequest,
    user_id: str = Depends(require_user_id),
    runtime: StudyhallRuntime = Depends(get_runtime),
) -> LessonCompletionPayload:
    try:
        outcome = await runtime.progress.mark_lesson_complete(
            user_id, request.course_id, request.lesson_id, request.total_lessons
        )
    except DirectoryError as exc:
        raise _unavailable(exc) from exc

    reward = outcome.streak_reward
    return LessonCompletionPayload(
        newly_completed=outcome.newly_completed,
        progress=outcome.progress,
        bonus_balance=outcome.bonus_balance,
        streak_reward=(
            StreakRewardPayload(
                streak=reward.streak,
                threshold=reward.threshold,
                points_awarded=reward.points_awarded,
                new_balance=reward.new_balance,
            )
            if reward is not None
            else None
        ),
    )


__all__ = ["LessonCompletionRequest", "require_user_id", "router"]
