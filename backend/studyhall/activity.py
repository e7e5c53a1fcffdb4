"""Best-effort, day-bucketed activity log."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable, Literal, Optional

from pydantic import BaseModel, Field

from .constants import DAILY_ACTIVITY_TABLE
from .directory import RowStore

logger = logging.getLogger(__name__)

ActivityKind = Literal["login", "lesson_completed", "quiz_attempted"]

_COUNTER_COLUMNS = {
    "lesson_completed": "lessons_completed_count",
    "quiz_attempted": "quizzes_attempted_count",
}


class ActivityRecord(BaseModel):
    user_id: str
    activity_date: date
    activity_type: ActivityKind
    duration_minutes: int = Field(default=0, ge=0)
    lessons_completed_count: int = Field(default=0, ge=0)
    quizzes_attempted_count: int = Field(default=0, ge=0)


@dataclass(frozen=True)
class RecordResult:
    success: bool
    error: Optional[str] = None


def local_today() -> date:
    """Caller's local calendar day."""
    return datetime.now().astimezone().date()


class ActivityRecorder:
    """Appends one activity row per call. Same-day rows are kept and summed at read time."""

    def __init__(self, rows: RowStore, today: Callable[[], date] = local_today) -> None:
        self._rows = rows
        self._today = today

    def build_record(self, user_id: str, kind: ActivityKind, duration: int = 0, count: int = 1) -> ActivityRecord:
        counters = {}
        column = _COUNTER_COLUMNS.get(kind)
        if column is not None:
            counters[column] = max(count, 0)
        return ActivityRecord(
            user_id=user_id,
            activity_date=self._today(),
            activity_type=kind,
            duration_minutes=max(duration, 0),
            **counters,
        )

    async def record(self, user_id: str, kind: ActivityKind, duration: int = 0, count: int = 1) -> RecordResult:
        try:
            if not user_id:
                raise ValueError("User ID is required")
            record = self.build_record(user_id, kind, duration, count)
            now = datetime.now(timezone.utc)
            result = await self._rows.insert_row(
                DAILY_ACTIVITY_TABLE,
                {**record.model_dump(), "created_at": now, "updated_at": now},
            )
            if result.error_code:
                raise result.error or RuntimeError(result.error_message)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to record %s activity for %s: %s", kind, user_id or "<missing>", exc)
            return RecordResult(success=False, error=str(exc))
        logger.debug("Recorded %s activity for %s on %s", kind, user_id, record.activity_date)
        return RecordResult(success=True)


__all__ = ["ActivityKind", "ActivityRecord", "ActivityRecorder", "RecordResult", "local_today"]
