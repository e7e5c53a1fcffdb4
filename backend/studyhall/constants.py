"""Shared table names and directory error codes."""

PROFILES_TABLE = "profiles"
DAILY_ACTIVITY_TABLE = "user_daily_activity"
LESSON_COMPLETIONS_TABLE = "user_lessons_completion"
COURSE_PROGRESS_TABLE = "user_course_progress"
STREAK_REWARDS_TABLE = "user_streak_rewards"

# Result codes reported by the remote directory. These mirror the codes the hosted
# PostgREST/Postgres stack returns so a remote client can pass them through untouched.
NO_ROWS_CODE = "PGRST116"
DUPLICATE_KEY_CODE = "23505"
TRANSIENT_CODE = "08000"
TIMEOUT_CODE = "57014"

ANONYMOUS_USERNAME = "user"
