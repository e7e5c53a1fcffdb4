import os
from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: Optional[str] = Field(None, alias="STUDYHALL_DATABASE_URL")
    database_pool_size: int = Field(10, alias="STUDYHALL_DATABASE_POOL_SIZE")
    database_max_overflow: int = Field(10, alias="STUDYHALL_DATABASE_MAX_OVERFLOW")
    database_echo: bool = Field(False, alias="STUDYHALL_DATABASE_ECHO")
    profile_fetch_timeout: float = Field(15.0, gt=0, alias="STUDYHALL_PROFILE_FETCH_TIMEOUT")
    default_avatar_url: Optional[str] = Field(None, alias="STUDYHALL_DEFAULT_AVATAR_URL")
    lesson_bonus_points: int = Field(10, ge=0, alias="STUDYHALL_LESSON_BONUS_POINTS")
    streak_reward_thresholds: List[int] = Field(default_factory=lambda: [10], alias="STUDYHALL_STREAK_REWARD_THRESHOLDS")
    streak_reward_points: int = Field(50, ge=0, alias="STUDYHALL_STREAK_REWARD_POINTS")
    oauth_redirect_url: Optional[str] = Field(None, alias="STUDYHALL_OAUTH_REDIRECT_URL")
    session_ttl_minutes: int = Field(60, gt=0, alias="STUDYHALL_SESSION_TTL_MINUTES")
    bcrypt_rounds: int = Field(12, ge=4, le=31, alias="STUDYHALL_BCRYPT_ROUNDS")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field("INFO", alias="STUDYHALL_LOG_LEVEL")

    class Config:
        env_file = os.getenv("ENV_FILE", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    try:
        settings = Settings()  # type: ignore[arg-type]
        if any(threshold <= 0 for threshold in settings.streak_reward_thresholds):
            raise RuntimeError("Streak reward thresholds must be positive day counts.")
        return settings
    except ValidationError as exc:
        raise RuntimeError(f"Invalid studyhall configuration: {exc}") from exc
