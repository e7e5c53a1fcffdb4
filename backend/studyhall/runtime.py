"""Process-wide wiring of the client core for the local HTTP surface."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy import Engine

from .activity import ActivityRecorder
from .config import Settings, get_settings
from .db.session import build_engine, build_session_factory, create_schema
from .identity import IdentityResolver
from .local_directory import LocalDirectoryClient
from .progress import ProgressEngine
from .repositories.rows import SqlRowStore
from .session_sync import SessionSync

logger = logging.getLogger(__name__)


@dataclass
class StudyhallRuntime:
    settings: Settings
    engine: Engine
    directory: LocalDirectoryClient
    recorder: ActivityRecorder
    resolver: IdentityResolver
    sync: SessionSync
    progress: ProgressEngine

    async def close(self) -> None:
        await self.sync.close()
        self.engine.dispose()


_runtime: Optional[StudyhallRuntime] = None


async def start_runtime(settings: Optional[Settings] = None) -> StudyhallRuntime:
    """Build the container, create the schema and bootstrap the auth state."""
    global _runtime
    if _runtime is not None:
        return _runtime

    settings = settings or get_settings()
    if not settings.database_url:
        raise RuntimeError("STUDYHALL_DATABASE_URL must be configured before starting studyhall.")

    engine = build_engine(settings.database_url, settings)
    create_schema(engine)
    rows = SqlRowStore(build_session_factory(engine))
    directory = LocalDirectoryClient(
        rows,
        session_ttl=timedelta(minutes=settings.session_ttl_minutes),
        bcrypt_rounds=settings.bcrypt_rounds,
    )
    recorder = ActivityRecorder(directory)
    resolver = IdentityResolver(
        directory,
        recorder,
        fetch_timeout=settings.profile_fetch_timeout,
        default_avatar_url=settings.default_avatar_url,
    )
    sync = SessionSync(directory, resolver, oauth_redirect_url=settings.oauth_redirect_url)
    progress = ProgressEngine(
        directory,
        recorder,
        reward_thresholds=settings.streak_reward_thresholds,
        reward_points=settings.streak_reward_points,
        lesson_bonus_points=settings.lesson_bonus_points,
    )

    await sync.initialize()
    logger.info("Studyhall runtime ready (database=%s)", engine.url.render_as_string(hide_password=True))
    _runtime = StudyhallRuntime(
        settings=settings,
        engine=engine,
        directory=directory,
        recorder=recorder,
        resolver=resolver,
        sync=sync,
        progress=progress,
    )
    return _runtime


async def shutdown_runtime() -> None:
    global _runtime
    runtime, _runtime = _runtime, None
    if runtime is not None:
        await runtime.close()
        logger.info("Studyhall runtime stopped")


def get_runtime() -> StudyhallRuntime:
    if _runtime is None:
        raise RuntimeError("Studyhall runtime has not been started.")
    return _runtime


__all__ = ["StudyhallRuntime", "get_runtime", "shutdown_runtime", "start_runtime"]
