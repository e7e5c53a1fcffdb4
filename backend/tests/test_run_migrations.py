from __future__ import annotations

import pytest
from alembic.config import Config

from scripts import run_migrations as runner


def test_load_config_substitutes_env_url(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STUDYHALL_DATABASE_URL", "sqlite:///studyhall.sqlite")
    config = runner.load_config(str(runner.BACKEND_ROOT / "alembic.ini"))
    assert config.get_main_option("sqlalchemy.url") == "sqlite:///studyhall.sqlite"
    assert config.get_main_option("script_location").endswith("alembic")


def test_load_config_requires_database_url(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("STUDYHALL_DATABASE_URL", raising=False)
    with pytest.raises(RuntimeError):
        runner.load_config(str(runner.BACKEND_ROOT / "alembic.ini"))


def test_wait_for_database_succeeds_with_sqlite(tmp_path) -> None:
    runner.wait_for_database(f"sqlite:///{tmp_path / 'ready.sqlite'}", timeout=2, poll_interval=0.1)


def test_wait_for_database_times_out(monkeypatch: pytest.MonkeyPatch) -> None:
    class UnreachableEngine:
        def connect(self) -> None:
            raise runner.OperationalError("SELECT 1", {}, Exception("connection refused"))

        def dispose(self) -> None:
            pass

    monkeypatch.setattr(runner, "create_engine", lambda *_, **__: UnreachableEngine())
    monkeypatch.setattr(runner.time, "sleep", lambda _: None)
    with pytest.raises(RuntimeError, match="did not become ready"):
        runner.wait_for_database("postgresql://example", timeout=0, poll_interval=0)


def test_run_migrations_waits_for_database_first(monkeypatch: pytest.MonkeyPatch) -> None:
    config = Config()
    config.set_main_option("sqlalchemy.url", "sqlite://")
    recorded: dict[str, object] = {}

    monkeypatch.setattr(runner, "wait_for_database", lambda url, **kwargs: recorded.update(url=url, **kwargs))
    monkeypatch.setattr(runner.command, "upgrade", lambda cfg, revision: recorded.update(revision=revision))

    runner.run_migrations(config, "head", timeout=5, poll_interval=0.1)

    assert recorded == {"url": "sqlite://", "timeout": 5, "poll_interval": 0.1, "revision": "head"}


def test_migrations_build_schema_on_sqlite(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    from sqlalchemy import create_engine, inspect

    url = f"sqlite:///{tmp_path / 'migrated.sqlite'}"
    monkeypatch.setenv("STUDYHALL_DATABASE_URL", url)
    monkeypatch.chdir(runner.BACKEND_ROOT)
    config = runner.load_config(str(runner.BACKEND_ROOT / "alembic.ini"))

    runner.run_migrations(config, "head", timeout=2, poll_interval=0.1)

    engine = create_engine(url)
    try:
        tables = set(inspect(engine).get_table_names())
    finally:
        engine.dispose()
    assert {
        "profiles",
        "user_daily_activity",
        "user_lessons_completion",
        "user_course_progress",
        "user_streak_rewards",
    } <= tables
