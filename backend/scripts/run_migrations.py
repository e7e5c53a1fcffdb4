"""Apply the studyhall row-store migrations once the database accepts connections."""

from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from pathlib import Path
from typing import Optional

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError, SQLAlchemyError

LOGGER = logging.getLogger("studyhall.migrations")
BACKEND_ROOT = Path(__file__).resolve().parent.parent
PLACEHOLDER_URL = "%(STUDYHALL_DATABASE_URL)s"


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Upgrade the studyhall schema.")
    parser.add_argument("--revision", default="head", help="Target revision (default: head).")
    parser.add_argument("--timeout", type=int, default=60, help="Seconds to wait for the database.")
    parser.add_argument("--poll-interval", type=float, default=2.0, help="Seconds between readiness probes.")
    parser.add_argument("--config", default=str(BACKEND_ROOT / "alembic.ini"), help="Path to alembic.ini.")
    return parser.parse_args(argv)


def load_config(config_path: str) -> Config:
    config = Config(config_path)
    config.set_main_option("script_location", str(BACKEND_ROOT / "alembic"))
    url = config.get_main_option("sqlalchemy.url")
    if not url or url == PLACEHOLDER_URL:
        env_url = os.getenv("STUDYHALL_DATABASE_URL")
        if not env_url:
            raise RuntimeError("STUDYHALL_DATABASE_URL must be set before running migrations.")
        config.set_main_option("sqlalchemy.url", env_url)
    return config


def wait_for_database(database_url: str, *, timeout: int, poll_interval: float) -> None:
    """Retry ``SELECT 1`` until it succeeds; non-connectivity errors abort immediately."""
    engine = create_engine(database_url, pool_pre_ping=True)
    deadline = time.monotonic() + timeout
    try:
        while True:
            try:
                with engine.connect() as connection:
                    connection.execute(text("SELECT 1"))
                LOGGER.info("Database is reachable.")
                return
            except OperationalError as exc:
                if time.monotonic() >= deadline:
                    raise RuntimeError("Database did not become ready in time.") from exc
                LOGGER.warning("Database not ready yet: %s", exc)
            except SQLAlchemyError as exc:
                raise RuntimeError(f"Database probe failed: {exc}") from exc
            time.sleep(poll_interval)
    finally:
        engine.dispose()


def run_migrations(config: Config, revision: str, *, timeout: int, poll_interval: float) -> None:
    database_url = config.get_main_option("sqlalchemy.url")
    if not database_url:
        raise RuntimeError("Alembic config has no sqlalchemy.url")
    wait_for_database(database_url, timeout=timeout, poll_interval=poll_interval)
    LOGGER.info("Upgrading schema to %s", revision)
    command.upgrade(config, revision)
    LOGGER.info("Migrations complete.")


def main(argv: Optional[list[str]] = None) -> int:
    from studyhall.logging_config import configure_logging

    configure_logging()
    args = parse_args(argv)
    try:
        run_migrations(
            load_config(args.config),
            args.revision,
            timeout=args.timeout,
            poll_interval=args.poll_interval,
        )
    except Exception:  # noqa: BLE001
        LOGGER.exception("Migration run failed")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
