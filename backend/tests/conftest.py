from __future__ import annotations

import random
from typing import Iterator

import pytest

from studyhall.activity import ActivityRecorder
from studyhall.config import get_settings
from studyhall.db.session import build_engine, build_session_factory, create_schema
from studyhall.identity import IdentityResolver
from studyhall.repositories.rows import SqlRowStore
from studyhall.telemetry import clear_listeners
from support import TODAY, FakeDirectory


@pytest.fixture(autouse=True)
def _isolated_settings() -> Iterator[None]:
    get_settings.cache_clear()
    clear_listeners()
    yield
    get_settings.cache_clear()
    clear_listeners()


@pytest.fixture
def rows(tmp_path) -> Iterator[SqlRowStore]:
    engine = build_engine(f"sqlite:///{tmp_path / 'studyhall.sqlite'}")
    create_schema(engine)
    yield SqlRowStore(build_session_factory(engine))
    engine.dispose()


@pytest.fixture
def directory(rows: SqlRowStore) -> FakeDirectory:
    return FakeDirectory(rows)


@pytest.fixture
def recorder(directory: FakeDirectory) -> ActivityRecorder:
    return ActivityRecorder(directory, today=lambda: TODAY)


@pytest.fixture
def resolver(directory: FakeDirectory, recorder: ActivityRecorder) -> IdentityResolver:
    return IdentityResolver(directory, recorder, fetch_timeout=5.0, rng=random.Random(7))
