from __future__ import annotations

import asyncio
import random
import re

from support import TODAY, FakeDirectory
from studyhall.activity import ActivityRecorder
from studyhall.identity import IdentityResolver, generate_username
from studyhall.models import Principal, Role


def _principal(user_id: str = "user-a", **kwargs) -> Principal:
    return Principal(id=user_id, email=f"{user_id}@example.com", **kwargs)


def test_generate_username_from_names() -> None:
    username = generate_username("Ada", "Love lace", "ada@example.com", random.Random(1))
    assert re.fullmatch(r"adalovelace\d{1,4}", username)


def test_generate_username_falls_back_to_email_then_default() -> None:
    assert re.fullmatch(r"grace\.hopper\d{1,4}", generate_username(None, "  ", "Grace.Hopper@example.com"))
    assert re.fullmatch(r"user\d{1,4}", generate_username(None, None, None))


async def test_role_chain_prefers_app_metadata(resolver: IdentityResolver) -> None:
    principal = _principal(app_metadata={"role": "admin"}, user_metadata={"role": "student"})
    assert await resolver.resolve_role(principal) is Role.ADMIN


async def test_role_chain_uses_user_metadata_before_store(resolver: IdentityResolver, directory: FakeDirectory) -> None:
    await directory.rows.insert_row("profiles", {"id": "user-a", "role": "student"})
    principal = _principal(app_metadata={"role": "superuser"}, user_metadata={"role": "ADMIN"})
    assert await resolver.resolve_role(principal) is Role.ADMIN


async def test_role_chain_reads_profile_store_last(resolver: IdentityResolver, directory: FakeDirectory) -> None:
    await directory.rows.insert_row("profiles", {"id": "user-a", "role": "admin"})
    assert await resolver.resolve_role(_principal()) is Role.ADMIN


async def test_role_chain_defaults_to_student(resolver: IdentityResolver) -> None:
    assert await resolver.resolve_role(_principal()) is Role.STUDENT


async def test_first_resolution_creates_student_profile(resolver: IdentityResolver, directory: FakeDirectory) -> None:
    principal = _principal(user_metadata={"first_name": "Ada", "last_name": "Lovelace", "role": "admin"})
    resolution = await resolver.resolve(principal)

    assert resolution.created is True
    assert resolution.role is Role.STUDENT
    assert resolution.profile is not None
    assert re.fullmatch(r"adalovelace\d{1,4}", resolution.profile.username or "")
    assert resolution.profile.full_name == "Ada Lovelace"
    stored = await directory.rows.read_row("profiles", {"id": "user-a"})
    assert stored.row is not None and stored.row["role"] == "student"


async def test_stored_profile_role_wins(resolver: IdentityResolver, directory: FakeDirectory) -> None:
    await directory.rows.insert_row("profiles", {"id": "user-a", "role": "admin", "username": "ada"})
    resolution = await resolver.resolve(_principal(user_metadata={"role": "student"}))
    assert resolution.created is False
    assert resolution.role is Role.ADMIN
    assert resolution.profile is not None and resolution.profile.username == "ada"


async def test_profile_timeout_yields_no_profile(directory: FakeDirectory, recorder: ActivityRecorder) -> None:
    directory.gate("user-a")
    resolver = IdentityResolver(directory, recorder, fetch_timeout=0.05)

    resolution = await resolver.resolve(_principal(user_metadata={"role": "admin"}))

    assert resolution.profile is None
    assert resolution.role is Role.ADMIN
    assert resolution.created is False
    assert (await directory.rows.read_row("profiles", {"id": "user-a"})).not_found
    await resolver.drain()


async def test_profile_insert_failure_is_not_fatal(resolver: IdentityResolver, directory: FakeDirectory) -> None:
    directory.failing_writes.add("profiles")
    resolution = await resolver.resolve(_principal())

    assert resolution.role is Role.STUDENT
    assert resolution.profile is not None and resolution.profile.id == "user-a"
    assert (await directory.rows.read_row("profiles", {"id": "user-a"})).not_found


async def test_resolution_records_login_activity(resolver: IdentityResolver, directory: FakeDirectory) -> None:
    await resolver.resolve(_principal())
    await resolver.drain()

    result = await directory.rows.select_rows("user_daily_activity", {"user_id": "user-a"})
    assert [row["activity_type"] for row in result.rows] == ["login"]
    assert result.rows[0]["activity_date"] == TODAY
    assert result.rows[0]["duration_minutes"] == 0


async def test_login_recording_failure_does_not_affect_resolution(
    resolver: IdentityResolver, directory: FakeDirectory
) -> None:
    directory.failing_writes.add("user_daily_activity")
    resolution = await resolver.resolve(_principal())
    await resolver.drain()
    assert resolution.profile is not None


async def test_stalled_store_holds_resolution_for_one_bound(directory: FakeDirectory, recorder: ActivityRecorder) -> None:
    directory.gate("user-a")
    resolver = IdentityResolver(directory, recorder, fetch_timeout=0.3)
    loop = asyncio.get_running_loop()

    started = loop.time()
    resolution = await resolver.resolve(_principal())
    elapsed = loop.time() - started

    assert resolution.profile is None
    assert resolution.role is Role.STUDENT
    assert elapsed < 0.45
    await resolver.drain()


async def test_hung_profile_write_returns_unsaved_profile(directory: FakeDirectory, recorder: ActivityRecorder) -> None:
    directory.hanging_writes.add("profiles")
    resolver = IdentityResolver(directory, recorder, fetch_timeout=0.2)
    loop = asyncio.get_running_loop()

    started = loop.time()
    resolution = await resolver.resolve(_principal(user_metadata={"first_name": "Ada"}))
    elapsed = loop.time() - started

    assert resolution.role is Role.STUDENT
    assert resolution.profile is not None and resolution.profile.id == "user-a"
    assert elapsed < 0.35
    assert (await directory.rows.read_row("profiles", {"id": "user-a"})).not_found
    await resolver.drain()


async def test_resolution_reads_profile_row_once(directory: FakeDirectory, resolver: IdentityResolver) -> None:
    await directory.rows.insert_row("profiles", {"id": "user-a", "role": "admin"})
    reads = []
    original = directory.read_row

    async def counting_read(table, filters):
        reads.append(table)
        return await original(table, filters)

    directory.read_row = counting_read  # type: ignore[method-assign]
    resolution = await resolver.resolve(_principal())
    await resolver.drain()

    assert resolution.role is Role.ADMIN
    assert reads.count("profiles") == 1
