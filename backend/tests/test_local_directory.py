from __future__ import annotations

import random
from typing import List

import pytest

from studyhall.activity import ActivityRecorder
from studyhall.identity import IdentityResolver
from studyhall.local_directory import LocalDirectoryClient
from studyhall.models import AuthEvent, AuthEventKind, PasswordCredentials, Role, SignUpRequest
from studyhall.repositories.rows import SqlRowStore
from studyhall.session_sync import SessionSync


@pytest.fixture
def local(rows: SqlRowStore) -> LocalDirectoryClient:
    return LocalDirectoryClient(rows, bcrypt_rounds=4)


def _sign_up(email: str = "ada@example.com") -> SignUpRequest:
    return SignUpRequest(email=email, password="analytical", first_name="Ada", last_name="Lovelace")


async def test_sign_up_requires_separate_sign_in(local: LocalDirectoryClient) -> None:
    events: List[AuthEvent] = []
    local.subscribe_to_auth_events(events.append)

    assert (await local.sign_up(_sign_up())).ok
    assert (await local.sign_up(_sign_up())).error == "User already registered"
    assert [event.kind for event in events] == [AuthEventKind.INITIAL_SESSION]
    assert (await local.get_current_session()).session is None


async def test_password_sign_in_and_out_emit_events(local: LocalDirectoryClient) -> None:
    events: List[AuthEvent] = []
    await local.sign_up(_sign_up())
    unsubscribe = local.subscribe_to_auth_events(events.append)

    bad = await local.sign_in_with_password(PasswordCredentials(email="ada@example.com", password="wrong"))
    good = await local.sign_in_with_password(PasswordCredentials(email="ADA@example.com ", password="analytical"))
    session = (await local.get_current_session()).session
    await local.sign_out()
    unsubscribe()
    await local.sign_in_with_password(PasswordCredentials(email="ada@example.com", password="analytical"))

    assert bad.error == "Invalid login credentials"
    assert good.ok
    assert session is not None and session.user.user_metadata["first_name"] == "Ada"
    assert [event.kind for event in events] == [
        AuthEventKind.INITIAL_SESSION,
        AuthEventKind.SIGNED_IN,
        AuthEventKind.SIGNED_OUT,
    ]


async def test_oauth_requires_linked_identity(local: LocalDirectoryClient) -> None:
    await local.sign_up(_sign_up())
    assert not (await local.sign_in_with_oauth("github")).ok
    local.link_oauth_identity("GitHub", "ada@example.com")
    assert (await local.sign_in_with_oauth("github", redirect_to="http://localhost/cb")).ok


async def test_full_flow_through_session_sync(local: LocalDirectoryClient) -> None:
    recorder = ActivityRecorder(local)
    resolver = IdentityResolver(local, recorder, fetch_timeout=5.0, rng=random.Random(3))
    async with SessionSync(local, resolver) as sync:
        assert sync.get_state().is_ready and sync.get_state().principal is None

        await sync.sign_up(_sign_up())
        result = await sync.sign_in(PasswordCredentials(email="ada@example.com", password="analytical"))
        state = await sync.settle()

        assert result.ok
        assert state.is_authenticated
        assert state.role is Role.STUDENT
        assert state.profile is not None and state.profile.first_name == "Ada"
        assert state.profile.username is not None and state.profile.username.startswith("adalovelace")

        await local.update_user({"avatar_url": "https://example.com/ada.png"})
        updated = await sync.settle()
        assert updated.principal is not None
        assert updated.principal.user_metadata["avatar_url"] == "https://example.com/ada.png"
        assert updated.profile is not None
        assert updated.profile.username == state.profile.username

        await local.delete_user()
        cleared = await sync.settle()
        assert cleared.principal is None and cleared.is_ready
