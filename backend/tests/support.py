"""Test doubles shared by the suite: a scriptable directory and session builders."""

from __future__ import annotations

import asyncio
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Set

from studyhall.constants import TRANSIENT_CODE
from studyhall.directory import AuthEventHandler, Filters, Row, RowResult, RowsResult, SessionResult, Unsubscribe, WriteResult
from studyhall.models import ActionResult, AuthEvent, AuthEventKind, AuthSession, PasswordCredentials, Principal, SignUpRequest
from studyhall.repositories.rows import SqlRowStore

TODAY = date(2026, 10, 19)


def make_session(user_id: str, email: Optional[str] = None, **user_metadata: Any) -> AuthSession:
    principal = Principal(id=user_id, email=email or f"{user_id}@example.com", user_metadata=user_metadata)
    return AuthSession(
        user=principal,
        access_token=f"token-{user_id}",
        expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
    )


class FakeDirectory:
    """Scriptable directory: rows go to a real store, auth events are pushed by the test."""

    def __init__(self, rows: SqlRowStore) -> None:
        self.rows = rows
        self.session: Optional[AuthSession] = None
        self.session_error: Optional[str] = None
        self.session_fetches = 0
        self.handlers: List[AuthEventHandler] = []
        self.profile_gates: Dict[str, asyncio.Event] = {}
        self.failing_writes: Set[str] = set()
        self.hanging_writes: Set[str] = set()
        self.action_results: Dict[str, ActionResult] = {}

    # auth events
    def subscribe_to_auth_events(self, handler: AuthEventHandler) -> Unsubscribe:
        self.handlers.append(handler)
        handler(AuthEvent(kind=AuthEventKind.INITIAL_SESSION, session=self.session))

        def _unsubscribe() -> None:
            if handler in self.handlers:
                self.handlers.remove(handler)

        return _unsubscribe

    def emit(self, kind: AuthEventKind, session: Optional[AuthSession] = None) -> None:
        self.session = session
        event = AuthEvent(kind=kind, session=session)
        for handler in list(self.handlers):
            handler(event)

    def gate(self, user_id: str) -> asyncio.Event:
        self.profile_gates[user_id] = asyncio.Event()
        return self.profile_gates[user_id]

    async def get_current_session(self) -> SessionResult:
        self.session_fetches += 1
        await asyncio.sleep(0)
        if self.session_error:
            return SessionResult(error=self.session_error)
        return SessionResult(session=self.session)

    # credential exchange
    async def sign_in_with_password(self, credentials: PasswordCredentials) -> ActionResult:
        return self.action_results.get("sign_in", ActionResult())

    async def sign_up(self, request: SignUpRequest) -> ActionResult:
        return self.action_results.get("sign_up", ActionResult())

    async def sign_in_with_oauth(self, provider: str, redirect_to: Optional[str] = None) -> ActionResult:
        return self.action_results.get("oauth", ActionResult())

    async def sign_out(self) -> ActionResult:
        self.emit(AuthEventKind.SIGNED_OUT)
        return ActionResult()

    # rows
    async def read_row(self, table: str, filters: Filters) -> RowResult:
        gate = self.profile_gates.get(str(filters.get("id"))) if table == "profiles" else None
        if gate is not None:
            await gate.wait()
        return await self.rows.read_row(table, filters)

    async def select_rows(self, table: str, filters: Filters, order_by: Sequence[str] = ()) -> RowsResult:
        return await self.rows.select_rows(table, filters, order_by)

    async def insert_row(self, table: str, data: Row) -> WriteResult:
        if table in self.failing_writes:
            return WriteResult(error_code=TRANSIENT_CODE, error_message="connection reset")
        return await self.rows.insert_row(table, data)

    async def update_row(self, table: str, filters: Filters, data: Row) -> WriteResult:
        if table in self.failing_writes:
            return WriteResult(error_code=TRANSIENT_CODE, error_message="connection reset")
        return await self.rows.update_row(table, filters, data)

    async def upsert_row(self, table: str, data: Row, on_conflict: Sequence[str] = ("id",)) -> WriteResult:
        if table in self.hanging_writes:
            await asyncio.Event().wait()
        if table in self.failing_writes:
            return WriteResult(error_code=TRANSIENT_CODE, error_message="connection reset")
        return await self.rows.upsert_row(table, data, on_conflict)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout)
