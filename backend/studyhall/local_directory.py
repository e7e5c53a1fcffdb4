"""In-process directory client for local runs and integration tests.

Accounts live in memory; profile and progress rows go through a
:class:`~studyhall.directory.RowStore` (SQL-backed by default).
"""

from __future__ import annotations

import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

import bcrypt

from .directory import AuthEventHandler, Filters, Row, RowResult, RowsResult, RowStore, SessionResult, Unsubscribe, WriteResult
from .models import (
    ActionResult,
    AuthEvent,
    AuthEventKind,
    AuthSession,
    PasswordCredentials,
    Principal,
    SignUpRequest,
)
from .repositories.rows import SqlRowStore

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TTL = timedelta(hours=1)


@dataclass
class _Account:
    principal: Principal
    password_hash: bytes


def _normalize_email(email: str) -> str:
    normalized = email.strip().lower()
    if not normalized:
        raise ValueError("Email cannot be empty.")
    return normalized


class LocalDirectoryClient:
    """Directory client holding accounts in memory and emitting auth events to subscribers."""

    def __init__(
        self,
        rows: Optional[RowStore] = None,
        *,
        session_ttl: timedelta = DEFAULT_SESSION_TTL,
        confirm_on_sign_up: bool = False,
        bcrypt_rounds: int = 12,
    ) -> None:
        self._rows: RowStore = rows or SqlRowStore()
        self._session_ttl = session_ttl
        self._confirm_on_sign_up = confirm_on_sign_up
        self._bcrypt_rounds = bcrypt_rounds
        self._accounts: Dict[str, _Account] = {}
        self._oauth_links: Dict[str, str] = {}
        self._session: Optional[AuthSession] = None
        self._handlers: List[AuthEventHandler] = []

    # -- auth events -----------------------------------------------------

    def subscribe_to_auth_events(self, handler: AuthEventHandler) -> Unsubscribe:
        self._handlers.append(handler)
        self._deliver(handler, AuthEvent(kind=AuthEventKind.INITIAL_SESSION, session=self._session))

        def _unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return _unsubscribe

    def _emit(self, kind: AuthEventKind) -> None:
        event = AuthEvent(kind=kind, session=self._session)
        for handler in list(self._handlers):
            self._deliver(handler, event)

    @staticmethod
    def _deliver(handler: AuthEventHandler, event: AuthEvent) -> None:
        try:
            handler(event)
        except Exception:  # noqa: BLE001
            logger.exception("Auth event handler failed for %s", event.kind.value)

    def _open_session(self, principal: Principal) -> AuthSession:
        self._session = AuthSession(
            user=principal,
            access_token=secrets.token_urlsafe(32),
            refresh_token=secrets.token_urlsafe(32),
            expires_at=datetime.now(timezone.utc) + self._session_ttl,
        )
        return self._session

    # -- session + credential exchange -----------------------------------

    async def get_current_session(self) -> SessionResult:
        session = self._session
        if session is not None and session.expires_at and session.expires_at <= datetime.now(timezone.utc):
            logger.info("Discarding expired session for %s", session.user.id)
            self._session = None
            return SessionResult()
        return SessionResult(session=session)

    async def sign_up(self, request: SignUpRequest) -> ActionResult:
        email = _normalize_email(request.email)
        if email in self._accounts:
            return ActionResult(error="User already registered")
        principal = Principal(id=str(uuid.uuid4()), email=email, user_metadata=request.user_metadata())
        password_hash = bcrypt.hashpw(request.password.encode("utf-8"), bcrypt.gensalt(rounds=self._bcrypt_rounds))
        self._accounts[email] = _Account(principal=principal, password_hash=password_hash)
        logger.info("Registered local account %s", principal.id)
        if self._confirm_on_sign_up:
            self._open_session(principal)
            self._emit(AuthEventKind.SIGNED_IN)
        return ActionResult()

    async def sign_in_with_password(self, credentials: PasswordCredentials) -> ActionResult:
        account = self._accounts.get(_normalize_email(credentials.email))
        if account is None or not bcrypt.checkpw(credentials.password.encode("utf-8"), account.password_hash):
            return ActionResult(error="Invalid login credentials")
        self._open_session(account.principal)
        self._emit(AuthEventKind.SIGNED_IN)
        return ActionResult()

    def link_oauth_identity(self, provider: str, email: str) -> None:
        """Associate an OAuth provider with an existing local account."""
        normalized = _normalize_email(email)
        if normalized not in self._accounts:
            raise ValueError(f"No local account for {email}")
        self._oauth_links[provider.strip().lower()] = normalized

    async def sign_in_with_oauth(self, provider: str, redirect_to: Optional[str] = None) -> ActionResult:
        email = self._oauth_links.get(provider.strip().lower())
        if email is None:
            return ActionResult(error=f"OAuth provider '{provider}' is not enabled")
        logger.debug("OAuth sign-in via %s (redirect=%s)", provider, redirect_to)
        self._open_session(self._accounts[email].principal)
        self._emit(AuthEventKind.SIGNED_IN)
        return ActionResult()

    async def sign_out(self) -> ActionResult:
        self._session = None
        self._emit(AuthEventKind.SIGNED_OUT)
        return ActionResult()

    async def refresh_session(self) -> ActionResult:
        if self._session is None:
            return ActionResult(error="Auth session missing")
        self._open_session(self._session.user)
        self._emit(AuthEventKind.TOKEN_REFRESHED)
        return ActionResult()

    async def update_user(self, metadata: Dict[str, Any]) -> ActionResult:
        """Merge metadata into the signed-in principal and announce the change."""
        if self._session is None:
            return ActionResult(error="Auth session missing")
        current = self._session.user
        email = _normalize_email(current.email or "")
        updated = current.model_copy(update={"user_metadata": {**current.user_metadata, **metadata}})
        self._accounts[email].principal = updated
        self._open_session(updated)
        self._emit(AuthEventKind.USER_UPDATED)
        return ActionResult()

    async def delete_user(self) -> ActionResult:
        if self._session is None:
            return ActionResult(error="Auth session missing")
        email = _normalize_email(self._session.user.email or "")
        self._accounts.pop(email, None)
        self._oauth_links = {key: value for key, value in self._oauth_links.items() if value != email}
        self._session = None
        self._emit(AuthEventKind.USER_DELETED)
        return ActionResult()

    # -- row store -------------------------------------------------------

    async def read_row(self, table: str, filters: Filters) -> RowResult:
        return await self._rows.read_row(table, filters)

    async def select_rows(self, table: str, filters: Filters, order_by: Sequence[str] = ()) -> RowsResult:
        return await self._rows.select_rows(table, filters, order_by)

    async def insert_row(self, table: str, data: Row) -> WriteResult:
        return await self._rows.insert_row(table, data)

    async def update_row(self, table: str, filters: Filters, data: Row) -> WriteResult:
        return await self._rows.update_row(table, filters, data)

    async def upsert_row(self, table: str, data: Row, on_conflict: Sequence[str] = ("id",)) -> WriteResult:
        return await self._rows.upsert_row(table, data, on_conflict)


__all__ = ["LocalDirectoryClient"]
