"""Contracts for the remote directory: auth provider plus relational row store."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence, runtime_checkable

from .constants import DUPLICATE_KEY_CODE, NO_ROWS_CODE
from .errors import DirectoryError, classify
from .models import ActionResult, AuthEvent, AuthSession, PasswordCredentials, SignUpRequest

Row = Dict[str, Any]
Filters = Mapping[str, Any]
AuthEventHandler = Callable[[AuthEvent], None]
Unsubscribe = Callable[[], None]


@dataclass(frozen=True)
class SessionResult:
    session: Optional[AuthSession] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class RowResult:
    row: Optional[Row] = None
    error_code: Optional[str] = None
    error_message: str = ""

    @property
    def not_found(self) -> bool:
        return self.error_code == NO_ROWS_CODE

    @property
    def error(self) -> Optional[DirectoryError]:
        return classify(self.error_code, self.error_message)


@dataclass(frozen=True)
class RowsResult:
    rows: List[Row] = field(default_factory=list)
    error_code: Optional[str] = None
    error_message: str = ""

    @property
    def error(self) -> Optional[DirectoryError]:
        return classify(self.error_code, self.error_message)


@dataclass(frozen=True)
class WriteResult:
    rows: List[Row] = field(default_factory=list)
    count: int = 0
    error_code: Optional[str] = None
    error_message: str = ""

    @property
    def duplicate(self) -> bool:
        return self.error_code == DUPLICATE_KEY_CODE

    @property
    def error(self) -> Optional[DirectoryError]:
        return classify(self.error_code, self.error_message)


@runtime_checkable
class RowStore(Protocol):
    """Row-level access to the relational store.

    Filters map column names to values; a ``__lt``, ``__lte``, ``__gt``, ``__gte``
    or ``__in`` suffix selects a comparison. ``order_by`` entries prefixed with
    ``-`` sort descending.
    """

    async def read_row(self, table: str, filters: Filters) -> RowResult:  # pragma: no cover - protocol
        ...

    async def select_rows(
        self, table: str, filters: Filters, order_by: Sequence[str] = ()
    ) -> RowsResult:  # pragma: no cover - protocol
        ...

    async def insert_row(self, table: str, data: Row) -> WriteResult:  # pragma: no cover - protocol
        ...

    async def update_row(self, table: str, filters: Filters, data: Row) -> WriteResult:  # pragma: no cover
        ...

    async def upsert_row(
        self, table: str, data: Row, on_conflict: Sequence[str] = ("id",)
    ) -> WriteResult:  # pragma: no cover - protocol
        ...


@runtime_checkable
class AuthCapabilities(Protocol):
    """Credential exchange operations the sign-in surface depends on."""

    async def sign_in_with_password(self, credentials: PasswordCredentials) -> ActionResult:  # pragma: no cover
        ...

    async def sign_up(self, request: SignUpRequest) -> ActionResult:  # pragma: no cover
        ...

    async def sign_in_with_oauth(self, provider: str, redirect_to: Optional[str] = None) -> ActionResult:  # pragma: no cover
        ...

    async def sign_out(self) -> ActionResult:  # pragma: no cover
        ...


@runtime_checkable
class RemoteDirectoryClient(RowStore, AuthCapabilities, Protocol):
    async def get_current_session(self) -> SessionResult:  # pragma: no cover - protocol
        ...

    def subscribe_to_auth_events(self, handler: AuthEventHandler) -> Unsubscribe:  # pragma: no cover
        ...


_REQUIRED_OPERATIONS = (
    "get_current_session",
    "subscribe_to_auth_events",
    "read_row",
    "select_rows",
    "insert_row",
    "update_row",
    "upsert_row",
    "sign_in_with_password",
    "sign_up",
    "sign_in_with_oauth",
    "sign_out",
)


def require_capabilities(directory: object) -> RemoteDirectoryClient:
    """Fail fast when a directory object is missing any required operation."""
    missing = [name for name in _REQUIRED_OPERATIONS if not callable(getattr(directory, name, None))]
    if missing:
        raise TypeError(f"Directory client is missing required operations: {', '.join(missing)}")
    return directory  # type: ignore[return-value]


__all__ = [
    "AuthCapabilities",
    "AuthEventHandler",
    "Filters",
    "RemoteDirectoryClient",
    "Row",
    "RowResult",
    "RowStore",
    "RowsResult",
    "SessionResult",
    "Unsubscribe",
    "WriteResult",
    "require_capabilities",
]
