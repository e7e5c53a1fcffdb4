"""Identity, session and auth-state models shared across the client core."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)


class Role(str, Enum):
    STUDENT = "student"
    ADMIN = "admin"

    @classmethod
    def parse(cls, value: Any) -> Optional["Role"]:
        """Return the matching role for a raw string, or ``None`` when unrecognized."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


class Principal(BaseModel):
    """Identity issued by the directory for the lifetime of a session."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    email: Optional[str] = None
    app_metadata: Dict[str, Any] = Field(default_factory=dict)
    user_metadata: Dict[str, Any] = Field(default_factory=dict)


class AuthSession(BaseModel):
    model_config = ConfigDict(frozen=True)

    user: Principal
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None


class Profile(BaseModel):
    """Application-owned record extending a principal with display and gamification fields."""

    id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    full_name: Optional[str] = None
    username: Optional[str] = None
    avatar_url: Optional[str] = None
    role: Role = Role.STUDENT
    bonus_point: int = Field(default=0, ge=0)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("role", mode="before")
    @classmethod
    def _coerce_role(cls, value: Any) -> Role:
        role = Role.parse(value)
        if role is None:
            if value is not None:
                logger.warning("Unrecognized profile role %r; using student", value)
            return Role.STUDENT
        return role

    @field_validator("bonus_point", mode="before")
    @classmethod
    def _coerce_bonus(cls, value: Any) -> int:
        return 0 if value is None else value

    def display_name(self, email: Optional[str] = None) -> str:
        if self.username:
            return self.username
        if self.full_name:
            return self.full_name
        if email and "@" in email:
            return email.split("@", 1)[0]
        return "User"


class SynchronizedAuthState(BaseModel):
    """Immutable snapshot of who is signed in. Replaced wholesale on every transition."""

    model_config = ConfigDict(frozen=True)

    principal: Optional[Principal] = None
    session: Optional[AuthSession] = None
    profile: Optional[Profile] = None
    role: Optional[Role] = None
    is_ready: bool = False
    is_authenticating: bool = False

    @property
    def user_id(self) -> Optional[str]:
        return self.principal.id if self.principal else None

    @property
    def is_authenticated(self) -> bool:
        return self.is_ready and self.principal is not None


class AuthEventKind(str, Enum):
    INITIAL_SESSION = "initial-session"
    SIGNED_IN = "signed-in"
    SIGNED_OUT = "signed-out"
    USER_UPDATED = "user-updated"
    USER_DELETED = "user-deleted"
    TOKEN_REFRESHED = "token-refreshed"


class AuthEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: AuthEventKind
    session: Optional[AuthSession] = None
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def principal(self) -> Optional[Principal]:
        return self.session.user if self.session else None


class PasswordCredentials(BaseModel):
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=1)


class SignUpRequest(BaseModel):
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=6)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    username: Optional[str] = None
    avatar_url: Optional[str] = None

    def user_metadata(self) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {"role": Role.STUDENT.value}
        for key in ("first_name", "last_name", "username", "avatar_url"):
            value = getattr(self, key)
            if value:
                metadata[key] = value
        return metadata


class ActionResult(BaseModel):
    """Outcome of a user-triggered auth action; state changes arrive via the event stream."""

    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


__all__ = [
    "ActionResult",
    "AuthEvent",
    "AuthEventKind",
    "AuthSession",
    "PasswordCredentials",
    "Principal",
    "Profile",
    "Role",
    "SignUpRequest",
    "SynchronizedAuthState",
]
