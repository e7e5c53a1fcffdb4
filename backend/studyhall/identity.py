"""Identity resolution: attach a role and profile to an authenticated principal."""

from __future__ import annotations

import asyncio
import logging
import random
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Sequence, Set, Tuple, TypeVar

from .activity import ActivityRecorder
from .config import get_settings
from .constants import ANONYMOUS_USERNAME, PROFILES_TABLE
from .directory import RowStore
from .errors import DirectoryError, ProfileFetchTimeout
from .models import Principal, Profile, Role
from .telemetry import emit_event

logger = logging.getLogger(__name__)

RoleResolver = Callable[[Principal], Awaitable[Optional[Role]]]
_T = TypeVar("_T")

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class Resolution:
    principal: Principal
    role: Role
    profile: Optional[Profile]
    created: bool = False


def _clean(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return _WHITESPACE.sub("", value).lower()


def generate_username(
    first_name: Optional[str],
    last_name: Optional[str],
    email: Optional[str],
    rng: Optional[random.Random] = None,
) -> str:
    """Derive a username from names, falling back to the email local part."""
    suffix = str((rng or random).randint(0, 9999))
    base = _clean(first_name) + _clean(last_name)
    if not base and email and "@" in email:
        base = _clean(email.split("@", 1)[0])
    return f"{base or ANONYMOUS_USERNAME}{suffix}"


class IdentityResolver:
    """Resolve ``{role, profile}`` for a principal, creating the profile row on first sign-in.

    Role sources are tried in the order listed in :attr:`role_resolvers`; the first one
    returning a recognized role wins. A stored profile row always has the final say.
    Resolution never raises: store failures degrade to ``role=student`` and ``profile=None``.
    """

    def __init__(
        self,
        rows: RowStore,
        recorder: ActivityRecorder,
        *,
        fetch_timeout: Optional[float] = None,
        default_avatar_url: Optional[str] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        settings = get_settings()
        self._rows = rows
        self._recorder = recorder
        self._fetch_timeout = fetch_timeout if fetch_timeout is not None else settings.profile_fetch_timeout
        self._default_avatar_url = default_avatar_url or settings.default_avatar_url
        self._rng = rng or random.Random()
        self._background: Set[asyncio.Task[Any]] = set()
        self.role_resolvers: Tuple[RoleResolver, ...] = (
            self.role_from_app_metadata,
            self.role_from_user_metadata,
            self.role_from_profile_store,
        )

    # -- role sources ----------------------------------------------------

    @staticmethod
    async def role_from_app_metadata(principal: Principal) -> Optional[Role]:
        return Role.parse(principal.app_metadata.get("role"))

    @staticmethod
    async def role_from_user_metadata(principal: Principal) -> Optional[Role]:
        return Role.parse(principal.user_metadata.get("role"))

    async def role_from_profile_store(self, principal: Principal) -> Optional[Role]:
        try:
            result = await self._bounded(lambda: self._rows.read_row(PROFILES_TABLE, {"id": principal.id}), None)
        except asyncio.TimeoutError:
            logger.warning("Role lookup timed out for %s", principal.id)
            return None
        if result.not_found:
            logger.info("No profile row yet for %s; role lookup falls through", principal.id)
            return None
        if result.error_code:
            logger.warning("Role lookup failed for %s: %s", principal.id, result.error_message)
            return None
        return Role.parse((result.row or {}).get("role"))

    async def resolve_role(self, principal: Principal, resolvers: Optional[Sequence[RoleResolver]] = None) -> Role:
        for resolver in self.role_resolvers if resolvers is None else resolvers:
            try:
                role = await resolver(principal)
            except Exception:  # noqa: BLE001
                logger.exception("Role resolver %s failed for %s", getattr(resolver, "__name__", resolver), principal.id)
                continue
            if role is not None:
                return role
        return Role.STUDENT

    # -- profile ---------------------------------------------------------

    def deadline(self) -> float:
        """Loop time by which one resolution must have finished its store calls."""
        return asyncio.get_running_loop().time() + self._fetch_timeout

    async def _bounded(self, call: Callable[[], Awaitable[_T]], deadline: Optional[float]) -> _T:
        if deadline is None:
            return await asyncio.wait_for(call(), timeout=self._fetch_timeout)
        remaining = deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            raise asyncio.TimeoutError
        return await asyncio.wait_for(call(), timeout=remaining)

    async def fetch_profile(self, user_id: str, *, deadline: Optional[float] = None) -> Optional[Profile]:
        """Read the profile row; ``None`` means no row. Raises on timeout or store failure."""
        try:
            result = await self._bounded(lambda: self._rows.read_row(PROFILES_TABLE, {"id": user_id}), deadline)
        except asyncio.TimeoutError as exc:
            raise ProfileFetchTimeout(f"Profile fetch exceeded {self._fetch_timeout}s") from exc
        if result.not_found:
            return None
        if result.error_code:
            raise result.error or DirectoryError(result.error_message)
        return Profile.model_validate(result.row)

    def synthesize_profile(self, principal: Principal) -> Profile:
        metadata = principal.user_metadata
        first_name = metadata.get("first_name") or None
        last_name = metadata.get("last_name") or None
        username = metadata.get("username") or generate_username(first_name, last_name, principal.email, self._rng)
        full_name = " ".join(part for part in (first_name, last_name) if part) or None
        now = datetime.now(timezone.utc)
        return Profile(
            id=principal.id,
            first_name=first_name,
            last_name=last_name,
            full_name=full_name,
            username=username,
            avatar_url=metadata.get("avatar_url") or self._default_avatar_url,
            role=Role.STUDENT,
            bonus_point=0,
            created_at=now,
            updated_at=now,
        )

    async def create_profile(self, principal: Principal, *, deadline: Optional[float] = None) -> Profile:
        """Persist a synthesized profile. Write failures and timeouts return it unsaved."""
        profile = self.synthesize_profile(principal)
        payload = {**profile.model_dump(), "role": profile.role.value}
        try:
            result = await self._bounded(
                lambda: self._rows.upsert_row(PROFILES_TABLE, payload, on_conflict=("id",)),
                deadline,
            )
        except asyncio.TimeoutError:
            logger.warning("Profile insert timed out for %s; continuing with unsaved profile", principal.id)
            return profile
        if result.error_code:
            logger.warning(
                "Profile insert failed for %s (%s); continuing with unsaved profile",
                principal.id,
                result.error_message or result.error_code,
            )
            return profile
        if result.rows:
            return Profile.model_validate(result.rows[0])
        return profile

    # -- pipeline --------------------------------------------------------

    async def resolve(self, principal: Principal) -> Resolution:
        """Run role and profile resolution under one fetch deadline.

        The profile row is read once. When it exists its role is final; otherwise the
        metadata sources decide, and the store source is not asked a second time.
        """
        deadline = self.deadline()
        role = Role.STUDENT
        profile: Optional[Profile] = None
        created = False
        try:
            try:
                profile = await self.fetch_profile(principal.id, deadline=deadline)
            except ProfileFetchTimeout:
                logger.warning("Profile fetch timed out for %s; continuing without profile", principal.id)
                role = await self.resolve_role(principal, self._metadata_resolvers())
            except DirectoryError as exc:
                logger.warning("Profile fetch failed for %s: %s", principal.id, exc)
                role = await self.resolve_role(principal, self._metadata_resolvers())
            else:
                if profile is None:
                    profile = await self.create_profile(principal, deadline=deadline)
                    created = True
                role = profile.role
        except Exception:  # noqa: BLE001
            logger.exception("Unexpected failure resolving identity for %s", principal.id)
            role, profile = Role.STUDENT, None

        self._spawn_login_record(principal.id)
        emit_event(
            "identity_resolved",
            user_id=principal.id,
            role=role,
            profile_found=profile is not None,
            profile_created=created,
        )
        return Resolution(principal=principal, role=role, profile=profile, created=created)

    def _metadata_resolvers(self) -> Tuple[RoleResolver, ...]:
        return tuple(resolver for resolver in self.role_resolvers if resolver != self.role_from_profile_store)

    def _spawn_login_record(self, user_id: str) -> None:
        task = asyncio.get_running_loop().create_task(self._record_login(user_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _record_login(self, user_id: str) -> None:
        result = await self._recorder.record(user_id, "login")
        if result.success:
            logger.debug("Login activity recorded for %s", user_id)
        else:
            logger.warning("Login activity recording failed for %s: %s", user_id, result.error)

    async def drain(self) -> None:
        """Wait for outstanding fire-and-forget work."""
        pending = list(self._background)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)


__all__ = ["IdentityResolver", "Resolution", "RoleResolver", "generate_username"]
