"""Session synchronization: one authoritative view of who is signed in.

The directory's auth events, the bootstrap session fetch and finished identity
resolutions all arrive as messages on a single queue. One consumer task applies
them in order, so state transitions never interleave even though resolution work
(network calls) runs concurrently in its own task.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Set, Union

from .config import get_settings
from .directory import RemoteDirectoryClient, Unsubscribe, require_capabilities
from .identity import IdentityResolver, Resolution
from .models import (
    ActionResult,
    AuthEvent,
    AuthEventKind,
    AuthSession,
    PasswordCredentials,
    Principal,
    Role,
    SignUpRequest,
    SynchronizedAuthState,
)
from .telemetry import emit_event

logger = logging.getLogger(__name__)

StateListener = Callable[[SynchronizedAuthState], None]


class ResolutionPhase(str, Enum):
    IDLE = "idle"
    RESOLVING = "resolving"


@dataclass
class _ProviderEvent:
    event: AuthEvent


@dataclass
class _Bootstrap:
    session: Optional[AuthSession]
    processed: "asyncio.Future[None]"


@dataclass
class _ResolutionFinished:
    generation: int
    principal_id: str
    resolution: Resolution


@dataclass
class _ActionPending:
    delta: int


@dataclass
class _Stop:
    reason: str = "close"


_Message = Union[_ProviderEvent, _Bootstrap, _ResolutionFinished, _ActionPending, _Stop]


@dataclass
class _Tracker:
    phase: ResolutionPhase = ResolutionPhase.IDLE
    generation: int = 0
    principal_id: Optional[str] = None
    pending_actions: int = 0
    provider_driven: bool = False
    dropped_events: int = 0
    tasks: Set["asyncio.Task[None]"] = field(default_factory=set)


class SessionSync:
    """Owns the :class:`SynchronizedAuthState` for one running client.

    Create one per application, call :meth:`start` (or :meth:`initialize`) inside the
    event loop and :meth:`close` on shutdown. Components read state through
    :meth:`get_state` / :meth:`subscribe`; only this container mutates it.
    """

    def __init__(
        self,
        directory: RemoteDirectoryClient,
        resolver: IdentityResolver,
        *,
        oauth_redirect_url: Optional[str] = None,
    ) -> None:
        self._directory = require_capabilities(directory)
        if not isinstance(resolver, IdentityResolver):
            raise TypeError("SessionSync requires an IdentityResolver")
        self._resolver = resolver
        self._oauth_redirect_url = oauth_redirect_url or get_settings().oauth_redirect_url
        self._state = SynchronizedAuthState()
        self._listeners: List[StateListener] = []
        self._tracker = _Tracker()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional["asyncio.Queue[_Message]"] = None
        self._consumer: Optional["asyncio.Task[None]"] = None
        self._unsubscribe: Optional[Unsubscribe] = None
        self._init_task: Optional["asyncio.Task[SynchronizedAuthState]"] = None
        self._ready = asyncio.Event()
        self._closed = False

    # -- read contract ---------------------------------------------------

    def get_state(self) -> SynchronizedAuthState:
        return self._state

    @property
    def phase(self) -> ResolutionPhase:
        return self._tracker.phase

    @property
    def dropped_events(self) -> int:
        """Number of sign-in/update events skipped because a resolution was already running."""
        return self._tracker.dropped_events

    def subscribe(self, callback: StateListener) -> Unsubscribe:
        """Register ``callback`` for every state transition; returns an unsubscribe handle."""
        self._listeners.append(callback)

        def _unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return _unsubscribe

    async def wait_until_ready(self, timeout: Optional[float] = None) -> SynchronizedAuthState:
        await asyncio.wait_for(self._ready.wait(), timeout)
        return self._state

    async def settle(self) -> SynchronizedAuthState:
        """Wait until queued messages and any in-flight resolution have been applied."""
        if self._queue is None:
            return self._state
        while True:
            await self._queue.join()
            running = [task for task in self._tracker.tasks if not task.done()]
            if running:
                await asyncio.wait(running)
                continue
            if self._queue.empty():
                return self._state

    # -- lifecycle -------------------------------------------------------

    def start(self) -> None:
        if self._closed:
            raise RuntimeError("SessionSync has been closed")
        if self._consumer is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._consumer = self._loop.create_task(self._consume(), name="studyhall-session-sync")
        self._unsubscribe = self._directory.subscribe_to_auth_events(self._on_provider_event)
        logger.debug("Session sync started")

    async def initialize(self) -> SynchronizedAuthState:
        """Fetch the current session once and resolve it. Repeat calls share the first run."""
        if self._init_task is None:
            self.start()
            assert self._loop is not None
            self._init_task = self._loop.create_task(self._bootstrap())
        return await asyncio.shield(self._init_task)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
            logger.debug("Auth listener unsubscribed")
        if self._queue is not None and self._consumer is not None:
            self._queue.put_nowait(_Stop())
            await asyncio.gather(self._consumer, return_exceptions=True)
        for task in [*self._tracker.tasks, self._init_task]:
            if task is not None and not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
        await self._resolver.drain()
        self._listeners.clear()

    async def __aenter__(self) -> "SessionSync":
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # -- actions ---------------------------------------------------------

    async def sign_in(self, credentials: PasswordCredentials) -> ActionResult:
        return await self._run_action("sign_in", lambda: self._directory.sign_in_with_password(credentials))

    async def sign_up(self, request: SignUpRequest) -> ActionResult:
        return await self._run_action("sign_up", lambda: self._directory.sign_up(request))

    async def sign_in_with_oauth(self, provider: str) -> ActionResult:
        return await self._run_action(
            "sign_in_with_oauth",
            lambda: self._directory.sign_in_with_oauth(provider, redirect_to=self._oauth_redirect_url),
        )

    async def sign_out(self) -> ActionResult:
        return await self._run_action("sign_out", self._directory.sign_out)

    async def _run_action(self, name: str, call: Callable[[], Awaitable[ActionResult]]) -> ActionResult:
        self.start()
        self._post(_ActionPending(delta=1))
        try:
            result = await call()
        except Exception as exc:  # noqa: BLE001
            logger.exception("%s failed", name)
            result = ActionResult(error=str(exc) or exc.__class__.__name__)
        finally:
            self._post(_ActionPending(delta=-1))
        if result.error:
            logger.warning("%s returned error: %s", name, result.error)
        return result

    # -- message plumbing ------------------------------------------------

    def _on_provider_event(self, event: AuthEvent) -> None:
        logger.info("Auth state changed: %s %s", event.kind.value, event.principal.id if event.principal else None)
        self._post(_ProviderEvent(event))

    def _post(self, message: _Message) -> None:
        if self._queue is None or self._loop is None:
            raise RuntimeError("SessionSync.start() must run before messages are posted")
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._queue.put_nowait(message)
        else:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, message)

    async def _bootstrap(self) -> SynchronizedAuthState:
        logger.info("Getting initial session")
        session: Optional[AuthSession] = None
        try:
            result = await self._directory.get_current_session()
            if result.error:
                logger.error("Initial session fetch failed: %s", result.error)
            else:
                session = result.session
        except Exception:  # noqa: BLE001
            logger.exception("Initial session fetch raised")
        assert self._loop is not None
        processed: "asyncio.Future[None]" = self._loop.create_future()
        self._post(_Bootstrap(session=session, processed=processed))
        await processed
        return await self.wait_until_ready()

    async def _consume(self) -> None:
        assert self._queue is not None
        while True:
            message = await self._queue.get()
            try:
                if isinstance(message, _Stop):
                    return
                self._dispatch(message)
            except Exception:  # noqa: BLE001
                logger.exception("Session sync failed to apply %s", type(message).__name__)
            finally:
                self._queue.task_done()

    def _dispatch(self, message: _Message) -> None:
        if isinstance(message, _ProviderEvent):
            self._handle_event(message.event)
        elif isinstance(message, _Bootstrap):
            try:
                self._handle_bootstrap(message.session)
            finally:
                if not message.processed.done():
                    message.processed.set_result(None)
        elif isinstance(message, _ResolutionFinished):
            self._handle_resolution(message)
        elif isinstance(message, _ActionPending):
            self._tracker.pending_actions = max(self._tracker.pending_actions + message.delta, 0)
            self._transition(self._state.model_copy(update={"is_authenticating": self._authenticating()}), "action")

    # -- transitions (consumer task only) --------------------------------

    def _handle_bootstrap(self, session: Optional[AuthSession]) -> None:
        if self._tracker.provider_driven:
            logger.info("Skipping bootstrap session; provider events already drove state")
            return
        if session is None:
            logger.info("No user found in initial session")
            self._clear("initial_session_empty")
            return
        self._begin_resolution(session, "initial_session")

    def _handle_event(self, event: AuthEvent) -> None:
        kind = event.kind
        if kind is AuthEventKind.INITIAL_SESSION:
            if event.session is None and self._tracker.phase is ResolutionPhase.IDLE and self._state.principal is None:
                self._clear("initial_session_empty")
            else:
                logger.debug("Skipping initial-session event; bootstrap handles resolution")
            return

        if kind in (AuthEventKind.SIGNED_OUT, AuthEventKind.USER_DELETED):
            logger.info("Principal cleared by %s", kind.value)
            self._tracker.provider_driven = True
            self._clear(kind.value)
            return

        principal = event.principal
        if principal is None:
            logger.warning("Ignoring %s event without a session", kind.value)
            return

        if kind is AuthEventKind.TOKEN_REFRESHED:
            if self._state.user_id == principal.id:
                self._transition(self._state.model_copy(update={"session": event.session}), kind.value)
            return

        if self._tracker.phase is ResolutionPhase.RESOLVING and self._tracker.principal_id == principal.id:
            logger.info("Identity resolution already in progress for %s; skipping %s", principal.id, kind.value)
            self._tracker.dropped_events += 1
            return

        if (
            kind is AuthEventKind.SIGNED_IN
            and self._state.is_ready
            and self._state.user_id == principal.id
            and self._state.role is not None
        ):
            logger.info("Principal %s already resolved; refreshing session only", principal.id)
            self._transition(self._state.model_copy(update={"session": event.session}), kind.value)
            return

        assert event.session is not None
        self._tracker.provider_driven = True
        self._begin_resolution(event.session, kind.value)

    def _begin_resolution(self, session: AuthSession, reason: str) -> None:
        principal = session.user
        tracker = self._tracker
        if tracker.phase is ResolutionPhase.RESOLVING:
            logger.info("Superseding resolution for %s with %s", tracker.principal_id, principal.id)
        tracker.generation += 1
        tracker.phase = ResolutionPhase.RESOLVING
        tracker.principal_id = principal.id

        same_principal = self._state.user_id == principal.id
        self._transition(
            SynchronizedAuthState(
                principal=principal,
                session=session,
                profile=self._state.profile if same_principal else None,
                role=self._state.role if same_principal else None,
                is_ready=False,
                is_authenticating=True,
            ),
            reason,
        )
        assert self._loop is not None
        task = self._loop.create_task(self._resolve(tracker.generation, principal))
        tracker.tasks.add(task)
        task.add_done_callback(tracker.tasks.discard)

    async def _resolve(self, generation: int, principal: Principal) -> None:
        try:
            resolution = await self._resolver.resolve(principal)
        except Exception:  # noqa: BLE001
            logger.exception("Identity resolver raised for %s", principal.id)
            resolution = Resolution(principal=principal, role=Role.STUDENT, profile=None)
        self._post(_ResolutionFinished(generation=generation, principal_id=principal.id, resolution=resolution))

    def _handle_resolution(self, message: _ResolutionFinished) -> None:
        tracker = self._tracker
        if message.generation != tracker.generation or self._state.user_id != message.principal_id:
            logger.info("Discarding stale identity resolution for %s", message.principal_id)
            return
        tracker.phase = ResolutionPhase.IDLE
        tracker.principal_id = None
        resolution = message.resolution
        self._transition(
            self._state.model_copy(
                update={
                    "principal": resolution.principal,
                    "profile": resolution.profile,
                    "role": resolution.role,
                    "is_ready": True,
                    "is_authenticating": self._authenticating(),
                }
            ),
            "resolved",
        )

    def _clear(self, reason: str) -> None:
        tracker = self._tracker
        tracker.generation += 1
        tracker.phase = ResolutionPhase.IDLE
        tracker.principal_id = None
        self._transition(SynchronizedAuthState(is_ready=True, is_authenticating=self._authenticating()), reason)

    def _authenticating(self) -> bool:
        return self._tracker.pending_actions > 0 or self._tracker.phase is ResolutionPhase.RESOLVING

    def _transition(self, state: SynchronizedAuthState, reason: str) -> None:
        if state == self._state:
            return
        self._state = state
        if state.is_ready:
            self._ready.set()
        else:
            self._ready.clear()
        emit_event(
            "auth_state_changed",
            reason=reason,
            user_id=state.user_id,
            role=state.role,
            is_ready=state.is_ready,
            is_authenticating=state.is_authenticating,
        )
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:  # noqa: BLE001
                logger.exception("Auth state subscriber failed")


__all__ = ["ResolutionPhase", "SessionSync", "StateListener"]
