"""Session synchronizer: the single source of truth for "who is signed in".

Keeps a ``SynchronizerState(user, loading)`` cell in step with the auth
backend. Four signal sources feed it:

- backend push events (``on_backend_event``)
- a periodic timer and visibility changes (``reconcile``)
- explicit calls from the UI (``bootstrap``, ``sign_in``, ``sign_out``,
  ``refresh``)

Every source computes a complete snapshot and posts it as a proposal to one
queue; a single writer task applies proposals in order. Each proposal carries
the attempt number drawn when its work began. A proposal that changes the
user is dropped if a newer attempt has already published one, so slow
responses never overwrite fresher state.

Bounded waits race the real call against a timer. The slow call is not
cancelled; it keeps running in the background and its result is discarded.
"""

import asyncio
import itertools
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import TypeVar

import structlog

from core.config import settings
from domain.entities.auth_user import AuthUser, SynchronizerState
from domain.entities.profile import Profile
from domain.entities.session import (
    RECONCILING_EVENTS,
    AuthEvent,
    AuthIdentity,
    AuthSession,
    SignUpResult,
)
from domain.services.profile_service import ProfileService
from infrastructure.auth.provider import AuthSubscription, IAuthClient

logger = structlog.get_logger()

T = TypeVar("T")

StateListener = Callable[[SynchronizerState], None]


class _Marker(Enum):
    KEEP = "keep"
    TIMED_OUT = "timed_out"


@dataclass
class _Proposal:
    attempt: int
    user: AuthUser | None | _Marker
    loading: bool | None
    only_if_changed: bool
    applied: asyncio.Future[bool]


def _discard_late_result(label: str, task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("late_call_failed", call=label, error=str(exc))
    else:
        logger.info("late_result_discarded", call=label)


class SessionSynchronizer:
    """Owns the ``{user, loading}`` state and reconciles it with the backend.

    Construct one per UI session at the composition root and pass it to
    consumers; use it as an async context manager (or call ``start`` /
    ``bootstrap`` / ``close``) to bound the lifetime of its timer, event
    subscription and writer task.
    """

    def __init__(
        self,
        auth_client: IAuthClient,
        profile_service: ProfileService,
        *,
        bootstrap_timeout: float = settings.auth_bootstrap_timeout_seconds,
        profile_timeout: float = settings.profile_fetch_timeout_seconds,
        reconcile_interval: float = settings.session_reconcile_interval_seconds,
        visibility_debounce: float = settings.visibility_debounce_seconds,
        confirm_redirect_url: str = settings.email_confirm_url,
    ) -> None:
        self._auth = auth_client
        self._profiles = profile_service
        self._bootstrap_timeout = bootstrap_timeout
        self._profile_timeout = profile_timeout
        self._reconcile_interval = reconcile_interval
        self._visibility_debounce = visibility_debounce
        self._confirm_redirect_url = confirm_redirect_url

        self._state = SynchronizerState(user=None, loading=True)
        self._listeners: list[StateListener] = []

        self._attempts = itertools.count(1)
        self._published_attempt = 0
        self._inbox: asyncio.Queue[_Proposal] = asyncio.Queue()

        self._writer: asyncio.Task | None = None
        self._poller: asyncio.Task | None = None
        self._debounce: asyncio.Task | None = None
        self._subscription: AuthSubscription | None = None
        self._background: set[asyncio.Task] = set()

        self._visible = True
        self._started = False
        self._closed = False

    # --- Reactive cell ---

    @property
    def state(self) -> SynchronizerState:
        """Current snapshot. Replaced, never mutated."""
        return self._state

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Call ``listener`` with every new state; returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # --- Lifecycle ---

    async def start(self) -> None:
        """Start the writer, the event subscription and the periodic re-check."""
        if self._started:
            return
        self._started = True
        self._writer = asyncio.create_task(self._run_writer(), name="session-writer")
        self._subscription = self._auth.on_auth_state_change(self.on_backend_event)
        if self._reconcile_interval > 0:
            self._poller = asyncio.create_task(self._poll_loop(), name="session-poller")
        logger.info("session_synchronizer_started")

    async def close(self) -> None:
        """Release the timer, subscription, writer and any in-flight calls."""
        if self._closed:
            return
        self._closed = True

        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

        tasks = [t for t in (self._poller, self._debounce, self._writer) if t is not None]
        tasks.extend(self._background)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._background.clear()
        self._listeners.clear()

        while not self._inbox.empty():
            proposal = self._inbox.get_nowait()
            if not proposal.applied.done():
                proposal.applied.set_result(False)
        logger.info("session_synchronizer_closed")

    async def __aenter__(self) -> "SessionSynchronizer":
        await self.start()
        await self.bootstrap()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # --- Operations ---

    async def bootstrap(self) -> SynchronizerState:
        """Load the initial session.

        Always ends with ``loading=False``: if the backend has not answered
        within the bootstrap timeout the user stays as it was (normally
        None) and the late answer is ignored.
        """
        attempt = self._next_attempt()
        await self._publish(attempt, _Marker.KEEP, loading=True)

        try:
            outcome = await self._race(
                self._load_session_user(), self._bootstrap_timeout, "bootstrap"
            )
        except Exception as e:
            logger.warning("session_bootstrap_failed", error=str(e))
            await self._publish(attempt, _Marker.KEEP, loading=False)
            return self._state

        if outcome is _Marker.TIMED_OUT:
            logger.warning("session_bootstrap_timed_out", timeout=self._bootstrap_timeout)
            await self._publish(attempt, _Marker.KEEP, loading=False)
        else:
            await self._publish(attempt, outcome, loading=False)
        return self._state

    async def on_backend_event(
        self, event: AuthEvent | str, session: AuthSession | None
    ) -> None:
        """Handle an auth state change pushed by the backend."""
        kind = AuthEvent.parse(event)
        attempt = self._next_attempt()
        log = logger.bind(auth_event=kind.value, attempt=attempt)

        if kind is AuthEvent.SIGNED_OUT:
            log.info("auth_event_signed_out")
            await self._publish(attempt, None, loading=False)
            return

        if session is None:
            await self._publish(attempt, _Marker.KEEP, loading=False)
            return

        if kind not in RECONCILING_EVENTS:
            log.debug("auth_event_with_session")

        # Profile failures fall back to the placeholder inside _resolve_profile
        profile, _ = await self._resolve_profile(session.user)
        await self._publish(attempt, AuthUser(session.user, profile), loading=False)

    async def reconcile(self) -> bool:
        """Re-check the backend and publish only if something differs.

        Returns True if the state was replaced.
        """
        return await self._recheck(only_if_changed=True)

    async def refresh(self) -> SynchronizerState:
        """Re-fetch and republish the snapshot unconditionally."""
        await self._recheck(only_if_changed=False)
        return self._state

    def notify_visibility(self, visible: bool) -> None:
        """Record a UI visibility change.

        Becoming visible after being hidden schedules a debounced
        ``reconcile``; hiding cancels a pending one.
        """
        was_hidden = not self._visible
        self._visible = visible

        if not visible:
            self._cancel_debounce()
            return
        if was_hidden and self._started and not self._closed:
            self._cancel_debounce()
            self._debounce = asyncio.get_running_loop().create_task(
                self._debounced_reconcile(), name="session-visibility"
            )

    async def sign_in(self, email: str, password: str) -> AuthUser:
        """
        Sign in with email and password.

        Raises:
            AuthenticationError: If the backend rejects the credentials
        """
        attempt = self._next_attempt()
        await self._publish(attempt, _Marker.KEEP, loading=True)

        try:
            session = await self._auth.sign_in_with_password(email, password)
        except Exception:
            await self._publish(attempt, _Marker.KEEP, loading=False)
            raise

        # The SIGNED_IN push event may already have published this user
        current = self._state.user
        if (
            self._published_attempt > attempt
            and current is not None
            and current.id == session.user.id
        ):
            await self._publish(attempt, _Marker.KEEP, loading=False)
            return current

        profile, _ = await self._resolve_profile(session.user)
        user = AuthUser(session.user, profile)
        await self._publish(attempt, user, loading=False)
        return user

    async def sign_up(
        self,
        email: str,
        password: str,
        username: str,
        full_name: str,
    ) -> SignUpResult:
        """Register a user and try to create their profile.

        Profile creation failures are logged only; the profile is created
        lazily on a later reconciliation instead.
        """
        result = await self._auth.sign_up(
            email,
            password,
            metadata={"username": username, "full_name": full_name},
            redirect_to=self._confirm_redirect_url,
        )

        if result.user is not None:
            profile = Profile(id=result.user.id, username=username, full_name=full_name)
            try:
                await self._profiles.create_profile(profile)
            except Exception as e:
                logger.warning(
                    "sign_up_profile_creation_failed",
                    user_id=result.user.id,
                    error=str(e),
                )
        return result

    async def sign_out(self) -> None:
        """Sign out; local state ends signed-out even if the backend call fails."""
        self._require_started()
        try:
            await self._auth.sign_out()
        finally:
            # Drawn after the backend call so it supersedes anything in flight
            await self._publish(
                self._next_attempt(), None, loading=False, only_if_changed=True
            )

    # --- Reconciliation helpers ---

    async def _recheck(self, only_if_changed: bool) -> bool:
        attempt = self._next_attempt()
        try:
            identity = await self._auth.get_user()
            user = await self._user_for(identity) if identity is not None else None
        except Exception as e:
            logger.warning("session_recheck_failed", attempt=attempt, error=str(e))
            return await self._publish(
                attempt, _Marker.KEEP, loading=None, only_if_changed=True
            )
        return await self._publish(
            attempt, user, loading=None, only_if_changed=only_if_changed
        )

    async def _user_for(self, identity: AuthIdentity) -> AuthUser:
        """Snapshot for a re-check; a degraded profile never replaces a real one."""
        profile, authoritative = await self._resolve_profile(identity)
        current = self._state.user
        if not authoritative and current is not None and current.id == identity.id:
            profile = current.profile
        return AuthUser(identity, profile)

    async def _load_session_user(self) -> AuthUser | None:
        session = await self._auth.get_session()
        if session is None:
            return None
        profile, _ = await self._resolve_profile(session.user)
        return AuthUser(session.user, profile)

    async def _resolve_profile(self, identity: AuthIdentity) -> tuple[Profile, bool]:
        """Fetch the stored profile, falling back to a placeholder.

        Returns the profile and whether it reflects what the store said
        (False after a timeout or failure).
        """
        placeholder = Profile.placeholder(identity)
        try:
            fetched = await self._race(
                self._profiles.get_profile(identity.id),
                self._profile_timeout,
                "profile_fetch",
            )
        except Exception as e:
            logger.warning("profile_fetch_failed", user_id=identity.id, error=str(e))
            return placeholder, False

        if fetched is _Marker.TIMED_OUT:
            logger.warning(
                "profile_fetch_timed_out",
                user_id=identity.id,
                timeout=self._profile_timeout,
            )
            return placeholder, False

        if fetched is None:
            logger.info("profile_missing", user_id=identity.id)
            self._spawn(self._create_missing_profile(placeholder))
            return placeholder, True

        return fetched.merged_over(placeholder), True

    async def _create_missing_profile(self, placeholder: Profile) -> None:
        try:
            await self._profiles.ensure_profile(placeholder)
        except Exception as e:
            logger.warning(
                "lazy_profile_creation_failed", user_id=placeholder.id, error=str(e)
            )

    # --- Timers ---

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self._reconcile_interval)
            try:
                await self.reconcile()
            except Exception:
                logger.exception("periodic_reconcile_failed")

    async def _debounced_reconcile(self) -> None:
        await asyncio.sleep(self._visibility_debounce)
        await self.reconcile()

    def _cancel_debounce(self) -> None:
        if self._debounce is not None and not self._debounce.done():
            self._debounce.cancel()
        self._debounce = None

    # --- Bounded waits ---

    def _spawn(self, awaitable: Awaitable[T]) -> "asyncio.Future[T]":
        task = asyncio.ensure_future(awaitable)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _race(
        self, awaitable: Awaitable[T], timeout: float, label: str
    ) -> T | _Marker:
        """Wait up to ``timeout`` seconds for ``awaitable``.

        Returns ``_Marker.TIMED_OUT`` if the timer wins; the call itself keeps
        running and whatever it eventually returns is dropped.
        """
        task = self._spawn(awaitable)
        done, _ = await asyncio.wait({task}, timeout=timeout)
        if task in done:
            return task.result()
        task.add_done_callback(lambda t: _discard_late_result(label, t))  # type: ignore[arg-type]
        return _Marker.TIMED_OUT

    # --- Single writer ---

    def _next_attempt(self) -> int:
        return next(self._attempts)

    def _require_started(self) -> None:
        if not self._started:
            raise RuntimeError("SessionSynchronizer.start() must be called first")

    async def _publish(
        self,
        attempt: int,
        user: AuthUser | None | _Marker,
        loading: bool | None,
        only_if_changed: bool = False,
    ) -> bool:
        """Post a proposal and wait until the writer has handled it.

        Returns True if the state cell was replaced.
        """
        self._require_started()
        if self._closed:
            return False

        applied: asyncio.Future[bool] = asyncio.get_running_loop().create_future()
        await self._inbox.put(_Proposal(attempt, user, loading, only_if_changed, applied))
        return await applied

    async def _run_writer(self) -> None:
        while True:
            proposal = await self._inbox.get()
            replaced = self._apply(proposal)
            if not proposal.applied.done():
                proposal.applied.set_result(replaced)

    def _apply(self, proposal: _Proposal) -> bool:
        current = self._state

        if proposal.user is _Marker.KEEP:
            user = current.user
        else:
            if proposal.attempt < self._published_attempt:
                logger.debug(
                    "stale_snapshot_discarded",
                    attempt=proposal.attempt,
                    published_attempt=self._published_attempt,
                )
                return False
            user = proposal.user  # type: ignore[assignment]
            self._published_attempt = proposal.attempt

        loading = current.loading if proposal.loading is None else proposal.loading
        new_state = SynchronizerState(user=user, loading=loading)
        if new_state == current and (
            proposal.only_if_changed or proposal.user is _Marker.KEEP
        ):
            return False

        self._state = new_state
        for listener in list(self._listeners):
            try:
                listener(new_state)
            except Exception:
                logger.exception("session_listener_failed")
        return True
