"""Per-caller session registry.

Every browser (or API caller) gets its own auth client, synchronizer and
services, looked up by an opaque session id. Nothing signed in by one caller
is visible to another.
"""

import asyncio
import secrets
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from core.config import settings
from domain.repositories.unit_of_work import IUnitOfWork
from domain.services.account_service import AccountService
from domain.services.profile_service import ProfileService
from domain.services.session_synchronizer import SessionSynchronizer
from infrastructure.auth.provider import IAuthClient
from infrastructure.storage.provider import IAvatarStorage

logger = structlog.get_logger()


@dataclass(frozen=True)
class SessionClients:
    """Backend clients dedicated to one caller."""

    auth: IAuthClient
    storage: IAvatarStorage


ClientFactory = Callable[[], Awaitable[SessionClients]]


@dataclass
class ClientSession:
    """Everything that acts on behalf of one caller."""

    id: str
    auth: IAuthClient
    synchronizer: SessionSynchronizer
    profiles: ProfileService
    accounts: AccountService
    last_seen: float = field(default_factory=time.monotonic)

    async def close(self) -> None:
        try:
            await self.synchronizer.close()
        finally:
            await self.auth.aclose()


class SessionRegistry:
    """Creates, finds and expires caller sessions.

    Sessions idle for longer than ``idle_timeout`` are closed the next time
    the registry is used. When ``max_sessions`` is exceeded the least
    recently used session is closed.
    """

    def __init__(
        self,
        client_factory: ClientFactory,
        uow_factory: Callable[[], IUnitOfWork],
        *,
        idle_timeout: float = settings.session_idle_timeout_seconds,
        max_sessions: int = settings.max_client_sessions,
        synchronizer_options: dict[str, Any] | None = None,
    ) -> None:
        self._client_factory = client_factory
        self._uow_factory = uow_factory
        self._idle_timeout = idle_timeout
        self._max_sessions = max_sessions
        self._synchronizer_options = synchronizer_options or {}
        self._sessions: OrderedDict[str, ClientSession] = OrderedDict()
        self._closed = False

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    async def create(self) -> ClientSession:
        """Open a new caller session and load its initial state."""
        if self._closed:
            raise RuntimeError("SessionRegistry is closed")
        await self._expire_idle()

        clients = await self._client_factory()
        profiles = ProfileService(self._uow_factory, clients.storage)
        synchronizer = SessionSynchronizer(
            clients.auth, profiles, **self._synchronizer_options
        )
        session = ClientSession(
            id=secrets.token_urlsafe(32),
            auth=clients.auth,
            synchronizer=synchronizer,
            profiles=profiles,
            accounts=AccountService(clients.auth, synchronizer),
        )

        try:
            await synchronizer.start()
            await synchronizer.bootstrap()
        except BaseException:
            await session.close()
            raise

        self._sessions[session.id] = session
        logger.info("client_session_created", open_sessions=len(self._sessions))

        while len(self._sessions) > self._max_sessions:
            _, oldest = self._sessions.popitem(last=False)
            logger.info("client_session_evicted")
            await oldest.close()
        return session

    async def get(self, session_id: str | None) -> ClientSession | None:
        """Find a live session and mark it as used."""
        await self._expire_idle()
        if not session_id:
            return None
        session = self._sessions.get(session_id)
        if session is None:
            return None
        session.last_seen = time.monotonic()
        self._sessions.move_to_end(session_id)
        return session

    async def discard(self, session_id: str) -> None:
        """Close a session; unknown ids are ignored."""
        session = self._sessions.pop(session_id, None)
        if session is not None:
            await session.close()
            logger.info("client_session_closed", open_sessions=len(self._sessions))

    async def close(self) -> None:
        """Close every session."""
        self._closed = True
        sessions = list(self._sessions.values())
        self._sessions.clear()
        results = await asyncio.gather(
            *(session.close() for session in sessions), return_exceptions=True
        )
        for result in results:
            if isinstance(result, Exception):
                logger.warning("client_session_close_failed", error=str(result))

    async def _expire_idle(self) -> None:
        if self._idle_timeout <= 0:
            return
        cutoff = time.monotonic() - self._idle_timeout
        expired = [
            session_id
            for session_id, session in self._sessions.items()
            if session.last_seen < cutoff
        ]
        for session_id in expired:
            session = self._sessions.pop(session_id)
            logger.info("client_session_expired")
            await session.close()
