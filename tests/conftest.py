"""Pytest configuration and fixtures."""

import asyncio
import os
import sys
from collections.abc import AsyncGenerator
from pathlib import Path
from typing import Any
from uuid import uuid4

# Disable rate limiting in tests
os.environ["RATE_LIMIT_ENABLED"] = "false"

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from core.exceptions import AuthenticationError
from domain.entities.session import AuthEvent, AuthIdentity, AuthSession, SignUpResult
from infrastructure.auth.provider import AuthStateHandler, AuthSubscription
from infrastructure.database.models import Base, ProfileModel

# Test database URL (SQLite in memory)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Fixed test user ID for consistency
TEST_USER_ID = "3f6a2b1c-9d4e-4f70-8a1b-2c3d4e5f6a7b"
TEST_EMAIL = "julia@example.com"
TEST_PASSWORD = "bon-appetit"


def make_identity(
    user_id: str = TEST_USER_ID,
    email: str | None = TEST_EMAIL,
    **user_metadata: Any,
) -> AuthIdentity:
    """Build identity claims as GoTrue would return them."""
    return AuthIdentity(id=user_id, email=email, user_metadata=user_metadata)


def make_session(identity: AuthIdentity | None = None) -> AuthSession:
    identity = identity or make_identity()
    return AuthSession(
        access_token=f"access-{identity.id}",
        refresh_token=f"refresh-{identity.id}",
        user=identity,
    )


class FakeAuthBackend:
    """Accounts and switches shared by every FakeAuthClient built on it.

    ``delay`` and ``fail`` let tests slow down or break individual operations
    for all clients at once.
    """

    def __init__(self) -> None:
        self.accounts: dict[str, tuple[str, AuthIdentity]] = {}
        self.delay: dict[str, float] = {}
        self.fail: dict[str, Exception] = {}
        self.require_confirmation = True
        self.calls: list[tuple[str, Any]] = []
        self.clients: list["FakeAuthClient"] = []

    def add_account(self, identity: AuthIdentity, password: str = TEST_PASSWORD) -> None:
        assert identity.email
        self.accounts[identity.email] = (password, identity)

    def expire_sessions(self) -> None:
        """Drop every client's session without telling anyone."""
        for client in self.clients:
            client.session = None


class FakeAuthClient:
    """In-memory IAuthClient.

    Holds one session like the real client and emits the same events,
    inline, from the same calls.
    """

    def __init__(
        self, session: AuthSession | None = None, backend: FakeAuthBackend | None = None
    ) -> None:
        self.session = session
        self.backend = backend or FakeAuthBackend()
        self.backend.clients.append(self)
        self.handlers: list[AuthStateHandler] = []
        self.closed = False

    @property
    def accounts(self) -> dict[str, tuple[str, AuthIdentity]]:
        return self.backend.accounts

    @property
    def delay(self) -> dict[str, float]:
        return self.backend.delay

    @property
    def fail(self) -> dict[str, Exception]:
        return self.backend.fail

    @property
    def calls(self) -> list[tuple[str, Any]]:
        return self.backend.calls

    def add_account(self, identity: AuthIdentity, password: str = TEST_PASSWORD) -> None:
        self.backend.add_account(identity, password)

    async def aclose(self) -> None:
        self.closed = True
        self.handlers.clear()

    async def _enter(self, name: str, arg: Any = None) -> None:
        self.calls.append((name, arg))
        if name in self.delay:
            await asyncio.sleep(self.delay[name])
        if name in self.fail:
            raise self.fail[name]

    async def emit(self, event: AuthEvent, session: AuthSession | None) -> None:
        for handler in list(self.handlers):
            await handler(event, session)

    def on_auth_state_change(self, handler: AuthStateHandler) -> AuthSubscription:
        self.handlers.append(handler)
        return AuthSubscription(self.handlers, handler)

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        await self._enter("sign_in_with_password", email)
        account = self.accounts.get(email)
        if account is None or account[0] != password:
            raise AuthenticationError("Invalid login credentials")
        self.session = make_session(account[1])
        await self.emit(AuthEvent.SIGNED_IN, self.session)
        return self.session

    async def sign_up(
        self,
        email: str,
        password: str,
        metadata: dict[str, Any] | None = None,
        redirect_to: str | None = None,
    ) -> SignUpResult:
        await self._enter("sign_up", {"email": email, "redirect_to": redirect_to})
        identity = AuthIdentity(id=str(uuid4()), email=email, user_metadata=dict(metadata or {}))
        self.accounts[email] = (password, identity)
        if self.backend.require_confirmation:
            return SignUpResult(user=identity)
        self.session = make_session(identity)
        await self.emit(AuthEvent.SIGNED_IN, self.session)
        return SignUpResult(user=identity, session=self.session)

    async def sign_out(self) -> None:
        try:
            await self._enter("sign_out")
        finally:
            self.session = None
            await self.emit(AuthEvent.SIGNED_OUT, None)

    async def get_session(self) -> AuthSession | None:
        await self._enter("get_session")
        return self.session

    async def get_user(self, access_token: str | None = None) -> AuthIdentity | None:
        await self._enter("get_user", access_token)
        if access_token is not None:
            for _, identity in self.accounts.values():
                if access_token == f"access-{identity.id}":
                    return identity
            return None
        return self.session.user if self.session else None

    async def verify_otp(self, token_hash: str, type: str) -> AuthSession | None:
        await self._enter("verify_otp", {"token_hash": token_hash, "type": type})
        _, identity = next(iter(self.accounts.values()))
        self.session = make_session(identity)
        await self.emit(AuthEvent.SIGNED_IN, self.session)
        return self.session

    async def exchange_code_for_session(self, auth_code: str) -> AuthSession:
        await self._enter("exchange_code_for_session", auth_code)
        _, identity = next(iter(self.accounts.values()))
        self.session = make_session(identity)
        await self.emit(AuthEvent.SIGNED_IN, self.session)
        return self.session

    async def reset_password_for_email(self, email: str, redirect_to: str | None = None) -> None:
        await self._enter("reset_password_for_email", {"email": email, "redirect_to": redirect_to})

    async def update_user(
        self,
        password: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> AuthIdentity:
        await self._enter("update_user", {"password": password, "data": data})
        if self.session is None:
            raise AuthenticationError()
        identity = self.session.user
        if data:
            identity = AuthIdentity(
                id=identity.id,
                email=identity.email,
                user_metadata={**identity.user_metadata, **data},
            )
            self.session = make_session(identity)
        await self.emit(AuthEvent.USER_UPDATED, self.session)
        return identity


class FakeAvatarStorage:
    """In-memory avatar bucket."""

    BASE_URL = "https://test.supabase.co/storage/v1/object/public/avatars"

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}

    async def upload(self, path: str, data: bytes, content_type: str) -> str:
        self.objects[path] = data
        return f"{self.BASE_URL}/{path}"

    async def remove(self, path: str) -> bool:
        return self.objects.pop(path, None) is not None

    def path_from_url(self, public_url: str) -> str | None:
        path = public_url.rsplit("/", 1)[-1]
        return path or None


@pytest.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create an in-memory database shared by every connection of one test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create session factory."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def auth_backend() -> FakeAuthBackend:
    """Auth backend with one registered account."""
    backend = FakeAuthBackend()
    backend.add_account(make_identity(username="julia", full_name="Julia Child"))
    return backend


@pytest.fixture
def auth_client(auth_backend: FakeAuthBackend) -> FakeAuthClient:
    """Auth client without a session."""
    return FakeAuthClient(backend=auth_backend)


@pytest.fixture
def avatar_storage() -> FakeAvatarStorage:
    return FakeAvatarStorage()


@pytest.fixture
async def seeded_profile(session_factory: async_sessionmaker[AsyncSession]) -> ProfileModel:
    """Stored profile for the registered account."""
    model = ProfileModel(
        id=TEST_USER_ID,
        username="julia",
        full_name="Julia Child",
        bio="Butter enthusiast",
    )
    async with session_factory() as session:
        session.add(model)
        await session.commit()
    return model


@pytest.fixture
async def app(
    auth_backend: FakeAuthBackend,
    avatar_storage: FakeAvatarStorage,
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[FastAPI, None]:
    """
    Create the application wired to fakes, with its lifespan running.

    This app:
    - Uses an in-memory SQLite database for profiles
    - Gives every caller session its own client on the in-memory auth backend
    - Shares one in-memory avatar bucket
    """
    from domain.services.session_registry import SessionClients
    from infrastructure.database.session import get_async_session
    from main import create_app

    async def client_factory() -> SessionClients:
        return SessionClients(
            auth=FakeAuthClient(backend=auth_backend),
            storage=avatar_storage,
        )

    app = create_app(client_factory=client_factory, session_factory=session_factory)

    async def override_get_async_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_session] = override_get_async_session

    async with app.router.lifespan_context(app):
        yield app

    app.dependency_overrides.clear()


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client (no session cookie)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
async def other_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """A second caller with its own cookie jar."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
async def authenticated_client(
    client: AsyncClient, seeded_profile: ProfileModel
) -> AsyncClient:
    """Test client after signing in as the registered account."""
    response = await client.post(
        "/api/v1/auth/sign-in",
        json={"email": TEST_EMAIL, "password": TEST_PASSWORD},
    )
    assert response.status_code == 200, response.text
    return client
