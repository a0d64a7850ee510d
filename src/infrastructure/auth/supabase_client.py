"""Supabase Auth client implementation.

Wraps one ``supabase.AsyncClient`` per caller session. The SDK keeps the
session in memory, refreshes expired tokens and reports auth state changes
through a synchronous callback. Those changes are buffered and handed to the
async handlers registered here once the SDK call that caused them returns, so
handlers always see them in the order the SDK produced them.
"""

from collections.abc import Awaitable
from typing import Any, TypeVar

import httpx
import structlog
from supabase import (
    AsyncClient,
    AsyncClientOptions,
    AuthApiError,
    AuthError,
    AuthRetryableError,
    acreate_client,
)

from core.config import settings
from core.exceptions import (
    AuthenticationError,
    BackendUnavailableError,
    ErrorCode,
    RateLimitedError,
)
from domain.entities.session import AuthEvent, AuthIdentity, AuthSession, SignUpResult
from domain.services.session_registry import SessionClients
from infrastructure.auth.provider import AuthStateHandler, AuthSubscription
from infrastructure.storage.supabase_storage import SupabaseAvatarStorage

logger = structlog.get_logger()

T = TypeVar("T")


async def create_supabase_client(
    url: str = settings.supabase_url,
    anon_key: str = settings.supabase_anon_key,
) -> AsyncClient:
    """Create an SDK client that holds a single caller's session."""
    return await acreate_client(
        url,
        anon_key,
        options=AsyncClientOptions(
            flow_type="pkce",
            auto_refresh_token=False,
            persist_session=False,
            postgrest_client_timeout=settings.http_timeout_seconds,
            storage_client_timeout=int(settings.http_timeout_seconds),
        ),
    )


def _to_identity(user: Any) -> AuthIdentity:
    return AuthIdentity.from_payload(user.model_dump(mode="json"))


def _to_session(session: Any) -> AuthSession | None:
    if session is None or session.user is None:
        return None
    return AuthSession(
        access_token=session.access_token,
        refresh_token=session.refresh_token,
        user=_to_identity(session.user),
        expires_at=session.expires_at,
        token_type=session.token_type,
    )


class SupabaseAuthClient:
    """IAuthClient backed by the Supabase Python SDK."""

    def __init__(self, client: AsyncClient) -> None:
        self._client = client
        self._handlers: list[AuthStateHandler] = []
        self._pending: list[tuple[str, Any]] = []
        self._signed_out = False
        self._sdk_subscription = client.auth.on_auth_state_change(self._buffer_event)

    async def aclose(self) -> None:
        """Stop listening to the SDK and drop all handlers."""
        self._sdk_subscription.unsubscribe()
        self._handlers.clear()
        self._pending.clear()

    # --- Events ---

    def on_auth_state_change(self, handler: AuthStateHandler) -> AuthSubscription:
        """Register a handler for auth state change events."""
        self._handlers.append(handler)
        return AuthSubscription(self._handlers, handler)

    def _buffer_event(self, event: str, session: Any) -> None:
        self._pending.append((event, session))

    async def _flush(self) -> None:
        while self._pending:
            name, sdk_session = self._pending.pop(0)
            event = AuthEvent.parse(name)
            session = _to_session(sdk_session)
            if event is AuthEvent.SIGNED_OUT:
                self._signed_out = True
            elif session is not None:
                self._signed_out = False
            await self._notify(event, session)

    async def _notify(self, event: AuthEvent, session: AuthSession | None) -> None:
        for handler in list(self._handlers):
            try:
                await handler(event, session)
            except Exception:
                logger.exception("auth_state_handler_failed", auth_event=event.value)

    # --- SDK calls ---

    async def _call(self, operation: str, call: Awaitable[T]) -> T:
        """Await an SDK call, mapping its errors and delivering its events."""
        try:
            return await call
        except (AuthRetryableError, httpx.HTTPError) as e:
            logger.warning("auth_backend_unreachable", operation=operation, error=str(e))
            raise BackendUnavailableError("auth") from e
        except AuthApiError as e:
            status = e.status or 400
            if status == 429:
                raise RateLimitedError(e.message) from e
            if status >= 500:
                logger.warning("auth_backend_error", operation=operation, status_code=status)
                raise BackendUnavailableError("auth") from e
            error_code = (
                ErrorCode.INVALID_TOKEN if status in (401, 403) else ErrorCode.INVALID_CREDENTIALS
            )
            raise AuthenticationError(message=e.message, error_code=error_code) from e
        except AuthError as e:
            raise AuthenticationError(message=e.message, error_code=ErrorCode.INVALID_TOKEN) from e
        finally:
            await self._flush()

    # --- Sessions ---

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        """Sign in with email and password."""
        response = await self._call(
            "sign_in_with_password",
            self._client.auth.sign_in_with_password({"email": email, "password": password}),
        )
        session = _to_session(response.session)
        if session is None:
            raise AuthenticationError(
                message="Sign-in returned no session",
                error_code=ErrorCode.INVALID_CREDENTIALS,
            )
        logger.info("signed_in", user_id=session.user.id)
        return session

    async def sign_up(
        self,
        email: str,
        password: str,
        metadata: dict[str, Any] | None = None,
        redirect_to: str | None = None,
    ) -> SignUpResult:
        """Register a new user.

        When the project requires email confirmation the SDK answers with the
        user and no session.
        """
        options: dict[str, Any] = {"data": metadata or {}}
        if redirect_to:
            options["email_redirect_to"] = redirect_to
        response = await self._call(
            "sign_up",
            self._client.auth.sign_up(
                {"email": email, "password": password, "options": options}
            ),
        )
        user = _to_identity(response.user) if response.user is not None else None
        session = _to_session(response.session)
        if session is None:
            logger.info("signed_up_pending_confirmation", user_id=user.id if user else None)
        return SignUpResult(user=user, session=session)

    async def sign_out(self) -> None:
        """Revoke the session server-side; the local session is always dropped."""
        try:
            await self._call("sign_out", self._client.auth.sign_out())
        finally:
            if not self._signed_out:
                self._signed_out = True
                await self._notify(AuthEvent.SIGNED_OUT, None)

    async def get_session(self) -> AuthSession | None:
        """Return the current session; the SDK refreshes an expired one."""
        if self._signed_out:
            return None
        try:
            session = await self._call("get_session", self._client.auth.get_session())
        except AuthenticationError:
            # Refresh token rejected; the SDK has already signed out
            logger.info("refresh_token_rejected")
            return None
        return _to_session(session)

    async def get_user(self, access_token: str | None = None) -> AuthIdentity | None:
        """Validate a token with the backend and return its identity."""
        if access_token is None and self._signed_out:
            return None
        try:
            response = await self._call("get_user", self._client.auth.get_user(access_token))
        except AuthenticationError:
            return None
        if response is None or response.user is None:
            return None
        return _to_identity(response.user)

    # --- Email links ---

    async def verify_otp(self, token_hash: str, type: str) -> AuthSession | None:
        """Verify a hashed one-time token from a confirmation or recovery email."""
        response = await self._call(
            "verify_otp",
            self._client.auth.verify_otp({"token_hash": token_hash, "type": type}),
        )
        return _to_session(response.session)

    async def exchange_code_for_session(self, auth_code: str) -> AuthSession:
        """Trade a PKCE auth code for a session.

        The code verifier lives in this client's memory, so the code must be
        exchanged by the same caller session that signed up.
        """
        response = await self._call(
            "exchange_code_for_session",
            self._client.auth.exchange_code_for_session({"auth_code": auth_code}),
        )
        session = _to_session(response.session)
        if session is None:
            raise AuthenticationError(
                message="Confirmation code returned no session",
                error_code=ErrorCode.INVALID_TOKEN,
            )
        return session

    async def reset_password_for_email(self, email: str, redirect_to: str | None = None) -> None:
        """Send a password recovery email."""
        options = {"redirect_to": redirect_to} if redirect_to else {}
        await self._call(
            "reset_password_for_email",
            self._client.auth.reset_password_for_email(email, options),
        )

    async def update_user(
        self,
        password: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> AuthIdentity:
        """Update the signed-in user's password and/or metadata."""
        if self._signed_out:
            raise AuthenticationError()

        attributes: dict[str, Any] = {}
        if password is not None:
            attributes["password"] = password
        if data is not None:
            attributes["data"] = data

        response = await self._call("update_user", self._client.auth.update_user(attributes))
        return _to_identity(response.user)


async def create_session_clients() -> SessionClients:
    """Auth and storage for one caller, sharing a single SDK client."""
    client = await create_supabase_client()
    return SessionClients(auth=SupabaseAuthClient(client), storage=SupabaseAvatarStorage(client))
