"""Authentication backend client protocol."""

from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from domain.entities.session import AuthEvent, AuthIdentity, AuthSession, SignUpResult

AuthStateHandler = Callable[[AuthEvent, AuthSession | None], Awaitable[None]]


class AuthSubscription:
    """Handle returned by ``on_auth_state_change``; call ``unsubscribe`` to stop."""

    def __init__(self, handlers: list[AuthStateHandler], handler: AuthStateHandler) -> None:
        self._handlers = handlers
        self._handler = handler

    @property
    def active(self) -> bool:
        return self._handler in self._handlers

    def unsubscribe(self) -> None:
        if self._handler in self._handlers:
            self._handlers.remove(self._handler)


class IAuthClient(Protocol):
    """Protocol for the hosted auth backend."""

    async def aclose(self) -> None:
        """Release the client; handlers stop receiving events."""
        ...

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        """
        Exchange credentials for a session.

        Raises:
            AuthenticationError: If the credentials are rejected
        """
        ...

    async def sign_up(
        self,
        email: str,
        password: str,
        metadata: dict[str, Any] | None = None,
        redirect_to: str | None = None,
    ) -> SignUpResult:
        """Register a new identity, optionally asking for a confirmation link."""
        ...

    async def sign_out(self) -> None:
        """Revoke the current session and drop it locally."""
        ...

    async def get_session(self) -> AuthSession | None:
        """Return the current session, refreshing it if it has expired."""
        ...

    async def get_user(self, access_token: str | None = None) -> AuthIdentity | None:
        """
        Ask the backend who the token belongs to.

        Returns:
            The identity, or None if there is no session or the backend
            rejects the token
        """
        ...

    def on_auth_state_change(self, handler: AuthStateHandler) -> AuthSubscription:
        """Subscribe to auth state change events."""
        ...

    async def verify_otp(self, token_hash: str, type: str) -> AuthSession | None:
        """Verify an emailed one-time token."""
        ...

    async def exchange_code_for_session(self, auth_code: str) -> AuthSession:
        """Finish a PKCE flow started by ``sign_up``."""
        ...

    async def reset_password_for_email(self, email: str, redirect_to: str | None = None) -> None:
        """Send a password recovery email."""
        ...

    async def update_user(
        self,
        password: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> AuthIdentity:
        """Change the signed-in user's password or metadata."""
        ...
