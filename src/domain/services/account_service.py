"""Account flows driven by emailed links: confirmation and password recovery."""

from typing import Optional

import structlog

from core.config import settings
from core.exceptions import AuthenticationError, ConfirmationLinkError
from domain.entities.session import AuthIdentity
from domain.services.session_synchronizer import SessionSynchronizer
from infrastructure.auth.provider import IAuthClient

logger = structlog.get_logger()

# OTP types accepted from a sign-up confirmation link
CONFIRMATION_OTP_TYPES = frozenset({"signup", "email"})


class AccountService:
    """Service layer for email confirmation and password management."""

    def __init__(
        self,
        auth_client: IAuthClient,
        synchronizer: SessionSynchronizer,
        password_reset_redirect_url: str = settings.password_reset_url,
    ) -> None:
        self._auth = auth_client
        self._synchronizer = synchronizer
        self._password_reset_redirect_url = password_reset_redirect_url

    async def confirm_email(
        self,
        token_hash: Optional[str] = None,
        type: Optional[str] = None,
        code: Optional[str] = None,
        access_token: Optional[str] = None,
    ) -> AuthIdentity:
        """Complete sign-up from the parameters of a confirmation link.

        Accepts a PKCE ``code``, an ``access_token``, or a ``token_hash``
        with ``type=signup``; tried in that order.

        Raises:
            ConfirmationLinkError: If the link is malformed or rejected
        """
        if not any((token_hash, type, code, access_token)):
            raise ConfirmationLinkError("Invalid confirmation link - no parameters found")

        identity: AuthIdentity | None
        try:
            if code:
                session = await self._auth.exchange_code_for_session(code)
                identity = session.user
            elif access_token:
                identity = await self._auth.get_user(access_token)
            elif token_hash and type in CONFIRMATION_OTP_TYPES:
                session = await self._auth.verify_otp(token_hash, type)  # type: ignore[arg-type]
                identity = session.user if session else None
            else:
                raise ConfirmationLinkError()
        except AuthenticationError as e:
            logger.info("email_confirmation_rejected", reason=e.message)
            raise ConfirmationLinkError(e.message or "Failed to confirm email") from e

        if identity is None:
            raise ConfirmationLinkError("Failed to confirm email")

        logger.info("email_confirmed", user_id=identity.id)
        await self._synchronizer.refresh()
        return identity

    async def request_password_reset(self, email: str) -> None:
        """Email a password recovery link."""
        await self._auth.reset_password_for_email(
            email, redirect_to=self._password_reset_redirect_url
        )
        logger.info("password_reset_requested")

    async def update_password(self, new_password: str) -> AuthIdentity:
        """Set a new password for the signed-in user."""
        if not self._synchronizer.state.authenticated:
            raise AuthenticationError()
        identity = await self._auth.update_user(password=new_password)
        logger.info("password_updated", user_id=identity.id)
        return identity
