"""Identity and session entities issued by the auth backend."""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import structlog

logger = structlog.get_logger()


class AuthEvent(StrEnum):
    """Auth state change events pushed by the backend.

    ``UNKNOWN`` stands in for any event name this code does not know about;
    ``parse`` logs those so new backend event kinds are noticed.
    """

    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"
    PASSWORD_RECOVERY = "PASSWORD_RECOVERY"
    MFA_CHALLENGE_VERIFIED = "MFA_CHALLENGE_VERIFIED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, name: "str | AuthEvent") -> "AuthEvent":
        """Map a backend event name onto a known member."""
        if isinstance(name, AuthEvent):
            return name
        try:
            member = cls(name)
        except ValueError:
            logger.warning("unknown_auth_event", auth_event=name)
            return cls.UNKNOWN
        if member is cls.UNKNOWN:
            logger.warning("unknown_auth_event", auth_event=name)
        return member


# Events after which the profile is re-fetched
RECONCILING_EVENTS = frozenset(
    {AuthEvent.SIGNED_IN, AuthEvent.TOKEN_REFRESHED, AuthEvent.USER_UPDATED}
)


@dataclass(frozen=True)
class AuthIdentity:
    """Identity claims held by the auth backend for a user."""

    id: str
    email: str | None = None
    user_metadata: dict[str, Any] = field(default_factory=dict)
    app_metadata: dict[str, Any] = field(default_factory=dict)
    email_confirmed_at: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "AuthIdentity":
        """Build an identity from a GoTrue user object."""
        return cls(
            id=str(payload["id"]),
            email=payload.get("email") or None,
            user_metadata=dict(payload.get("user_metadata") or {}),
            app_metadata=dict(payload.get("app_metadata") or {}),
            email_confirmed_at=payload.get("email_confirmed_at"),
        )


@dataclass(frozen=True)
class AuthSession:
    """Backend-issued proof of authentication."""

    access_token: str
    refresh_token: str
    user: AuthIdentity
    expires_at: int | None = None
    token_type: str = "bearer"


@dataclass(frozen=True)
class SignUpResult:
    """Outcome of a registration call.

    ``session`` is None while the email address awaits confirmation.
    """

    user: AuthIdentity | None
    session: AuthSession | None = None
