"""Pydantic schemas for the session API."""

from pydantic import BaseModel, ConfigDict, Field, field_validator

from api.v1.schemas.profile import ProfileResponse
from domain.entities.auth_user import AuthUser, SynchronizerState


class EmailField(BaseModel):
    """Base schema carrying a validated ``email``."""

    email: str = Field(..., min_length=3, max_length=255)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        """Basic email validation."""
        v = v.strip().lower()
        if "@" not in v or "." not in v.split("@")[-1]:
            raise ValueError("Invalid email address")
        return v


class SignInRequest(EmailField):
    """Credentials for password sign-in."""

    password: str = Field(..., min_length=1)


class SignUpRequest(EmailField):
    """Registration form."""

    password: str = Field(..., min_length=6)
    username: str = Field(..., min_length=3, max_length=50, pattern=r"^[A-Za-z0-9_.-]+$")
    full_name: str = Field(..., min_length=1, max_length=255)


class SignUpResponse(BaseModel):
    """Result of a registration."""

    user_id: str | None
    confirmation_required: bool


class VisibilityRequest(BaseModel):
    """UI visibility change."""

    visible: bool


class PasswordResetRequest(EmailField):
    """Ask for a password recovery email."""


class PasswordUpdateRequest(BaseModel):
    """Set a new password for the signed-in user."""

    password: str = Field(..., min_length=6)


class AuthUserResponse(BaseModel):
    """Signed-in user with profile."""

    id: str
    email: str | None
    profile: ProfileResponse

    @classmethod
    def from_entity(cls, user: AuthUser) -> "AuthUserResponse":
        return cls(
            id=user.id,
            email=user.email,
            profile=ProfileResponse.from_entity(user.profile),
        )


class SessionStateResponse(BaseModel):
    """The reactive ``{user, loading}`` cell.

    ``loading`` true: still determining; ``authenticated`` false with
    ``loading`` false: determined signed out.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "user": None,
                "loading": False,
                "authenticated": False,
            }
        },
    )

    user: AuthUserResponse | None
    loading: bool
    authenticated: bool

    @classmethod
    def from_state(cls, state: SynchronizerState) -> "SessionStateResponse":
        return cls(
            user=AuthUserResponse.from_entity(state.user) if state.user else None,
            loading=state.loading,
            authenticated=state.authenticated,
        )


class ConfirmationResponse(BaseModel):
    """Outcome of following an email confirmation link."""

    status: str
    message: str
    user_id: str
