"""Session API routes.

These endpoints drive the caller's session synchronizer the way a UI would: the
current ``{user, loading}`` state, sign-in/up/out, explicit refresh and
visibility changes, plus the emailed-link flows. Sign-in, sign-up and the
emailed links open a cookie-bound session when the caller has none; every
other endpoint needs that cookie.
"""

from fastapi import APIRouter, Depends, Query, Request, Response, status

from api.dependencies.auth import (
    ExistingSession,
    NewOrExistingSession,
    Registry,
    Synchronizer,
    clear_session_cookie,
)
from api.v1.dependencies import get_account_service, get_link_account_service
from api.v1.schemas.auth import (
    AuthUserResponse,
    ConfirmationResponse,
    PasswordResetRequest,
    PasswordUpdateRequest,
    SessionStateResponse,
    SignInRequest,
    SignUpRequest,
    SignUpResponse,
    VisibilityRequest,
)
from core.rate_limit import CREDENTIAL_LIMIT, READ_LIMIT, limiter
from domain.services.account_service import AccountService

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get(
    "/state",
    response_model=SessionStateResponse,
    summary="Current session state",
)
@limiter.limit(READ_LIMIT)  # type: ignore[untyped-decorator]
async def get_state(request: Request, synchronizer: Synchronizer) -> SessionStateResponse:
    """Return the synchronizer's current snapshot without contacting the backend."""
    return SessionStateResponse.from_state(synchronizer.state)


@router.post(
    "/sign-in",
    response_model=AuthUserResponse,
    summary="Sign in with email and password",
    responses={
        200: {"description": "Signed in"},
        401: {"description": "Invalid credentials"},
        503: {"description": "Auth backend unavailable"},
    },
)
@limiter.limit(CREDENTIAL_LIMIT)  # type: ignore[untyped-decorator]
async def sign_in(
    request: Request,
    body: SignInRequest,
    session: NewOrExistingSession,
) -> AuthUserResponse:
    """Sign in; the session state is published before this returns."""
    user = await session.synchronizer.sign_in(body.email, body.password)
    return AuthUserResponse.from_entity(user)


@router.post(
    "/sign-up",
    response_model=SignUpResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new account",
)
@limiter.limit(CREDENTIAL_LIMIT)  # type: ignore[untyped-decorator]
async def sign_up(
    request: Request,
    body: SignUpRequest,
    session: NewOrExistingSession,
) -> SignUpResponse:
    """
    Register a user.

    When the project requires email confirmation no session is returned and
    `confirmation_required` is true.
    """
    result = await session.synchronizer.sign_up(
        body.email,
        body.password,
        username=body.username,
        full_name=body.full_name,
    )
    return SignUpResponse(
        user_id=result.user.id if result.user else None,
        confirmation_required=result.session is None,
    )


@router.post(
    "/sign-out",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Sign out",
)
async def sign_out(
    response: Response, session: ExistingSession, registry: Registry
) -> None:
    """Sign out and close the caller's session, even if the backend call fails."""
    try:
        await session.synchronizer.sign_out()
    finally:
        await registry.discard(session.id)
        clear_session_cookie(response)


@router.post(
    "/refresh",
    response_model=SessionStateResponse,
    summary="Force a session re-check",
)
@limiter.limit(READ_LIMIT)  # type: ignore[untyped-decorator]
async def refresh(request: Request, synchronizer: Synchronizer) -> SessionStateResponse:
    """Re-read the user and profile from the backend and publish the result."""
    state = await synchronizer.refresh()
    return SessionStateResponse.from_state(state)


@router.post(
    "/visibility",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Report a UI visibility change",
)
async def visibility(body: VisibilityRequest, synchronizer: Synchronizer) -> None:
    """Becoming visible schedules a debounced re-check."""
    synchronizer.notify_visibility(body.visible)


@router.get(
    "/confirm",
    response_model=ConfirmationResponse,
    summary="Complete email confirmation",
    responses={
        200: {"description": "Email confirmed"},
        400: {"description": "Invalid or expired confirmation link"},
    },
)
@limiter.limit(CREDENTIAL_LIMIT)  # type: ignore[untyped-decorator]
async def confirm_email(
    request: Request,
    account_service: AccountService = Depends(get_link_account_service),
    token_hash: str | None = Query(None),
    type: str | None = Query(None),
    code: str | None = Query(None),
    access_token: str | None = Query(None),
) -> ConfirmationResponse:
    """Handle the link from the sign-up confirmation email."""
    identity = await account_service.confirm_email(
        token_hash=token_hash,
        type=type,
        code=code,
        access_token=access_token,
    )
    return ConfirmationResponse(
        status="success",
        message="Email confirmed successfully! Welcome to Recipe Share!",
        user_id=identity.id,
    )


@router.post(
    "/password/reset",
    status_code=status.HTTP_202_ACCEPTED,
    summary="Request a password recovery email",
)
@limiter.limit(CREDENTIAL_LIMIT)  # type: ignore[untyped-decorator]
async def request_password_reset(
    request: Request,
    body: PasswordResetRequest,
    account_service: AccountService = Depends(get_link_account_service),
) -> dict[str, str]:
    await account_service.request_password_reset(body.email)
    return {"message": "If the address is registered, a reset link has been sent"}


@router.post(
    "/password/update",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Set a new password",
)
@limiter.limit(CREDENTIAL_LIMIT)  # type: ignore[untyped-decorator]
async def update_password(
    request: Request,
    body: PasswordUpdateRequest,
    account_service: AccountService = Depends(get_account_service),
) -> None:
    """Requires a signed-in session (including one from a recovery link)."""
    await account_service.update_password(body.password)
