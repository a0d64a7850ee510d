"""Session dependencies for FastAPI.

Each caller is identified by an opaque session cookie. The registry created
in the application lifespan maps it to that caller's synchronizer and
services; requests without a known cookie act on nobody's behalf.
"""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Request, Response

from core.config import settings
from core.exceptions import AuthenticationError
from domain.entities.auth_user import AuthUser
from domain.services.session_registry import ClientSession, SessionRegistry
from domain.services.session_synchronizer import SessionSynchronizer


def get_registry(request: Request) -> SessionRegistry:
    """Get the session registry owned by the running application."""
    registry: SessionRegistry = request.app.state.sessions
    return registry


Registry = Annotated[SessionRegistry, Depends(get_registry)]


def set_session_cookie(response: Response, session_id: str) -> None:
    response.set_cookie(
        settings.session_cookie_name,
        session_id,
        max_age=int(settings.session_idle_timeout_seconds),
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(
        settings.session_cookie_name,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )


async def get_client_session(request: Request, registry: Registry) -> ClientSession:
    """
    Dependency to get the caller's session from its cookie.

    Raises:
        AuthenticationError: If the request carries no known session
    """
    session = await registry.get(request.cookies.get(settings.session_cookie_name))
    if session is None:
        raise AuthenticationError(message="Sign in required")
    return session


async def get_or_create_client_session(
    request: Request, response: Response, registry: Registry
) -> AsyncGenerator[ClientSession, None]:
    """
    Dependency for flows that may start a session.

    A new session gets its cookie set, and is closed again if the request
    fails.
    """
    session = await registry.get(request.cookies.get(settings.session_cookie_name))
    if session is not None:
        yield session
        return

    session = await registry.create()
    set_session_cookie(response, session.id)
    try:
        yield session
    except Exception:
        await registry.discard(session.id)
        raise


ExistingSession = Annotated[ClientSession, Depends(get_client_session)]
NewOrExistingSession = Annotated[ClientSession, Depends(get_or_create_client_session)]


def get_synchronizer(session: ExistingSession) -> SessionSynchronizer:
    """Get the caller's synchronizer."""
    return session.synchronizer


Synchronizer = Annotated[SessionSynchronizer, Depends(get_synchronizer)]


async def get_current_user(request: Request, synchronizer: Synchronizer) -> AuthUser:
    """
    Dependency to get the signed-in user.

    Raises:
        AuthenticationError: If nobody is signed in
    """
    user = synchronizer.state.user
    if user is None:
        raise AuthenticationError(message="Sign in required")
    request.state.user_id = user.id
    return user


# Type alias for convenience in route handlers
CurrentUser = Annotated[AuthUser, Depends(get_current_user)]
