"""Main FastAPI application entry point."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import ORJSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from api.exception_handlers import setup_exception_handlers
from api.middleware.logging import RequestLoggingMiddleware
from api.middleware.request_id import RequestIDMiddleware
from api.middleware.security import SecurityHeadersMiddleware
from api.routes.health import router as health_router
from api.v1 import router as v1_router
from core.config import settings
from core.logging import setup_logging
from core.rate_limit import limiter, rate_limit_exceeded_handler
from domain.services.profile_service import ProfileService
from domain.services.session_registry import ClientFactory, SessionRegistry
from infrastructure.auth.supabase_client import create_session_clients
from infrastructure.database.session import async_session_factory
from infrastructure.database.sqlalchemy_uow import SQLAlchemyUnitOfWork

logger = structlog.get_logger()

# Initialize structured logging
setup_logging()


def build_lifespan(
    client_factory: ClientFactory | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
):
    """Build the lifespan that owns the caller session registry."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        factory = session_factory or async_session_factory

        def uow_factory() -> SQLAlchemyUnitOfWork:
            return SQLAlchemyUnitOfWork(factory)

        registry = SessionRegistry(client_factory or create_session_clients, uow_factory)
        app.state.sessions = registry
        app.state.profile_service = ProfileService(uow_factory)

        logger.info("application_started")
        try:
            yield
        finally:
            await registry.close()
            logger.info("application_stopped")

    return lifespan


def create_app(
    client_factory: ClientFactory | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        lifespan=build_lifespan(client_factory, session_factory),
        default_response_class=ORJSONResponse,
        title=settings.app_name,
        description=(
            "## Recipe Share session service\n\n"
            "Keeps the signed-in user and their profile in step with "
            "Supabase Auth.\n\n"
            "### Session state\n"
            "`GET /api/v1/auth/state` returns `{user, loading}`. While "
            "`loading` is true the session is still being determined.\n\n"
            "### Rate Limits\n"
            "- Reads: 30 requests/minute\n"
            "- Credential and profile writes: 10 requests/minute"
        ),
        version="1.0.0",
        debug=settings.debug,
        contact={
            "name": "Recipe Share Support",
        },
        license_info={
            "name": "MIT",
        },
        openapi_tags=[
            {
                "name": "health",
                "description": "Health check endpoints",
            },
            {
                "name": "auth",
                "description": "Session state, sign-in/up/out and emailed-link flows",
            },
            {
                "name": "profiles",
                "description": "Profile and avatar management",
            },
        ],
    )

    # Rate limiting
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    # Security & tracking middleware (LIFO order - last added = outermost)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # GZip compression for responses > 1KB
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Setup exception handlers
    setup_exception_handlers(app)

    # Include routers
    app.include_router(health_router)
    app.include_router(v1_router, prefix="/api/v1")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=not settings.is_production,
    )
