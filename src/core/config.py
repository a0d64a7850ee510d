"""Application configuration using Pydantic Settings."""

from functools import lru_cache

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="Recipe Share")
    app_env: str = Field(default="development")
    debug: bool = Field(default=False)

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    # Public site base URL, used to build email links
    site_url: str = Field(
        default="http://localhost:3000",
        description="Base URL of the web application (no trailing slash needed)",
    )

    # Database
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/recipes",
        description="PostgreSQL connection URL with asyncpg driver",
    )

    # Supabase
    supabase_url: str = Field(
        default="",
        description="Supabase project URL (e.g. https://xyzabc.supabase.co)",
    )
    supabase_anon_key: str = Field(
        default="",
        description="Supabase anonymous/public API key",
    )
    avatar_bucket: str = Field(default="avatars")

    # Session synchronisation (seconds)
    auth_bootstrap_timeout_seconds: float = Field(
        default=10.0,
        description="Upper bound on the initial session lookup before loading is forced off",
    )
    profile_fetch_timeout_seconds: float = Field(
        default=5.0,
        description="Upper bound on a profile lookup before the placeholder is used",
    )
    session_reconcile_interval_seconds: float = Field(default=30.0)
    visibility_debounce_seconds: float = Field(default=1.0)
    http_timeout_seconds: float = Field(default=10.0)

    # Caller sessions
    session_cookie_name: str = Field(default="recipe_share_session")
    session_idle_timeout_seconds: float = Field(
        default=3600.0,
        description="Caller sessions unused for this long are closed",
    )
    max_client_sessions: int = Field(
        default=1000,
        description="Open caller sessions kept before the least recently used is closed",
    )

    @computed_field  # type: ignore[prop-decorator]
    @property
    def email_confirm_url(self) -> str:
        """Where sign-up confirmation links send the user back to."""
        return f"{self.site_url.rstrip('/')}/auth/confirm"

    @computed_field  # type: ignore[prop-decorator]
    @property
    def password_reset_url(self) -> str:
        """Where password recovery links send the user back to."""
        return f"{self.site_url.rstrip('/')}/auth/reset-password"

    @computed_field  # type: ignore[prop-decorator]
    @property
    def async_database_url(self) -> str:
        """Ensure the database URL uses the asyncpg driver scheme.

        Render and other providers supply a standard ``postgresql://`` URL.
        SQLAlchemy's async engine requires ``postgresql+asyncpg://``.
        """
        url = self.database_url
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return url

    # Rate Limiting
    rate_limit_enabled: bool = Field(
        default=True,
        description="Enable/disable rate limiting (disable for tests)",
    )

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000",
        description="Comma-separated list of allowed origins",
    )

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"

    @computed_field  # type: ignore[prop-decorator]
    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
