"""Application settings and configuration.

This module defines all configuration options for the vent feed engine.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="Vent Feed", alias="VENT_APP_NAME")
    app_version: str = Field(default="0.1.0", alias="VENT_APP_VERSION")
    debug: bool = Field(default=False, alias="VENT_DEBUG")

    # Backend selection: "sql" uses the embedded SQLAlchemy backend,
    # "rest" talks to a PostgREST-style service over HTTP.
    backend: str = Field(default="sql", alias="VENT_BACKEND")
    database_url: str = Field(default="sqlite:///./vent.db", alias="VENT_DATABASE_URL")
    sql_debug: bool = Field(default=False, alias="VENT_SQL_DEBUG")

    # REST backend
    rest_base_url: str | None = Field(default=None, alias="VENT_REST_BASE_URL")
    rest_api_key: str | None = Field(default=None, alias="VENT_REST_API_KEY")
    rest_storage_path: str = Field(default="/storage/v1", alias="VENT_REST_STORAGE_PATH")
    http_timeout_seconds: float = Field(default=10.0, alias="VENT_HTTP_TIMEOUT_SECONDS")
    poll_interval_seconds: float = Field(default=2.0, alias="VENT_POLL_INTERVAL_SECONDS")
    circuit_failure_threshold: int = Field(default=5, alias="VENT_CIRCUIT_FAILURE_THRESHOLD")
    circuit_recovery_seconds: float = Field(
        default=60.0,
        alias="VENT_CIRCUIT_RECOVERY_SECONDS",
    )

    # Blob storage
    avatar_bucket: str = Field(default="profile-picture", alias="VENT_AVATAR_BUCKET")
    public_blob_base_url: str = Field(
        default="http://localhost:8000/blobs",
        alias="VENT_PUBLIC_BLOB_BASE_URL",
    )

    # Content limits
    max_post_length: int = Field(default=500, alias="VENT_MAX_POST_LENGTH")
    max_reply_length: int = Field(default=500, alias="VENT_MAX_REPLY_LENGTH")

    # Live subscription resubscribe policy (0 attempts disables it)
    resubscribe_max_attempts: int = Field(default=0, alias="VENT_RESUBSCRIBE_MAX_ATTEMPTS")
    resubscribe_initial_delay_seconds: float = Field(
        default=0.5,
        alias="VENT_RESUBSCRIBE_INITIAL_DELAY_SECONDS",
    )
    resubscribe_max_delay_seconds: float = Field(
        default=30.0,
        alias="VENT_RESUBSCRIBE_MAX_DELAY_SECONDS",
    )

    # Recursive reply counting yields to the loop every N visited nodes
    reply_count_yield_every: int = Field(default=64, alias="VENT_REPLY_COUNT_YIELD_EVERY")

    # Link preview resolution
    link_preview_timeout_seconds: float = Field(
        default=5.0,
        alias="VENT_LINK_PREVIEW_TIMEOUT_SECONDS",
    )

    # CORS configuration for web frontend access
    cors_origins: list[str] = Field(default=["*"], alias="VENT_CORS_ORIGINS")
    cors_allow_credentials: bool = Field(default=True, alias="VENT_CORS_ALLOW_CREDENTIALS")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def rest_enabled(self) -> bool:
        """Return True when the REST backend is selected and configured."""
        return self.backend == "rest" and bool(self.rest_base_url)


settings = Settings()
