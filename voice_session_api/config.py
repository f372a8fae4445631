"""Application configuration using pydantic-settings."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service settings
    service_host: str = Field(default="0.0.0.0", description="Host to bind the service")
    service_port: int = Field(default=8765, description="Port to bind the service")
    service_workers: int = Field(
        default=1,
        description="Number of worker processes (live sessions are held in process memory)",
    )
    log_level: str = Field(default="info", description="Logging level")

    # Database - PostgreSQL connection
    database_url: str | None = Field(
        default=None,
        description="Full database connection URL (overrides individual fields)",
    )
    database_user: str = Field(default="voice_dev", description="Database username")
    database_password: str = Field(default="dev_password", description="Database password")
    database_host: str = Field(default="localhost", description="Database host")
    database_port: int = Field(default=5432, description="Database port")
    database_name: str = Field(default="voice_dev", description="Database name")
    database_pool_min_size: int = Field(
        default=2,
        description="Minimum database connection pool size",
    )
    database_pool_max_size: int = Field(
        default=10,
        description="Maximum database connection pool size",
    )
    database_ssl_mode: str = Field(
        default="prefer",
        description="SSL mode: disable, prefer, require",
    )

    # ElevenLabs conversational agents
    elevenlabs_api_key: str | None = Field(default=None, description="ElevenLabs API key")
    elevenlabs_api_base_url: str = Field(
        default="https://api.elevenlabs.io",
        description="ElevenLabs REST API base URL",
    )
    elevenlabs_ws_base_url: str = Field(
        default="wss://api.elevenlabs.io",
        description="ElevenLabs websocket base URL (used when no signed URL is available)",
    )
    elevenlabs_agent_id: str | None = Field(
        default=None,
        description="Default agent used when a start request names none",
    )
    elevenlabs_request_timeout_seconds: float = Field(
        default=30.0, description="Timeout for ElevenLabs REST calls"
    )
    elevenlabs_summary_page_size: int = Field(
        default=30, description="Conversations requested per summary page"
    )
    elevenlabs_summary_max_pages: int = Field(
        default=1,
        description="Maximum summary pages fetched per archival run",
    )

    # Audio storage
    audio_storage_backend: str = Field(
        default="local",
        description="Where archived audio is stored: local, supabase",
    )
    audio_storage_path: Path = Field(
        default=Path("./archived_audio"),
        description="Root directory for the local audio backend",
    )
    supabase_url: str | None = Field(default=None, description="Supabase project URL")
    supabase_service_key: str | None = Field(
        default=None, description="Supabase service role key used for storage uploads"
    )
    supabase_audio_bucket: str = Field(
        default="session-audio", description="Storage bucket for archived audio"
    )

    # Archival tuning. These encode provider latency assumptions.
    archival_lookback_seconds: float = Field(
        default=300.0,
        description="How far before session start a conversation may have been created",
    )
    archival_lookahead_seconds: float = Field(
        default=600.0,
        description="How far after now a conversation timestamp is still accepted",
    )
    audio_download_attempts: int = Field(
        default=3, ge=1, description="Total attempts to download conversation audio"
    )
    audio_download_retry_delay_seconds: float = Field(
        default=3.0, ge=0, description="Delay between audio download attempts"
    )
    archival_shutdown_grace_seconds: float = Field(
        default=10.0,
        description="How long shutdown waits for in-flight archival before cancelling it",
    )

    # Security
    secret_key: str = Field(
        default="development-secret-key-change-in-production",
        description="Secret key for HS256 JWT verification",
    )

    # CORS
    allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:8080",
        description="Allowed CORS origins (comma-separated)",
    )

    def get_allowed_origins(self) -> list[str]:
        """Get allowed origins as a list."""
        if isinstance(self.allowed_origins, str):
            return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]
        return self.allowed_origins

    # Authentication
    auth_required: bool = Field(
        default=False,
        description="Require authentication (set to True for production)",
    )
    dev_user_id: str = Field(
        default="dev-user", description="User id assigned to requests when auth is disabled"
    )

    # JWT settings
    jwt_algorithm: str = Field(default="HS256", description="JWT algorithm (HS256 or RS256)")
    jwt_public_key: str | None = Field(
        default=None, description="PEM public key used to verify RS256 tokens"
    )
    jwt_issuer: str | None = Field(default=None, description="Expected JWT issuer (iss claim)")
    jwt_audience: str | None = Field(default=None, description="Expected JWT audience (aud claim)")

    def get_database_url(self) -> str:
        """
        Get PostgreSQL connection URL.

        If database_url is set, use it directly.
        Otherwise, construct from individual components.
        """
        from urllib.parse import quote_plus

        if self.database_url:
            return self.database_url

        # URL-encode username and password to handle special characters
        user = quote_plus(self.database_user)
        password = quote_plus(self.database_password)

        ssl_param = ""
        if self.database_ssl_mode == "require":
            ssl_param = "?sslmode=require"
        elif self.database_ssl_mode == "prefer":
            ssl_param = "?sslmode=prefer"

        return (
            f"postgresql://{user}:{password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}{ssl_param}"
        )


# Global settings instance
settings = Settings()
