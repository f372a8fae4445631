"""
Telemetry Configuration

Connection, identity, sampling and dev-buffer settings for session and
archival telemetry.
"""

from pydantic_settings import BaseSettings


class TelemetryConfig(BaseSettings):
    """Telemetry configuration loaded from TELEMETRY_* environment variables."""

    # Connection
    app_insights_connection_string: str | None = None
    enabled: bool = True

    # Application identity, attached to every event
    app_id: str = "voice-session-api"
    environment: str = "development"

    # Sampling of non-error events
    sample_rate: float = 1.0

    # Development event buffer
    enable_dev_logger: bool = True
    dev_logger_max_events: int = 1000
    dev_logger_max_size_mb: int = 10

    model_config = {
        "env_prefix": "TELEMETRY_",
        "env_file": ".env",
        "extra": "ignore",
    }


# Global instance (lazy loaded)
_config: TelemetryConfig | None = None


def get_telemetry_config() -> TelemetryConfig:
    """Get the global telemetry configuration instance."""
    global _config
    if _config is None:
        _config = TelemetryConfig()
    return _config
