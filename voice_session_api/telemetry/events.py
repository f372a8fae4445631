"""
Telemetry Event Names

Naming convention: {domain}_{entity}_{action} or {domain}_{action}.
"""


class TelemetryEvents:
    """Centralized telemetry event names."""

    # Request lifecycle
    REQUEST_RECEIVED = "request_received"
    REQUEST_COMPLETED = "request_completed"
    REQUEST_FAILED = "request_failed"

    # Live session lifecycle
    SESSION_STARTED = "session_started"
    SESSION_START_FAILED = "session_start_failed"
    SESSION_STOPPED = "session_stopped"
    SESSION_MESSAGE_SENT = "session_message_sent"

    # Archival
    ARCHIVE_STARTED = "archive_started"
    ARCHIVE_COMPLETED = "archive_completed"
    ARCHIVE_SKIPPED = "archive_skipped"
    ARCHIVE_FAILED = "archive_failed"
    AUDIO_DOWNLOAD_RETRIED = "audio_download_retried"

    # Errors
    AUTHENTICATION_ERROR = "authentication_error"
