"""
Development Event Buffer

Keeps recent telemetry events in memory so they can be inspected locally
(and asserted on in tests) without Application Insights.
"""

import json
import logging
from collections import deque
from datetime import UTC, datetime
from typing import Any

from .config import get_telemetry_config

logger = logging.getLogger(__name__)

_debug_enabled = False
_event_buffer: deque[dict[str, Any]] = deque(maxlen=get_telemetry_config().dev_logger_max_events)
_current_size_bytes = 0


def set_debug(enabled: bool) -> None:
    """Also write every event to the log at INFO level."""
    global _debug_enabled
    _debug_enabled = enabled


def log_dev_event(event_name: str, properties: dict[str, Any]) -> None:
    """Append an event to the buffer, dropping the oldest ones past the size limit."""
    global _current_size_bytes

    config = get_telemetry_config()
    if not config.enable_dev_logger:
        return

    event = {
        "timestamp": datetime.now(UTC).isoformat(),
        "event_name": event_name,
        "properties": properties,
    }
    event_size = len(json.dumps(event, default=str).encode("utf-8"))
    max_size = config.dev_logger_max_size_mb * 1024 * 1024

    while _event_buffer and (
        _current_size_bytes + event_size > max_size or len(_event_buffer) == _event_buffer.maxlen
    ):
        oldest = _event_buffer.popleft()
        _current_size_bytes -= len(json.dumps(oldest, default=str).encode("utf-8"))

    _event_buffer.append(event)
    _current_size_bytes += event_size

    if _debug_enabled:
        logger.info(f"[Telemetry] {event_name}: {json.dumps(properties, default=str)}")


def get_dev_logs(event_name: str | None = None) -> list[dict[str, Any]]:
    """Buffered events, optionally only those named ``event_name``."""
    if event_name is None:
        return list(_event_buffer)
    return [e for e in _event_buffer if e["event_name"] == event_name]


def export_dev_logs() -> str:
    """Buffered events as JSON Lines."""
    return "\n".join(json.dumps(event, default=str) for event in _event_buffer)


def clear_dev_logs() -> None:
    """Clear all buffered events."""
    global _current_size_bytes
    _event_buffer.clear()
    _current_size_bytes = 0
