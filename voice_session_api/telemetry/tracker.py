"""
Application Insights Telemetry Tracker

Exports custom events, metrics and exceptions to Azure Application Insights
through opencensus when a connection string is configured. Every event is
also written to the in-memory dev buffer.
"""

import logging
import random
from typing import Any

from opencensus.ext.azure import metrics_exporter
from opencensus.ext.azure.log_exporter import AzureLogHandler
from opencensus.stats import aggregation as aggregation_module
from opencensus.stats import measure as measure_module
from opencensus.stats import stats as stats_module
from opencensus.stats import view as view_module
from opencensus.tags import tag_map as tag_map_module

from .config import get_telemetry_config
from .context import get_request_context
from .dev_logger import log_dev_event

_app_insights_logger: logging.Logger | None = None
_metrics_exporter: metrics_exporter.MetricsExporter | None = None
_stats_recorder = stats_module.stats.stats_recorder
_measures: dict[str, measure_module.MeasureFloat] = {}


def initialize_telemetry() -> logging.Logger | None:
    """
    Initialize Application Insights telemetry. Call once at startup.

    Returns:
        Logger instance if successful, None if disabled or connection string missing
    """
    global _app_insights_logger, _metrics_exporter

    if _app_insights_logger is not None:
        return _app_insights_logger

    config = get_telemetry_config()

    if not config.enabled:
        logging.info("[Telemetry] Telemetry disabled by configuration")
        return None

    if not config.app_insights_connection_string:
        logging.warning(
            "[Telemetry] No Application Insights connection string found. Telemetry disabled."
        )
        return None

    try:
        logger = logging.getLogger("voice_session_telemetry")
        logger.setLevel(logging.INFO)

        azure_handler = AzureLogHandler(connection_string=config.app_insights_connection_string)

        def add_context(envelope):
            envelope.data.baseData.properties.update(get_request_context())
            envelope.data.baseData.properties["app_id"] = config.app_id
            envelope.data.baseData.properties["environment"] = config.environment
            return True

        azure_handler.add_telemetry_processor(add_context)
        logger.addHandler(azure_handler)

        _metrics_exporter = metrics_exporter.new_metrics_exporter(
            connection_string=config.app_insights_connection_string
        )
        _app_insights_logger = logger

        logging.info("[Telemetry] Application Insights initialized successfully")
        track_event("app_started", {"app_id": config.app_id, "environment": config.environment})
        return logger

    except Exception as e:
        logging.error(f"[Telemetry] Failed to initialize Application Insights: {e}")
        return None


def _merged_properties(properties: dict[str, Any] | None) -> dict[str, Any]:
    config = get_telemetry_config()
    return {
        **get_request_context(),
        "app_id": config.app_id,
        "environment": config.environment,
        **(properties or {}),
    }


def track_event(name: str, properties: dict[str, Any] | None = None) -> None:
    """
    Track a custom event.

    Request context (request_id, user_id) and app identity are added automatically.
    """
    merged = _merged_properties(properties)
    log_dev_event(name, merged)

    if _app_insights_logger and random.random() < get_telemetry_config().sample_rate:
        _app_insights_logger.info(name, extra={"custom_dimensions": merged})


def track_metric(name: str, value: float, properties: dict[str, Any] | None = None) -> None:
    """Track a custom metric value."""
    merged = _merged_properties(properties)
    log_dev_event("metric", {"metric_name": name, "metric_value": value, **merged})

    if not _metrics_exporter:
        return

    measure = _measures.get(name)
    if measure is None:
        measure = measure_module.MeasureFloat(name, name, "units")
        view = view_module.View(
            name,
            name,
            [],
            measure,
            aggregation_module.LastValueAggregation(),
        )
        stats_module.stats.view_manager.register_view(view)
        _measures[name] = measure

    mmap = _stats_recorder.new_measurement_map()
    tmap = tag_map_module.TagMap()
    for key, val in merged.items():
        if val is not None:
            tmap.insert(key, str(val))

    mmap.measure_float_put(measure, value)
    mmap.record(tmap)


def track_exception(
    exception: Exception, properties: dict[str, Any] | None = None, level: str = "ERROR"
) -> None:
    """Track an exception. Exceptions are never sampled out."""
    merged = _merged_properties(
        {
            "error_type": type(exception).__name__,
            "error_message": str(exception),
            **(properties or {}),
        }
    )
    log_dev_event("exception", merged)

    if _app_insights_logger:
        _app_insights_logger.log(
            getattr(logging, level.upper(), logging.ERROR),
            f"Exception: {type(exception).__name__}",
            exc_info=exception,
            extra={"custom_dimensions": merged},
        )


def flush_telemetry() -> None:
    """Flush telemetry immediately (call before shutdown)."""
    if _app_insights_logger:
        for handler in _app_insights_logger.handlers:
            if hasattr(handler, "flush"):
                handler.flush()
