"""
OpenTelemetry initialization for the validator sentinel.

The sentinel runs as a FastAPI/Uvicorn service with background asyncio tasks
(NATS ingestion, block watcher, alert engine). Traces, metrics and logs are
exported over OTLP when OTEL_EXPORTER_OTLP_ENDPOINT is set; otherwise the
API-level no-op providers are used and every call here stays cheap.

Uvicorn loggers do not propagate to the root logger, so for the web service
the OTLP handler must be attached to both (see attach_logging_handler).
"""

import logging
import os

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import (
    OTELResourceDetector,
    ProcessResourceDetector,
    Resource,
)
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

DEFAULT_SERVICE_NAME = "validator-sentinel"
_UVICORN_LOGGERS = ("uvicorn", "uvicorn.access", "uvicorn.error")

_global_logger_provider = None
_otlp_logging_handler = None

logger = logging.getLogger(__name__)

_initialization_state = {
    "tracing": {"success": False, "error": None},
    "metrics": {"success": False, "error": None},
    "logs": {"success": False, "error": None},
    "http_instrumentation": {"success": False, "error": None},
}


def _env_enabled(name: str, default: str = "true") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


def parse_otlp_headers(headers_env: str, signal_type: str) -> dict[str, str] | None:
    """
    Parse OTLP headers from environment variable.

    Args:
        headers_env: Header string in format "key1=value1,key2=value2"
        signal_type: Signal type for logging (e.g., "tracing", "metrics", "logs")

    Returns:
        Dictionary of headers or None if invalid/empty
    """
    if not headers_env or not headers_env.strip():
        return None

    headers_list = [
        tuple(h.strip().split("=", 1))
        for h in headers_env.split(",")
        if "=" in h.strip()
    ]
    headers = {k.strip(): v.strip() for k, v in headers_list}

    if not headers:
        logger.warning(
            f"OTEL_EXPORTER_OTLP_HEADERS provided but no valid key=value pairs found. "
            f"Expected format: 'key1=value1,key2=value2'. Got: '{headers_env[:50]}...'"
        )
    else:
        logger.debug(f"Parsed {len(headers)} OTLP header(s) for {signal_type}")

    return headers


def _build_resource(service_name: str, service_version: str) -> Resource:
    manual_resource = Resource.create(
        {
            "service.name": service_name,
            "service.version": service_version,
            "deployment.environment": os.getenv("ENVIRONMENT", "production"),
            "service.instance.id": os.getenv("HOSTNAME", ""),
        }
    )

    try:
        process_resource = ProcessResourceDetector().detect()
    except Exception as e:
        logger.warning(f"Failed to detect process attributes: {e}")
        process_resource = Resource.empty()

    # OTELResourceDetector also reads OTEL_RESOURCE_ATTRIBUTES, which wins.
    try:
        otel_resource = OTELResourceDetector().detect()
    except Exception as e:
        logger.warning(f"Failed to detect OTEL attributes: {e}")
        otel_resource = Resource.empty()

    return manual_resource.merge(process_resource).merge(otel_resource)


def setup_telemetry(
    service_name: str = DEFAULT_SERVICE_NAME,
    service_version: str | None = None,
    otlp_endpoint: str | None = None,
    enable_metrics: bool = True,
    enable_traces: bool = True,
    enable_logs: bool = True,
) -> None:
    """
    Set up OpenTelemetry export for traces, metrics and logs.

    Args:
        service_name: Name of the service
        service_version: Version of the service
        otlp_endpoint: OTLP endpoint URL
        enable_metrics: Whether to enable metrics
        enable_traces: Whether to enable traces
        enable_logs: Whether to enable logs
    """
    global _global_logger_provider

    if not _env_enabled("ENABLE_OTEL"):
        return

    service_version = service_version or os.getenv("OTEL_SERVICE_VERSION", "1.0.0")
    otlp_endpoint = otlp_endpoint or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    enable_metrics = enable_metrics and _env_enabled("ENABLE_METRICS")
    enable_traces = enable_traces and _env_enabled("ENABLE_TRACES")
    enable_logs = enable_logs and _env_enabled("ENABLE_LOGS")
    fail_fast = _env_enabled("OTEL_FAIL_FAST", "false")
    headers_env = os.getenv("OTEL_EXPORTER_OTLP_HEADERS", "")

    resource = _build_resource(service_name, service_version)

    if enable_traces and otlp_endpoint:
        try:
            tracer_provider = TracerProvider(resource=resource)
            tracer_provider.add_span_processor(
                BatchSpanProcessor(
                    OTLPSpanExporter(
                        endpoint=otlp_endpoint,
                        headers=parse_otlp_headers(headers_env, "tracing"),
                    )
                )
            )
            trace.set_tracer_provider(tracer_provider)
            _initialization_state["tracing"]["success"] = True
            logger.info(f"OpenTelemetry tracing enabled for {service_name}")
        except Exception as e:
            _initialization_state["tracing"]["error"] = str(e)
            logger.error(f"Failed to set up OpenTelemetry tracing: {e}", exc_info=True)
            if fail_fast:
                raise

    if enable_metrics and otlp_endpoint:
        try:
            metric_reader = PeriodicExportingMetricReader(
                OTLPMetricExporter(
                    endpoint=otlp_endpoint,
                    headers=parse_otlp_headers(headers_env, "metrics"),
                ),
                export_interval_millis=int(
                    os.getenv("OTEL_METRIC_EXPORT_INTERVAL", "60000")
                ),
            )
            metrics.set_meter_provider(
                MeterProvider(resource=resource, metric_readers=[metric_reader])
            )
            _initialization_state["metrics"]["success"] = True
            logger.info(f"OpenTelemetry metrics enabled for {service_name}")
        except Exception as e:
            _initialization_state["metrics"]["error"] = str(e)
            logger.error(f"Failed to set up OpenTelemetry metrics: {e}", exc_info=True)
            if fail_fast:
                raise

    if enable_logs and otlp_endpoint:
        try:
            # set_logging_format=False keeps existing handlers in place
            LoggingInstrumentor().instrument(set_logging_format=False)
            logger_provider = LoggerProvider(resource=resource)
            logger_provider.add_log_record_processor(
                BatchLogRecordProcessor(
                    OTLPLogExporter(
                        endpoint=otlp_endpoint,
                        headers=parse_otlp_headers(headers_env, "logs"),
                    )
                )
            )
            _global_logger_provider = logger_provider
            _initialization_state["logs"]["success"] = True
            logger.info(f"OpenTelemetry logging export configured for {service_name}")
        except Exception as e:
            _initialization_state["logs"]["error"] = str(e)
            logger.error(
                f"Failed to set up OpenTelemetry logging export: {e}", exc_info=True
            )
            if fail_fast:
                raise

    # Notification channels post through httpx.
    try:
        HTTPXClientInstrumentor().instrument()
        _initialization_state["http_instrumentation"]["success"] = True
        logger.info(f"OpenTelemetry HTTPX instrumentation enabled for {service_name}")
    except Exception as e:
        _initialization_state["http_instrumentation"]["error"] = str(e)
        logger.error(
            f"Failed to set up OpenTelemetry HTTP instrumentation: {e}", exc_info=True
        )
        if fail_fast:
            raise

    failed_components = [
        k for k, v in _initialization_state.items() if v.get("error") is not None
    ]
    if failed_components:
        logger.warning(
            f"OpenTelemetry setup completed for {service_name} v{service_version} "
            f"with {len(failed_components)} failed component(s): "
            f"{', '.join(failed_components)}"
        )
    else:
        logger.info(
            f"OpenTelemetry setup completed for {service_name} v{service_version}"
        )


def instrument_fastapi_app(app, fail_fast: bool | None = None):
    """Instrument a FastAPI application; call after the app instance exists."""
    if fail_fast is None:
        fail_fast = _env_enabled("OTEL_FAIL_FAST", "false")

    try:
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

        FastAPIInstrumentor.instrument_app(app)
        logger.info("FastAPI application instrumented")
    except Exception as e:
        logger.error(f"Failed to instrument FastAPI application: {e}", exc_info=True)
        if fail_fast:
            raise


def attach_logging_handler() -> bool:
    """
    Attach the OTLP logging handler to the root logger and uvicorn loggers.

    Call after uvicorn has configured logging, i.e. in the startup hook.
    """
    global _otlp_logging_handler

    if _global_logger_provider is None:
        logger.warning("Logger provider not configured - logging export not available")
        return False

    root_logger = logging.getLogger()
    if _otlp_logging_handler is not None:
        if _otlp_logging_handler in root_logger.handlers:
            logger.debug("OTLP logging handler already attached")
            return True
        logger.warning("OTLP handler was removed, re-attaching...")

    try:
        handler = LoggingHandler(
            level=logging.NOTSET, logger_provider=_global_logger_provider
        )
        root_logger.addHandler(handler)
        for name in _UVICORN_LOGGERS:
            logging.getLogger(name).addHandler(handler)
        _otlp_logging_handler = handler
    except Exception as e:
        logger.error(f"Failed to attach logging handler: {e}", exc_info=True)
        return False

    logger.info("OTLP logging handler attached to root and uvicorn loggers")
    return True


def get_tracer(name: str = None) -> trace.Tracer:
    return trace.get_tracer(name or DEFAULT_SERVICE_NAME)


def get_meter(name: str = None) -> metrics.Meter:
    return metrics.get_meter(name or DEFAULT_SERVICE_NAME)


def check_otlp_health() -> dict:
    """
    Report initialization status per telemetry component.

    A component that is configured but failed to initialize marks the
    whole report unhealthy; unconfigured components are not an error.
    """
    otlp_endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    enabled = {
        "tracing": _env_enabled("ENABLE_TRACES") and otlp_endpoint is not None,
        "metrics": _env_enabled("ENABLE_METRICS") and otlp_endpoint is not None,
        "logs": _env_enabled("ENABLE_LOGS") and otlp_endpoint is not None,
        "http_instrumentation": True,
    }

    health: dict = {"healthy": True}
    for component, is_enabled in enabled.items():
        state = _initialization_state[component]
        entry = {"enabled": is_enabled, "status": "not_configured"}
        if is_enabled:
            if state["success"]:
                entry["status"] = "ok"
            elif state["error"]:
                entry["status"] = "failed"
                entry["error"] = state["error"]
                health["healthy"] = False
        health[component] = entry
    return health
