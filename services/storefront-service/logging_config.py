"""Structured logging configuration.

Every record is a JSON object on stdout carrying the active trace context,
the service name and, inside a request, the calling client's id. With
``OTEL_ENABLED`` the same records are also shipped to the collector.
"""
import logging
import sys
from contextvars import ContextVar
from typing import Optional

from pythonjsonlogger import jsonlogger
from opentelemetry import trace

from config import LOG_LEVEL, OTEL_ENABLED, OTEL_EXPORTER_OTLP_ENDPOINT, SERVICE_NAME

# The OpenTelemetry logging SDK is experimental and may be missing
try:
    from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
    from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
    from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter
    from opentelemetry.sdk.resources import Resource
    OTLP_LOGGING_AVAILABLE = True
except ImportError:
    OTLP_LOGGING_AVAILABLE = False

NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore")

current_client_id: ContextVar[Optional[str]] = ContextVar("current_client_id", default=None)


def bind_client_id(client_id: str) -> None:
    """Tag log records emitted for the rest of this request with the client id."""
    current_client_id.set(client_id)


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter adding trace context, service and client id."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        span_context = trace.get_current_span().get_span_context()
        if span_context.is_valid:
            log_record['trace_id'] = format(span_context.trace_id, '032x')
            log_record['span_id'] = format(span_context.span_id, '016x')
            log_record['trace_flags'] = span_context.trace_flags

        log_record['service'] = SERVICE_NAME
        client_id = current_client_id.get()
        if client_id and 'client_id' not in log_record:
            log_record['client_id'] = client_id

        if 'message' in log_record:
            log_record['msg'] = log_record.pop('message')


def _otlp_handler() -> Optional[logging.Handler]:
    """Build a handler exporting records to the collector, or None."""
    if not OTLP_LOGGING_AVAILABLE:
        logging.warning("OTLP logging SDK not available - logs will only go to stdout")
        return None
    try:
        logger_provider = LoggerProvider(resource=Resource.create({
            "service.name": SERVICE_NAME,
            "deployment.environment": "demo"
        }))
        logger_provider.add_log_record_processor(BatchLogRecordProcessor(
            OTLPLogExporter(endpoint=OTEL_EXPORTER_OTLP_ENDPOINT, insecure=True)
        ))

        # Experimental API; there's no stable set_logger_provider yet
        from opentelemetry._logs import set_logger_provider
        set_logger_provider(logger_provider)

        return LoggingHandler(level=logging.INFO, logger_provider=logger_provider)
    except Exception as e:
        logging.warning(f"Failed to configure OTLP logging handler: {e}")
        return None


def setup_logging():
    """Configure structured logging for the application."""
    root_logger = logging.getLogger()
    root_logger.setLevel(LOG_LEVEL)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(CustomJsonFormatter(
        '%(levelname)s %(name)s %(message)s',
        rename_fields={'levelname': 'level'}
    ))
    root_logger.addHandler(console_handler)

    if OTEL_ENABLED:
        otlp_handler = _otlp_handler()
        if otlp_handler is not None:
            root_logger.addHandler(otlp_handler)
            logging.info("OTLP logging handler configured", extra={"endpoint": OTEL_EXPORTER_OTLP_ENDPOINT})

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
