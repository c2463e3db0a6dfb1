"""JSON logging for the relay.

Every record, whether it comes from the stdlib ``logging`` module or from
structlog, is rendered as one JSON line carrying the request's correlation
id. The Gemini API key is masked in every rendered field.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

import structlog
from opentelemetry._logs import set_logger_provider
from opentelemetry.exporter.otlp.proto.http._log_exporter import OTLPLogExporter
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.resources import Resource
from structlog.stdlib import ProcessorFormatter

from .config import Settings
from .telemetry import current_correlation_id

HANDLER_NAME = "prompt_relay.json"
OTLP_HANDLER_NAME = "prompt_relay.otlp"
MASK = "***"

EventDict = Dict[str, Any]

_base_record_factory = logging.getLogRecordFactory()


def _correlated_record(*args: Any, **kwargs: Any) -> logging.LogRecord:
    record = _base_record_factory(*args, **kwargs)
    record.correlation_id = current_correlation_id() or "unknown"
    return record


def mask_secret(secret: Optional[str]) -> Callable[[Any, str, EventDict], EventDict]:
    """Build a processor replacing ``secret`` wherever it appears in a string field."""

    def processor(_: Any, __: str, event_dict: EventDict) -> EventDict:
        if not secret:
            return event_dict
        for key, value in event_dict.items():
            if isinstance(value, str) and secret in value:
                event_dict[key] = value.replace(secret, MASK)
        return event_dict

    return processor


def _replace_handler(root: logging.Logger, handler: logging.Handler) -> None:
    for existing in [h for h in root.handlers if h.get_name() == handler.get_name()]:
        root.removeHandler(existing)
    root.addHandler(handler)


def _configure_otlp_logging(settings: Settings, root: logging.Logger) -> None:
    if any(h.get_name() == OTLP_HANDLER_NAME for h in root.handlers):
        return
    try:
        logger_provider = LoggerProvider(
            resource=Resource.create({"service.name": settings.service_name})
        )
        exporter = OTLPLogExporter(endpoint=f"{settings.otlp_endpoint.rstrip('/')}/v1/logs")
        logger_provider.add_log_record_processor(BatchLogRecordProcessor(exporter))
        set_logger_provider(logger_provider)
        otlp_handler = LoggingHandler(level=logging.NOTSET, logger_provider=logger_provider)
        otlp_handler.set_name(OTLP_HANDLER_NAME)
        root.addHandler(otlp_handler)
    except Exception:  # pragma: no cover - exporter is optional
        root.exception("Failed to configure OTLP log exporter")


def configure_logging(settings: Settings) -> None:
    """Install the JSON handler on the root logger at ``settings.log_level``.

    Calling this again replaces the relay's own handlers and leaves any other
    handler on the root logger in place.
    """

    secret = settings.gemini_api_key.get_secret_value() if settings.gemini_api_key else None
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.ExtraAdder(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
    ]

    handler = logging.StreamHandler()
    handler.set_name(HANDLER_NAME)
    handler.setFormatter(
        ProcessorFormatter(
            processors=[
                ProcessorFormatter.remove_processors_meta,
                mask_secret(secret),
                structlog.processors.JSONRenderer(),
            ],
            foreign_pre_chain=shared_processors,
        )
    )

    logging.setLogRecordFactory(_correlated_record)
    root = logging.getLogger()
    _replace_handler(root, handler)
    root.setLevel(settings.log_level)

    # httpx logs request URLs at INFO, and the Gemini key travels in the query string.
    logging.getLogger("httpx").setLevel(logging.WARNING)

    structlog.configure(
        processors=shared_processors + [ProcessorFormatter.wrap_for_formatter],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    if settings.tracing_enabled:
        _configure_otlp_logging(settings, root)
