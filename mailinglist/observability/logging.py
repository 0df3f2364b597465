"""
Structured logging with JSON output.

Features:
- JSON output for log aggregation, console output for development
- Request context propagation (request_id, trace_id)
- Subscriber email redaction (only the domain is logged)

Architecture:
- structlog for structured logging, rendered through stdlib logging
- Context variables for request-scoped data
- Processors for formatting and enrichment
"""

import logging
import sys
import time
import uuid
from contextvars import ContextVar

import structlog
from structlog.types import EventDict, Processor

# Context variables for request-scoped data
# These propagate across async boundaries automatically
request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
trace_id_var: ContextVar[str | None] = ContextVar("trace_id", default=None)


# ============================================================================
# CUSTOM PROCESSORS
# ============================================================================


def add_request_context(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add request_id and trace_id of the current request, if any."""
    request_id = request_id_var.get()
    if request_id:
        event_dict["request_id"] = request_id

    trace_id = trace_id_var.get()
    if trace_id:
        event_dict["trace_id"] = trace_id

    return event_dict


def add_timestamp(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Add ISO 8601 timestamp with microsecond precision.

    Format: 2025-01-15T10:30:45.123456Z
    """
    event_dict["timestamp"] = (
        time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime())
        + f".{int((time.time() % 1) * 1000000):06d}Z"
    )
    return event_dict


def add_service_metadata(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """
    Add service, version and environment for log aggregation.

    Configured via LOGGING_SERVICE_NAME, LOGGING_SERVICE_VERSION and
    LOGGING_ENVIRONMENT.
    """
    # Import here to avoid circular dependency
    from pydantic import ValidationError

    from mailinglist.config import get_settings

    try:
        settings = get_settings()
        event_dict["service"] = settings.logging.service_name
        event_dict["version"] = settings.logging.service_version
        event_dict["environment"] = settings.logging.environment
    except ValidationError:
        # Fallback if the environment holds an invalid configuration
        event_dict["service"] = "mailinglist"
        event_dict["version"] = "0.1.0"
        event_dict["environment"] = "development"
    return event_dict


def redact_email(value: str) -> str:
    """user@example.com -> ***@example.com"""
    if "@" not in value:
        return "***REDACTED***"
    return f"***@{value.rsplit('@', 1)[1]}"


def redact_sensitive_fields(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """
    Redact subscriber addresses and credentials before rendering.

    Redacted fields:
    - email: replaced with domain-only (user@example.com -> ***@example.com)
    - password, authorization, secret, token: replaced with ***REDACTED***
    """
    sensitive_fields = {
        "password",
        "authorization",
        "secret",
        "token",
    }

    for key in list(event_dict.keys()):
        value = event_dict[key]
        if not isinstance(value, str):
            continue
        if key.lower() in sensitive_fields:
            event_dict[key] = "***REDACTED***"
        elif key.lower() == "email":
            event_dict[key] = redact_email(value)

    return event_dict


def add_exception_info(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add exception_type and exception_message for error aggregation."""
    exc_info = event_dict.get("exc_info")
    if exc_info and isinstance(exc_info, tuple) and len(exc_info) == 3:
        exc_type, exc_value, _ = exc_info
        event_dict["exception_type"] = exc_type.__name__ if exc_type else "Unknown"
        event_dict["exception_message"] = str(exc_value) if exc_value else ""

    return event_dict


# ============================================================================
# LOGGER CONFIGURATION
# ============================================================================


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = True,
    colorized: bool = False,
) -> None:
    """
    Configure structured logging.

    Args:
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: Use JSON output (True for production, False for development)
        colorized: Colorize console output (only for development)

    JSON output:
        {
          "timestamp": "2025-01-15T10:30:45.123456Z",
          "level": "info",
          "event": "Subscriber created",
          "service": "mailinglist",
          "version": "0.1.0",
          "environment": "production",
          "request_id": "req_abc123",
          "email": "***@example.com"
        }
    """
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_request_context,
        add_service_metadata,
        redact_sensitive_fields,
        add_timestamp,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        add_exception_info,
    ]

    if json_output:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=colorized),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Usage:
        logger = get_logger(__name__)
        logger.info("Subscriber created", email=email)
    """
    return structlog.get_logger(name)


# ============================================================================
# CONTEXT MANAGERS
# ============================================================================


class RequestContext:
    """
    Context manager for request-scoped logging.

    Generates request_id and trace_id unless they are provided.

    Usage:
        with RequestContext(request_id=incoming_id):
            logger.info("Processing request")  # request_id auto-injected
    """

    def __init__(
        self,
        trace_id: str | None = None,
        request_id: str | None = None,
    ):
        self.request_id = request_id or f"req_{uuid.uuid4().hex[:16]}"
        self.trace_id = trace_id or f"trace_{uuid.uuid4().hex[:16]}"

        self._request_id_token = None
        self._trace_id_token = None

    def __enter__(self):
        self._request_id_token = request_id_var.set(self.request_id)
        self._trace_id_token = trace_id_var.set(self.trace_id)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._request_id_token is not None:
            request_id_var.reset(self._request_id_token)
        if self._trace_id_token is not None:
            trace_id_var.reset(self._trace_id_token)


class OperationContext:
    """
    Context manager for operation-level logging with timing.

    Usage:
        with OperationContext("get_email_batch", page=2, count=50):
            rows = fetch()
        # Logs: "get_email_batch completed" with latency_ms
    """

    def __init__(self, operation: str, **kwargs):
        self.operation = operation
        self.context = kwargs
        self.logger = get_logger(f"operation.{operation}")
        self.start_time = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        self.logger.debug(f"{self.operation} started", **self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration_ms = (time.perf_counter() - self.start_time) * 1000

        if exc_type is None:
            self.logger.debug(
                f"{self.operation} completed",
                latency_ms=round(duration_ms, 2),
                **self.context,
            )
        else:
            self.logger.error(
                f"{self.operation} failed",
                latency_ms=round(duration_ms, 2),
                exception_type=exc_type.__name__,
                **self.context,
                exc_info=True,
            )


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================


def get_request_id() -> str | None:
    """Get request ID from current context."""
    return request_id_var.get()


def get_trace_id() -> str | None:
    """Get trace ID from current context."""
    return trace_id_var.get()
