"""
Observability infrastructure.

Components:
- logging.py: Structured JSON logging with request context
- logging_middleware.py: Per-request logging and slow request detection
- health.py: Liveness and readiness probes
"""

from mailinglist.observability.logging import configure_logging, get_logger

__all__ = ["configure_logging", "get_logger"]
