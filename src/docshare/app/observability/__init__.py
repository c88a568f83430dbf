"""Structured logging, request-ID correlation and Prometheus metrics."""

from .logging import configure_logging, get_logger, request_id_ctx
from .metrics import metrics_text, record_decision

__all__ = [
    "configure_logging",
    "get_logger",
    "metrics_text",
    "record_decision",
    "request_id_ctx",
]
