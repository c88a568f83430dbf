"""Structured logging for docshare.

Every record, from structlog or from stdlib loggers such as uvicorn, passes
through ``_redact_secrets`` before it is rendered: password and token fields
are dropped and share URLs keep only a token prefix. The request id set by
``RequestIdMiddleware`` is attached to each record.

Usage::

    from docshare.app.observability.logging import configure_logging, get_logger

    configure_logging()  # once, from create_app
    logger = get_logger(__name__)
    logger.info("share_redeemed", document_id=doc.id, token_prefix="abcd1234...")
"""

from __future__ import annotations

import logging
import os
import re
import sys
from contextvars import ContextVar
from typing import Any

import structlog

request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)

REDACTED = "<redacted>"

# Fields that only ever hold secrets.
_SECRET_FIELDS = frozenset(
    {"password", "token", "raw_token", "session_token", "authorization"}
)
# Fields that may embed a share token in a URL path.
_URL_FIELDS = frozenset({"share_url", "url", "path"})
_SHARED_PATH = re.compile(r"(/shared/)([A-Za-z0-9_-]{8})[A-Za-z0-9_-]*")

_configured = False


def _add_request_id(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    rid = request_id_ctx.get()
    if rid is not None:
        event_dict.setdefault("request_id", rid)
    return event_dict


def _redact_secrets(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    for key in _SECRET_FIELDS.intersection(event_dict):
        event_dict[key] = REDACTED
    for key in _URL_FIELDS.intersection(event_dict):
        value = event_dict[key]
        if isinstance(value, str):
            event_dict[key] = _SHARED_PATH.sub(r"\1\2...", value)
    return event_dict


def _pre_chain() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        _add_request_id,
        _redact_secrets,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]


def configure_logging(
    *,
    level: str | None = None,
    json_output: bool | None = None,
) -> None:
    """Route structlog and stdlib logging through one stdout handler.

    Idempotent. ``level`` defaults to LOG_LEVEL (INFO); output is JSON unless
    ``json_output`` is False or LOG_FORMAT=console.
    """
    global _configured
    if _configured:
        return

    level_name = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    if json_output is None:
        json_output = os.environ.get("LOG_FORMAT", "json").lower() != "console"

    structlog.configure(
        processors=[
            *_pre_chain(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_pre_chain(),
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, level_name, logging.INFO))
    for noisy in ("uvicorn.access", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    _configured = True


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
