import logging
import logging.handlers
import os
import sys
from typing import Any, Dict, Optional

import structlog

_configured = False

# Fields every rendered event carries, even when unbound.
BASE_EVENT_FIELDS = ("event", "correlation_id", "url", "status", "elapsed_ms")
_CONTEXT_FIELDS = ("correlation_id", "client_id", "url", "path", "status", "elapsed_ms")

# Credential-bearing keys are masked whatever a caller passes.
_SECRET_FIELDS = frozenset({"api_key", "xi-api-key", "authorization", "token"})

_QUIET_PATH_PREFIXES = ("/audio/", "/healthz")
_LIBRARY_LEVELS = {
    "werkzeug": logging.INFO,
    "urllib3": logging.WARNING,
    "openai": logging.WARNING,
    "httpx": logging.WARNING,
}


def _add_event_defaults(
    _: logging.Logger, __: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    bound = structlog.contextvars.get_contextvars()
    for key in _CONTEXT_FIELDS:
        if key in bound:
            event_dict.setdefault(key, bound[key])

    if not event_dict.get("event"):
        event_dict["event"] = event_dict.get("message") or event_dict.get(
            "logger", "log.event"
        )
    for key in BASE_EVENT_FIELDS:
        event_dict.setdefault(key, None)
    return event_dict


def _mask_secrets(
    _: logging.Logger, __: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    for key in _SECRET_FIELDS.intersection(event_dict):
        event_dict[key] = "[redacted]"
    return event_dict


def _drop_quiet_requests(
    _: logging.Logger, __: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Audio range requests and liveness probes would drown everything else."""
    if event_dict.get("event") not in {"http.request", "http.response"}:
        return event_dict
    path = event_dict.get("path") or ""
    if path.startswith(_QUIET_PATH_PREFIXES):
        raise structlog.DropEvent
    return event_dict


def _shared_processors(log_format: str) -> list:
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _add_event_defaults,
        _mask_secrets,
        _drop_quiet_requests,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if log_format == "plain":
        processors.append(structlog.processors.UnicodeDecoder())
    return processors


def setup_logging(
    force: bool = False,
    *,
    level: Optional[str] = None,
    log_format: Optional[str] = None,
) -> None:
    """Route stdlib and structlog output through one renderer.

    ``LOG_FORMAT=plain`` gives coloured console lines, anything else JSON.
    ``LOG_FILE`` adds a rotating file handler next to stdout.
    """
    global _configured
    if _configured and not force:
        return

    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    log_format = (log_format or os.getenv("LOG_FORMAT", "json")).strip().lower()
    if log_format != "plain":
        log_format = "json"

    shared = _shared_processors(log_format)
    renderer = (
        structlog.dev.ConsoleRenderer(colors=True)
        if log_format == "plain"
        else structlog.processors.JSONRenderer()
    )
    formatter = structlog.stdlib.ProcessorFormatter(
        processor=renderer, foreign_pre_chain=shared, fmt="%(message)s"
    )

    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    log_file = os.getenv("LOG_FILE")
    if log_file:
        os.makedirs(os.path.dirname(os.path.abspath(log_file)), exist_ok=True)
        handlers.append(
            logging.handlers.RotatingFileHandler(
                log_file, maxBytes=5 * 1024 * 1024, backupCount=5
            )
        )

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    for name, library_level in _LIBRARY_LEVELS.items():
        logging.getLogger(name).setLevel(library_level)

    _configured = True
