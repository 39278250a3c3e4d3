"""Structured logging via structlog.

Configures structlog once per invocation. All subsequent calls to
`structlog.get_logger()` (or `logging.getLogger()` via the stdlib bridge)
use this configuration.

Renderer selection:
  debug=True   `ConsoleRenderer` with colours for local runs.
  debug=False  `JSONRenderer` so Cloud Logging parses build output.

ContextVar injection:
  `repository` and `build_id` are injected into every log line, so all
  output of one scheduled build can be filtered by repository.

Redaction:
  `redact_event` from `sdk_automation.core.scrub` runs last before the
  renderer; no registered secret reaches stdout.
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar

import structlog

from sdk_automation.core.scrub import redact, redact_event

_repository_var: ContextVar[str] = ContextVar("repository", default="")
_build_id_var: ContextVar[str] = ContextVar("build_id", default="")


def bind_invocation(repository: str = "", build_id: str = "") -> None:
    """Set the per-invocation fields injected into every log line."""
    _repository_var.set(repository)
    _build_id_var.set(build_id)


def _inject_context_vars(
    logger: logging.Logger,
    method: str,
    event_dict: dict,
) -> dict:
    """Structlog processor: inject repository and build_id from ContextVars."""
    repository = _repository_var.get()
    build_id = _build_id_var.get()
    if repository:
        event_dict["repository"] = repository
    if build_id:
        event_dict["build_id"] = build_id
    return event_dict


class _RedactingFormatter(logging.Formatter):
    """Stdlib formatter that redacts the fully formatted record."""

    def format(self, record: logging.LogRecord) -> str:
        return redact(super().format(record))


def configure_structlog(debug: bool = False) -> None:
    """Configure structlog for the invocation.

    Calling multiple times is safe; structlog is idempotent.
    """
    shared_processors: list = [
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _inject_context_vars,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        redact_event,
    ]

    if debug:
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.make_filtering_bound_logger(logging.DEBUG),
        context_class=dict,
        logger_factory=structlog.WriteLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )

    # Bridge stdlib logging so our modules and httpx share the output.
    # httpx logs request URLs at INFO; they carry no credentials but are noise.
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        _RedactingFormatter("%(asctime)s %(levelname)s %(name)s %(message)s")
    )
    logging.basicConfig(
        handlers=[handler],
        level=logging.DEBUG if debug else logging.INFO,
        force=True,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
