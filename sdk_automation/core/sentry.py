"""Sentry SDK integration for the build step.

Captures exceptions without leaking credentials.

Key decisions:
  - `send_default_pii=False`: no user data sent by default.
  - `before_send` hook redacts any event field whose key contains a
    sensitive keyword, then runs every string through the active
    credential scrubber so a registered key, JWT or token never leaves
    the build even inside an exception message.
  - No-op when SENTRY_DSN is empty so local runs and tests never raise.
"""

from __future__ import annotations

import logging
from typing import Any

from sdk_automation.core.scrub import REDACTED, redact

logger = logging.getLogger(__name__)

# Keywords that indicate a value should be redacted from Sentry events
_SENSITIVE_KEYS = frozenset(
    {"api_key", "secret", "password", "token", "dsn", "private_key", "jwt", "authorization"}
)


def _scrub_secrets(event: dict[str, Any], hint: Any) -> dict[str, Any]:
    """Sentry before_send hook: redact sensitive keys and registered values."""
    _scrub_dict(event.get("extra", {}))
    request_data = event.get("request", {}).get("data", {})
    if isinstance(request_data, dict):
        _scrub_dict(request_data)

    for exc in event.get("exception", {}).get("values", []) or []:
        if isinstance(exc.get("value"), str):
            exc["value"] = redact(exc["value"])
        for frame in (exc.get("stacktrace") or {}).get("frames", []) or []:
            frame_vars = frame.get("vars")
            if isinstance(frame_vars, dict):
                _scrub_dict(frame_vars)

    if isinstance(event.get("message"), str):
        event["message"] = redact(event["message"])
    return event


def _scrub_dict(d: dict[str, Any]) -> None:
    """Recursively redact sensitive values in-place."""
    for key in list(d.keys()):
        value = d[key]
        if any(sensitive in str(key).lower() for sensitive in _SENSITIVE_KEYS):
            d[key] = REDACTED
        elif isinstance(value, dict):
            _scrub_dict(value)
        elif isinstance(value, str):
            d[key] = redact(value)


def init_sentry(dsn: str, environment: str = "development") -> None:
    """Initialise the Sentry SDK.

    Args:
        dsn: Sentry DSN string. Empty string disables Sentry entirely.
        environment: Sentry environment tag.
    """
    if not dsn or not dsn.strip():
        logger.debug("Sentry DSN not configured, skipping initialisation")
        return

    import sentry_sdk

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=0.0,
        send_default_pii=False,
        include_local_variables=False,
        before_send=_scrub_secrets,
    )
    logger.info("Sentry initialised (environment=%s)", environment)
