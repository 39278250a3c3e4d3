"""Credential scrubbing for a single build invocation.

Every secret value (App private key, signed JWT, installation token) is
registered with the invocation's CredentialScrubber as soon as it exists.
While the scrubber is active:

  - the structlog processor and the Sentry before_send hook replace any
    registered value with "[REDACTED]" before a line leaves the process;
  - PEM private key blocks and GitHub token shapes are redacted even when
    they were never registered.

wipe() runs from a ``finally`` block at the end of the flow, on success
and on failure. It removes registered environment variables (and any
variable whose value is a registered secret), deletes registered files,
and drops the scrubber's references to the values.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"

PEM_HEADER_RE = re.compile(r"-----BEGIN (?:RSA |EC |OPENSSH )?PRIVATE KEY-----")

# Shapes redacted from every log line regardless of registration.
_ALWAYS_REDACT: list[re.Pattern[str]] = [
    re.compile(
        r"-----BEGIN (?:RSA |EC |OPENSSH )?PRIVATE KEY-----.*?-----END (?:RSA |EC |OPENSSH )?PRIVATE KEY-----",
        re.DOTALL,
    ),
    re.compile(r"\bgh[opsur]_[A-Za-z0-9]{20,}\b"),
    re.compile(r"\bgithub_pat_[A-Za-z0-9_]{20,}\b"),
    re.compile(r"\beyJ[A-Za-z0-9_-]{8,}\.eyJ[A-Za-z0-9_-]{8,}\.[A-Za-z0-9_-]+"),
]

# Values shorter than this are not registered; redacting them would
# mangle ordinary log text.
_MIN_SECRET_LENGTH = 8

_active_scrubber: ContextVar[Optional["CredentialScrubber"]] = ContextVar(
    "active_scrubber", default=None
)


def get_active_scrubber() -> Optional["CredentialScrubber"]:
    """Return the scrubber of the running invocation, if any."""
    return _active_scrubber.get()


class CredentialScrubber:
    """Tracks the secrets of one invocation and removes them on wipe()."""

    def __init__(self) -> None:
        self._values: list[str] = []
        self._env_vars: set[str] = set()
        self._files: list[Path] = []

    def register(self, value: Union[str, bytes, None]) -> None:
        if value is None:
            return
        if isinstance(value, bytes):
            value = value.decode("utf-8", errors="replace")
        value = value.strip()
        if len(value) < _MIN_SECRET_LENGTH or value in self._values:
            return
        self._values.append(value)
        # PEM keys are also logged line-by-line by some libraries.
        if PEM_HEADER_RE.search(value):
            for line in value.splitlines():
                line = line.strip()
                if len(line) >= _MIN_SECRET_LENGTH and not line.startswith("-----"):
                    self._values.append(line)

    def register_env(self, name: str) -> None:
        self._env_vars.add(name)

    def register_file(self, path: Union[str, Path]) -> None:
        self._files.append(Path(path))

    @property
    def secret_count(self) -> int:
        return len(self._values)

    def redact(self, text: str) -> str:
        """Replace registered values and known secret shapes in text."""
        for pattern in _ALWAYS_REDACT:
            text = pattern.sub(REDACTED, text)
        # Longest first so a PEM line never leaves a suffix of the full key.
        for value in sorted(self._values, key=len, reverse=True):
            if value in text:
                text = text.replace(value, REDACTED)
        return text

    def wipe(self) -> None:
        """Remove every trace of the registered secrets from the process."""
        removed_env = 0
        for name in list(os.environ):
            if name in self._env_vars or os.environ[name].strip() in self._values:
                del os.environ[name]
                removed_env += 1

        removed_files = 0
        for path in self._files:
            try:
                path.unlink()
                removed_files += 1
            except FileNotFoundError:
                pass

        count = len(self._values)
        self._values.clear()
        self._env_vars.clear()
        self._files.clear()
        if not (count or removed_env or removed_files):
            return
        logger.info(
            "Credentials scrubbed: values=%d env_vars=%d files=%d",
            count, removed_env, removed_files,
        )


def redact(text: str) -> str:
    """Redact text with the active scrubber, or known shapes only."""
    scrubber = get_active_scrubber()
    if scrubber is not None:
        return scrubber.redact(text)
    for pattern in _ALWAYS_REDACT:
        text = pattern.sub(REDACTED, text)
    return text


def redact_event(logger: logging.Logger, method: str, event_dict: dict) -> dict:
    """Structlog processor: redact secrets from every string field."""
    for key, value in event_dict.items():
        if isinstance(value, str):
            event_dict[key] = redact(value)
    return event_dict


@contextmanager
def credential_scope(
    scrubber: Optional[CredentialScrubber] = None,
) -> Iterator[CredentialScrubber]:
    """Activate a scrubber for the block and wipe it on exit."""
    scrubber = scrubber or CredentialScrubber()
    reset_token = _active_scrubber.set(scrubber)
    try:
        yield scrubber
    finally:
        try:
            scrubber.wipe()
        finally:
            _active_scrubber.reset(reset_token)


def iter_files(paths: Iterable[Union[str, Path]]) -> Iterator[Path]:
    """Yield regular files under the given files/directories, skipping .git."""
    for root in paths:
        root = Path(root)
        if root.is_file():
            yield root
            continue
        if not root.is_dir():
            continue
        for path in sorted(root.rglob("*")):
            if ".git" in path.parts or not path.is_file():
                continue
            yield path


def scan_for_leaks(
    paths: Iterable[Union[str, Path]],
    needles: Iterable[str],
) -> list[tuple[Path, str]]:
    """Find files containing a PEM private key header or any needle value.

    Returns (path, label) pairs; label is "pem-header" or the index of the
    needle ("needle-0", ...) so the secret itself is never echoed back.
    """
    needles = [n for n in needles if n]
    findings: list[tuple[Path, str]] = []
    for path in iter_files(paths):
        try:
            text = path.read_text(encoding="utf-8", errors="ignore")
        except OSError as exc:
            logger.warning("Skipping unreadable file %s: %s", path, exc)
            continue
        if PEM_HEADER_RE.search(text):
            findings.append((path, "pem-header"))
        for index, needle in enumerate(needles):
            if needle in text:
                findings.append((path, f"needle-{index}"))
    return findings
