"""Scan a working tree for committed or leftover credentials.

Run before opening a PR, and at the end of a build step to confirm the
scrub left nothing behind on disk.
"""

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from sdk_automation.core.scrub import iter_files

logger = logging.getLogger(__name__)

SECRET_PATTERNS: dict[str, re.Pattern[str]] = {
    "github-pat": re.compile(r"ghp_[A-Za-z0-9]{36}"),
    "github-installation-token": re.compile(r"ghs_[A-Za-z0-9]{36}"),
    "github-fine-grained-pat": re.compile(r"github_pat_[A-Za-z0-9_]{82}"),
    "openai-key": re.compile(r"sk-[A-Za-z0-9]{48}"),
    "aws-access-key": re.compile(r"AKIA[A-Z0-9]{16}"),
    "private-key": re.compile(r"-----BEGIN (?:RSA |EC |OPENSSH )?PRIVATE KEY-----"),
}

# Skipped unless `scan --exclude` overrides them.
DEFAULT_EXCLUDED_SUFFIXES = frozenset({".md", ".sh", ".yml", ".yaml"})


@dataclass(frozen=True)
class Finding:
    path: Path
    line: int
    kind: str


def scan_tree(
    roots: Iterable[Path],
    excluded_suffixes: Iterable[str] = DEFAULT_EXCLUDED_SUFFIXES,
) -> list[Finding]:
    excluded = {s if s.startswith(".") else f".{s}" for s in excluded_suffixes}
    findings: list[Finding] = []
    for path in iter_files(roots):
        if path.suffix in excluded:
            continue
        try:
            text = path.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            continue
        except OSError as exc:
            logger.warning("Skipping unreadable file %s: %s", path, exc)
            continue
        for lineno, line in enumerate(text.splitlines(), start=1):
            for kind, pattern in SECRET_PATTERNS.items():
                if pattern.search(line):
                    findings.append(Finding(path=path, line=lineno, kind=kind))
    return findings
