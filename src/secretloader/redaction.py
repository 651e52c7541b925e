"""
Secret scrubbing for log output.

Two layers: exact masking of every value the loader has handled during this
process, and pattern-based scrubbing of well-known token shapes.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

import logging
import os
import re
import threading

REDACTED = "***REDACTED***"

# Order matters: specific patterns before generic ones
_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"([Aa]uthorization:\s*)[Bb]earer\s+[^\s\"']+"), r"\1Bearer ***REDACTED***"),
    (re.compile(r"([Aa]uthorization:\s*)[Tt]oken\s+[^\s\"']+"), r"\1token ***REDACTED***"),
    (re.compile(r"([Aa]uthorization:\s*)[Bb]asic\s+[^\s\"']+"), r"\1Basic ***REDACTED***"),
    (re.compile(r"(?:ghp|gho|ghu|ghs|ghr)_[A-Za-z0-9_]+"), "***GITHUB_TOKEN_REDACTED***"),
    (re.compile(r"github_pat_[A-Za-z0-9_]+"), "***GITHUB_TOKEN_REDACTED***"),
    (re.compile(r"(?:sk|pk)-[A-Za-z0-9_-]{20,}"), "***API_KEY_REDACTED***"),
    (re.compile(r"\bhvs\.[A-Za-z0-9_-]{20,}"), "***VAULT_TOKEN_REDACTED***"),
    (
        re.compile(
            r"((?:GITHUB_TOKEN|GH_TOKEN|AWS_SECRET_ACCESS_KEY|AWS_SESSION_TOKEN|"
            r"OP_SERVICE_ACCOUNT_TOKEN|OP_CONNECT_TOKEN|VAULT_TOKEN|VAULT_SECRET_ID|"
            r"AZURE_CLIENT_SECRET)=)[^\s\"']+"
        ),
        r"\1***REDACTED***",
    ),
    (
        re.compile(r"((?:password|PASSWORD|secret|SECRET|api_key|API_KEY|secret_key|SECRET_KEY)=)[^\s\"'&]+"),
        r"\1***REDACTED***",
    ),
    (re.compile(r"(https?://)[^\s@/]+:[^\s@/]+@"), r"\1***CREDENTIALS***@"),
]

# Values shorter than this are too likely to collide with ordinary words
MIN_MASK_LENGTH = 4

_lock = threading.Lock()
_known_values: set[str] = set()


def register_secret(value: str | None) -> None:
    """Remember a secret value so it is masked in any later log line."""
    if not value or len(value) < MIN_MASK_LENGTH:
        return
    with _lock:
        _known_values.add(value)
        for line in value.splitlines():
            if len(line) >= MIN_MASK_LENGTH:
                _known_values.add(line.strip())


def clear_registered_secrets() -> None:
    with _lock:
        _known_values.clear()


def scrub_url(url: str) -> str:
    """Remove ``user:pass@`` credentials from a URL."""
    if os.environ.get("DISABLE_SECRET_SCRUBBING", "").lower() == "true":
        return url
    return re.sub(r"(https?://)[^\s@/]+:[^\s@/]+@", r"\1***CREDENTIALS***@", url)


def scrub_secrets(text: str) -> str:
    """Mask known secret values and common token shapes in ``text``."""
    if not text:
        return text
    if os.environ.get("DISABLE_SECRET_SCRUBBING", "").lower() == "true":
        return text

    with _lock:
        known = sorted(_known_values, key=len, reverse=True)
    for value in known:
        if value and value in text:
            text = text.replace(value, REDACTED)

    for pattern, replacement in _PATTERNS:
        text = pattern.sub(replacement, text)
    return text


class RedactingFilter(logging.Filter):
    """Logging filter that scrubs every record before it is emitted."""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            return True
        scrubbed = scrub_secrets(message)
        if scrubbed != message or record.args:
            record.msg = scrubbed
            record.args = None
        if record.exc_info and record.exc_info[1] is not None:
            # Tracebacks are rendered separately; keep the type, drop the text
            exc = record.exc_info[1]
            record.exc_text = f"{type(exc).__name__}: {scrub_secrets(str(exc))}"
            record.exc_info = None
        return True
