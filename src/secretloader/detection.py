"""
Plaintext secret detection.

Flags environment variables whose names suggest secret material but whose
values were set directly instead of through a reference, a secret file or
one of the secret providers.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Mapping

SECRET_NAME_RE = re.compile(r"password|secret|token|apikey|api_key", re.IGNORECASE)

# Values shorter than this are treated as placeholders
PLACEHOLDER_MAX_LENGTH = 8


class FindingKind(str, Enum):
    """How a secret-looking variable is populated."""
    REFERENCE = "reference"
    PLACEHOLDER = "placeholder"
    PLAINTEXT = "plaintext"


@dataclass
class Finding:
    """One secret-looking variable. Carries the value length only."""
    name: str
    kind: FindingKind
    length: int

    @property
    def is_warning(self) -> bool:
        return self.kind != FindingKind.REFERENCE

    def describe(self) -> str:
        if self.kind == FindingKind.REFERENCE:
            return f"Secret reference detected: {self.name} (using reference: OK)"
        if self.kind == FindingKind.PLACEHOLDER:
            return f"Potential placeholder secret: {self.name} (length: {self.length})"
        return f"Potential plaintext secret detected: {self.name} (length: {self.length} characters)"


def is_reference(value: str) -> bool:
    """``${VAR}`` indirection, an absolute file path or an op:// reference."""
    return value.startswith("${") or value.startswith("/") or value.startswith("op://")


def classify(name: str, value: str | None) -> Finding | None:
    """Classify one variable; None when it does not look like a secret."""
    if not value or not SECRET_NAME_RE.search(name):
        return None
    if is_reference(value):
        return Finding(name=name, kind=FindingKind.REFERENCE, length=len(value))
    if len(value) < PLACEHOLDER_MAX_LENGTH:
        return Finding(name=name, kind=FindingKind.PLACEHOLDER, length=len(value))
    return Finding(name=name, kind=FindingKind.PLAINTEXT, length=len(value))


def audit_environment(
    environ: Mapping[str, str],
    loaded: Iterable[str] = (),
) -> list[Finding]:
    """Classify every secret-looking variable in ``environ``.

    Args:
        environ: Environment to inspect
        loaded: Names exported by the loader, which are expected to hold secrets

    Returns:
        Findings sorted by variable name
    """
    skip = set(loaded)
    findings = []
    for name in sorted(environ):
        if name in skip:
            continue
        finding = classify(name, environ[name])
        if finding is not None:
            findings.append(finding)
    return findings
