"""
Data models for a secret loading pass.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from secretloader.errors import ErrorKind, SecretLoaderError


class ProviderStatus(str, Enum):
    """Outcome of one provider's turn."""
    SKIPPED = "skipped"      # not enabled, zero calls made
    OK = "ok"                # authenticated, every secret exported
    DEGRADED = "degraded"    # authenticated, some secrets skipped
    FAILED = "failed"        # contributed zero secrets because of an error


# Errors that mean a provider contributed nothing
PROVIDER_LEVEL_KINDS = (ErrorKind.CONFIG, ErrorKind.AUTH)


@dataclass
class AuthSession:
    """Ephemeral authentication state for one provider turn.

    Never persisted; dropped once the provider has been drained.
    """
    provider: str
    method: str
    identity: str | None = None
    token: str | None = field(default=None, repr=False)
    lease_seconds: int | None = None
    # Per-invocation scratch space (bulk reads, clients, parsed items)
    payload: dict[str, Any] = field(default_factory=dict, repr=False)
    created_at: datetime = field(default_factory=datetime.now)

    def describe(self) -> str:
        if self.identity:
            return f"{self.method} ({self.identity})"
        return self.method


@dataclass
class SecretRecord:
    """A secret resolved from a provider and bound to an env var name."""
    name: str
    env_name: str
    value: str = field(repr=False)
    provider: str = ""
    auth_method: str = ""

    def to_dict(self) -> dict[str, str]:
        """Convert to dictionary (excludes the value)."""
        return {
            "name": self.name,
            "env_name": self.env_name,
            "provider": self.provider,
            "auth_method": self.auth_method,
        }


@dataclass
class LoadResult:
    """Per-provider outcome of a loading pass."""
    provider: str
    status: ProviderStatus = ProviderStatus.SKIPPED
    loaded: int = 0
    exported: list[str] = field(default_factory=list)
    errors: list[SecretLoaderError] = field(default_factory=list)
    auth_method: str | None = None
    names_resolved: bool = False

    def add_error(self, error: SecretLoaderError) -> None:
        if error.provider is None:
            error.provider = self.provider
        self.errors.append(error)

    def record(self, record: SecretRecord) -> None:
        self.loaded += 1
        self.exported.append(record.env_name)

    @property
    def fatal_errors(self) -> list[SecretLoaderError]:
        """Errors that count against the fail-on-error policy."""
        fatal = [e for e in self.errors if e.kind in PROVIDER_LEVEL_KINDS]
        if self.status == ProviderStatus.FAILED and not fatal:
            # Authenticated but could not resolve any names
            fatal = list(self.errors)
        return fatal

    def finish(self) -> None:
        """Derive the final status from the recorded outcome."""
        if self.status == ProviderStatus.SKIPPED:
            return
        if any(e.kind in PROVIDER_LEVEL_KINDS for e in self.errors) and self.loaded == 0:
            self.status = ProviderStatus.FAILED
        elif not self.names_resolved:
            self.status = ProviderStatus.FAILED
        elif self.errors:
            self.status = ProviderStatus.DEGRADED
        else:
            self.status = ProviderStatus.OK

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "status": self.status.value,
            "loaded": self.loaded,
            "exported": list(self.exported),
            "auth_method": self.auth_method,
            "errors": [e.to_dict() for e in self.errors],
        }


@dataclass
class GlobalLoadReport:
    """Aggregate of one invocation; consumed once to decide continue vs abort."""
    enabled: bool = True
    fail_on_error: bool = False
    results: list[LoadResult] = field(default_factory=list)
    references: LoadResult | None = None
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: datetime | None = None

    @property
    def total_loaded(self) -> int:
        total = sum(r.loaded for r in self.results)
        if self.references:
            total += self.references.loaded
        return total

    @property
    def attempted(self) -> list[LoadResult]:
        return [r for r in self.results if r.status != ProviderStatus.SKIPPED]

    @property
    def successful_providers(self) -> list[LoadResult]:
        return [r for r in self.attempted if r.status in (ProviderStatus.OK, ProviderStatus.DEGRADED)]

    @property
    def failed_providers(self) -> list[LoadResult]:
        return [r for r in self.attempted if r.status == ProviderStatus.FAILED]

    @property
    def fatal_errors(self) -> list[SecretLoaderError]:
        errors: list[SecretLoaderError] = []
        for result in self.results:
            errors.extend(result.fatal_errors)
        return errors

    @property
    def exported(self) -> list[str]:
        names: list[str] = []
        if self.references:
            names.extend(self.references.exported)
        for result in self.results:
            names.extend(result.exported)
        return list(dict.fromkeys(names))

    @property
    def is_fatal(self) -> bool:
        return self.enabled and self.fail_on_error and bool(self.fatal_errors)

    def exit_code(self) -> int:
        """0 when disabled or (partially) successful, 2 when fatal."""
        return 2 if self.is_fatal else 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "fail_on_error": self.fail_on_error,
            "total_loaded": self.total_loaded,
            "exit_code": self.exit_code(),
            "providers": [r.to_dict() for r in self.results],
            "references": self.references.to_dict() if self.references else None,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }
