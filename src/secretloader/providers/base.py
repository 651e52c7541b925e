"""
Abstract base class for secret providers.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

from abc import ABC, abstractmethod
from typing import Iterator, Mapping

from secretloader.config import RetryConfig
from secretloader.errors import ConfigError, FetchError
from secretloader.models import AuthSession
from secretloader.naming import normalize
from secretloader.retry import call_with_retry


class SecretProvider(ABC):
    """One secret backend.

    Lifecycle per pass: ``enabled()`` -> ``authenticate()`` ->
    ``resolve_names()`` -> ``fetch()`` for each name. Implementations raise
    ConfigError/AuthError from ``authenticate`` and FetchError/FormatError
    from ``resolve_names``/``fetch``; the loader records them.
    """

    name: str = ""
    display_name: str = ""

    def __init__(self, retry: RetryConfig | None = None):
        self.retry = retry or RetryConfig()

    @abstractmethod
    def enabled(self) -> bool:
        """Whether this provider takes part in the pass. Must make no backend calls."""
        pass

    @abstractmethod
    def authenticate(self) -> AuthSession:
        """Create an ephemeral session for this pass."""
        pass

    @abstractmethod
    def resolve_names(self, session: AuthSession) -> list[str]:
        """Logical names of the secrets to load."""
        pass

    @abstractmethod
    def fetch(self, session: AuthSession, name: str) -> str:
        """Value of one secret."""
        pass

    @abstractmethod
    def health_check(self) -> bool:
        """Cheap reachability/credential probe (True when disabled)."""
        pass

    @property
    def prefix(self) -> str:
        return ""

    def env_name(self, name: str) -> str:
        """Env var that receives secret ``name``."""
        return normalize(self.prefix, name)

    def collect(self, session: AuthSession) -> Iterator[tuple[str, str | FetchError]]:
        """Yield ``(name, value)`` or ``(name, error)`` for every secret.

        Per-secret failures are yielded, not raised, so one bad secret never
        stops its siblings. Failures of ``resolve_names`` propagate.
        """
        for name in self.resolve_names(session):
            try:
                yield name, self.fetch(session, name)
            except FetchError as e:
                if e.provider is None:
                    e.provider = self.name
                if e.secret is None:
                    e.secret = name
                yield name, e

    def describe(self) -> Mapping[str, object]:
        """Non-sensitive view of the provider configuration."""
        return {}

    def close(self) -> None:
        """Release any client opened during the pass."""
        pass

    # Helpers

    def _call(self, func):
        """Run one backend call under the configured retry policy."""
        return call_with_retry(func, self.retry)

    def _require(self, errors: list[str]) -> None:
        """Raise ConfigError for an explicitly enabled provider with gaps."""
        if errors:
            raise ConfigError("; ".join(errors), provider=self.name)
