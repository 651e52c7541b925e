"""
Error taxonomy for secret loading.

Adapters raise these; the loader catches them and records them on the
provider's LoadResult so one provider never aborts another. Messages name
providers, secrets and target variables only, never secret values.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Kind of failure recorded against a provider."""
    CONFIG = "config"
    AUTH = "auth"
    FETCH = "fetch"
    FORMAT = "format"


class SecretLoaderError(Exception):
    """Base class for all secret loading failures."""

    kind: ErrorKind = ErrorKind.FETCH

    def __init__(self, message: str, provider: str | None = None, secret: str | None = None):
        self.message = message
        self.provider = provider
        self.secret = secret
        super().__init__(message)

    def __str__(self) -> str:
        parts = []
        if self.provider:
            parts.append(f"[{self.provider}]")
        if self.secret:
            parts.append(f"{self.secret}:")
        parts.append(self.message)
        return " ".join(parts)

    def to_dict(self) -> dict[str, str | None]:
        return {
            "kind": self.kind.value,
            "provider": self.provider,
            "secret": self.secret,
            "message": self.message,
        }


class ConfigError(SecretLoaderError):
    """A required setting is missing on an explicitly enabled provider."""
    kind = ErrorKind.CONFIG


class AuthError(SecretLoaderError):
    """Credential exchange with a provider failed."""
    kind = ErrorKind.AUTH


class FetchError(SecretLoaderError):
    """Retrieval of one secret (or one listing) failed."""
    kind = ErrorKind.FETCH


class FormatError(FetchError):
    """A provider response could not be parsed."""
    kind = ErrorKind.FORMAT


class TransientError(FetchError):
    """A retryable failure (timeout, connection reset, throttling)."""
