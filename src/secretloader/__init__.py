"""
secretloader - container start secret loading.

Discovers configured secret stores (Docker secrets, 1Password, HashiCorp
Vault, AWS Secrets Manager, Azure Key Vault, GCP Secret Manager), pulls
secret material from each in priority order and exposes it as environment
variables before the workload starts.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

__version__ = "1.0.0"

from secretloader.errors import (
    SecretLoaderError,
    ConfigError,
    AuthError,
    FetchError,
    FormatError,
)
from secretloader.models import (
    AuthSession,
    SecretRecord,
    LoadResult,
    GlobalLoadReport,
    ProviderStatus,
)
from secretloader.naming import normalize
from secretloader.sink import EnvironmentSink
from secretloader.loader import SecretLoader
from secretloader.startup import run_startup

__all__ = [
    "__version__",
    "SecretLoaderError",
    "ConfigError",
    "AuthError",
    "FetchError",
    "FormatError",
    "AuthSession",
    "SecretRecord",
    "LoadResult",
    "GlobalLoadReport",
    "ProviderStatus",
    "normalize",
    "EnvironmentSink",
    "SecretLoader",
    "run_startup",
]
