"""
Secret provider adapters.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

from typing import Mapping

from secretloader.config import (
    AWSConfig,
    AzureConfig,
    DockerConfig,
    GCPConfig,
    OnePasswordConfig,
    RetryConfig,
    VaultConfig,
)
from secretloader.providers.base import SecretProvider
from secretloader.providers.docker import DockerSecretsProvider
from secretloader.providers.onepassword import OnePasswordProvider
from secretloader.providers.vault import VaultProvider
from secretloader.providers.aws import AWSSecretsProvider
from secretloader.providers.azure import AzureKeyVaultProvider
from secretloader.providers.gcp import GCPSecretManagerProvider

PROVIDER_CLASSES: dict[str, type[SecretProvider]] = {
    "docker": DockerSecretsProvider,
    "1password": OnePasswordProvider,
    "vault": VaultProvider,
    "aws": AWSSecretsProvider,
    "azure": AzureKeyVaultProvider,
    "gcp": GCPSecretManagerProvider,
}

CONFIG_CLASSES = {
    "docker": DockerConfig,
    "1password": OnePasswordConfig,
    "vault": VaultConfig,
    "aws": AWSConfig,
    "azure": AzureConfig,
    "gcp": GCPConfig,
}


def create_provider(
    name: str,
    environ: Mapping[str, str] | None = None,
    retry: RetryConfig | None = None,
) -> SecretProvider:
    """Build one provider with its configuration read from ``environ``.

    Args:
        name: Canonical provider name (see PROVIDER_CLASSES)
        environ: Environment to read settings from (default os.environ)
        retry: Timeout and retry policy for backend calls

    Raises:
        KeyError: If ``name`` is not a known provider
    """
    config = CONFIG_CLASSES[name].from_env(environ)
    return PROVIDER_CLASSES[name](config=config, retry=retry)


def create_providers(
    names: list[str],
    environ: Mapping[str, str] | None = None,
    retry: RetryConfig | None = None,
) -> list[SecretProvider]:
    """Build providers in the given priority order."""
    return [create_provider(name, environ, retry) for name in names]


__all__ = [
    "SecretProvider",
    "DockerSecretsProvider",
    "OnePasswordProvider",
    "VaultProvider",
    "AWSSecretsProvider",
    "AzureKeyVaultProvider",
    "GCPSecretManagerProvider",
    "PROVIDER_CLASSES",
    "create_provider",
    "create_providers",
]
