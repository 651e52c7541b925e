"""
Azure Key Vault provider.

Authenticates with a service principal when the full AZURE_TENANT_ID /
AZURE_CLIENT_ID / AZURE_CLIENT_SECRET triple is present, otherwise with
DefaultAzureCredential (managed identity, workload identity, az login).

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

import logging
from typing import Any, Callable

from secretloader.config import AzureConfig
from secretloader.errors import AuthError, ConfigError, FetchError, TransientError
from secretloader.models import AuthSession
from secretloader.providers.base import SecretProvider

logger = logging.getLogger(__name__)

KEYVAULT_SCOPE = "https://vault.azure.net/.default"

TRANSIENT_STATUS = (429, 500, 502, 503, 504)


def _default_credential_factory(config: AzureConfig, timeout: float):
    try:
        from azure.identity import ClientSecretCredential, DefaultAzureCredential
    except ImportError:
        raise ConfigError(
            "azure-identity required for Azure Key Vault. Install with: pip install azure-identity",
            provider="azure",
        )

    if config.has_service_principal:
        return ClientSecretCredential(
            tenant_id=config.tenant_id,
            client_id=config.client_id,
            client_secret=config.client_secret,
            connection_timeout=timeout,
            read_timeout=timeout,
        )
    return DefaultAzureCredential(
        connection_timeout=timeout,
        read_timeout=timeout,
        process_timeout=max(1, int(timeout)),
    )


def _default_client_factory(vault_url: str, credential: Any, timeout: float):
    try:
        from azure.keyvault.secrets import SecretClient
    except ImportError:
        raise ConfigError(
            "azure-keyvault-secrets required for Azure Key Vault. "
            "Install with: pip install azure-keyvault-secrets",
            provider="azure",
        )
    return SecretClient(
        vault_url=vault_url,
        credential=credential,
        connection_timeout=timeout,
        read_timeout=timeout,
    )


class AzureKeyVaultProvider(SecretProvider):
    """Loads named secrets (or every enabled secret) from one Key Vault."""

    name = "azure"
    display_name = "Azure Key Vault"

    def __init__(
        self,
        config: AzureConfig | None = None,
        credential_factory: Callable[[AzureConfig, float], Any] | None = None,
        client_factory: Callable[[str, Any, float], Any] | None = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.config = config or AzureConfig.from_env()
        self._credential_factory = credential_factory or _default_credential_factory
        self._client_factory = client_factory or _default_client_factory

    @property
    def prefix(self) -> str:
        return self.config.prefix

    @property
    def auth_method(self) -> str:
        return "service-principal" if self.config.has_service_principal else "default-credential"

    def enabled(self) -> bool:
        return self.config.enabled

    def _acquire_token(self, credential: Any) -> None:
        from azure.core.exceptions import (
            ClientAuthenticationError,
            ServiceRequestError,
            ServiceResponseError,
        )

        def send() -> None:
            try:
                credential.get_token(KEYVAULT_SCOPE)
            except (ServiceRequestError, ServiceResponseError) as e:
                raise TransientError(f"Azure identity endpoint unreachable ({type(e).__name__})", provider=self.name)

        try:
            self._call(send)
        except ClientAuthenticationError as e:
            raise AuthError(
                f"Azure authentication failed ({type(e).__name__}). "
                "Configure service principal or managed identity.",
                provider=self.name,
            )
        except TransientError as e:
            raise AuthError(e.message, provider=self.name)

    def authenticate(self) -> AuthSession:
        self._require(self.config.validate())
        vault_url = self.config.get_vault_url()

        if self.config.has_service_principal:
            logger.info("Authenticating with Azure service principal")
        else:
            logger.info("Using Azure DefaultAzureCredential")

        credential = self._credential_factory(self.config, self.retry.timeout)
        self._acquire_token(credential)
        logger.info(f"Successfully authenticated to Azure ({self.auth_method})")

        session = AuthSession(
            provider=self.name,
            method=self.auth_method,
            identity=self.config.client_id,
        )
        session.payload["client"] = self._client_factory(vault_url, credential, self.retry.timeout)
        return session

    def resolve_names(self, session: AuthSession) -> list[str]:
        if self.config.names:
            return list(self.config.names)

        from azure.core.exceptions import ClientAuthenticationError, HttpResponseError

        logger.info("Retrieving list of all enabled secrets from Key Vault")
        client = session.payload["client"]
        try:
            properties = self._call(lambda: list(client.list_properties_of_secrets()))
        except ClientAuthenticationError as e:
            raise AuthError(f"Azure rejected the credential ({type(e).__name__})", provider=self.name)
        except HttpResponseError as e:
            if e.status_code in (401, 403):
                raise AuthError(f"Permission denied listing secrets (HTTP {e.status_code})", provider=self.name)
            raise FetchError(f"Failed to list secrets from Key Vault (HTTP {e.status_code})", provider=self.name)

        return [prop.name for prop in properties if prop.name and prop.enabled is not False]

    def fetch(self, session: AuthSession, name: str) -> str:
        from azure.core.exceptions import HttpResponseError, ResourceNotFoundError

        client = session.payload["client"]
        logger.debug(f"Retrieving secret: {name}")

        def send():
            try:
                return client.get_secret(name, read_timeout=self.retry.timeout)
            except ResourceNotFoundError:
                raise
            except HttpResponseError as e:
                if e.status_code in TRANSIENT_STATUS:
                    raise TransientError(f"Key Vault returned HTTP {e.status_code}", provider=self.name, secret=name)
                raise

        try:
            secret = self._call(send)
        except ResourceNotFoundError:
            raise FetchError("Secret not found in Key Vault", provider=self.name, secret=name)
        except HttpResponseError as e:
            raise FetchError(f"Failed to retrieve secret (HTTP {e.status_code})", provider=self.name, secret=name)

        if not secret.value:
            raise FetchError("Secret is empty, skipping", provider=self.name, secret=name)
        return secret.value

    def health_check(self) -> bool:
        if not self.config.enabled:
            return True
        if not self.config.get_vault_url():
            logger.warning("Azure Key Vault enabled but AZURE_KEYVAULT_NAME not set")
            return False

        logger.info("Checking Azure Key Vault access")
        try:
            self._acquire_token(self._credential_factory(self.config, self.retry.timeout))
        except (AuthError, ConfigError) as e:
            logger.warning(f"Azure Key Vault access check failed: {e.message}")
            return False
        logger.info("Azure Key Vault is accessible")
        return True

    def describe(self) -> dict:
        return self.config.to_dict()
