"""
Configuration for the secret loader and its providers.

Every config is rebuilt from the process environment on each invocation;
nothing here is persisted.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

import math
import os
from dataclasses import dataclass, field
from typing import Any, Mapping

DEFAULT_PRIORITY = ["docker", "1password", "vault", "aws", "azure", "gcp"]

# Accepted spellings in SECRET_LOADER_PRIORITY
PROVIDER_ALIASES = {
    "docker": "docker",
    "docker-secrets": "docker",
    "1password": "1password",
    "op": "1password",
    "vault": "vault",
    "hashicorp": "vault",
    "aws": "aws",
    "aws-secrets": "aws",
    "azure": "azure",
    "azure-keyvault": "azure",
    "gcp": "gcp",
    "gcp-secrets": "gcp",
    "google": "gcp",
}

TRUE_VALUES = ("true", "yes", "1")


def env_bool(environ: Mapping[str, str], name: str, default: bool = False) -> bool:
    value = environ.get(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in TRUE_VALUES


def env_list(environ: Mapping[str, str], name: str) -> list[str]:
    """Split a comma-separated variable, trimming blanks."""
    raw = environ.get(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


def env_str(environ: Mapping[str, str], name: str, default: str | None = None) -> str | None:
    value = environ.get(name)
    if value is None or value == "":
        return default
    return value


def env_number(environ: Mapping[str, str], name: str, default: float) -> float:
    value = environ.get(name)
    if not value:
        return default
    try:
        number = float(value)
    except ValueError:
        return default
    # float() accepts nan and inf
    return number if math.isfinite(number) else default


def _environ(environ: Mapping[str, str] | None) -> Mapping[str, str]:
    return os.environ if environ is None else environ


@dataclass
class RetryConfig:
    """Per-call timeout and bounded exponential backoff."""
    timeout: float = 30.0
    attempts: int = 3
    initial_delay: float = 2.0
    max_delay: float = 30.0

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "RetryConfig":
        environ = _environ(environ)
        return cls(
            timeout=env_number(environ, "SECRET_LOADER_TIMEOUT", 30.0),
            attempts=max(1, int(env_number(environ, "SECRET_LOADER_RETRY_ATTEMPTS", 3))),
            initial_delay=env_number(environ, "SECRET_LOADER_RETRY_INITIAL_DELAY", 2.0),
            max_delay=env_number(environ, "SECRET_LOADER_RETRY_MAX_DELAY", 30.0),
        )


@dataclass
class LoaderConfig:
    """Global loader switches."""
    enabled: bool = True
    priority: list[str] = field(default_factory=lambda: list(DEFAULT_PRIORITY))
    unknown_providers: list[str] = field(default_factory=list)
    fail_on_error: bool = False
    log_level: str = "INFO"
    retry: RetryConfig = field(default_factory=RetryConfig)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "LoaderConfig":
        """Load configuration from environment variables."""
        environ = _environ(environ)

        raw_priority = env_list(environ, "SECRET_LOADER_PRIORITY") or list(DEFAULT_PRIORITY)
        priority: list[str] = []
        unknown: list[str] = []
        for entry in raw_priority:
            canonical = PROVIDER_ALIASES.get(entry.lower())
            if canonical is None:
                unknown.append(entry)
            elif canonical not in priority:
                priority.append(canonical)

        return cls(
            enabled=env_bool(environ, "SECRET_LOADER_ENABLED", True),
            priority=priority,
            unknown_providers=unknown,
            fail_on_error=env_bool(environ, "SECRET_LOADER_FAIL_ON_ERROR", False),
            log_level=env_str(environ, "SECRET_LOADER_LOG_LEVEL", "INFO").upper(),
            retry=RetryConfig.from_env(environ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "priority": self.priority,
            "unknown_providers": self.unknown_providers,
            "fail_on_error": self.fail_on_error,
            "log_level": self.log_level,
            "timeout": self.retry.timeout,
            "retry_attempts": self.retry.attempts,
        }


@dataclass
class DockerConfig:
    """Docker / Compose / Swarm secrets mounted as files."""
    enabled: str = "auto"  # true, false or auto
    secrets_dir: str = "/run/secrets"
    prefix: str = ""
    names: list[str] = field(default_factory=list)
    uppercase: bool = True

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "DockerConfig":
        environ = _environ(environ)
        enabled = (env_str(environ, "DOCKER_SECRETS_ENABLED", "auto") or "auto").strip().lower()
        if enabled != "auto":
            enabled = "true" if enabled in TRUE_VALUES else "false"
        return cls(
            enabled=enabled,
            secrets_dir=env_str(environ, "DOCKER_SECRETS_DIR", "/run/secrets"),
            prefix=env_str(environ, "DOCKER_SECRET_PREFIX", ""),
            names=env_list(environ, "DOCKER_SECRET_NAMES"),
            uppercase=env_bool(environ, "DOCKER_SECRETS_UPPERCASE", True),
        )

    @property
    def explicit(self) -> bool:
        return self.enabled == "true"

    def validate(self) -> list[str]:
        return []

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "secrets_dir": self.secrets_dir,
            "prefix": self.prefix,
            "names": self.names,
            "uppercase": self.uppercase,
        }


VAULT_AUTH_METHODS = ("token", "approle", "kubernetes")


@dataclass
class VaultConfig:
    """HashiCorp Vault settings."""
    enabled: bool = False
    address: str | None = None
    auth_method: str = "token"
    token: str | None = None
    role_id: str | None = None
    secret_id: str | None = None
    k8s_role: str | None = None
    k8s_token_path: str = "/var/run/secrets/kubernetes.io/serviceaccount/token"
    approle_mount: str = "approle"
    k8s_mount: str = "kubernetes"
    namespace: str | None = None
    secret_path: str | None = None
    prefix: str = ""

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "VaultConfig":
        environ = _environ(environ)
        method = (env_str(environ, "VAULT_AUTH_METHOD", "token") or "token").strip().lower()
        if method == "k8s":
            method = "kubernetes"
        return cls(
            enabled=env_bool(environ, "VAULT_ENABLED"),
            address=env_str(environ, "VAULT_ADDR"),
            auth_method=method,
            token=env_str(environ, "VAULT_TOKEN"),
            role_id=env_str(environ, "VAULT_ROLE_ID"),
            secret_id=env_str(environ, "VAULT_SECRET_ID"),
            k8s_role=env_str(environ, "VAULT_K8S_ROLE"),
            k8s_token_path=env_str(
                environ, "VAULT_K8S_TOKEN_PATH",
                "/var/run/secrets/kubernetes.io/serviceaccount/token",
            ),
            approle_mount=env_str(environ, "VAULT_APPROLE_MOUNT", "approle").strip("/"),
            k8s_mount=env_str(environ, "VAULT_K8S_MOUNT", "kubernetes").strip("/"),
            namespace=env_str(environ, "VAULT_NAMESPACE"),
            secret_path=env_str(environ, "VAULT_SECRET_PATH"),
            prefix=env_str(environ, "VAULT_SECRET_PREFIX", ""),
        )

    def validate(self) -> list[str]:
        """Validate configuration. Returns list of errors."""
        errors = []
        if not self.address:
            errors.append("VAULT_ADDR must be set when VAULT_ENABLED=true")
        if not self.secret_path:
            errors.append("VAULT_SECRET_PATH must be set when VAULT_ENABLED=true")
        if self.auth_method not in VAULT_AUTH_METHODS:
            errors.append(
                f"Unknown VAULT_AUTH_METHOD: {self.auth_method} "
                f"(supported: {', '.join(VAULT_AUTH_METHODS)})"
            )
        elif self.auth_method == "token" and not self.token:
            errors.append("VAULT_TOKEN not set for token authentication")
        elif self.auth_method == "approle" and not (self.role_id and self.secret_id):
            errors.append("VAULT_ROLE_ID and VAULT_SECRET_ID must be set for approle authentication")
        elif self.auth_method == "kubernetes" and not self.k8s_role:
            errors.append("VAULT_K8S_ROLE must be set for Kubernetes authentication")
        return errors

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary (excludes sensitive values)."""
        return {
            "enabled": self.enabled,
            "address": self.address,
            "auth_method": self.auth_method,
            "namespace": self.namespace,
            "secret_path": self.secret_path,
            "prefix": self.prefix,
        }


@dataclass
class AWSConfig:
    """AWS Secrets Manager settings."""
    enabled: bool = False
    secret_name: str | None = None
    region: str | None = None
    profile: str | None = None
    version_id: str | None = None
    version_stage: str | None = None
    prefix: str = ""
    plaintext_env_var: str | None = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "AWSConfig":
        environ = _environ(environ)
        return cls(
            enabled=env_bool(environ, "AWS_SECRETS_ENABLED"),
            secret_name=env_str(environ, "AWS_SECRET_NAME"),
            region=env_str(environ, "AWS_REGION") or env_str(environ, "AWS_DEFAULT_REGION"),
            profile=env_str(environ, "AWS_PROFILE"),
            version_id=env_str(environ, "AWS_SECRET_VERSION_ID"),
            version_stage=env_str(environ, "AWS_SECRET_VERSION_STAGE"),
            prefix=env_str(environ, "AWS_SECRET_PREFIX", ""),
            plaintext_env_var=env_str(environ, "AWS_SECRET_ENV_VAR"),
        )

    def validate(self) -> list[str]:
        errors = []
        if not self.secret_name:
            errors.append("AWS_SECRET_NAME must be set when AWS_SECRETS_ENABLED=true")
        return errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "secret_name": self.secret_name,
            "region": self.region,
            "version_id": self.version_id,
            "version_stage": self.version_stage,
            "prefix": self.prefix,
            "plaintext_env_var": self.plaintext_env_var,
        }


@dataclass
class AzureConfig:
    """Azure Key Vault settings."""
    enabled: bool = False
    vault_name: str | None = None
    vault_url: str | None = None
    names: list[str] = field(default_factory=list)
    fetch_all: bool = False
    prefix: str = ""
    tenant_id: str | None = None
    client_id: str | None = None
    client_secret: str | None = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "AzureConfig":
        environ = _environ(environ)
        return cls(
            enabled=env_bool(environ, "AZURE_KEYVAULT_ENABLED"),
            vault_name=env_str(environ, "AZURE_KEYVAULT_NAME"),
            vault_url=env_str(environ, "AZURE_KEYVAULT_URL"),
            names=env_list(environ, "AZURE_SECRET_NAMES"),
            fetch_all=env_bool(environ, "AZURE_SECRET_FETCH_ALL"),
            prefix=env_str(environ, "AZURE_SECRET_PREFIX", ""),
            tenant_id=env_str(environ, "AZURE_TENANT_ID"),
            client_id=env_str(environ, "AZURE_CLIENT_ID"),
            client_secret=env_str(environ, "AZURE_CLIENT_SECRET"),
        )

    @property
    def has_service_principal(self) -> bool:
        return bool(self.tenant_id and self.client_id and self.client_secret)

    def get_vault_url(self) -> str | None:
        """Vault URL, constructed from the name when not given."""
        if self.vault_url:
            return self.vault_url.rstrip("/")
        if self.vault_name:
            return f"https://{self.vault_name}.vault.azure.net"
        return None

    def validate(self) -> list[str]:
        errors = []
        if not self.vault_name and not self.vault_url:
            errors.append(
                "Either AZURE_KEYVAULT_NAME or AZURE_KEYVAULT_URL must be set "
                "when AZURE_KEYVAULT_ENABLED=true"
            )
        if not self.names and not self.fetch_all:
            errors.append(
                "AZURE_SECRET_NAMES must list the secrets to load "
                "(or set AZURE_SECRET_FETCH_ALL=true to load every secret in the vault)"
            )
        return errors

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary (excludes sensitive values)."""
        return {
            "enabled": self.enabled,
            "vault_url": self.get_vault_url(),
            "names": self.names,
            "fetch_all": self.fetch_all,
            "prefix": self.prefix,
            "service_principal": self.has_service_principal,
        }


@dataclass
class GCPConfig:
    """GCP Secret Manager settings."""
    enabled: bool = False
    project_id: str | None = None
    names: list[str] = field(default_factory=list)
    fetch_all: bool = False
    version: str = "latest"
    prefix: str = ""
    service_account_key: str | None = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "GCPConfig":
        environ = _environ(environ)
        return cls(
            enabled=env_bool(environ, "GCP_SECRETS_ENABLED"),
            project_id=env_str(environ, "GCP_PROJECT_ID"),
            names=env_list(environ, "GCP_SECRET_NAMES"),
            fetch_all=env_bool(environ, "GCP_SECRET_FETCH_ALL"),
            version=env_str(environ, "GCP_SECRET_VERSION", "latest"),
            prefix=env_str(environ, "GCP_SECRET_PREFIX", ""),
            service_account_key=env_str(environ, "GCP_SERVICE_ACCOUNT_KEY"),
        )

    def validate(self) -> list[str]:
        errors = []
        if not self.names and not self.fetch_all:
            errors.append(
                "GCP_SECRET_NAMES must list the secrets to load "
                "(or set GCP_SECRET_FETCH_ALL=true to load every secret in the project)"
            )
        return errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "project_id": self.project_id,
            "names": self.names,
            "fetch_all": self.fetch_all,
            "version": self.version,
            "prefix": self.prefix,
            "service_account_key": self.service_account_key,
        }


@dataclass
class OnePasswordConfig:
    """1Password explicit provider settings (Connect server or op CLI)."""
    enabled: bool = False
    connect_host: str | None = None
    connect_token: str | None = None
    service_account_token: str | None = None
    vault: str | None = None
    item_names: list[str] = field(default_factory=list)
    references: list[str] = field(default_factory=list)
    prefix: str = ""

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "OnePasswordConfig":
        environ = _environ(environ)
        host = env_str(environ, "OP_CONNECT_HOST")
        return cls(
            enabled=env_bool(environ, "OP_ENABLED"),
            connect_host=host.rstrip("/") if host else None,
            connect_token=env_str(environ, "OP_CONNECT_TOKEN"),
            service_account_token=env_str(environ, "OP_SERVICE_ACCOUNT_TOKEN"),
            vault=env_str(environ, "OP_VAULT"),
            item_names=env_list(environ, "OP_ITEM_NAMES"),
            references=env_list(environ, "OP_SECRET_REFERENCES"),
            prefix=env_str(environ, "OP_SECRET_PREFIX", ""),
        )

    @property
    def connect_configured(self) -> bool:
        return bool(self.connect_host and self.connect_token)

    def validate(self) -> list[str]:
        errors = []
        if not self.item_names and not self.references:
            errors.append("OP_ITEM_NAMES or OP_SECRET_REFERENCES must be set when OP_ENABLED=true")
        return errors

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary (excludes sensitive values)."""
        return {
            "enabled": self.enabled,
            "connect_host": self.connect_host,
            "service_account": bool(self.service_account_token),
            "vault": self.vault,
            "item_names": self.item_names,
            "references": self.references,
            "prefix": self.prefix,
        }


@dataclass
class ReferenceConfig:
    """Settings for the OP_<NAME>_REF convention pass."""
    service_account_token: str | None = None
    file_dir: str = "/dev/shm"
    require_tmpfs: bool = True
    git_identity_defaults: bool = True

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ReferenceConfig":
        environ = _environ(environ)
        return cls(
            service_account_token=env_str(environ, "OP_SERVICE_ACCOUNT_TOKEN"),
            file_dir=env_str(environ, "OP_FILE_REF_DIR", "/dev/shm"),
            require_tmpfs=env_bool(environ, "OP_FILE_REF_REQUIRE_TMPFS", True),
            git_identity_defaults=env_bool(environ, "OP_GIT_IDENTITY_DEFAULTS", True),
        )
