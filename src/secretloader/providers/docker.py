"""
Docker secrets provider.

Docker Swarm and Compose mount each secret as a file under /run/secrets;
the file name is the secret name and the content is the value.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

import logging
import os
from pathlib import Path

from secretloader.config import DockerConfig
from secretloader.errors import ConfigError, FetchError
from secretloader.models import AuthSession
from secretloader.naming import docker_label, is_safe_secret_file_name, normalize
from secretloader.providers.base import SecretProvider

logger = logging.getLogger(__name__)


class DockerSecretsProvider(SecretProvider):
    """Reads secrets from a mounted secrets directory."""

    name = "docker"
    display_name = "Docker Secrets"

    def __init__(self, config: DockerConfig | None = None, **kwargs):
        super().__init__(**kwargs)
        self.config = config or DockerConfig.from_env()
        self.secrets_dir = Path(self.config.secrets_dir)

    def available(self) -> bool:
        """Secrets directory exists, is readable and has entries."""
        try:
            if not self.secrets_dir.is_dir() or not os.access(self.secrets_dir, os.R_OK):
                return False
            return any(self.secrets_dir.iterdir())
        except OSError:
            return False

    def enabled(self) -> bool:
        if self.config.enabled == "auto":
            available = self.available()
            if not available:
                logger.info(f"Docker secrets not available (no secrets in {self.secrets_dir})")
            return available
        return self.config.explicit

    def authenticate(self) -> AuthSession:
        # No credential exchange; only check the mount
        if not self.secrets_dir.is_dir():
            raise ConfigError(f"Docker secrets directory not found: {self.secrets_dir}", provider=self.name)
        if not os.access(self.secrets_dir, os.R_OK):
            raise ConfigError(f"Docker secrets directory not readable: {self.secrets_dir}", provider=self.name)
        return AuthSession(provider=self.name, method="file-mount", identity=str(self.secrets_dir))

    def resolve_names(self, session: AuthSession) -> list[str]:
        if self.config.names:
            return list(self.config.names)

        names = []
        try:
            entries = sorted(self.secrets_dir.iterdir())
        except OSError as e:
            raise FetchError(f"Failed to list {self.secrets_dir}: {e.strerror}", provider=self.name)

        for entry in entries:
            if entry.name.startswith("."):
                logger.debug(f"Skipping hidden file: {entry.name}")
                continue
            # Regular files only; symlinks into ..data dirs are fine
            if not entry.is_file():
                continue
            names.append(entry.name)
        return names

    def fetch(self, session: AuthSession, name: str) -> str:
        if not is_safe_secret_file_name(name):
            raise FetchError(
                "Invalid secret name rejected (must match [a-zA-Z0-9._-]+)",
                provider=self.name, secret=name,
            )

        path = self.secrets_dir / name
        if not path.is_file():
            raise FetchError(f"Secret file not found: {path}", provider=self.name, secret=name)
        try:
            value = path.read_text().strip()
        except (OSError, UnicodeDecodeError) as e:
            raise FetchError(f"Secret file not readable ({type(e).__name__})", provider=self.name, secret=name)

        if not value:
            raise FetchError("Secret is empty, skipping", provider=self.name, secret=name)
        return value

    def env_name(self, name: str) -> str:
        return normalize(self.config.prefix, docker_label(name), uppercase=self.config.uppercase)

    def health_check(self) -> bool:
        if self.config.enabled == "false":
            return True
        if self.available():
            count = sum(1 for p in self.secrets_dir.iterdir() if p.is_file() and not p.name.startswith("."))
            logger.info(f"Docker secrets available ({count} secrets found)")
            return True
        logger.info("Docker secrets not available")
        return False

    def describe(self) -> dict:
        return self.config.to_dict()
