"""
GCP Secret Manager provider.

Credentials come from a service account key file when GCP_SERVICE_ACCOUNT_KEY
is set, otherwise from Application Default Credentials (Workload Identity,
the metadata server or a gcloud session).

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

import logging
from pathlib import Path
from typing import Any, Callable

import httpx

from secretloader.config import GCPConfig
from secretloader.errors import AuthError, ConfigError, FetchError, TransientError
from secretloader.models import AuthSession
from secretloader.providers.base import SecretProvider

logger = logging.getLogger(__name__)

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"
METADATA_PROJECT_URL = "http://metadata.google.internal/computeMetadata/v1/project/project-id"
METADATA_TIMEOUT = 2.0


def _default_credentials_factory(config: GCPConfig) -> tuple[Any, str | None, str]:
    """Resolve credentials.

    Returns:
        Tuple of (credentials, project id or None, auth method)
    """
    try:
        import google.auth
        from google.auth.exceptions import DefaultCredentialsError
        from google.oauth2 import service_account
    except ImportError:
        raise ConfigError(
            "google-auth required for GCP Secret Manager. Install with: pip install google-auth",
            provider="gcp",
        )

    if config.service_account_key:
        key_path = Path(config.service_account_key)
        if not key_path.is_file():
            raise AuthError(f"Service account key file not found: {key_path}", provider="gcp")
        logger.info(f"Authenticating with service account key: {key_path}")
        try:
            credentials = service_account.Credentials.from_service_account_file(
                str(key_path), scopes=[CLOUD_PLATFORM_SCOPE]
            )
        except (ValueError, OSError) as e:
            raise AuthError(f"Failed to load service account key ({type(e).__name__})", provider="gcp")
        return credentials, getattr(credentials, "project_id", None), "service-account-key"

    try:
        credentials, project = google.auth.default(scopes=[CLOUD_PLATFORM_SCOPE])
    except DefaultCredentialsError:
        raise AuthError(
            "No active GCP authentication found. Configure service account, ADC, or Workload Identity.",
            provider="gcp",
        )
    return credentials, project, "application-default"


def _default_client_factory(credentials: Any):
    try:
        from google.cloud import secretmanager
    except ImportError:
        raise ConfigError(
            "google-cloud-secret-manager required for GCP Secret Manager. "
            "Install with: pip install google-cloud-secret-manager",
            provider="gcp",
        )
    return secretmanager.SecretManagerServiceClient(credentials=credentials)


class GCPSecretManagerProvider(SecretProvider):
    """Loads named secrets (or every secret in the project) from Secret Manager."""

    name = "gcp"
    display_name = "GCP Secret Manager"

    def __init__(
        self,
        config: GCPConfig | None = None,
        credentials_factory: Callable[[GCPConfig], tuple[Any, str | None, str]] | None = None,
        client_factory: Callable[[Any], Any] | None = None,
        metadata_client: httpx.Client | None = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.config = config or GCPConfig.from_env()
        self._credentials_factory = credentials_factory or _default_credentials_factory
        self._client_factory = client_factory or _default_client_factory
        self._metadata_client = metadata_client

    @property
    def prefix(self) -> str:
        return self.config.prefix

    def enabled(self) -> bool:
        return self.config.enabled

    def metadata_project_id(self) -> str | None:
        """Project ID from the GCE/GKE metadata server, if reachable."""
        client = self._metadata_client or httpx.Client(timeout=METADATA_TIMEOUT)
        try:
            response = client.get(METADATA_PROJECT_URL, headers={"Metadata-Flavor": "Google"})
        except httpx.HTTPError:
            return None
        finally:
            if self._metadata_client is None:
                client.close()
        if response.status_code != 200:
            return None
        return response.text.strip() or None

    def resolve_project(self, default_project: str | None) -> str:
        """Explicit setting, then the credentials' project, then the metadata server.

        Raises:
            ConfigError: If no project can be determined
        """
        project = self.config.project_id or default_project or self.metadata_project_id()
        if not project:
            raise ConfigError(
                "GCP project ID not found. Set GCP_PROJECT_ID or configure gcloud default project.",
                provider=self.name,
            )
        return project

    def authenticate(self) -> AuthSession:
        self._require(self.config.validate())

        credentials, default_project, method = self._credentials_factory(self.config)
        project = self.resolve_project(default_project)
        logger.info(f"Using GCP project: {project}")

        session = AuthSession(
            provider=self.name,
            method=method,
            identity=getattr(credentials, "service_account_email", None),
        )
        session.payload["project"] = project
        session.payload["client"] = self._client_factory(credentials)
        return session

    def resolve_names(self, session: AuthSession) -> list[str]:
        if self.config.names:
            return list(self.config.names)

        from google.api_core import exceptions as gexc

        project = session.payload["project"]
        client = session.payload["client"]
        logger.info("Retrieving list of all secrets from project")

        def send() -> list:
            try:
                return list(client.list_secrets(
                    request={"parent": f"projects/{project}"}, timeout=self.retry.timeout
                ))
            except (gexc.ServiceUnavailable, gexc.DeadlineExceeded) as e:
                raise TransientError(f"Secret Manager unavailable ({type(e).__name__})", provider=self.name)

        try:
            secrets = self._call(send)
        except (gexc.PermissionDenied, gexc.Unauthenticated) as e:
            raise AuthError(f"Permission denied listing secrets ({type(e).__name__})", provider=self.name)
        except gexc.GoogleAPIError as e:
            raise FetchError(f"Failed to list secrets ({type(e).__name__})", provider=self.name)

        # Resource names look like projects/<project>/secrets/<name>
        return [secret.name.rsplit("/", 1)[-1] for secret in secrets if secret.name]

    def fetch(self, session: AuthSession, name: str) -> str:
        from google.api_core import exceptions as gexc

        project = session.payload["project"]
        client = session.payload["client"]
        version_path = f"projects/{project}/secrets/{name}/versions/{self.config.version}"
        logger.debug(f"Retrieving secret: {name} (version: {self.config.version})")

        def send():
            try:
                return client.access_secret_version(request={"name": version_path}, timeout=self.retry.timeout)
            except (gexc.ServiceUnavailable, gexc.DeadlineExceeded) as e:
                raise TransientError(f"Secret Manager unavailable ({type(e).__name__})", provider=self.name, secret=name)

        try:
            response = self._call(send)
        except gexc.NotFound:
            raise FetchError(f"Secret or version {self.config.version} not found", provider=self.name, secret=name)
        except gexc.GoogleAPIError as e:
            raise FetchError(f"Failed to retrieve secret ({type(e).__name__})", provider=self.name, secret=name)

        try:
            value = response.payload.data.decode("utf-8").rstrip("\n")
        except UnicodeDecodeError:
            raise FetchError("Secret payload is not valid UTF-8", provider=self.name, secret=name)
        if not value:
            raise FetchError("Secret is empty, skipping", provider=self.name, secret=name)
        return value

    def health_check(self) -> bool:
        if not self.config.enabled:
            return True

        logger.info("Checking GCP Secret Manager access")
        try:
            credentials, default_project, _ = self._credentials_factory(self.config)
            project = self.resolve_project(default_project)
            client = self._client_factory(credentials)
            next(iter(client.list_secrets(
                request={"parent": f"projects/{project}", "page_size": 1}, timeout=self.retry.timeout
            )), None)
        except (AuthError, ConfigError) as e:
            logger.warning(f"GCP Secret Manager access check failed: {e.message}")
            return False
        except Exception as e:
            logger.warning(f"GCP Secret Manager access check failed ({type(e).__name__})")
            return False
        logger.info(f"GCP Secret Manager is accessible (project: {project})")
        return True

    def describe(self) -> dict:
        return self.config.to_dict()
