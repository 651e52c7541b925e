"""
HashiCorp Vault provider.

Talks to the Vault HTTP API directly. Supports token, AppRole and
Kubernetes service-account authentication, and reads every key stored at
one KV path in a single round trip (KV v1 and KV v2 envelopes).

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

import json
import logging
from pathlib import Path
from typing import Any

import httpx

from secretloader.config import VaultConfig
from secretloader.errors import AuthError, FetchError, FormatError, TransientError
from secretloader.models import AuthSession
from secretloader.providers.base import SecretProvider

logger = logging.getLogger(__name__)

# sys/health codes that still mean "reachable": active, standby, DR, perf standby
HEALTHY_STATUS = (200, 429, 472, 473)


def parse_kv_response(body: Any) -> dict[str, Any]:
    """Extract the secret map from a KV read response.

    KV v2 wraps the secret as ``{"data": {"data": {...}, "metadata": {...}}}``;
    KV v1 returns ``{"data": {...}}``.

    Raises:
        FormatError: If no secret map can be found
    """
    if not isinstance(body, dict) or not isinstance(body.get("data"), dict):
        raise FormatError("Unable to parse secrets from Vault response")
    data = body["data"]
    if isinstance(data.get("data"), dict) and "metadata" in data:
        return data["data"]
    return data


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value)


class VaultProvider(SecretProvider):
    """Loads the secrets stored at one Vault KV path."""

    name = "vault"
    display_name = "HashiCorp Vault"

    def __init__(
        self,
        config: VaultConfig | None = None,
        client: httpx.Client | None = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.config = config or VaultConfig.from_env()
        self._client = client

    @property
    def prefix(self) -> str:
        return self.config.prefix

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(base_url=self.config.address or "", timeout=self.retry.timeout)
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def _headers(self, token: str | None = None) -> dict[str, str]:
        headers = {}
        if token:
            headers["X-Vault-Token"] = token
        if self.config.namespace:
            headers["X-Vault-Namespace"] = self.config.namespace
        return headers

    def _request(self, method: str, path: str, token: str | None = None, body: dict | None = None) -> httpx.Response:
        url = f"/v1/{path.lstrip('/')}"

        def send() -> httpx.Response:
            response = self.client.request(method, url, headers=self._headers(token), json=body)
            if response.status_code >= 500 and response.status_code not in HEALTHY_STATUS:
                raise TransientError(f"Vault returned HTTP {response.status_code}", provider=self.name)
            return response

        return self._call(send)

    def enabled(self) -> bool:
        return self.config.enabled

    # =========================================================================
    # Authentication
    # =========================================================================

    def authenticate(self) -> AuthSession:
        self._require(self.config.validate())

        if self.config.namespace:
            logger.info(f"Using Vault namespace: {self.config.namespace}")

        method = self.config.auth_method
        if method == "token":
            return self._auth_token()
        if method == "approle":
            return self._login(
                f"auth/{self.config.approle_mount}/login",
                {"role_id": self.config.role_id, "secret_id": self.config.secret_id},
                method="approle",
            )
        return self._auth_kubernetes()

    def _auth_token(self) -> AuthSession:
        logger.info("Authenticating to Vault using token authentication")
        try:
            response = self._request("GET", "auth/token/lookup-self", token=self.config.token)
        except (httpx.HTTPError, TransientError) as e:
            raise AuthError(f"Vault unreachable during token lookup ({type(e).__name__})", provider=self.name)

        if response.status_code != 200:
            raise AuthError(f"Vault token is invalid or expired (HTTP {response.status_code})", provider=self.name)

        data = _json(response).get("data") or {}
        logger.info("Successfully authenticated to Vault with token")
        return AuthSession(
            provider=self.name,
            method="token",
            identity=data.get("display_name"),
            token=self.config.token,
            lease_seconds=data.get("ttl"),
        )

    def _auth_kubernetes(self) -> AuthSession:
        jwt_path = Path(self.config.k8s_token_path)
        if not jwt_path.is_file():
            raise AuthError(f"Kubernetes service account token not found at {jwt_path}", provider=self.name)
        try:
            jwt = jwt_path.read_text().strip()
        except OSError as e:
            raise AuthError(f"Kubernetes service account token not readable ({e.strerror})", provider=self.name)

        return self._login(
            f"auth/{self.config.k8s_mount}/login",
            {"role": self.config.k8s_role, "jwt": jwt},
            method="kubernetes",
        )

    def _login(self, path: str, body: dict[str, Any], method: str) -> AuthSession:
        logger.info(f"Authenticating to Vault using {method} authentication")
        try:
            response = self._request("POST", path, body=body)
        except (httpx.HTTPError, TransientError) as e:
            raise AuthError(f"Vault unreachable during {method} login ({type(e).__name__})", provider=self.name)

        if response.status_code != 200:
            raise AuthError(f"{method} authentication failed (HTTP {response.status_code})", provider=self.name)

        auth = _json(response).get("auth") or {}
        token = auth.get("client_token")
        if not token:
            raise AuthError(f"Failed to extract token from {method} response", provider=self.name)

        metadata = auth.get("metadata") or {}
        identity = metadata.get("role") or metadata.get("service_account_name") or metadata.get("role_name")
        logger.info(f"Successfully authenticated to Vault with {method}")
        return AuthSession(
            provider=self.name,
            method=method,
            identity=identity,
            token=token,
            lease_seconds=auth.get("lease_duration"),
        )

    # =========================================================================
    # Secret retrieval
    # =========================================================================

    def resolve_names(self, session: AuthSession) -> list[str]:
        """Read the configured path once and keep the map on the session."""
        path = self.config.secret_path
        logger.info(f"Retrieving secrets from Vault path: {path}")
        try:
            response = self._request("GET", path, token=session.token)
        except (httpx.HTTPError, TransientError) as e:
            raise FetchError(f"Failed to retrieve secrets from Vault ({type(e).__name__})", provider=self.name)

        if response.status_code in (401, 403):
            raise AuthError(f"Permission denied reading {path} (HTTP {response.status_code})", provider=self.name)
        if response.status_code == 404:
            raise FetchError(f"No secrets found at {path}", provider=self.name)
        if response.status_code != 200:
            raise FetchError(f"Failed to retrieve secrets from Vault (HTTP {response.status_code})", provider=self.name)

        secrets = parse_kv_response(_json(response))
        session.payload["secrets"] = secrets
        return [key for key in secrets if key]

    def fetch(self, session: AuthSession, name: str) -> str:
        secrets = session.payload.get("secrets") or {}
        if name not in secrets or secrets[name] is None:
            raise FetchError("Key not present in Vault response", provider=self.name, secret=name)
        value = _stringify(secrets[name])
        if value == "":
            raise FetchError("Secret is empty, skipping", provider=self.name, secret=name)
        return value

    def health_check(self) -> bool:
        if not self.config.enabled:
            return True
        if not self.config.address:
            logger.warning("Vault enabled but VAULT_ADDR not set")
            return False

        logger.info(f"Checking Vault health at {self.config.address}")
        try:
            response = self._request("GET", "sys/health")
        except (httpx.HTTPError, TransientError) as e:
            logger.warning(f"Vault health check failed ({type(e).__name__})")
            return False

        if response.status_code in HEALTHY_STATUS:
            logger.info("Vault is accessible and healthy")
            return True
        logger.warning(f"Vault health check failed (HTTP {response.status_code})")
        return False

    def describe(self) -> dict:
        return self.config.to_dict()


def _json(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        raise FormatError("Vault returned a non-JSON response", provider="vault")
    return body if isinstance(body, dict) else {}
