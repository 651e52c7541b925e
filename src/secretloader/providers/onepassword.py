"""
1Password provider.

Two transports: a 1Password Connect server over its REST API (tried first
when OP_CONNECT_HOST and OP_CONNECT_TOKEN are set), and the ``op`` CLI
authenticated with a service account token or an existing session.

Items expand into one variable per non-empty field label; secret references
(``op://vault/item/[section/]field``) export under their last path segment.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

import json
import logging
import re
from typing import Any, Iterator

import httpx

from secretloader.config import OnePasswordConfig
from secretloader.errors import AuthError, ConfigError, FetchError, FormatError, TransientError
from secretloader.models import AuthSession
from secretloader.providers.base import SecretProvider
from secretloader.runner import CommandRunner

logger = logging.getLogger(__name__)

REFERENCE_SCHEME = "op://"
VAULT_ID_RE = re.compile(r"^[a-zA-Z0-9]{26}$")


def reference_label(reference: str) -> str:
    """Last path segment of a secret reference (the field name)."""
    return reference.rstrip("/").rsplit("/", 1)[-1]


def parse_reference(reference: str) -> tuple[str, str, str | None, str]:
    """Split ``op://vault/item/[section/]field``.

    Returns:
        Tuple of (vault, item, section or None, field)

    Raises:
        FormatError: If the reference is malformed
    """
    if not reference.startswith(REFERENCE_SCHEME):
        raise FormatError("Secret reference must start with op://", provider="1password")
    parts = reference[len(REFERENCE_SCHEME):].split("/")
    if len(parts) == 3 and all(parts):
        return parts[0], parts[1], None, parts[2]
    if len(parts) == 4 and all(parts):
        return parts[0], parts[1], parts[2], parts[3]
    raise FormatError("Secret reference must look like op://vault/item/[section/]field", provider="1password")


def item_fields(item: dict[str, Any]) -> list[tuple[str, str]]:
    """Non-empty ``(label, value)`` pairs of an item document."""
    fields = []
    for field in item.get("fields") or []:
        label = field.get("label")
        value = field.get("value")
        if label and value not in (None, ""):
            fields.append((label, str(value)))
    return fields


class OnePasswordCLI:
    """Thin wrapper around the ``op`` binary.

    The service account token is passed through the child environment only.
    """

    def __init__(
        self,
        runner: CommandRunner | None = None,
        service_account_token: str | None = None,
    ):
        self.runner = runner or CommandRunner()
        self.service_account_token = service_account_token

    def available(self) -> bool:
        return self.runner.available("op")

    def _run(self, *args: str):
        extra_env = {}
        if self.service_account_token:
            extra_env["OP_SERVICE_ACCOUNT_TOKEN"] = self.service_account_token
        return self.runner.run(["op", *args], extra_env=extra_env)

    def whoami(self) -> dict[str, Any] | None:
        """Signed-in account details, or None when not authenticated."""
        result = self._run("whoami", "--format=json")
        if not result.ok:
            return None
        try:
            return json.loads(result.stdout)
        except ValueError:
            return {}

    def read(self, reference: str) -> str:
        """Resolve one secret reference.

        Raises:
            FetchError: If ``op`` cannot resolve it
        """
        result = self._run("read", "--no-newline", reference)
        if not result.ok:
            raise FetchError(f"Failed to read secret reference ({result.describe()})", provider="1password")
        return result.stdout

    def item_get(self, name: str, vault: str | None = None) -> dict[str, Any]:
        args = ["item", "get", name, "--format=json"]
        if vault:
            args.append(f"--vault={vault}")
        result = self._run(*args)
        if not result.ok:
            raise FetchError(f"Failed to retrieve item ({result.describe()})", provider="1password")
        try:
            return json.loads(result.stdout)
        except ValueError:
            raise FormatError("op returned invalid item JSON", provider="1password")


class ConnectClient:
    """Minimal 1Password Connect REST client."""

    def __init__(self, host: str, token: str, client: httpx.Client | None = None, timeout: float = 30.0):
        self.host = host
        self._token = token
        self._client = client or httpx.Client(base_url=host, timeout=timeout)
        self._vaults: list[dict[str, Any]] | None = None

    def close(self) -> None:
        self._client.close()

    def _get(self, path: str, params: dict[str, str] | None = None) -> httpx.Response:
        try:
            return self._client.get(path, params=params, headers={"Authorization": f"Bearer {self._token}"})
        except httpx.TransportError as e:
            raise TransientError(f"Connect server unreachable ({type(e).__name__})", provider="1password")

    def health(self) -> bool:
        try:
            response = self._client.get("/health")
        except httpx.HTTPError:
            return False
        return response.status_code == 200

    def vaults(self) -> list[dict[str, Any]]:
        """Accessible vaults; also proves the token.

        Raises:
            AuthError: On 401/403
            FetchError: On any other failure
        """
        if self._vaults is None:
            response = self._get("/v1/vaults")
            if response.status_code in (401, 403):
                raise AuthError(f"Connect token rejected (HTTP {response.status_code})", provider="1password")
            if not 200 <= response.status_code < 300:
                raise FetchError(f"Failed to list vaults (HTTP {response.status_code})", provider="1password")
            self._vaults = _json_list(response)
        return self._vaults

    def vault_id(self, vault: str) -> str:
        if VAULT_ID_RE.match(vault):
            return vault
        for entry in self.vaults():
            if entry.get("name") == vault:
                return entry["id"]
        raise FetchError(f"Vault '{vault}' not found", provider="1password")

    def find_item(self, title: str, vault: str | None = None) -> dict[str, Any]:
        """Full item document for the first item titled ``title``."""
        vault_ids = [self.vault_id(vault)] if vault else [v["id"] for v in self.vaults() if v.get("id")]
        for vault_id in vault_ids:
            response = self._get(f"/v1/vaults/{vault_id}/items", params={"filter": f'title eq "{title}"'})
            if not 200 <= response.status_code < 300:
                raise FetchError(f"Failed to retrieve item (HTTP {response.status_code})", provider="1password")
            matches = _json_list(response)
            if not matches:
                continue

            item_id = matches[0].get("id")
            details = self._get(f"/v1/vaults/{vault_id}/items/{item_id}")
            if not 200 <= details.status_code < 300:
                raise FetchError(f"Failed to retrieve item details (HTTP {details.status_code})", provider="1password")
            try:
                return details.json()
            except ValueError:
                raise FormatError("Connect returned invalid item JSON", provider="1password")
        raise FetchError("Item not found", provider="1password")

    def read(self, reference: str) -> str:
        """Resolve a secret reference through the item API."""
        vault, item, section, field_name = parse_reference(reference)
        document = self.find_item(item, vault)
        for field in document.get("fields") or []:
            if field.get("label") != field_name and field.get("id") != field_name:
                continue
            if section is not None:
                field_section = field.get("section") or {}
                if section not in (field_section.get("label"), field_section.get("id")):
                    continue
            if field.get("value") in (None, ""):
                break
            return str(field["value"])
        raise FetchError("Field not found in item", provider="1password")


class OnePasswordProvider(SecretProvider):
    """Loads 1Password items and secret references."""

    name = "1password"
    display_name = "1Password"

    def __init__(
        self,
        config: OnePasswordConfig | None = None,
        runner: CommandRunner | None = None,
        connect_client: httpx.Client | None = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.config = config or OnePasswordConfig.from_env()
        self.cli = OnePasswordCLI(
            runner=runner or CommandRunner(timeout=self.retry.timeout),
            service_account_token=self.config.service_account_token,
        )
        self._connect_client = connect_client
        self._connect_api: ConnectClient | None = None

    @property
    def prefix(self) -> str:
        return self.config.prefix

    def enabled(self) -> bool:
        return self.config.enabled

    # =========================================================================
    # Authentication
    # =========================================================================

    def _connect(self) -> ConnectClient:
        if self._connect_api is None:
            self._connect_api = ConnectClient(
                self.config.connect_host,
                self.config.connect_token,
                client=self._connect_client,
                timeout=self.retry.timeout,
            )
        return self._connect_api

    def close(self) -> None:
        if self._connect_api is not None and self._connect_client is None:
            self._connect_api.close()
        self._connect_api = None

    def _try_connect(self) -> tuple[AuthSession | None, str | None]:
        logger.info(f"Using 1Password Connect Server at {self.config.connect_host}")
        connect = self._connect()
        if not connect.health():
            return None, "1Password Connect server health check failed"
        try:
            vaults = self._call(connect.vaults)
        except (AuthError, FetchError) as e:
            return None, e.message

        session = AuthSession(provider=self.name, method="connect", identity=self.config.connect_host)
        session.payload["connect"] = connect
        logger.info(f"Authenticated to 1Password Connect ({len(vaults)} vault(s) accessible)")
        return session, None

    def authenticate(self) -> AuthSession:
        self._require(self.config.validate())

        connect_failure = None
        if self.config.connect_configured:
            session, connect_failure = self._try_connect()
            if session is not None:
                return session
            logger.warning(f"{connect_failure}; falling back to 1Password CLI")

        if not self.cli.available():
            if connect_failure:
                raise AuthError(f"{connect_failure} and 1Password CLI not found", provider=self.name)
            raise ConfigError("1Password CLI not found. Install 'op' to use 1Password integration.", provider=self.name)

        method = "service-account" if self.config.service_account_token else "cli-session"
        if self.config.service_account_token:
            logger.info("Using 1Password service account authentication")

        account = self._call(self.cli.whoami)
        if account is None:
            raise AuthError(
                "Not authenticated with 1Password CLI. Set OP_SERVICE_ACCOUNT_TOKEN or run 'op signin'",
                provider=self.name,
            )

        return AuthSession(provider=self.name, method=method, identity=account.get("email") or account.get("url"))

    # =========================================================================
    # Secret retrieval
    # =========================================================================

    def resolve_names(self, session: AuthSession) -> list[str]:
        """Secret references first, then item names."""
        return list(self.config.references) + list(self.config.item_names)

    def fetch(self, session: AuthSession, name: str) -> str:
        """Resolve one secret reference."""
        if not name.startswith(REFERENCE_SCHEME):
            raise FetchError("Item names expand into fields and are loaded by collect()", provider=self.name, secret=name)

        connect = session.payload.get("connect")
        if connect is not None:
            value = self._call(lambda: connect.read(name))
        else:
            value = self._call(lambda: self.cli.read(name))
        if value == "":
            raise FetchError("Secret is empty, skipping", provider=self.name, secret=name)
        return value

    def fetch_item(self, session: AuthSession, item_name: str) -> list[tuple[str, str]]:
        """Every non-empty field of one item as ``(label, value)``."""
        connect = session.payload.get("connect")
        logger.info(f"Retrieving item: {item_name}")
        if connect is not None:
            document = self._call(lambda: connect.find_item(item_name, self.config.vault))
        else:
            document = self._call(lambda: self.cli.item_get(item_name, self.config.vault))
        return item_fields(document)

    def collect(self, session: AuthSession) -> Iterator[tuple[str, str | FetchError]]:
        if self.config.references:
            logger.info("Loading secrets using secret references")
        for reference in self.config.references:
            label = reference_label(reference)
            try:
                yield label, self.fetch(session, reference)
            except FetchError as e:
                e.provider = self.name
                # The reference itself names vault and item; keep only the field
                e.secret = label
                yield label, e

        for item_name in self.config.item_names:
            try:
                fields = self.fetch_item(session, item_name)
            except FetchError as e:
                e.provider = self.name
                e.secret = item_name
                yield item_name, e
                continue
            if not fields:
                logger.warning(f"Item '{item_name}' has no non-empty fields")
            for label, value in fields:
                yield label, value

    def health_check(self) -> bool:
        if not self.config.enabled:
            return True

        logger.info("Checking 1Password access")
        if self.config.connect_configured and self._connect().health():
            logger.info("1Password Connect server is accessible")
            return True

        if self.cli.available():
            try:
                account = self.cli.whoami()
            except TransientError:
                account = None
            if account is not None:
                logger.info("1Password CLI is authenticated")
                return True

        logger.warning("1Password is not accessible")
        return False

    def describe(self) -> dict:
        return self.config.to_dict()


def _json_list(response: httpx.Response) -> list[dict[str, Any]]:
    try:
        body = response.json()
    except ValueError:
        raise FormatError("Connect returned a non-JSON response", provider="1password")
    if not isinstance(body, list):
        raise FormatError("Connect returned an unexpected response shape", provider="1password")
    return body
