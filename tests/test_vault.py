"""Tests for the HashiCorp Vault provider."""

import httpx
import pytest

from secretloader.config import VaultConfig
from secretloader.errors import AuthError, ConfigError, FetchError, FormatError
from secretloader.providers.vault import VaultProvider, parse_kv_response

ADDR = "http://vault:8200"


class VaultStub:
    """Routes requests to canned Vault responses and records them."""

    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"errors": []})
        if callable(route):
            return route(request)
        status, body = route
        return httpx.Response(status, json=body)


def _provider(stub, retry, **config):
    settings = {
        "enabled": True,
        "address": ADDR,
        "auth_method": "token",
        "token": "hvs.valid-token",
        "secret_path": "secret/data/app",
    }
    settings.update(config)
    client = httpx.Client(base_url=ADDR, transport=httpx.MockTransport(stub))
    return VaultProvider(config=VaultConfig(**settings), client=client, retry=retry)


KV2_BODY = {
    "data": {
        "data": {"db-password": "hunter2", "api_key": "k-123", "port": 5432},
        "metadata": {"version": 3},
    }
}

TOKEN_OK = (200, {"data": {"display_name": "token-app", "ttl": 3600}})


class TestParseKV:
    """Tests for KV envelope parsing."""

    def test_kv2(self):
        """Test data.data is used when metadata is present."""
        assert parse_kv_response(KV2_BODY)["db-password"] == "hunter2"

    def test_kv1(self):
        """Test a flat data map."""
        assert parse_kv_response({"data": {"password": "pw"}}) == {"password": "pw"}

    def test_bad_shape(self):
        """Test unparseable bodies are a FormatError."""
        with pytest.raises(FormatError):
            parse_kv_response({"errors": ["nope"]})


class TestVaultProvider:
    """Tests for authentication and retrieval."""

    def test_token_auth_and_kv2_load(self, no_retry):
        """Test the happy path."""
        stub = VaultStub({
            ("GET", "/v1/auth/token/lookup-self"): TOKEN_OK,
            ("GET", "/v1/secret/data/app"): (200, KV2_BODY),
        })
        provider = _provider(stub, no_retry)
        session = provider.authenticate()
        assert session.method == "token"
        assert session.identity == "token-app"

        loaded = dict(provider.collect(session))
        assert loaded == {"db-password": "hunter2", "api_key": "k-123", "port": "5432"}
        assert provider.env_name("db-password") == "DB_PASSWORD"
        assert all(r.headers["X-Vault-Token"] == "hvs.valid-token" for r in stub.requests)

    def test_kv1_load(self, no_retry):
        """Test KV v1 paths load too."""
        stub = VaultStub({
            ("GET", "/v1/auth/token/lookup-self"): TOKEN_OK,
            ("GET", "/v1/kv/app"): (200, {"data": {"password": "pw"}}),
        })
        provider = _provider(stub, no_retry, secret_path="kv/app")
        assert dict(provider.collect(provider.authenticate())) == {"password": "pw"}

    def test_invalid_token_is_auth_error(self, no_retry):
        """Test a rejected token."""
        stub = VaultStub({("GET", "/v1/auth/token/lookup-self"): (403, {"errors": ["permission denied"]})})
        with pytest.raises(AuthError):
            _provider(stub, no_retry).authenticate()

    def test_missing_settings_is_config_error(self, no_retry):
        """Test an explicitly enabled Vault without a path."""
        with pytest.raises(ConfigError):
            _provider(VaultStub({}), no_retry, secret_path=None).authenticate()

    def test_approle_login(self, no_retry):
        """Test AppRole exchanges ids for a client token."""
        def login(request):
            assert b"role-1" in request.content
            return httpx.Response(200, json={"auth": {"client_token": "hvs.issued", "lease_duration": 60}})

        stub = VaultStub({
            ("POST", "/v1/auth/approle/login"): login,
            ("GET", "/v1/secret/data/app"): (200, KV2_BODY),
        })
        provider = _provider(stub, no_retry, auth_method="approle", token=None, role_id="role-1", secret_id="sid-1")
        session = provider.authenticate()
        assert session.method == "approle"
        assert session.token == "hvs.issued"
        assert "hvs.issued" not in repr(session)
        provider.resolve_names(session)
        assert stub.requests[-1].headers["X-Vault-Token"] == "hvs.issued"

    def test_login_without_token_is_auth_error(self, no_retry):
        """Test a login response missing client_token."""
        stub = VaultStub({("POST", "/v1/auth/approle/login"): (200, {"auth": {}})})
        provider = _provider(stub, no_retry, auth_method="approle", token=None, role_id="r", secret_id="s")
        with pytest.raises(AuthError):
            provider.authenticate()

    def test_kubernetes_login(self, no_retry, tmp_path):
        """Test the service account JWT is sent to the kubernetes mount."""
        jwt = tmp_path / "token"
        jwt.write_text("eyJ.jwt.sig\n")

        def login(request):
            assert b"eyJ.jwt.sig" in request.content
            return httpx.Response(200, json={"auth": {"client_token": "hvs.k8s", "metadata": {"role": "app"}}})

        stub = VaultStub({("POST", "/v1/auth/kubernetes/login"): login})
        provider = _provider(
            stub, no_retry,
            auth_method="kubernetes", token=None, k8s_role="app", k8s_token_path=str(jwt),
        )
        session = provider.authenticate()
        assert session.method == "kubernetes"
        assert session.identity == "app"

    def test_kubernetes_missing_jwt(self, no_retry, tmp_path):
        """Test a missing service account token file."""
        provider = _provider(
            VaultStub({}), no_retry,
            auth_method="kubernetes", token=None, k8s_role="app", k8s_token_path=str(tmp_path / "none"),
        )
        with pytest.raises(AuthError):
            provider.authenticate()

    def test_namespace_header(self, no_retry):
        """Test Vault Enterprise namespaces."""
        stub = VaultStub({("GET", "/v1/auth/token/lookup-self"): TOKEN_OK})
        _provider(stub, no_retry, namespace="team-a").authenticate()
        assert stub.requests[0].headers["X-Vault-Namespace"] == "team-a"

    def test_path_not_found(self, no_retry):
        """Test a missing secret path."""
        stub = VaultStub({("GET", "/v1/auth/token/lookup-self"): TOKEN_OK})
        provider = _provider(stub, no_retry)
        with pytest.raises(FetchError):
            provider.resolve_names(provider.authenticate())

    def test_path_forbidden_is_auth_error(self, no_retry):
        """Test a token without read policy."""
        stub = VaultStub({
            ("GET", "/v1/auth/token/lookup-self"): TOKEN_OK,
            ("GET", "/v1/secret/data/app"): (403, {"errors": ["permission denied"]}),
        })
        provider = _provider(stub, no_retry)
        with pytest.raises(AuthError):
            provider.resolve_names(provider.authenticate())

    def test_transient_errors_are_retried(self, fast_retry):
        """Test a 503 followed by success."""
        responses = iter([httpx.Response(503), httpx.Response(200, json=KV2_BODY)])
        stub = VaultStub({
            ("GET", "/v1/auth/token/lookup-self"): TOKEN_OK,
            ("GET", "/v1/secret/data/app"): lambda request: next(responses),
        })
        provider = _provider(stub, fast_retry)
        assert "api_key" in provider.resolve_names(provider.authenticate())

    def test_empty_value_is_fetch_error(self, no_retry):
        """Test empty keys are skipped."""
        stub = VaultStub({
            ("GET", "/v1/auth/token/lookup-self"): TOKEN_OK,
            ("GET", "/v1/secret/data/app"): (200, {"data": {"blank": "", "ok": "v"}}),
        })
        provider = _provider(stub, no_retry)
        outcomes = dict(provider.collect(provider.authenticate()))
        assert outcomes["ok"] == "v"
        assert isinstance(outcomes["blank"], FetchError)

    def test_health_check(self, no_retry):
        """Test sys/health codes."""
        assert _provider(VaultStub({("GET", "/v1/sys/health"): (429, {})}), no_retry).health_check()
        assert not _provider(VaultStub({("GET", "/v1/sys/health"): (501, {})}), no_retry).health_check()
        assert _provider(VaultStub({}), no_retry, enabled=False).health_check()
