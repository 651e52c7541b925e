"""Tests for the GCP Secret Manager provider."""

from types import SimpleNamespace

import httpx
import pytest
from google.api_core import exceptions as gexc

from secretloader.config import GCPConfig, RetryConfig
from secretloader.errors import AuthError, ConfigError, FetchError
from secretloader.providers.gcp import METADATA_PROJECT_URL, GCPSecretManagerProvider


class FakeSecretManager:
    def __init__(self, secrets, listing=None, errors=None):
        self.secrets = secrets
        self.listing = listing or []
        self.errors = errors or {}
        self.requests = []
        self.timeouts = []

    def list_secrets(self, request, timeout=None):
        self.requests.append(request)
        self.timeouts.append(timeout)
        if isinstance(self.listing, Exception):
            raise self.listing
        return iter(SimpleNamespace(name=f"{request['parent']}/secrets/{name}") for name in self.listing)

    def access_secret_version(self, request, timeout=None):
        self.requests.append(request)
        self.timeouts.append(timeout)
        name = request["name"].split("/")[3]
        queued = self.errors.get(name)
        if queued:
            raise queued.pop(0)
        if name not in self.secrets:
            raise gexc.NotFound("Secret not found")
        return SimpleNamespace(payload=SimpleNamespace(data=self.secrets[name]))


def _metadata(project=None, status=200):
    def handler(request):
        assert request.headers["Metadata-Flavor"] == "Google"
        assert str(request.url) == METADATA_PROJECT_URL
        if project is None:
            raise httpx.ConnectError("no metadata server")
        return httpx.Response(status, text=project)

    return httpx.Client(transport=httpx.MockTransport(handler))


def _provider(client, retry, default_project="proj-1", method="application-default", metadata=None, **config):
    settings = {"enabled": True, "names": ["db-password"]}
    settings.update(config)
    credentials = SimpleNamespace(service_account_email="app@proj-1.iam.gserviceaccount.com")
    return GCPSecretManagerProvider(
        config=GCPConfig(**settings),
        credentials_factory=lambda cfg: (credentials, default_project, method),
        client_factory=lambda creds: client,
        metadata_client=metadata or _metadata(),
        retry=retry,
    )


class TestProjectResolution:
    """Tests for resolve_project()."""

    def test_explicit_wins(self, no_retry):
        """Test GCP_PROJECT_ID beats the credentials' project."""
        provider = _provider(FakeSecretManager({}), no_retry, project_id="explicit")
        assert provider.resolve_project("from-creds") == "explicit"

    def test_metadata_fallback(self, no_retry):
        """Test the metadata server is consulted last."""
        provider = _provider(FakeSecretManager({}), no_retry, metadata=_metadata("meta-proj\n"))
        assert provider.resolve_project(None) == "meta-proj"

    def test_no_project_is_config_error(self, no_retry):
        """Test nothing resolves a project."""
        provider = _provider(FakeSecretManager({}), no_retry, default_project=None)
        with pytest.raises(ConfigError):
            provider.authenticate()


class TestGCPSecretManagerProvider:
    """Tests for retrieval and error mapping."""

    def test_named_secret(self, no_retry):
        """Test the happy path and version path."""
        client = FakeSecretManager({"db-password": b"hunter2\n"})
        provider = _provider(client, no_retry, prefix="APP_")
        session = provider.authenticate()
        assert session.method == "application-default"
        assert session.payload["project"] == "proj-1"

        loaded = {provider.env_name(n): v for n, v in provider.collect(session)}
        assert loaded == {"APP_DB_PASSWORD": "hunter2"}
        assert client.requests == [{"name": "projects/proj-1/secrets/db-password/versions/latest"}]

    def test_pinned_version(self, no_retry):
        """Test GCP_SECRET_VERSION."""
        client = FakeSecretManager({"db-password": b"old"})
        provider = _provider(client, no_retry, version="3")
        list(provider.collect(provider.authenticate()))
        assert client.requests[0]["name"].endswith("/versions/3")

    def test_fetch_all_lists_project(self, no_retry):
        """Test opt-in listing takes the last path segment."""
        client = FakeSecretManager({"a": b"1", "b": b"2"}, listing=["a", "b"])
        provider = _provider(client, no_retry, names=[], fetch_all=True)
        assert provider.resolve_names(provider.authenticate()) == ["a", "b"]
        assert client.requests[0] == {"parent": "projects/proj-1"}

    def test_calls_carry_timeout(self):
        """Test listing, access and health calls are bounded by SECRET_LOADER_TIMEOUT."""
        retry = RetryConfig(timeout=5.0, attempts=1, initial_delay=0, max_delay=0)
        client = FakeSecretManager({"a": b"1"}, listing=["a"])
        provider = _provider(client, retry, names=[], fetch_all=True)
        session = provider.authenticate()
        list(provider.collect(session))
        assert provider.health_check()
        assert client.timeouts == [5.0, 5.0, 5.0]

    def test_listing_denied_is_auth_error(self, no_retry):
        """Test missing list permission."""
        client = FakeSecretManager({}, listing=gexc.PermissionDenied("denied"))
        provider = _provider(client, no_retry, names=[], fetch_all=True)
        with pytest.raises(AuthError):
            provider.resolve_names(provider.authenticate())

    def test_missing_secret_is_fetch_error(self, no_retry):
        """Test NotFound is per-secret."""
        provider = _provider(FakeSecretManager({}), no_retry)
        name, outcome = next(provider.collect(provider.authenticate()))
        assert name == "db-password"
        assert isinstance(outcome, FetchError)

    def test_unavailable_retried(self, fast_retry):
        """Test ServiceUnavailable is transient."""
        client = FakeSecretManager(
            {"db-password": b"v"}, errors={"db-password": [gexc.ServiceUnavailable("busy")]},
        )
        provider = _provider(client, fast_retry)
        assert dict(provider.collect(provider.authenticate())) == {"db-password": "v"}
        assert len(client.requests) == 2

    def test_empty_payload(self, no_retry):
        """Test an empty version is skipped."""
        provider = _provider(FakeSecretManager({"db-password": b"\n"}), no_retry)
        _, outcome = next(provider.collect(provider.authenticate()))
        assert isinstance(outcome, FetchError)

    def test_names_required(self, no_retry):
        """Test fetch-all is opt-in."""
        provider = _provider(FakeSecretManager({}), no_retry, names=[])
        with pytest.raises(ConfigError):
            provider.authenticate()

    def test_credentials_failure_propagates(self, no_retry):
        """Test an AuthError from credential discovery."""
        def failing(cfg):
            raise AuthError("No active GCP authentication found.", provider="gcp")

        provider = GCPSecretManagerProvider(
            config=GCPConfig(enabled=True, names=["x"]),
            credentials_factory=failing,
            client_factory=lambda creds: None,
            retry=no_retry,
        )
        with pytest.raises(AuthError):
            provider.authenticate()

    def test_missing_key_file(self, no_retry, tmp_path):
        """Test GCP_SERVICE_ACCOUNT_KEY pointing nowhere."""
        provider = GCPSecretManagerProvider(
            config=GCPConfig(enabled=True, names=["x"], service_account_key=str(tmp_path / "key.json")),
            client_factory=lambda creds: None,
            retry=no_retry,
        )
        with pytest.raises(AuthError):
            provider.authenticate()

    def test_health_check(self, no_retry):
        """Test a one-item listing check."""
        assert _provider(FakeSecretManager({}, listing=["a"]), no_retry).health_check()
        assert _provider(FakeSecretManager({}), no_retry, enabled=False).health_check()
        denied = FakeSecretManager({}, listing=gexc.PermissionDenied("denied"))
        assert not _provider(denied, no_retry).health_check()
