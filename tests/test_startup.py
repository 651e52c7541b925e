"""End-to-end tests for the startup hook."""

import httpx

from secretloader.config import DockerConfig, ReferenceConfig, VaultConfig
from secretloader.errors import ErrorKind
from secretloader.models import ProviderStatus
from secretloader.providers.docker import DockerSecretsProvider
from secretloader.providers.vault import VaultProvider
from secretloader.references import ReferenceResolver
from secretloader.sink import EnvironmentSink
from secretloader.startup import run_startup, startup

from conftest import FakeRunner, StubProvider

GITHUB_REF = "op://Dev/GitHub-PAT/token"


def _resolver(environ, responses, token="ops_token"):
    return ReferenceResolver(
        config=ReferenceConfig(service_account_token=token, git_identity_defaults=False),
        sink=EnvironmentSink(environ),
        runner=FakeRunner(responses),
    )


def _vault_rejecting_tokens(environ, retry):
    def handler(request):
        return httpx.Response(403, json={"errors": ["permission denied"]})

    client = httpx.Client(base_url="http://vault:8200", transport=httpx.MockTransport(handler))
    return VaultProvider(config=VaultConfig.from_env(environ), client=client, retry=retry)


class TestStartupScenarios:
    """Container start end to end."""

    def test_docker_secret_exported(self, tmp_path):
        """Test a mounted secret becomes an env var."""
        (tmp_path / "db_password").write_text("hunter2\n")
        env = {
            "DOCKER_SECRETS_ENABLED": "true",
            "DOCKER_SECRETS_DIR": str(tmp_path),
            "SECRET_LOADER_PRIORITY": "docker",
        }
        report = startup(environ=env)
        assert env["DB_PASSWORD"] == "hunter2"
        assert report.total_loaded == 1
        assert report.exit_code() == 0

    def test_reference_exported_unless_set(self):
        """Test OP_*_REF resolves and never replaces a set value."""
        env = {"OP_GITHUB_TOKEN_REF": GITHUB_REF}
        report = startup(
            environ=env,
            providers=[],
            resolver=_resolver(env, {("op", "read", "--no-newline", GITHUB_REF): "ghp_resolved"}),
        )
        assert env["GITHUB_TOKEN"] == "ghp_resolved"
        assert report.references.exported == ["GITHUB_TOKEN"]

        env = {"OP_GITHUB_TOKEN_REF": GITHUB_REF, "GITHUB_TOKEN": "mine"}
        startup(
            environ=env,
            providers=[],
            resolver=_resolver(env, {("op", "read", "--no-newline", GITHUB_REF): "ghp_resolved"}),
        )
        assert env["GITHUB_TOKEN"] == "mine"

    def test_invalid_vault_token_isolated(self, tmp_path, no_retry):
        """Test an auth failure in Vault leaves other providers unaffected."""
        (tmp_path / "db_password").write_text("hunter2")
        env = {
            "VAULT_ENABLED": "true",
            "VAULT_ADDR": "http://vault:8200",
            "VAULT_AUTH_METHOD": "token",
            "VAULT_TOKEN": "hvs.invalid",
            "VAULT_SECRET_PATH": "secret/data/app",
            "DOCKER_SECRETS_DIR": str(tmp_path),
        }
        providers = [
            _vault_rejecting_tokens(env, no_retry),
            DockerSecretsProvider(config=DockerConfig.from_env(env)),
        ]
        report = startup(environ=env, providers=providers, resolver=_resolver(env, {}, token=None))

        vault, docker = report.results
        assert vault.status == ProviderStatus.FAILED
        assert vault.errors[0].kind == ErrorKind.AUTH
        assert vault.loaded == 0
        assert docker.status == ProviderStatus.OK
        assert env["DB_PASSWORD"] == "hunter2"
        assert report.exit_code() == 0

        env["SECRET_LOADER_FAIL_ON_ERROR"] = "true"
        providers[0] = _vault_rejecting_tokens(env, no_retry)
        assert run_startup(environ=env, providers=providers, resolver=_resolver(env, {}, token=None)) == 2


class TestStartupBehaviour:
    """Ordering, disabling and idempotence."""

    def test_references_run_when_loader_disabled(self):
        """Test SECRET_LOADER_ENABLED=false still resolves references."""
        provider = StubProvider("docker", {"db_password": "hunter2"})
        env = {"SECRET_LOADER_ENABLED": "false", "OP_GITHUB_TOKEN_REF": GITHUB_REF}
        code = run_startup(
            environ=env,
            providers=[provider],
            resolver=_resolver(env, {("op", "read", "--no-newline", GITHUB_REF): "ghp_resolved"}),
        )
        assert code == 0
        assert env["GITHUB_TOKEN"] == "ghp_resolved"
        assert "DB_PASSWORD" not in env
        assert provider.calls == []

    def test_reference_wins_over_provider(self):
        """Test the reference pass runs first and providers overwrite it."""
        env = {"OP_API_KEY_REF": "op://Dev/Api/key"}
        provider = StubProvider("vault", {"api-key": "from-vault"})
        startup(
            environ=env,
            providers=[provider],
            resolver=_resolver(env, {("op", "read", "--no-newline", "op://Dev/Api/key"): "from-ref"}),
        )
        assert env["API_KEY"] == "from-vault"

    def test_reference_configures_provider(self, tmp_path):
        """Test a value resolved by reference is visible to provider settings."""
        (tmp_path / "db_password").write_text("hunter2")
        env = {
            "OP_DOCKER_SECRETS_DIR_REF": "op://Dev/Paths/docker",
            "DOCKER_SECRETS_ENABLED": "true",
            "SECRET_LOADER_PRIORITY": "docker",
        }
        resolver = _resolver(env, {("op", "read", "--no-newline", "op://Dev/Paths/docker"): str(tmp_path)})
        startup(environ=env, resolver=resolver)
        assert env["DB_PASSWORD"] == "hunter2"

    def test_idempotent(self):
        """Test a second start produces the same environment."""
        env = {"OP_GITHUB_TOKEN_REF": GITHUB_REF}
        responses = {("op", "read", "--no-newline", GITHUB_REF): "ghp_resolved"}

        def once():
            providers = [StubProvider("docker", {"db_password": "hunter2"})]
            return run_startup(environ=env, providers=providers, resolver=_resolver(env, responses))

        assert once() == 0
        snapshot = dict(env)
        assert once() == 0
        assert env == snapshot
