"""Shared fixtures and fakes for secretloader tests."""

import logging
import os

import pytest

from secretloader.config import RetryConfig
from secretloader.errors import AuthError, FetchError
from secretloader.models import AuthSession
from secretloader.providers.base import SecretProvider
from secretloader.redaction import clear_registered_secrets
from secretloader.runner import CommandResult


class FakeRunner:
    """Stands in for CommandRunner; answers from a table of argv tuples."""

    def __init__(self, responses=None, programs=("op",)):
        self.responses = dict(responses or {})
        self.programs = set(programs)
        self.calls = []

    def available(self, program):
        return program in self.programs

    def run(self, args, extra_env=None, timeout=None):
        args = tuple(args)
        self.calls.append((args, dict(extra_env or {})))
        response = self.responses.get(args)
        if response is None:
            return CommandResult(command=args[0], returncode=1, stderr="not found")
        if isinstance(response, int):
            return CommandResult(command=args[0], returncode=response)
        return CommandResult(command=args[0], returncode=0, stdout=response)


class StubProvider(SecretProvider):
    """In-memory provider that counts every backend call."""

    def __init__(
        self,
        name,
        secrets=None,
        enabled=True,
        auth_error=None,
        fetch_errors=(),
        prefix="",
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.name = name
        self.display_name = name.title()
        self.secrets = dict(secrets or {})
        self._enabled = enabled
        self.auth_error = auth_error
        self.fetch_errors = set(fetch_errors)
        self._prefix = prefix
        self.calls = []

    @property
    def prefix(self):
        return self._prefix

    def enabled(self):
        return self._enabled

    def authenticate(self):
        self.calls.append("authenticate")
        if self.auth_error:
            raise AuthError(self.auth_error, provider=self.name)
        return AuthSession(provider=self.name, method="stub")

    def resolve_names(self, session):
        self.calls.append("resolve_names")
        return list(self.secrets)

    def fetch(self, session, name):
        self.calls.append(f"fetch:{name}")
        if name in self.fetch_errors:
            raise FetchError("backend said no")
        return self.secrets[name]

    def health_check(self):
        self.calls.append("health_check")
        return True


@pytest.fixture(autouse=True)
def _reset_redaction():
    clear_registered_secrets()
    yield
    clear_registered_secrets()


@pytest.fixture
def no_retry():
    """Single attempt, no backoff."""
    return RetryConfig(timeout=5.0, attempts=1, initial_delay=0, max_delay=0)


@pytest.fixture
def fast_retry():
    """Three attempts without sleeping."""
    return RetryConfig(timeout=5.0, attempts=3, initial_delay=0, max_delay=0)


@pytest.fixture
def fake_runner():
    return FakeRunner


@pytest.fixture
def stub_provider():
    return StubProvider


@pytest.fixture
def caplog_debug(caplog):
    caplog.set_level(logging.DEBUG)
    return caplog


@pytest.fixture
def tmpfs_mounts(tmp_path):
    """A mounts table that declares tmp_path a tmpfs mount."""
    def make(directory, fs_type="tmpfs"):
        mounts = tmp_path / "mounts"
        mounts.write_text(
            "overlay / overlay rw 0 0\n"
            f"{fs_type} {os.path.realpath(directory)} {fs_type} rw,nosuid,nodev 0 0\n"
        )
        return mounts
    return make
