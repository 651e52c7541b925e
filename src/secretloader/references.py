"""
1Password reference convention.

Any variable named ``OP_<NAME>_REF`` holding an ``op://`` reference is
resolved into ``<NAME>``; ``OP_<NAME>_FILE_REF`` writes the secret to a file
on a memory-backed filesystem and exports ``<NAME>`` as the file path.

Examples:
    OP_GITHUB_TOKEN_REF=op://Dev/GitHub-PAT/token  ->  GITHUB_TOKEN
    OP_GOOGLE_APPLICATION_CREDENTIALS_FILE_REF=op://Dev/GCP/sa-key.json
        ->  /dev/shm/google-application-credentials.json

The pass runs on every container start, never overwrites a variable that is
already set, and never fails the boot.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from secretloader.config import ReferenceConfig, RetryConfig
from secretloader.errors import ConfigError, FetchError
from secretloader.models import LoadResult, ProviderStatus, SecretRecord
from secretloader.naming import file_ref_basename, is_valid_env_name
from secretloader.providers.onepassword import OnePasswordCLI
from secretloader.redaction import register_secret
from secretloader.retry import call_with_retry
from secretloader.runner import CommandRunner
from secretloader.sink import EnvironmentSink

logger = logging.getLogger(__name__)

REF_VAR_RE = re.compile(r"^OP_(.+)_REF$")
FILE_REF_VAR_RE = re.compile(r"^OP_(.+)_FILE_REF$")

MEMORY_FILESYSTEMS = ("tmpfs", "ramfs")

GIT_NAME_VAR = "GIT_USER_NAME"
GIT_EMAIL_VAR = "GIT_USER_EMAIL"
GIT_NAME_REF_VAR = "OP_GIT_USER_NAME_REF"
DEFAULT_GIT_NAME = "Devcontainer"
DEFAULT_GIT_EMAIL = "devcontainer@localhost"

RESULT_NAME = "references"


@dataclass(frozen=True)
class ReferenceBinding:
    """One ``OP_*_REF`` variable and the variable it fills."""
    source: str
    target: str
    reference: str
    is_file: bool = False


def scan_references(environ: Mapping[str, str]) -> list[ReferenceBinding]:
    """Find reference bindings in an environment snapshot.

    Value references come first, then file references, each sorted by
    variable name. Empty references and targets that are not valid
    variable names are left out.
    """
    values: list[ReferenceBinding] = []
    files: list[ReferenceBinding] = []

    for var in sorted(environ):
        reference = environ[var]
        if not reference:
            continue

        file_match = FILE_REF_VAR_RE.match(var)
        if file_match:
            target, is_file = file_match.group(1), True
        else:
            match = REF_VAR_RE.match(var)
            if not match or var.endswith("_FILE_REF"):
                continue
            target, is_file = match.group(1), False

        if not is_valid_env_name(target):
            logger.debug(f"Ignoring {var}: {target} is not a valid variable name")
            continue

        binding = ReferenceBinding(source=var, target=target, reference=reference, is_file=is_file)
        (files if is_file else values).append(binding)

    return values + files


def filesystem_type(path: str | Path, mounts_path: str | Path = "/proc/mounts") -> str | None:
    """Filesystem type of the mount holding ``path``, from a mounts table."""
    try:
        table = Path(mounts_path).read_text()
    except OSError:
        return None

    target = os.path.realpath(path)
    best_mount, fs_type = "", None
    for line in table.splitlines():
        parts = line.split()
        if len(parts) < 3:
            continue
        mount_point = parts[1].replace("\\040", " ")
        inside = target == mount_point or target.startswith(mount_point.rstrip("/") + "/")
        if inside and len(mount_point) >= len(best_mount):
            best_mount, fs_type = mount_point, parts[2]
    return fs_type


def write_secret_file(path: Path, content: str) -> None:
    """Create or replace ``path`` with owner-only permissions."""
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC | os.O_NOFOLLOW, 0o600)
    try:
        os.fchmod(fd, 0o600)
        os.write(fd, content.encode("utf-8"))
    finally:
        os.close(fd)


class ReferenceResolver:
    """Resolves ``OP_*_REF`` bindings through the ``op`` CLI."""

    def __init__(
        self,
        config: ReferenceConfig | None = None,
        sink: EnvironmentSink | None = None,
        cli: OnePasswordCLI | None = None,
        runner: CommandRunner | None = None,
        retry: RetryConfig | None = None,
        mounts_path: str | Path = "/proc/mounts",
    ):
        self.sink = sink or EnvironmentSink()
        self.config = config or ReferenceConfig.from_env(self.sink.environ)
        self.retry = retry or RetryConfig()
        self.cli = cli or OnePasswordCLI(
            runner=runner or CommandRunner(timeout=self.retry.timeout),
            service_account_token=self.config.service_account_token,
        )
        self.mounts_path = mounts_path

    def enabled(self) -> bool:
        """op is installed and a service account token is configured."""
        return bool(self.config.service_account_token) and self.cli.available()

    def bindings(self) -> list[ReferenceBinding]:
        return scan_references(self.sink.environ)

    def plan(self) -> list[tuple[ReferenceBinding, str]]:
        """Dry run: each binding with the action a pass would take."""
        planned = []
        for binding in self.bindings():
            action = "skip (already set)" if self.sink.is_set(binding.target) else "resolve"
            if binding.is_file and action == "resolve":
                action = f"write {self.file_path(binding)}"
            planned.append((binding, action))
        return planned

    def file_path(self, binding: ReferenceBinding) -> Path:
        return Path(self.config.file_dir) / file_ref_basename(binding.target, binding.reference)

    def _read(self, reference: str) -> str:
        return call_with_retry(lambda: self.cli.read(reference), self.retry)

    def _check_file_dir(self) -> None:
        file_dir = Path(self.config.file_dir)
        if not file_dir.is_dir():
            raise ConfigError(f"File reference directory not found: {file_dir}", provider=RESULT_NAME)
        if not self.config.require_tmpfs:
            return
        fs_type = filesystem_type(file_dir, self.mounts_path)
        if fs_type not in MEMORY_FILESYSTEMS:
            raise ConfigError(
                f"Refusing to write secret files to {file_dir}: not a tmpfs mount ({fs_type or 'unknown'})",
                provider=RESULT_NAME,
            )

    # =========================================================================
    # Resolution pass
    # =========================================================================

    def run(self) -> LoadResult:
        """Resolve every pending binding into the sink.

        Returns:
            LoadResult for the pass; its errors are warnings only
        """
        result = LoadResult(provider=RESULT_NAME, auth_method="service-account")
        if not self.enabled():
            logger.debug("Reference pass skipped (op CLI or OP_SERVICE_ACCOUNT_TOKEN missing)")
            return result

        result.status = ProviderStatus.OK
        result.names_resolved = True
        bindings = self.bindings()
        if bindings:
            logger.info(f"Resolving {len(bindings)} 1Password reference(s)")

        claimed_paths: dict[Path, str] = {}
        file_dir_error: ConfigError | None = None
        file_dir_checked = False

        for binding in bindings:
            if self.sink.is_set(binding.target):
                logger.debug(f"Skipping {binding.source}: {binding.target} already set")
                continue

            try:
                if not binding.is_file:
                    self._resolve_value(binding, result)
                    continue

                if not file_dir_checked:
                    file_dir_checked = True
                    try:
                        self._check_file_dir()
                    except ConfigError as e:
                        file_dir_error = e
                if file_dir_error is not None:
                    raise ConfigError(file_dir_error.message, provider=RESULT_NAME)

                path = self.file_path(binding)
                if path in claimed_paths:
                    raise ConfigError(
                        f"{binding.source} maps to {path}, already used by {claimed_paths[path]}",
                        provider=RESULT_NAME,
                    )
                claimed_paths[path] = binding.source
                self._resolve_file(binding, path, result)
            except (ConfigError, FetchError) as e:
                e.secret = e.secret or binding.target
                logger.warning(f"Could not resolve {binding.source}: {e.message}")
                result.add_error(e)

        self._git_identity(result)
        result.finish()
        if result.loaded:
            logger.info(f"Loaded {result.loaded} secret(s) from 1Password references")
        return result

    def _resolve_value(self, binding: ReferenceBinding, result: LoadResult) -> None:
        value = self._read(binding.reference)
        if value == "":
            raise FetchError("Reference resolved to an empty value", provider=RESULT_NAME)
        self._export(binding.target, value, result)
        logger.info(f"Loaded secret: {binding.target}")

    def _resolve_file(self, binding: ReferenceBinding, path: Path, result: LoadResult) -> None:
        content = self._read(binding.reference)
        if content == "":
            raise FetchError("Reference resolved to an empty value", provider=RESULT_NAME)
        register_secret(content)
        try:
            write_secret_file(path, content)
        except OSError as e:
            raise FetchError(f"Failed to write {path} ({e.strerror})", provider=RESULT_NAME)

        if self.sink.set(binding.target, str(path), overwrite=False):
            result.record(SecretRecord(
                name=binding.source,
                env_name=binding.target,
                value=str(path),
                provider=RESULT_NAME,
                auth_method="service-account",
            ))
        logger.info(f"Loaded secret file: {binding.target} -> {path}")

    def _export(self, target: str, value: str, result: LoadResult) -> bool:
        register_secret(value)
        if not self.sink.set(target, value, overwrite=False):
            return False
        result.record(SecretRecord(
            name=target,
            env_name=target,
            value=value,
            provider=RESULT_NAME,
            auth_method="service-account",
        ))
        return True

    def _git_identity(self, result: LoadResult) -> None:
        """Fill in a usable git identity.

        Identity items keep first and last name as separate fields; when
        ``OP_GIT_USER_NAME_REF`` did not resolve, combine the siblings.
        """
        name_ref = self.sink.get(GIT_NAME_REF_VAR)
        if not self.sink.is_set(GIT_NAME_VAR) and name_ref:
            base_path = name_ref.rstrip("/").rsplit("/", 1)[0]
            parts = []
            for field_name in ("first name", "last name"):
                try:
                    parts.append(self.cli.read(f"{base_path}/{field_name}"))
                except FetchError:
                    parts.append("")
            full_name = " ".join(part for part in parts if part)
            if full_name and self._export(GIT_NAME_VAR, full_name, result):
                logger.info(f"Loaded secret: {GIT_NAME_VAR} (combined from first/last name)")

        if self.config.git_identity_defaults:
            if self.sink.set(GIT_NAME_VAR, DEFAULT_GIT_NAME, overwrite=False):
                logger.info(f"{GIT_NAME_VAR} not resolved, using default")
            if self.sink.set(GIT_EMAIL_VAR, DEFAULT_GIT_EMAIL, overwrite=False):
                logger.info(f"{GIT_EMAIL_VAR} not resolved, using default")
