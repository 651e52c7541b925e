"""
Subprocess runner for provider CLIs.

Argument vectors and output are never logged: both can carry secret
material. Tokens reach the child through its environment only.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

import os
import shutil
import subprocess
from dataclasses import dataclass, field
from typing import Mapping, Sequence

from secretloader.errors import TransientError

# Variables that switch provider CLIs into verbose/debug output
VERBOSE_ENV_VARS = ("OP_DEBUG", "OP_LOG_LEVEL", "AWS_DEBUG", "CLOUDSDK_CORE_VERBOSITY")


@dataclass
class CommandResult:
    """Outcome of one CLI invocation."""
    command: str
    returncode: int
    stdout: str = field(default="", repr=False)
    stderr: str = field(default="", repr=False)

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def describe(self) -> str:
        """Safe summary for error messages (no output included)."""
        return f"'{self.command}' exited with status {self.returncode}"


class CommandRunner:
    """Runs external commands with a timeout and a scrubbed environment."""

    def __init__(
        self,
        timeout: float = 30.0,
        env: Mapping[str, str] | None = None,
    ):
        self.timeout = timeout
        self.base_env = env

    def available(self, program: str) -> bool:
        return shutil.which(program) is not None

    def _child_env(self, extra_env: Mapping[str, str] | None) -> dict[str, str]:
        env = dict(self.base_env if self.base_env is not None else os.environ)
        for name in VERBOSE_ENV_VARS:
            env.pop(name, None)
        if extra_env:
            env.update(extra_env)
        return env

    def run(
        self,
        args: Sequence[str],
        extra_env: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run ``args`` and capture output.

        Raises:
            TransientError: On timeout (retryable)
            FileNotFoundError: If the program is not installed
        """
        program = args[0]
        try:
            proc = subprocess.run(
                list(args),
                capture_output=True,
                text=True,
                timeout=timeout or self.timeout,
                env=self._child_env(extra_env),
                stdin=subprocess.DEVNULL,
                check=False,
            )
        except subprocess.TimeoutExpired:
            raise TransientError(
                f"'{program}' timed out after {timeout or self.timeout:.0f}s"
            ) from None

        return CommandResult(
            command=program,
            returncode=proc.returncode,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
        )
