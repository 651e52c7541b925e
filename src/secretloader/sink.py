"""
Environment sink - the only place secret values are written.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

import os
from typing import MutableMapping

from secretloader.naming import is_valid_env_name


class EnvironmentSink:
    """Write target for resolved secrets.

    Wraps a mutable mapping (``os.environ`` by default) and makes the
    overwrite policy an explicit argument: the reference convention uses
    skip-if-set, explicit-list providers overwrite.
    """

    def __init__(self, environ: MutableMapping[str, str] | None = None):
        self.environ = environ if environ is not None else os.environ
        self._written: dict[str, str] = {}

    def get(self, name: str) -> str | None:
        return self.environ.get(name)

    def is_set(self, name: str) -> bool:
        return bool(self.environ.get(name))

    def set(self, name: str, value: str, overwrite: bool = True) -> bool:
        """Export ``name``.

        Args:
            name: Env var name (must already be normalized)
            value: Secret value
            overwrite: Replace an existing non-empty value

        Returns:
            True if the variable was written
        """
        if not is_valid_env_name(name):
            raise ValueError(f"invalid environment variable name: {name!r}")
        if not overwrite and self.is_set(name):
            return False
        self.environ[name] = value
        self._written[name] = value
        return True

    @property
    def written(self) -> dict[str, str]:
        """Names and values written through this sink, in write order."""
        return dict(self._written)

    def written_values(self) -> list[str]:
        return list(self._written.values())
