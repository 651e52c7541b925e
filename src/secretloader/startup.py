"""
Container startup hook.

Runs the 1Password reference pass and then the provider loader against one
environment. Safe to call on every container start: references never
overwrite a set variable and providers re-export the same values.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

import logging
from typing import MutableMapping

from secretloader.config import LoaderConfig, ReferenceConfig
from secretloader.models import GlobalLoadReport
from secretloader.loader import SecretLoader
from secretloader.providers import SecretProvider
from secretloader.references import ReferenceResolver
from secretloader.sink import EnvironmentSink

logger = logging.getLogger(__name__)


def startup(
    environ: MutableMapping[str, str] | None = None,
    sink: EnvironmentSink | None = None,
    providers: list[SecretProvider] | None = None,
    resolver: ReferenceResolver | None = None,
) -> GlobalLoadReport:
    """Load every configured secret into ``sink``.

    The reference pass runs even when SECRET_LOADER_ENABLED=false, and before
    the providers so that resolved values can configure them.

    Args:
        environ: Environment to read and update (os.environ by default)
        sink: Explicit sink (overrides ``environ``)
        providers: Providers in priority order (built from the environment if not provided)
        resolver: Reference resolver (built from the environment if not provided)

    Returns:
        Report for the pass
    """
    sink = sink or EnvironmentSink(environ)
    config = LoaderConfig.from_env(sink.environ)

    resolver = resolver or ReferenceResolver(
        config=ReferenceConfig.from_env(sink.environ),
        sink=sink,
        retry=config.retry,
    )
    references = resolver.run()

    loader = SecretLoader(config=config, sink=sink, providers=providers)
    return loader.load_all(references=references)


def run_startup(
    environ: MutableMapping[str, str] | None = None,
    sink: EnvironmentSink | None = None,
    providers: list[SecretProvider] | None = None,
    resolver: ReferenceResolver | None = None,
) -> int:
    """Run the startup pass and return the process exit code.

    Returns:
        0 when disabled or (partially) successful, 2 when fatal under
        SECRET_LOADER_FAIL_ON_ERROR=true
    """
    report = startup(environ=environ, sink=sink, providers=providers, resolver=resolver)
    code = report.exit_code()
    if code:
        logger.error(f"Secret loading failed with exit code: {code}")
    return code
