"""
Universal secret loader.

Walks the enabled providers in priority order, exports what each one
returns and aggregates the outcome into a GlobalLoadReport. A failure in
one provider never stops the others; only the fail-on-error policy decides
whether the pass as a whole is fatal.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

import logging
from datetime import datetime
from typing import Mapping

from secretloader.config import LoaderConfig
from secretloader.errors import AuthError, ConfigError, FetchError, FormatError
from secretloader.models import GlobalLoadReport, LoadResult, ProviderStatus, SecretRecord
from secretloader.providers import PROVIDER_CLASSES, SecretProvider, create_providers
from secretloader.redaction import register_secret
from secretloader.sink import EnvironmentSink

logger = logging.getLogger(__name__)

BANNER = "=" * 72


class SecretLoader:
    """Orchestrates one loading pass across all configured providers."""

    def __init__(
        self,
        config: LoaderConfig | None = None,
        sink: EnvironmentSink | None = None,
        providers: list[SecretProvider] | None = None,
    ):
        """Initialize the loader.

        Args:
            config: Global settings (read from the sink's environment if not provided)
            sink: Where secrets are exported (os.environ by default)
            providers: Providers in priority order (built from config if not provided)
        """
        self.sink = sink or EnvironmentSink()
        self.config = config or LoaderConfig.from_env(self.sink.environ)
        self._providers = providers

    @property
    def providers(self) -> list[SecretProvider]:
        # Built lazily so settings exported by the reference pass are seen
        if self._providers is None:
            self._providers = create_providers(self.config.priority, self.sink.environ, self.config.retry)
        return self._providers

    # =========================================================================
    # Loading
    # =========================================================================

    def load_all(self, references: LoadResult | None = None) -> GlobalLoadReport:
        """Run every enabled provider once.

        Args:
            references: Result of the reference pass, carried into the report

        Returns:
            Aggregated report for the pass
        """
        report = GlobalLoadReport(
            enabled=self.config.enabled,
            fail_on_error=self.config.fail_on_error,
            references=references,
        )

        if not self.config.enabled:
            logger.info("Secret loader disabled (SECRET_LOADER_ENABLED != true)")
            report.finished_at = datetime.now()
            return report

        for unknown in self.config.unknown_providers:
            logger.warning(f"Unknown secret provider: {unknown}")

        logger.info(BANNER)
        logger.info("Universal Secret Loader - Starting")
        logger.info(BANNER)

        for provider in self.providers:
            report.results.append(self.load_provider(provider))

        report.finished_at = datetime.now()
        self.log_summary(report)
        return report

    def load_provider(self, provider: SecretProvider) -> LoadResult:
        """Run one provider's turn and record its outcome.

        Args:
            provider: Provider to drain

        Returns:
            LoadResult for the provider (status SKIPPED when not enabled)
        """
        result = LoadResult(provider=provider.name)

        if not provider.enabled():
            logger.debug(f"{provider.display_name} not enabled, skipping")
            return result

        result.status = ProviderStatus.OK
        logger.info(BANNER)
        logger.info(f"Loading secrets from provider: {provider.name}")
        logger.info(BANNER)

        try:
            session = provider.authenticate()
            result.auth_method = session.method
            logger.info(f"Authenticated to {provider.display_name} ({session.describe()})")

            labels: dict[str, str] = {}
            for name, outcome in provider.collect(session):
                result.names_resolved = True
                if isinstance(outcome, FetchError):
                    logger.warning(f"Failed to retrieve secret '{outcome.secret or name}': {outcome.message}")
                    result.add_error(outcome)
                    continue
                self._export(provider, name, outcome, session.method, labels, result)
            result.names_resolved = True
        except (ConfigError, AuthError) as e:
            logger.error(f"{provider.display_name}: {e.message}")
            result.add_error(e)
        except FetchError as e:
            logger.error(f"{provider.display_name}: {e.message}")
            result.add_error(e)
        except Exception as e:
            logger.error(f"{provider.display_name}: unexpected {type(e).__name__}")
            result.add_error(FetchError(f"Unexpected {type(e).__name__}", provider=provider.name))
        finally:
            provider.close()

        result.finish()
        if result.status == ProviderStatus.FAILED:
            logger.warning(f"Failed to load secrets from {provider.name}")
        else:
            logger.info(f"Successfully loaded {result.loaded} secret(s) from {provider.display_name}")
        return result

    def _export(
        self,
        provider: SecretProvider,
        name: str,
        value: str,
        auth_method: str,
        labels: dict[str, str],
        result: LoadResult,
    ) -> None:
        try:
            env_name = provider.env_name(name)
        except FormatError as e:
            e.provider, e.secret = provider.name, name
            logger.warning(f"Skipping secret '{name}': {e.message}")
            result.add_error(e)
            return

        if env_name in labels:
            error = ConfigError(
                f"'{name}' and '{labels[env_name]}' both map to {env_name}; keeping '{labels[env_name]}'",
                provider=provider.name,
                secret=name,
            )
            logger.warning(error.message)
            result.add_error(error)
            return
        labels[env_name] = name

        register_secret(value)
        # Later providers in the priority list replace earlier values
        self.sink.set(env_name, value, overwrite=True)
        result.record(SecretRecord(
            name=name,
            env_name=env_name,
            value=value,
            provider=provider.name,
            auth_method=auth_method,
        ))
        logger.info(f"Loaded secret: {env_name}")

    def log_summary(self, report: GlobalLoadReport) -> None:
        logger.info(BANNER)
        logger.info("Universal Secret Loader - Summary")
        logger.info(BANNER)
        logger.info(f"Total providers: {len(report.attempted)}")
        logger.info(f"Successful: {len(report.successful_providers)}")
        logger.info(f"Failed: {len(report.failed_providers)}")
        logger.info(f"Secrets loaded: {report.total_loaded}")
        logger.info(BANNER)

        if report.is_fatal:
            logger.error("Secret loading failed; aborting due to SECRET_LOADER_FAIL_ON_ERROR=true")
        elif report.failed_providers or any(r.errors for r in report.attempted):
            logger.warning("Continuing container startup despite secret loading failures")
        else:
            logger.info("Secret loading completed successfully")

    # =========================================================================
    # Health checks
    # =========================================================================

    def health_check_all(self, environ: Mapping[str, str] | None = None) -> dict[str, bool]:
        """Probe every known provider (disabled ones report healthy).

        Returns:
            Mapping of provider name to health
        """
        logger.info("Running health checks on secret providers")
        environ = environ if environ is not None else self.sink.environ
        providers = self._providers
        if providers is None:
            providers = create_providers(list(PROVIDER_CLASSES), environ, self.config.retry)

        health: dict[str, bool] = {}
        for provider in providers:
            try:
                health[provider.name] = provider.health_check()
            except Exception as e:
                logger.warning(f"{provider.display_name} health check raised {type(e).__name__}")
                health[provider.name] = False
            finally:
                provider.close()

        healthy = sum(1 for ok in health.values() if ok)
        logger.info(f"Health check complete: {healthy} healthy, {len(health) - healthy} unhealthy")
        return health
