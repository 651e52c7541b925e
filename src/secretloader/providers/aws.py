"""
AWS Secrets Manager provider.

One GetSecretValue call per pass. A JSON object secret is fanned out into
one environment variable per key; anything else is exported as a single
variable.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

import json
import logging
from typing import Any, Callable

from secretloader.config import AWSConfig
from secretloader.errors import AuthError, ConfigError, FetchError, FormatError, TransientError
from secretloader.models import AuthSession
from secretloader.naming import is_valid_env_name, normalize
from secretloader.providers.base import SecretProvider

logger = logging.getLogger(__name__)

DEFAULT_REGION = "us-east-1"

AUTH_ERROR_CODES = (
    "UnrecognizedClientException",
    "InvalidClientTokenId",
    "AccessDenied",
    "AccessDeniedException",
    "ExpiredToken",
    "ExpiredTokenException",
    "InvalidSignatureException",
    # AssumeRoleWithWebIdentity (IRSA, workload identity federation)
    "InvalidIdentityToken",
    "IDPRejectedClaim",
)

TRANSIENT_ERROR_CODES = (
    "ThrottlingException",
    "InternalServiceError",
    "ServiceUnavailable",
)


def _default_session_factory(profile: str | None, region: str | None):
    try:
        import boto3
    except ImportError:
        raise ConfigError(
            "boto3 required for AWS Secrets Manager. Install with: pip install boto3",
            provider="aws",
        )
    return boto3.session.Session(profile_name=profile, region_name=region)


def decode_secret(response: dict[str, Any]) -> str:
    """Secret payload of a GetSecretValue response as text.

    Raises:
        FormatError: If the response has no usable payload
    """
    secret_string = response.get("SecretString")
    if secret_string:
        return secret_string

    secret_binary = response.get("SecretBinary")
    if secret_binary:
        try:
            return bytes(secret_binary).decode("utf-8")
        except UnicodeDecodeError:
            raise FormatError("SecretBinary is not valid UTF-8", provider="aws")

    raise FormatError("No secret data found in AWS Secrets Manager response", provider="aws")


class AWSSecretsProvider(SecretProvider):
    """Loads one AWS Secrets Manager secret."""

    name = "aws"
    display_name = "AWS Secrets Manager"

    def __init__(
        self,
        config: AWSConfig | None = None,
        session: Any = None,
        session_factory: Callable[[str | None, str | None], Any] | None = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.config = config or AWSConfig.from_env()
        self._session = session
        self._session_factory = session_factory or _default_session_factory
        self._plaintext_target: str | None = None

    @property
    def prefix(self) -> str:
        return self.config.prefix

    @property
    def session(self):
        if self._session is None:
            try:
                self._session = self._session_factory(self.config.profile, self.config.region)
            except ConfigError:
                raise
            except Exception as e:
                # botocore ProfileNotFound and friends
                raise ConfigError(f"Unable to create AWS session ({type(e).__name__})", provider=self.name)
        return self._session

    @property
    def region(self) -> str:
        return self.config.region or getattr(self.session, "region_name", None) or DEFAULT_REGION

    def _client(self, service: str):
        from botocore.config import Config

        client_config = Config(
            connect_timeout=self.retry.timeout,
            read_timeout=self.retry.timeout,
            retries={"max_attempts": 1},
        )
        return self.session.client(service, region_name=self.region, config=client_config)

    def enabled(self) -> bool:
        return self.config.enabled

    def authenticate(self) -> AuthSession:
        self._require(self.config.validate())

        from botocore.exceptions import BotoCoreError, ClientError

        try:
            credentials = self.session.get_credentials()
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "Unknown")
            raise AuthError(f"AWS credential chain failed ({code})", provider=self.name)
        except BotoCoreError as e:
            # CredentialRetrievalError, PartialCredentialsError, SSO token errors
            raise AuthError(f"AWS credential chain failed ({type(e).__name__})", provider=self.name)
        if credentials is None:
            raise AuthError(
                "No AWS credentials found (environment, profile, web identity, "
                "container or instance role)",
                provider=self.name,
            )

        method = getattr(credentials, "method", None) or "default-chain"
        logger.info(f"Using AWS credentials from: {method} (region: {self.region})")
        return AuthSession(provider=self.name, method=method, identity=self.config.profile)

    def _get_secret_value(self) -> dict[str, Any]:
        from botocore.exceptions import (
            BotoCoreError,
            ClientError,
            ConnectTimeoutError,
            CredentialRetrievalError,
            EndpointConnectionError,
            NoCredentialsError,
            PartialCredentialsError,
            ReadTimeoutError,
            TokenRetrievalError,
        )

        params = {"SecretId": self.config.secret_name}
        if self.config.version_id:
            params["VersionId"] = self.config.version_id
        elif self.config.version_stage:
            params["VersionStage"] = self.config.version_stage

        client = self._client("secretsmanager")

        def send() -> dict[str, Any]:
            try:
                return client.get_secret_value(**params)
            except (EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError) as e:
                raise TransientError(f"AWS endpoint unreachable ({type(e).__name__})", provider=self.name)
            except ClientError as e:
                if e.response.get("Error", {}).get("Code") in TRANSIENT_ERROR_CODES:
                    raise TransientError("AWS Secrets Manager throttled the request", provider=self.name)
                raise

        try:
            return self._call(send)
        except NoCredentialsError:
            raise AuthError("No AWS credentials available for the request", provider=self.name)
        except (CredentialRetrievalError, PartialCredentialsError, TokenRetrievalError) as e:
            raise AuthError(f"AWS credential chain failed ({type(e).__name__})", provider=self.name)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "Unknown")
            if code in AUTH_ERROR_CODES:
                raise AuthError(
                    f"Authentication failed ({code}). Check AWS credentials and IAM permissions.",
                    provider=self.name,
                )
            if code == "ResourceNotFoundException":
                raise FetchError(f"Secret not found: {self.config.secret_name}", provider=self.name)
            raise FetchError(f"Failed to retrieve secret from AWS Secrets Manager ({code})", provider=self.name)
        except TransientError as e:
            raise FetchError(f"Failed to retrieve secret after retries: {e.message}", provider=self.name)
        except BotoCoreError as e:
            raise FetchError(f"Failed to retrieve secret ({type(e).__name__})", provider=self.name)

    def resolve_names(self, session: AuthSession) -> list[str]:
        logger.info(f"Retrieving secret from AWS Secrets Manager: {self.config.secret_name} (region: {self.region})")
        secret_string = decode_secret(self._get_secret_value())

        try:
            parsed = json.loads(secret_string)
        except ValueError:
            parsed = None

        if isinstance(parsed, dict):
            secrets = {str(key): value for key, value in parsed.items()}
            self._plaintext_target = None
        else:
            target = self.config.plaintext_env_var or normalize(self.config.prefix, "SECRET")
            if not is_valid_env_name(target):
                raise ConfigError(f"AWS_SECRET_ENV_VAR is not a valid variable name: {target}", provider=self.name)
            secrets = {target: secret_string}
            self._plaintext_target = target

        session.payload["secrets"] = secrets
        return list(secrets)

    def fetch(self, session: AuthSession, name: str) -> str:
        secrets = session.payload.get("secrets") or {}
        value = secrets.get(name)
        if value is None:
            raise FetchError("Key not present in secret", provider=self.name, secret=name)
        if not isinstance(value, str):
            value = json.dumps(value)
        if value == "":
            raise FetchError("Secret is empty, skipping", provider=self.name, secret=name)
        return value

    def env_name(self, name: str) -> str:
        # The plaintext target is already a final variable name
        if self._plaintext_target is not None and name == self._plaintext_target:
            return name
        return super().env_name(name)

    def health_check(self) -> bool:
        if not self.config.enabled:
            return True
        if not self.config.secret_name:
            logger.warning("AWS Secrets Manager enabled but AWS_SECRET_NAME not set")
            return False

        logger.info("Checking AWS Secrets Manager access")
        try:
            self._client("sts").get_caller_identity()
        except Exception as e:
            logger.warning(f"AWS authentication check failed ({type(e).__name__})")
            return False
        logger.info("AWS authentication successful")
        return True

    def describe(self) -> dict:
        return self.config.to_dict()
