"""
Bounded exponential backoff for provider calls.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

import logging
from typing import Callable, TypeVar

import httpx
from tenacity import (
    Retrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from secretloader.config import RetryConfig
from secretloader.errors import TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_EXCEPTIONS: tuple[type[BaseException], ...] = (
    TransientError,
    httpx.TransportError,
    TimeoutError,
    ConnectionError,
)


def _log_retry(state: RetryCallState) -> None:
    exc = state.outcome.exception() if state.outcome else None
    delay = state.next_action.sleep if state.next_action else 0
    # Exception text can carry response bodies; only the type is logged
    logger.warning(
        f"Attempt {state.attempt_number} failed ({type(exc).__name__}), "
        f"retrying in {delay:.1f}s"
    )


def call_with_retry(
    func: Callable[[], T],
    config: RetryConfig | None = None,
    retry_on: tuple[type[BaseException], ...] = RETRYABLE_EXCEPTIONS,
) -> T:
    """Run ``func`` with bounded exponential backoff on transient errors.

    Authentication and not-found failures are raised by callers as
    non-retryable errors, so they surface on the first attempt.

    Args:
        func: Zero-argument callable making one network/CLI call
        config: Attempts and delays (defaults to RetryConfig())
        retry_on: Exception types considered transient

    Returns:
        Whatever ``func`` returns
    """
    config = config or RetryConfig()
    retrying = Retrying(
        retry=retry_if_exception_type(retry_on),
        stop=stop_after_attempt(config.attempts),
        wait=wait_exponential(multiplier=config.initial_delay, max=config.max_delay),
        before_sleep=_log_retry,
        reraise=True,
    )
    return retrying(func)
