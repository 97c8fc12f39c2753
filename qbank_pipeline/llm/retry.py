"""Shared retry policy for LLM calls, built on tenacity."""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from qbank_pipeline.config import Settings

from .parsing import LLMResponseParseError

logger = structlog.get_logger(__name__)

T = TypeVar("T")

RATE_LIMIT_MARKERS = ("rate limit", "rate_limit", "ratelimit", "too many requests", "quota")
RETRYABLE_MARKERS = ("timeout", "timed out", "connection", "temporarily unavailable")


class RateLimitedError(Exception):
    """The LLM service refused the call for rate-limit or quota reasons."""

    pass


class LLMEmptyResponseError(Exception):
    """The LLM service returned an empty response."""

    pass


def _status_code(error: BaseException) -> int | None:
    for attr in ("status_code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(error, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def is_rate_limit_error(error: BaseException) -> bool:
    """True for HTTP 429 or rate-limit / quota messages."""
    if isinstance(error, RateLimitedError):
        return True
    if _status_code(error) == 429:
        return True
    message = str(error).lower()
    return any(marker in message for marker in RATE_LIMIT_MARKERS)


def is_retryable(error: BaseException) -> bool:
    """Classify an error raised by an LLM call.

    Retried: timeouts, connection errors, HTTP 5xx, empty or unparsable
    responses. Never retried: rate-limit / quota errors.
    """
    if is_rate_limit_error(error):
        return False
    if isinstance(error, (LLMEmptyResponseError, LLMResponseParseError)):
        return True
    if isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return True
    status = _status_code(error)
    if status is not None:
        return 500 <= status < 600
    message = str(error).lower()
    return any(marker in message for marker in RETRYABLE_MARKERS)


def _log_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "llm_call_retrying",
        attempt=retry_state.attempt_number,
        error=str(error) if error else None,
        error_type=type(error).__name__ if error else None,
    )


@dataclass
class RetryPolicy:
    """Exponential-backoff retry policy shared by all LLM calls."""

    max_attempts: int = 3
    wait_multiplier: float = 1.0
    wait_min: float = 2.0
    wait_max: float = 30.0
    classifier: Callable[[BaseException], bool] = is_retryable

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=max(1, settings.max_retries),
            wait_min=settings.retry_wait_min_seconds,
            wait_max=settings.retry_wait_max_seconds,
        )

    def retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(
                multiplier=self.wait_multiplier, min=self.wait_min, max=self.wait_max
            ),
            retry=retry_if_exception(self.classifier),
            before_sleep=_log_retry,
            reraise=True,
        )

    async def call(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Await ``fn(*args, **kwargs)`` under this policy.

        Rate-limit errors are re-raised as ``RateLimitedError`` without
        retrying. After the last attempt the original error propagates.
        """
        try:
            async for attempt in self.retrying():
                with attempt:
                    return await fn(*args, **kwargs)
        except RateLimitedError:
            raise
        except Exception as e:
            if is_rate_limit_error(e):
                raise RateLimitedError(str(e)) from e
            raise
        raise RuntimeError("retry loop exited without a result")
