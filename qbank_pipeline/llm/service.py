"""LLM extraction service: chains behind one retry policy and a shared concurrency limit."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from langchain_core.language_models import BaseLLM

from qbank_pipeline.config import Settings

from .chains import (
    LLMChainError,
    run_answer_key_chain,
    run_count_chain,
    run_range_structuring_chain,
    run_repair_chain,
    run_structuring_chain,
)
from .client import create_fallback_client, create_llm_client
from .retry import RateLimitedError, RetryPolicy

logger = structlog.get_logger(__name__)


class LLMService:
    """Fallible, JSON-shaped LLM operations used by the pipeline.

    Every call holds one slot of the shared semaphore per attempt, so
    backoff sleeps do not block other documents. Failures after the
    retry policy gives up surface as ``LLMChainError``; rate-limit
    errors surface as ``RateLimitedError`` without retrying.
    """

    def __init__(
        self,
        llm: BaseLLM | None = None,
        fallback_llm: BaseLLM | None = None,
        policy: RetryPolicy | None = None,
        max_concurrent_calls: int = 2,
    ):
        self.llm = llm
        self.fallback_llm = fallback_llm
        self.policy = policy or RetryPolicy()
        self._semaphore = asyncio.Semaphore(max(1, max_concurrent_calls))
        self.calls_made = 0

    @classmethod
    def from_settings(cls, settings: Settings) -> "LLMService":
        """Build the service from settings; disabled LLM settings yield an unavailable service."""
        if not settings.llm_enabled:
            return cls(policy=RetryPolicy.from_settings(settings))
        return cls(
            llm=create_llm_client(settings),
            fallback_llm=create_fallback_client(settings),
            policy=RetryPolicy.from_settings(settings),
            max_concurrent_calls=settings.max_concurrent_llm_calls,
        )

    def is_available(self) -> bool:
        return self.llm is not None

    async def _guarded(self, fn: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        async with self._semaphore:
            self.calls_made += 1
            return await fn(*args, **kwargs)

    async def _call(self, operation: str, fn: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        if self.llm is None:
            raise LLMChainError("LLM service is not configured")
        try:
            return await self.policy.call(
                self._guarded, fn, *args, llm=self.llm, fallback_llm=self.fallback_llm, **kwargs
            )
        except RateLimitedError:
            logger.warning("llm_rate_limited", operation=operation)
            raise
        except LLMChainError:
            raise
        except Exception as e:
            logger.error(
                "llm_call_failed",
                operation=operation,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise LLMChainError(f"{operation} failed: {e}") from e

    async def structure(self, text: str, chunk_index: int = 0, total_chunks: int = 1) -> list[dict]:
        """Extract question dicts from a text chunk."""
        return await self._call(
            "structure",
            run_structuring_chain,
            text,
            chunk_index=chunk_index,
            total_chunks=total_chunks,
        )

    async def structure_range(self, text: str, start: int, end: int) -> list[dict]:
        """Extract questions ``start``..``end`` from the full text."""
        return await self._call("structure_range", run_range_structuring_chain, text, start=start, end=end)

    async def count_questions(self, text: str) -> int:
        return await self._call("count_questions", run_count_chain, text)

    async def repair(self, items: list[dict], context: str) -> list[dict]:
        """Ask the model to fix a batch of defective questions."""
        return await self._call("repair", run_repair_chain, items, context=context)

    async def resolve_answer_keys(self, items: list[dict]) -> list[dict]:
        """Ask the model for the correct letter of each question in a batch."""
        return await self._call("resolve_answer_keys", run_answer_key_chain, items)
