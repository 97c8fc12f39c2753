"""Unit tests for the LLM retry policy and service."""

import asyncio

import pytest
from langchain_core.language_models import FakeListLLM

from qbank_pipeline.llm import (
    LLMChainError,
    LLMEmptyResponseError,
    LLMResponseParseError,
    LLMService,
    RateLimitedError,
    RetryPolicy,
    is_retryable,
)
from qbank_pipeline.llm.retry import is_rate_limit_error


def _fast_policy(max_attempts: int = 3) -> RetryPolicy:
    return RetryPolicy(max_attempts=max_attempts, wait_min=0, wait_max=0)


class HTTPError(Exception):
    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


class TestErrorClassification:
    """Tests for retryable / rate-limit classification."""

    def test_rate_limit_by_status(self):
        assert is_rate_limit_error(HTTPError("slow down", 429))
        assert not is_retryable(HTTPError("slow down", 429))

    def test_rate_limit_by_message(self):
        assert is_rate_limit_error(Exception("Quota exceeded for model"))
        assert not is_retryable(Exception("Rate limit reached"))

    def test_server_errors_retryable(self):
        assert is_retryable(HTTPError("bad gateway", 502))
        assert not is_retryable(HTTPError("bad request", 400))

    def test_transient_errors_retryable(self):
        assert is_retryable(asyncio.TimeoutError())
        assert is_retryable(ConnectionError("refused"))
        assert is_retryable(LLMEmptyResponseError("empty"))
        assert is_retryable(LLMResponseParseError("not json"))

    def test_unknown_error_not_retryable(self):
        assert not is_retryable(ValueError("bad prompt variable"))


class TestRetryPolicy:
    """Tests for RetryPolicy.call."""

    def test_retries_until_success(self):
        attempts = []

        async def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise ConnectionError("connection reset")
            return "ok"

        assert asyncio.run(_fast_policy().call(flaky)) == "ok"
        assert len(attempts) == 3

    def test_gives_up_after_max_attempts(self):
        attempts = []

        async def broken():
            attempts.append(1)
            raise ConnectionError("connection reset")

        with pytest.raises(ConnectionError):
            asyncio.run(_fast_policy(max_attempts=2).call(broken))
        assert len(attempts) == 2

    def test_rate_limit_not_retried(self):
        attempts = []

        async def limited():
            attempts.append(1)
            raise HTTPError("Too Many Requests", 429)

        with pytest.raises(RateLimitedError):
            asyncio.run(_fast_policy().call(limited))
        assert len(attempts) == 1

    def test_non_retryable_propagates(self):
        async def bad():
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            asyncio.run(_fast_policy().call(bad))


class TestLLMService:
    """Tests for LLMService with a fake model."""

    def test_unavailable_without_model(self):
        service = LLMService()
        assert not service.is_available()
        with pytest.raises(LLMChainError):
            asyncio.run(service.structure("texto"))

    def test_structure_returns_items(self):
        llm = FakeListLLM(responses=['[{"number": 1, "stem": "Enunciado da questão"}]'])
        service = LLMService(llm=llm, policy=_fast_policy())

        items = asyncio.run(service.structure("QUESTÃO 1 ..."))

        assert items == [{"number": 1, "stem": "Enunciado da questão"}]
        assert service.calls_made == 1

    def test_unparsable_response_retried(self):
        llm = FakeListLLM(responses=["Desculpe, não consigo.", '[{"stem": "Enunciado"}]'])
        service = LLMService(llm=llm, policy=_fast_policy())

        items = asyncio.run(service.structure("texto"))

        assert items == [{"stem": "Enunciado"}]
        assert service.calls_made == 2

    def test_exhausted_retries_raise_chain_error(self):
        llm = FakeListLLM(responses=["sem json"] * 3)
        service = LLMService(llm=llm, policy=_fast_policy(max_attempts=3))

        with pytest.raises(LLMChainError):
            asyncio.run(service.structure("texto"))
        assert service.calls_made == 3

    def test_empty_response_uses_fallback(self):
        llm = FakeListLLM(responses=[""])
        fallback = FakeListLLM(responses=["12"])
        service = LLMService(llm=llm, fallback_llm=fallback, policy=_fast_policy())

        assert asyncio.run(service.count_questions("texto")) == 12
