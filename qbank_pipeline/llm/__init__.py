"""LLM client, chains, response parsing and retry policy."""

from .chains import LLMChainError
from .client import create_fallback_client, create_llm_client
from .parsing import LLMResponseParseError, parse_json_array, parse_json_object
from .retry import LLMEmptyResponseError, RateLimitedError, RetryPolicy, is_retryable
from .service import LLMService

__all__ = [
    "create_llm_client",
    "create_fallback_client",
    "LLMService",
    "RetryPolicy",
    "is_retryable",
    "parse_json_array",
    "parse_json_object",
    "LLMChainError",
    "LLMEmptyResponseError",
    "LLMResponseParseError",
    "RateLimitedError",
]
