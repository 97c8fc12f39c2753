"""Interchangeable strategies that turn document text into candidate questions."""

from .base import StructuringResult, StructuringSelector, StructuringStrategy
from .llm_strategy import LLMStructuringStrategy, merge_candidates
from .regex_strategy import RegexStructuringStrategy

__all__ = [
    "StructuringStrategy",
    "StructuringResult",
    "StructuringSelector",
    "RegexStructuringStrategy",
    "LLMStructuringStrategy",
    "merge_candidates",
]
