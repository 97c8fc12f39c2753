"""Quality gate rules shared by ingestion, audit and repair."""

from .gate import (
    QualityGateConfig,
    check_question_fields,
    evaluate,
    find_similar_pair,
    normalize_option,
    options_similar,
)

__all__ = [
    "QualityGateConfig",
    "check_question_fields",
    "evaluate",
    "find_similar_pair",
    "normalize_option",
    "options_similar",
]
