"""Standalone pipeline stages, callable on their own against an existing store."""

from .answer_keys import AnswerKeyResolver
from .audit import Auditor, batch_findings
from .autofix import AutoFixer, merge_repair
from .consistency import ConsistencyChecker
from .persist import PersistResult, QuestionPersistor

__all__ = [
    "QuestionPersistor",
    "PersistResult",
    "Auditor",
    "batch_findings",
    "AutoFixer",
    "merge_repair",
    "AnswerKeyResolver",
    "ConsistencyChecker",
]
