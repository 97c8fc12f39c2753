"""Pydantic data models for the pipeline."""

from .enums import (
    DefectReason,
    DocumentType,
    ErrorSeverity,
    FailureKind,
    GateVerdict,
    QuestionStatus,
)
from .extraction import (
    DocumentChunk,
    DocumentMetadata,
    DocumentSource,
    PageContent,
    RawDocument,
)
from .questions import (
    MANDATORY_LETTERS,
    OPTION_LETTERS,
    AnswerKeyOutcome,
    AuditFinding,
    CandidateQuestion,
    GateResult,
    QuestionRecord,
    RejectionRecord,
    RepairOutcome,
    parse_answer_letter,
)
from .report import ConsistencyReport, DocumentResult, ProcessingError, RunSummary

__all__ = [
    # Enums
    "DocumentType",
    "GateVerdict",
    "DefectReason",
    "QuestionStatus",
    "FailureKind",
    "ErrorSeverity",
    # Extraction
    "DocumentSource",
    "DocumentMetadata",
    "RawDocument",
    "PageContent",
    "DocumentChunk",
    # Questions
    "OPTION_LETTERS",
    "MANDATORY_LETTERS",
    "CandidateQuestion",
    "QuestionRecord",
    "GateResult",
    "RejectionRecord",
    "AuditFinding",
    "RepairOutcome",
    "AnswerKeyOutcome",
    "parse_answer_letter",
    # Report
    "ProcessingError",
    "DocumentResult",
    "RunSummary",
    "ConsistencyReport",
]
