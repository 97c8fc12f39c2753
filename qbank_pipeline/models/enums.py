"""Enumeration types for the pipeline models."""

from enum import Enum


class DocumentType(str, Enum):
    """Kind of source document."""

    EXAM = "exam"
    SIMULATED_TEST = "simulated_test"
    LESSON = "lesson"
    OTHER = "other"


class GateVerdict(str, Enum):
    """Outcome of the quality gate for one candidate."""

    ACCEPTED = "accepted"
    REJECTED = "rejected"


class DefectReason(str, Enum):
    """Reason codes shared by the quality gate and the auditor."""

    STEM_TOO_SHORT = "STEM_TOO_SHORT"
    STEM_TRUNCATED = "STEM_TRUNCATED"
    ALTERNATIVES_MISSING = "ALTERNATIVES_MISSING"
    ALTERNATIVES_SIMILAR = "ALTERNATIVES_SIMILAR"
    # Only produced under the "reject" answer-key policy
    ANSWER_KEY_INVALID = "ANSWER_KEY_INVALID"


class QuestionStatus(str, Enum):
    """Lifecycle of a candidate on its way to (and after) storage.

    EXTRACTED -> REJECTED | ACCEPTED -> DUPLICATE_SKIPPED | PERSISTED ->
    CLEAN | FLAGGED -> REPAIRED | REPAIR_FAILED
    """

    EXTRACTED = "extracted"
    REJECTED = "rejected"
    ACCEPTED = "accepted"
    DUPLICATE_SKIPPED = "duplicate_skipped"
    PERSISTED = "persisted"
    CLEAN = "clean"
    FLAGGED = "flagged"
    REPAIRED = "repaired"
    REPAIR_FAILED = "repair_failed"


class FailureKind(str, Enum):
    """Error taxonomy for pipeline failures."""

    EXTRACTION_FAILURE = "extraction_failure"
    STRUCTURING_FAILURE = "structuring_failure"
    VALIDATION_REJECTION = "validation_rejection"
    PERSISTENCE_FAILURE = "persistence_failure"
    REPAIR_FAILURE = "repair_failure"


class ErrorSeverity(str, Enum):
    """Severity levels for processing errors."""

    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"
