"""Models for per-document results, run summaries and consistency reports."""

import uuid
from collections import Counter
from datetime import datetime

from pydantic import BaseModel, Field

from .enums import ErrorSeverity, FailureKind
from .questions import AnswerKeyOutcome, RejectionRecord, RepairOutcome


class ProcessingError(BaseModel):
    """Record of a processing error or warning."""

    error_id: str = Field(..., description="Unique error identifier")
    kind: FailureKind = Field(..., description="Failure class from the error taxonomy")
    severity: ErrorSeverity = Field(..., description="Error severity level")
    stage: str = Field(..., description="Pipeline stage where error occurred")
    message: str = Field(..., description="Error message")
    details: dict | None = Field(None, description="Additional error details")
    retryable: bool = Field(default=False, description="Whether a later run may succeed")

    @classmethod
    def create(
        cls,
        kind: FailureKind,
        stage: str,
        message: str,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        details: dict | None = None,
        retryable: bool = False,
    ) -> "ProcessingError":
        """Build an error with a generated id."""
        return cls(
            error_id=f"{stage}_err_{uuid.uuid4().hex[:8]}",
            kind=kind,
            severity=severity,
            stage=stage,
            message=message,
            details=details,
            retryable=retryable,
        )


class DocumentResult(BaseModel):
    """Outcome of running the pipeline on one document."""

    title: str = Field(..., description="Document title")
    source_file: str | None = Field(None, description="Original file name")
    document_id: int | None = Field(None, description="Stored document id, once linked")
    strategy: str | None = Field(None, description="Structuring strategy that produced candidates")

    candidates_extracted: int = Field(default=0, ge=0)
    accepted: int = Field(default=0, ge=0)
    rejected: int = Field(default=0, ge=0)
    duplicates: int = Field(default=0, ge=0)
    persisted: int = Field(default=0, ge=0)
    answer_keys_normalized: int = Field(default=0, ge=0)
    audit_findings: int = Field(default=0, ge=0)
    repairs_applied: int = Field(default=0, ge=0)
    repair_failures: int = Field(default=0, ge=0)

    statuses: dict[str, int] = Field(
        default_factory=dict, description="Questions per lifecycle status (QuestionStatus values)"
    )
    persisted_ids: list[int] = Field(default_factory=list)
    unresolved_question_ids: list[int] = Field(
        default_factory=list, description="Questions left flagged after the repair pass"
    )
    rejections: list[RejectionRecord] = Field(default_factory=list)
    repairs: list[RepairOutcome] = Field(default_factory=list)
    errors: list[ProcessingError] = Field(default_factory=list)

    cancelled: bool = False
    failed: bool = Field(default=False, description="True when the document could not be processed")


class ConsistencyReport(BaseModel):
    """Read-only snapshot of store counts and referential discrepancies."""

    documents: int = Field(default=0, ge=0)
    questions: int = Field(default=0, ge=0)
    embeddings: int = Field(default=0, ge=0)
    flagged_questions: int = Field(default=0, ge=0)
    normalized_answer_keys: int = Field(
        default=0, ge=0, description="Questions still carrying a defaulted answer key"
    )
    documents_without_questions: int = Field(default=0, ge=0)
    documents_without_embeddings: int = Field(default=0, ge=0)
    discrepancies: list[str] = Field(default_factory=list)

    @property
    def consistent(self) -> bool:
        return not self.discrepancies


class RunSummary(BaseModel):
    """Per-run summary consumed by the CLI and dashboards."""

    run_id: str = Field(..., description="Unique run identifier")
    started_at: datetime = Field(default_factory=datetime.utcnow)
    finished_at: datetime | None = None

    documents_processed: int = Field(default=0, ge=0)
    documents_failed: int = Field(default=0, ge=0)
    documents_cancelled: int = Field(default=0, ge=0)

    candidates_extracted: int = Field(default=0, ge=0)
    accepted: int = Field(default=0, ge=0)
    rejected: int = Field(default=0, ge=0)
    duplicates: int = Field(default=0, ge=0)
    persisted: int = Field(default=0, ge=0)
    answer_keys_normalized: int = Field(default=0, ge=0)
    audit_findings: int = Field(default=0, ge=0)
    repairs_applied: int = Field(default=0, ge=0)
    repair_failures: int = Field(default=0, ge=0)
    answer_keys_resolved: int = Field(default=0, ge=0)
    answer_keys_unresolved: int = Field(default=0, ge=0)
    llm_calls: int = Field(default=0, ge=0)

    rejections_by_reason: dict[str, int] = Field(default_factory=dict)
    statuses: dict[str, int] = Field(default_factory=dict)
    unresolved_question_ids: list[int] = Field(default_factory=list)
    errors: list[ProcessingError] = Field(default_factory=list)
    documents: list[DocumentResult] = Field(default_factory=list)
    answer_keys: list[AnswerKeyOutcome] = Field(default_factory=list)
    consistency: ConsistencyReport | None = Field(
        None, description="Store check taken once all documents finished"
    )
    cancelled: bool = False

    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def add(self, result: DocumentResult) -> None:
        """Fold one document result into the run totals."""
        self.documents.append(result)
        if result.cancelled:
            self.documents_cancelled += 1
        elif result.failed:
            self.documents_failed += 1
        else:
            self.documents_processed += 1

        self.candidates_extracted += result.candidates_extracted
        self.accepted += result.accepted
        self.rejected += result.rejected
        self.duplicates += result.duplicates
        self.persisted += result.persisted
        self.answer_keys_normalized += result.answer_keys_normalized
        self.audit_findings += result.audit_findings
        self.repairs_applied += result.repairs_applied
        self.repair_failures += result.repair_failures
        self.unresolved_question_ids.extend(result.unresolved_question_ids)
        self.errors.extend(result.errors)

        counts = Counter(self.rejections_by_reason)
        counts.update(r.reason.value for r in result.rejections)
        self.rejections_by_reason = dict(counts)

        statuses = Counter(self.statuses)
        statuses.update(result.statuses)
        self.statuses = dict(statuses)

    def add_answer_keys(self, outcomes: list[AnswerKeyOutcome]) -> None:
        """Fold answer-key resolution outcomes into the run totals."""
        self.answer_keys.extend(outcomes)
        self.answer_keys_resolved += sum(1 for o in outcomes if o.resolved)
        self.answer_keys_unresolved += sum(1 for o in outcomes if not o.resolved)

    def summary(self) -> str:
        return (
            f"Run {self.run_id}: {self.documents_processed} documents "
            f"({self.documents_failed} failed, {self.documents_cancelled} cancelled) | "
            f"Candidates: {self.candidates_extracted} | Accepted: {self.accepted} | "
            f"Rejected: {self.rejected} | Duplicates: {self.duplicates} | "
            f"Persisted: {self.persisted} | Findings: {self.audit_findings} | "
            f"Repaired: {self.repairs_applied} | Repair failures: {self.repair_failures}"
        )

