"""Audit of stored questions against the quality gate rules."""

import structlog

from qbank_pipeline.models import AuditFinding, QuestionRecord
from qbank_pipeline.quality import QualityGateConfig, check_question_fields
from qbank_pipeline.storage import QuestionRepository

logger = structlog.get_logger(__name__)


def batch_findings(findings: list[AuditFinding], size: int = 3) -> list[list[AuditFinding]]:
    """Group findings into repair batches of at most ``size``."""
    size = max(1, size)
    return [findings[i:i + size] for i in range(0, len(findings), size)]


class Auditor:
    """Re-applies gate rules 1-4 to persisted questions.

    ``audit_document`` is read-only. ``audit_flagged`` clears the flag of
    rows that pass again, for example after a manual fix.
    """

    def __init__(self, repository: QuestionRepository, config: QualityGateConfig | None = None):
        self.repository = repository
        self.config = config or QualityGateConfig()

    def audit_questions(self, questions: list[QuestionRecord]) -> list[AuditFinding]:
        findings = []
        for question in questions:
            defect = check_question_fields(question.stem, question.options, self.config)
            if defect is None:
                continue
            reason, detail = defect
            findings.append(
                AuditFinding(
                    question_id=question.id,
                    document_id=question.document_id,
                    reason=reason,
                    detail=detail,
                )
            )
        return findings

    def audit_document(self, document_id: int) -> list[AuditFinding]:
        findings = self.audit_questions(self.repository.list_questions(document_id))
        logger.info("audit_complete", document_id=document_id, findings=len(findings))
        return findings

    def audit_flagged(self, document_id: int | None = None) -> list[AuditFinding]:
        """Findings for rows still carrying a quality flag from an earlier run."""
        flagged = self.repository.list_flagged_questions(document_id)
        findings = self.audit_questions(flagged)

        still_defective = {f.question_id for f in findings}
        passing = [q.id for q in flagged if q.id not in still_defective]
        for question_id in passing:
            self.repository.set_quality_flag(question_id, None)
        if passing:
            logger.info("flagged_questions_now_pass", count=len(passing), question_ids=passing)
        logger.info("flagged_audit_complete", flagged=len(flagged), findings=len(findings))
        return findings
