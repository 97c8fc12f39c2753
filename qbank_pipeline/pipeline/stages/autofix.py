"""LLM-driven repair of stored questions flagged by the auditor."""

import asyncio

import structlog

from qbank_pipeline.llm import LLMChainError, LLMService, RateLimitedError
from qbank_pipeline.models import AuditFinding, QuestionRecord, QuestionStatus, RepairOutcome
from qbank_pipeline.quality import QualityGateConfig, check_question_fields
from qbank_pipeline.storage import PersistenceError, QuestionRepository

from .audit import batch_findings

logger = structlog.get_logger(__name__)

# Fields a repair may override; correct_option is never among them
REPAIRABLE_FIELDS = (
    "stem",
    "option_a",
    "option_b",
    "option_c",
    "option_d",
    "option_e",
    "explanation",
    "area",
)


def build_repair_item(index: int, finding: AuditFinding, question: QuestionRecord) -> dict:
    return {
        "index": index,
        "id": question.id,
        "problem": finding.reason.value,
        "detail": finding.detail,
        "stem": question.stem,
        "option_a": question.option_a,
        "option_b": question.option_b,
        "option_c": question.option_c,
        "option_d": question.option_d,
        "option_e": question.option_e,
        "correct_option": question.correct_option,
        "explanation": question.explanation,
        "area": question.area,
    }


def merge_repair(question: QuestionRecord, fixed: dict) -> dict:
    """Fields from a repair response that override the stored record.

    Only present, non-empty string values count. An ``option_e`` is
    not introduced when the stored record has none.
    """
    changes = {}
    for key in REPAIRABLE_FIELDS:
        value = fixed.get(key)
        if not isinstance(value, str) or not value.strip() or value.strip().lower() == "null":
            continue
        if key == "option_e" and question.option_e is None:
            continue
        value = value.strip()
        if value != getattr(question, key):
            changes[key] = value
    return changes


def _parse_index(item: dict) -> int | None:
    try:
        return int(item.get("index"))
    except (TypeError, ValueError):
        return None


class AutoFixer:
    """Repair flagged questions in batches through the LLM service.

    A repaired record is written only if it passes gate rules 1-4; it
    keeps its id, document and answer key. Anything else leaves the row
    unchanged with ``quality_flag`` set.
    """

    def __init__(
        self,
        repository: QuestionRepository,
        service: LLMService,
        config: QualityGateConfig | None = None,
        batch_size: int = 3,
        context_chars: int = 6000,
    ):
        self.repository = repository
        self.service = service
        self.config = config or QualityGateConfig()
        self.batch_size = batch_size
        self.context_chars = context_chars

    async def fix(
        self,
        findings: list[AuditFinding],
        cancel_event: asyncio.Event | None = None,
    ) -> list[RepairOutcome]:
        outcomes: list[RepairOutcome] = []
        batches = batch_findings(findings, self.batch_size)

        for i, batch in enumerate(batches):
            if cancel_event is not None and cancel_event.is_set():
                logger.info("autofix_cancelled", remaining_batches=len(batches) - i)
                outcomes.extend(await self.flag_unresolved(batch, error="cancelled"))
                continue
            outcomes.extend(await self.fix_batch(batch))

        repaired = sum(1 for o in outcomes if o.status == QuestionStatus.REPAIRED)
        logger.info(
            "autofix_complete",
            findings=len(findings),
            repaired=repaired,
            failed=len(outcomes) - repaired,
        )
        return outcomes

    async def flag_unresolved(
        self, findings: list[AuditFinding], error: str | None = None
    ) -> list[RepairOutcome]:
        """Mark findings as unresolved without attempting a repair."""
        outcomes = []
        for finding in findings:
            outcomes.append(await self._fail(finding, error or "repair not attempted"))
        return outcomes

    async def _fail(self, finding: AuditFinding, error: str, flag: str | None = None) -> RepairOutcome:
        try:
            await asyncio.to_thread(
                self.repository.set_quality_flag, finding.question_id, flag or finding.reason.value
            )
        except PersistenceError as e:
            logger.error("quality_flag_failed", question_id=finding.question_id, error=str(e))
        logger.warning(
            "question_repair_failed",
            question_id=finding.question_id,
            reason=finding.reason.value,
            error=error,
        )
        return RepairOutcome(
            question_id=finding.question_id,
            reason=finding.reason,
            status=QuestionStatus.REPAIR_FAILED,
            error=error,
        )

    async def fix_batch(self, batch: list[AuditFinding]) -> list[RepairOutcome]:
        """Repair one batch; failures stay within the batch."""
        if not self.service.is_available():
            return await self.flag_unresolved(batch, error="LLM service unavailable")

        questions = []
        outcomes = []
        for finding in batch:
            question = await asyncio.to_thread(self.repository.get_question, finding.question_id)
            if question is None:
                outcomes.append(
                    RepairOutcome(
                        question_id=finding.question_id,
                        reason=finding.reason,
                        status=QuestionStatus.REPAIR_FAILED,
                        error="question not found",
                    )
                )
                continue
            questions.append((finding, question))

        if not questions:
            return outcomes

        items = [build_repair_item(i, f, q) for i, (f, q) in enumerate(questions)]
        context = await asyncio.to_thread(
            self.repository.document_context,
            questions[0][1].document_id,
            3,
            self.context_chars,
        )

        try:
            fixed_items = await self.service.repair(items, context)
        except (LLMChainError, RateLimitedError) as e:
            logger.error("repair_batch_failed", size=len(questions), error=str(e))
            for finding, _ in questions:
                outcomes.append(await self._fail(finding, f"repair call failed: {e}"))
            return outcomes

        by_index = {}
        for item in fixed_items:
            index = _parse_index(item)
            if index is not None:
                by_index.setdefault(index, item)

        for i, (finding, question) in enumerate(questions):
            fixed = by_index.get(i)
            if fixed is None:
                outcomes.append(await self._fail(finding, "no repair returned for this item"))
                continue
            outcomes.append(await self._apply(finding, question, fixed))

        return outcomes

    async def _apply(self, finding: AuditFinding, question: QuestionRecord, fixed: dict) -> RepairOutcome:
        changes = merge_repair(question, fixed)
        merged = question.model_copy(update=changes)

        defect = check_question_fields(merged.stem, merged.options, self.config)
        if defect is not None:
            reason, detail = defect
            return await self._fail(
                finding, f"repaired record still defective: {reason.value} ({detail})", reason.value
            )

        try:
            await asyncio.to_thread(
                self.repository.update_question, question.id, {**changes, "quality_flag": None}
            )
        except PersistenceError as e:
            return await self._fail(finding, f"could not write repair: {e}")

        logger.info(
            "question_repaired",
            question_id=question.id,
            reason=finding.reason.value,
            fields=sorted(changes),
        )
        return RepairOutcome(
            question_id=question.id,
            reason=finding.reason,
            status=QuestionStatus.REPAIRED,
            fields_updated=sorted(changes),
        )
