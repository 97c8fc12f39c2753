"""LangGraph workflow for processing one exam document."""

import asyncio

import structlog
from langgraph.graph import END, START, StateGraph

from qbank_pipeline.extraction.pdf_extractor import TextExtractionError, extract_pdf, extract_text
from qbank_pipeline.llm import LLMChainError, RateLimitedError
from qbank_pipeline.models import (
    AuditFinding,
    CandidateQuestion,
    DocumentMetadata,
    DocumentResult,
    ErrorSeverity,
    FailureKind,
    ProcessingError,
    QuestionStatus,
    RejectionRecord,
    RepairOutcome,
)
from qbank_pipeline.quality import evaluate
from qbank_pipeline.storage import PersistenceError

from .dependencies import PipelineDependencies
from .state import DocumentState

logger = structlog.get_logger(__name__)


def _error(kind: FailureKind, stage: str, error: Exception, severity=ErrorSeverity.ERROR) -> dict:
    return ProcessingError.create(
        kind=kind,
        stage=stage,
        message=str(error),
        severity=severity,
        details={"exception_type": type(error).__name__},
    ).model_dump()


def should_continue_after_extraction(state: DocumentState) -> str:
    if state.get("extraction_failed") or state.get("cancelled") or not state.get("text"):
        logger.warning("document_stopping_after_extraction", title=state["metadata"]["title"])
        return "finalize"
    return "continue"


def should_continue_after_structuring(state: DocumentState) -> str:
    if state.get("cancelled"):
        return "finalize"
    if not state.get("candidates"):
        logger.warning("document_stopping_no_candidates", title=state["metadata"]["title"])
        return "finalize"
    return "continue"


def should_continue_after_gate(state: DocumentState) -> str:
    if state.get("cancelled") or not state.get("accepted"):
        return "finalize"
    return "continue"


def should_continue_after_persist(state: DocumentState) -> str:
    if state.get("document_id") is None or not state.get("persisted_ids"):
        return "finalize"
    return "continue"


def should_repair(state: DocumentState) -> str:
    return "continue" if state.get("findings") else "finalize"


def lifecycle_statuses(state: DocumentState, repairs: list[RepairOutcome]) -> dict[str, int]:
    """Count this document's questions at each lifecycle status they passed through."""
    persisted_ids = set(state.get("persisted_ids", []))
    flagged_ids = {f["question_id"] for f in state.get("findings", [])}
    counts = {
        QuestionStatus.EXTRACTED: len(state.get("candidates", [])),
        QuestionStatus.REJECTED: len(state.get("rejections", [])),
        QuestionStatus.ACCEPTED: len(state.get("accepted", [])),
        QuestionStatus.DUPLICATE_SKIPPED: state.get("duplicates", 0),
        QuestionStatus.PERSISTED: len(persisted_ids),
        QuestionStatus.CLEAN: len(persisted_ids - flagged_ids),
        QuestionStatus.FLAGGED: len(flagged_ids),
        QuestionStatus.REPAIRED: sum(1 for r in repairs if r.status == QuestionStatus.REPAIRED),
        QuestionStatus.REPAIR_FAILED: sum(1 for r in repairs if r.status == QuestionStatus.REPAIR_FAILED),
    }
    return {status.value: count for status, count in counts.items() if count}


def build_document_graph(deps: PipelineDependencies) -> StateGraph:
    """Build the per-document workflow.

    extract -> structure -> gate -> persist -> audit -> autofix -> finalize,
    short-circuiting to finalize on extraction failure, cancellation, or
    nothing left to process.
    """
    cancel_event = deps.cancel_event

    async def extract_node(state: DocumentState) -> dict:
        source = state["source"]
        if cancel_event.is_set():
            return {"cancelled": True}

        try:
            if source.text is not None:
                raw = extract_text(source.text, source.filename)
            else:
                raw = await asyncio.to_thread(extract_pdf, source.data, source.filename)
        except TextExtractionError as e:
            logger.error("document_extraction_failed", source=source.filename, error=str(e))
            return {
                "extraction_failed": True,
                "errors": [_error(FailureKind.EXTRACTION_FAILURE, "extraction", e, ErrorSeverity.CRITICAL)],
            }

        return {"text": raw.full_text}

    async def structure_node(state: DocumentState) -> dict:
        result = await deps.selector.structure(state["text"], cancel_event=cancel_event)
        return {
            "strategy": result.strategy,
            "candidates": [c.model_dump() for c in result.candidates],
            "cancelled": result.cancelled,
            "errors": [e.model_dump() for e in result.errors],
        }

    async def gate_node(state: DocumentState) -> dict:
        title = state["metadata"]["title"]
        accepted = []
        rejections = []
        normalized = 0

        for data in state["candidates"]:
            candidate = CandidateQuestion.model_validate(data)
            verdict = evaluate(candidate, deps.gate_config)
            if verdict.accepted:
                accepted.append(verdict.candidate.model_dump())
                normalized += int(verdict.answer_key_normalized)
                continue

            record = RejectionRecord(
                run_id=state["run_id"],
                document_title=title,
                number=candidate.number,
                stem_preview=candidate.stem[:80],
                reason=verdict.reason,
                detail=verdict.detail,
                strategy=candidate.strategy or state.get("strategy"),
            )
            logger.info("candidate_rejected", **record.model_dump(mode="json"))
            rejections.append(record.model_dump())

        logger.info(
            "quality_gate_complete",
            title=title,
            accepted=len(accepted),
            rejected=len(rejections),
            answer_keys_normalized=normalized,
        )
        return {
            "accepted": accepted,
            "rejections": rejections,
            "answer_keys_normalized": normalized,
            "cancelled": cancel_event.is_set(),
        }

    async def persist_node(state: DocumentState) -> dict:
        metadata = DocumentMetadata.model_validate(state["metadata"])
        candidates = [CandidateQuestion.model_validate(c) for c in state["accepted"]]

        try:
            document_id = await asyncio.to_thread(deps.persistor.link_document, metadata)
        except PersistenceError as e:
            logger.error("document_link_failed", title=metadata.title, error=str(e))
            return {"errors": [_error(FailureKind.PERSISTENCE_FAILURE, "persist", e, ErrorSeverity.CRITICAL)]}

        result = await asyncio.to_thread(deps.persistor.persist, document_id, candidates)
        return {
            "document_id": document_id,
            "persisted_ids": result.persisted_ids,
            "duplicates": result.duplicates,
            "errors": [e.model_dump() for e in result.errors],
        }

    async def audit_node(state: DocumentState) -> dict:
        findings = await asyncio.to_thread(deps.auditor.audit_document, state["document_id"])
        return {"findings": [f.model_dump() for f in findings]}

    async def autofix_node(state: DocumentState) -> dict:
        findings = [AuditFinding.model_validate(f) for f in state["findings"]]

        if not deps.auto_fix or not deps.llm_service.is_available():
            outcomes = await deps.fixer.flag_unresolved(findings, error="auto-fix disabled")
        else:
            try:
                outcomes = await deps.fixer.fix(findings, cancel_event=cancel_event)
            except (LLMChainError, RateLimitedError, PersistenceError) as e:
                return {"errors": [_error(FailureKind.REPAIR_FAILURE, "autofix", e)]}

        errors = [
            ProcessingError.create(
                kind=FailureKind.REPAIR_FAILURE,
                stage="autofix",
                message=o.error or "repair failed",
                severity=ErrorSeverity.WARNING,
                details={"question_id": o.question_id, "reason": o.reason.value},
            ).model_dump()
            for o in outcomes
            if o.status == QuestionStatus.REPAIR_FAILED
        ]
        return {"repairs": [o.model_dump() for o in outcomes], "errors": errors}

    async def finalize_node(state: DocumentState) -> dict:
        metadata = state["metadata"]
        repairs = [RepairOutcome.model_validate(r) for r in state.get("repairs", [])]
        errors = [ProcessingError.model_validate(e) for e in state.get("errors", [])]
        failed = state.get("extraction_failed", False) or any(
            e.severity == ErrorSeverity.CRITICAL for e in errors
        )

        result = DocumentResult(
            title=metadata["title"],
            source_file=metadata.get("source_file"),
            document_id=state.get("document_id"),
            strategy=state.get("strategy"),
            candidates_extracted=len(state.get("candidates", [])),
            accepted=len(state.get("accepted", [])),
            rejected=len(state.get("rejections", [])),
            duplicates=state.get("duplicates", 0),
            persisted=len(state.get("persisted_ids", [])),
            answer_keys_normalized=state.get("answer_keys_normalized", 0),
            audit_findings=len(state.get("findings", [])),
            repairs_applied=sum(1 for r in repairs if r.status == QuestionStatus.REPAIRED),
            repair_failures=sum(1 for r in repairs if r.status == QuestionStatus.REPAIR_FAILED),
            persisted_ids=state.get("persisted_ids", []),
            statuses=lifecycle_statuses(state, repairs),
            unresolved_question_ids=[
                r.question_id for r in repairs if r.status == QuestionStatus.REPAIR_FAILED
            ],
            rejections=[RejectionRecord.model_validate(r) for r in state.get("rejections", [])],
            repairs=repairs,
            errors=errors,
            cancelled=state.get("cancelled", False),
            failed=failed,
        )

        logger.info(
            "document_complete",
            title=result.title,
            strategy=result.strategy,
            candidates=result.candidates_extracted,
            accepted=result.accepted,
            rejected=result.rejected,
            persisted=result.persisted,
            duplicates=result.duplicates,
            findings=result.audit_findings,
            repaired=result.repairs_applied,
            cancelled=result.cancelled,
            failed=result.failed,
        )
        return {"result": result.model_dump()}

    workflow = StateGraph(DocumentState)

    workflow.add_node("extract", extract_node)
    workflow.add_node("structure", structure_node)
    workflow.add_node("gate", gate_node)
    workflow.add_node("persist", persist_node)
    workflow.add_node("audit", audit_node)
    workflow.add_node("autofix", autofix_node)
    workflow.add_node("finalize", finalize_node)

    workflow.add_edge(START, "extract")
    workflow.add_conditional_edges(
        "extract",
        should_continue_after_extraction,
        {"continue": "structure", "finalize": "finalize"},
    )
    workflow.add_conditional_edges(
        "structure",
        should_continue_after_structuring,
        {"continue": "gate", "finalize": "finalize"},
    )
    workflow.add_conditional_edges(
        "gate",
        should_continue_after_gate,
        {"continue": "persist", "finalize": "finalize"},
    )
    workflow.add_conditional_edges(
        "persist",
        should_continue_after_persist,
        {"continue": "audit", "finalize": "finalize"},
    )
    workflow.add_conditional_edges(
        "audit",
        should_repair,
        {"continue": "autofix", "finalize": "finalize"},
    )
    workflow.add_edge("autofix", "finalize")
    workflow.add_edge("finalize", END)

    return workflow


def create_document_app(deps: PipelineDependencies):
    """Create the compiled per-document application."""
    return build_document_graph(deps).compile()
