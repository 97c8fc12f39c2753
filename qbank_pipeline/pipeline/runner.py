"""Bulk import and audit runs over many documents."""

import asyncio
import uuid
from datetime import datetime
from pathlib import Path

import aiofiles
import structlog

from qbank_pipeline.extraction.metadata import infer_metadata
from qbank_pipeline.models import (
    DocumentResult,
    DocumentSource,
    ErrorSeverity,
    FailureKind,
    ProcessingError,
    QuestionStatus,
    RunSummary,
)

from .dependencies import PipelineDependencies
from .graph import create_document_app
from .state import create_initial_state

logger = structlog.get_logger(__name__)

TEXT_SUFFIXES = (".txt",)


def generate_run_id() -> str:
    return uuid.uuid4().hex[:12]


async def load_source(path: str | Path) -> DocumentSource:
    """Read a PDF or text file into a DocumentSource."""
    path = Path(path)
    async with aiofiles.open(path, "rb") as f:
        data = await f.read()

    if path.suffix.lower() in TEXT_SUFFIXES:
        return DocumentSource(filename=path.name, text=data.decode("utf-8", errors="replace"))
    return DocumentSource(filename=path.name, data=data)


def _source_title(source: DocumentSource | str | Path) -> str:
    if isinstance(source, DocumentSource):
        return source.title or infer_metadata(source.filename).title
    return infer_metadata(Path(source).name).title


def _failed_result(title: str, kind: FailureKind, stage: str, error: Exception) -> DocumentResult:
    return DocumentResult(
        title=title,
        failed=True,
        errors=[
            ProcessingError.create(
                kind=kind,
                stage=stage,
                message=str(error),
                severity=ErrorSeverity.CRITICAL,
                details={"exception_type": type(error).__name__},
            )
        ],
    )


async def run_document(
    app,
    source: DocumentSource,
    run_id: str,
) -> DocumentResult:
    """Run the per-document graph and return its result."""
    final_state = await app.ainvoke(create_initial_state(source, run_id))
    return DocumentResult.model_validate(final_state["result"])


async def run_import(
    sources: list[DocumentSource | str | Path],
    deps: PipelineDependencies,
    max_concurrent_documents: int | None = None,
    cancel_event: asyncio.Event | None = None,
) -> RunSummary:
    """Import many documents concurrently and summarize the run.

    Documents run concurrently up to ``max_concurrent_documents``. A
    failure inside one document is recorded on its result and never
    aborts the run. Once ``cancel_event`` is set, documents not yet
    started are reported as cancelled. When answer-key resolution is
    enabled, keys defaulted in the documents of this run are sent to the
    LLM afterwards. The run ends with a read-only consistency check.

    Args:
        sources: Document sources, or paths to PDF / text files.
        deps: Shared pipeline collaborators.
        max_concurrent_documents: Concurrency bound; settings value if not provided.
        cancel_event: Cancellation signal; the one in ``deps`` if not provided.

    Returns:
        RunSummary for the run.
    """
    if cancel_event is not None:
        deps.cancel_event = cancel_event
    cancel_event = deps.cancel_event

    limit = max_concurrent_documents or deps.settings.max_concurrent_documents
    semaphore = asyncio.Semaphore(max(1, limit))
    app = create_document_app(deps)
    summary = RunSummary(run_id=generate_run_id())
    calls_before = deps.llm_service.calls_made

    logger.info("run_started", run_id=summary.run_id, documents=len(sources), concurrency=limit)

    async def process(source: DocumentSource | str | Path) -> DocumentResult:
        title = _source_title(source)
        async with semaphore:
            if cancel_event.is_set():
                logger.info("document_cancelled", title=title)
                return DocumentResult(title=title, cancelled=True)

            try:
                if not isinstance(source, DocumentSource):
                    source = await load_source(source)
            except OSError as e:
                logger.error("document_load_failed", title=title, error=str(e))
                return _failed_result(title, FailureKind.EXTRACTION_FAILURE, "load", e)

            try:
                return await run_document(app, source, summary.run_id)
            except Exception as e:
                logger.exception("document_failed", title=title)
                return _failed_result(title, FailureKind.STRUCTURING_FAILURE, "pipeline", e)

    results = await asyncio.gather(*(process(s) for s in sources))
    for result in results:
        summary.add(result)

    if deps.resolve_answer_keys:
        document_ids = sorted({r.document_id for r in results if r.document_id is not None and r.persisted})
        if document_ids:
            summary.add_answer_keys(
                await deps.answer_keys.resolve_pending(document_ids, cancel_event=cancel_event)
            )

    summary.consistency = await asyncio.to_thread(deps.consistency.check)

    summary.llm_calls = deps.llm_service.calls_made - calls_before
    summary.cancelled = cancel_event.is_set()
    summary.finished_at = datetime.utcnow()

    logger.info(
        "run_summary",
        run_id=summary.run_id,
        duration_seconds=round(summary.duration_seconds, 2),
        documents_processed=summary.documents_processed,
        documents_failed=summary.documents_failed,
        documents_cancelled=summary.documents_cancelled,
        candidates=summary.candidates_extracted,
        accepted=summary.accepted,
        rejected=summary.rejected,
        rejections_by_reason=summary.rejections_by_reason,
        duplicates=summary.duplicates,
        persisted=summary.persisted,
        answer_keys_normalized=summary.answer_keys_normalized,
        findings=summary.audit_findings,
        repaired=summary.repairs_applied,
        repair_failures=summary.repair_failures,
        unresolved=summary.unresolved_question_ids,
        answer_keys_resolved=summary.answer_keys_resolved,
        answer_keys_unresolved=summary.answer_keys_unresolved,
        store_consistent=summary.consistency.consistent,
        llm_calls=summary.llm_calls,
    )
    return summary


async def run_audit(
    deps: PipelineDependencies,
    document_id: int | None = None,
    flagged_only: bool = False,
    fix: bool = True,
    resolve_keys: bool = False,
) -> RunSummary:
    """Audit (and optionally repair) questions already in the store.

    Audits one document, every document, or only rows still flagged
    from earlier runs. The result is reported as a RunSummary with one
    DocumentResult per audited document. With ``resolve_keys``, stored
    answer keys the gate defaulted are also sent to the LLM.
    """
    summary = RunSummary(run_id=generate_run_id())
    calls_before = deps.llm_service.calls_made

    if flagged_only:
        findings = await asyncio.to_thread(deps.auditor.audit_flagged, document_id)
        document_ids = sorted({f.document_id for f in findings})
    else:
        document_ids = (
            [document_id]
            if document_id is not None
            else await asyncio.to_thread(deps.repository.list_document_ids)
        )
        findings = []
        for doc_id in document_ids:
            findings.extend(await asyncio.to_thread(deps.auditor.audit_document, doc_id))

    if fix and deps.llm_service.is_available():
        outcomes = await deps.fixer.fix(findings, cancel_event=deps.cancel_event)
    else:
        outcomes = await deps.fixer.flag_unresolved(findings, error="auto-fix disabled")

    for doc_id in document_ids:
        document = await asyncio.to_thread(deps.repository.get_document, doc_id)
        doc_findings = {f.question_id for f in findings if f.document_id == doc_id}
        doc_outcomes = [o for o in outcomes if o.question_id in doc_findings]
        summary.add(
            DocumentResult(
                title=document.title if document else f"document {doc_id}",
                document_id=doc_id,
                audit_findings=len(doc_findings),
                repairs_applied=sum(1 for o in doc_outcomes if o.status == QuestionStatus.REPAIRED),
                repair_failures=sum(1 for o in doc_outcomes if o.status == QuestionStatus.REPAIR_FAILED),
                unresolved_question_ids=[
                    o.question_id for o in doc_outcomes if o.status == QuestionStatus.REPAIR_FAILED
                ],
                repairs=doc_outcomes,
            )
        )

    if resolve_keys:
        summary.add_answer_keys(
            await deps.answer_keys.resolve_pending(
                [document_id] if document_id is not None else None,
                cancel_event=deps.cancel_event,
            )
        )

    summary.llm_calls = deps.llm_service.calls_made - calls_before
    summary.finished_at = datetime.utcnow()
    logger.info(
        "audit_summary",
        run_id=summary.run_id,
        documents=len(document_ids),
        findings=summary.audit_findings,
        repaired=summary.repairs_applied,
        repair_failures=summary.repair_failures,
        unresolved=summary.unresolved_question_ids,
        answer_keys_resolved=summary.answer_keys_resolved,
        answer_keys_unresolved=summary.answer_keys_unresolved,
    )
    return summary
