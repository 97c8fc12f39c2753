"""Per-document state definition for LangGraph."""

import operator
from typing import Annotated, TypedDict

from qbank_pipeline.extraction.metadata import infer_metadata
from qbank_pipeline.models import DocumentSource


class DocumentState(TypedDict, total=False):
    """State that flows through the per-document graph.

    Uses Annotated types with operators for list accumulation.
    """

    # Input
    run_id: str
    source: DocumentSource
    metadata: dict  # DocumentMetadata

    # Extraction
    text: str | None
    extraction_failed: bool

    # Structuring
    strategy: str | None
    candidates: list[dict]  # List[CandidateQuestion]
    cancelled: bool

    # Quality gate
    accepted: list[dict]  # List[CandidateQuestion], answer key valid
    rejections: Annotated[list[dict], operator.add]  # List[RejectionRecord]
    answer_keys_normalized: int

    # Persistence
    document_id: int | None
    persisted_ids: list[int]
    duplicates: int

    # Audit / repair
    findings: list[dict]  # List[AuditFinding]
    repairs: list[dict]  # List[RepairOutcome]

    # Output
    result: dict | None  # DocumentResult

    # Error tracking
    errors: Annotated[list[dict], operator.add]  # List[ProcessingError]


def create_initial_state(source: DocumentSource, run_id: str) -> DocumentState:
    """Create the initial state for one document."""
    metadata = infer_metadata(source.filename, title=source.title)

    return DocumentState(
        run_id=run_id,
        source=source,
        metadata=metadata.model_dump(),
        text=None,
        extraction_failed=False,
        strategy=None,
        candidates=[],
        cancelled=False,
        accepted=[],
        rejections=[],
        answer_keys_normalized=0,
        document_id=None,
        persisted_ids=[],
        duplicates=0,
        findings=[],
        repairs=[],
        result=None,
        errors=[],
    )
