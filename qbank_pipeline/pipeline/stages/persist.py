"""Document linking, deduplication and persistence of accepted candidates."""

from dataclasses import dataclass, field

import structlog
from rapidfuzz import fuzz

from qbank_pipeline.models import (
    CandidateQuestion,
    DocumentMetadata,
    ErrorSeverity,
    FailureKind,
    ProcessingError,
)
from qbank_pipeline.storage import PersistenceError, QuestionRepository, normalize_stem

logger = structlog.get_logger(__name__)


@dataclass
class PersistResult:
    """Outcome of persisting one document's accepted candidates."""

    document_id: int
    persisted_ids: list[int] = field(default_factory=list)
    duplicates: int = 0
    errors: list[ProcessingError] = field(default_factory=list)


class QuestionPersistor:
    """Link documents and insert accepted candidates, skipping duplicates.

    Exact duplicates are caught by the unique stem-hash index. When
    ``fuzzy_threshold`` is set, stems are also compared (rapidfuzz ratio,
    0-100) against the stems already stored for the same document.
    """

    def __init__(self, repository: QuestionRepository, fuzzy_threshold: float | None = None):
        self.repository = repository
        self.fuzzy_threshold = fuzzy_threshold

    def link_document(self, metadata: DocumentMetadata) -> int:
        """Upsert the source document by title and return its id."""
        return self.repository.upsert_document(metadata.title, metadata)

    def _is_fuzzy_duplicate(self, stem: str, known_stems: list[str]) -> bool:
        if self.fuzzy_threshold is None:
            return False
        normalized = normalize_stem(stem)
        return any(fuzz.ratio(normalized, other) >= self.fuzzy_threshold for other in known_stems)

    def persist(self, document_id: int, candidates: list[CandidateQuestion]) -> PersistResult:
        """Insert accepted candidates for a document, one transaction each.

        A failed insert is recorded and the next candidate is attempted.
        The document is marked processed afterwards.
        """
        result = PersistResult(document_id=document_id)
        known_stems = []
        if self.fuzzy_threshold is not None:
            known_stems = [normalize_stem(s) for s in self.repository.list_document_stems(document_id)]

        for candidate in candidates:
            if self.repository.find_question_by_stem(candidate.stem) is not None:
                result.duplicates += 1
                logger.debug("duplicate_skipped", document_id=document_id, number=candidate.number)
                continue

            if self._is_fuzzy_duplicate(candidate.stem, known_stems):
                result.duplicates += 1
                logger.debug("fuzzy_duplicate_skipped", document_id=document_id, number=candidate.number)
                continue

            try:
                question_id = self.repository.insert_question(document_id, candidate.to_row())
            except PersistenceError as e:
                logger.error(
                    "question_persist_failed",
                    document_id=document_id,
                    number=candidate.number,
                    error=str(e),
                )
                result.errors.append(
                    ProcessingError.create(
                        kind=FailureKind.PERSISTENCE_FAILURE,
                        stage="persist",
                        message=str(e),
                        details={"number": candidate.number},
                    )
                )
                continue

            if question_id is None:
                # Lost a race with a concurrent insert of the same stem
                result.duplicates += 1
                logger.debug("duplicate_skipped", document_id=document_id, number=candidate.number)
                continue

            result.persisted_ids.append(question_id)
            known_stems.append(normalize_stem(candidate.stem))

        try:
            self.repository.mark_document_processed(document_id)
        except PersistenceError as e:
            result.errors.append(
                ProcessingError.create(
                    kind=FailureKind.PERSISTENCE_FAILURE,
                    stage="persist",
                    message=f"Could not mark document processed: {e}",
                    severity=ErrorSeverity.WARNING,
                )
            )

        logger.info(
            "persist_complete",
            document_id=document_id,
            persisted=len(result.persisted_ids),
            duplicates=result.duplicates,
            failures=len(result.errors),
        )
        return result
