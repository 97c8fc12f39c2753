"""Read-only cross-check of store counts and references."""

import structlog
from sqlalchemy.exc import SQLAlchemyError

from qbank_pipeline.models import ConsistencyReport
from qbank_pipeline.storage import QuestionRepository

logger = structlog.get_logger(__name__)


class ConsistencyChecker:
    """Counts stored entities and lists referential discrepancies.

    Never mutates the store and never raises on store errors; those are
    reported as discrepancies.
    """

    def __init__(self, repository: QuestionRepository):
        self.repository = repository

    def check(self) -> ConsistencyReport:
        report = ConsistencyReport()

        try:
            counts = self.repository.counts()
            report.documents = counts["documents"]
            report.questions = counts["questions"]
            report.embeddings = counts["embeddings"]
            report.flagged_questions = counts["flagged_questions"]
            report.normalized_answer_keys = counts["normalized_answer_keys"]

            orphan_questions = self.repository.orphan_question_ids()
            if orphan_questions:
                report.discrepancies.append(
                    f"{len(orphan_questions)} questions reference a missing document "
                    f"(ids: {orphan_questions[:10]})"
                )

            orphan_embeddings = self.repository.orphan_embedding_ids()
            if orphan_embeddings:
                report.discrepancies.append(
                    f"{len(orphan_embeddings)} embeddings reference a missing document "
                    f"(ids: {orphan_embeddings[:10]})"
                )

            empty_documents = self.repository.processed_documents_without_questions()
            report.documents_without_questions = len(empty_documents)
            if empty_documents:
                report.discrepancies.append(
                    f"{len(empty_documents)} processed documents have no questions "
                    f"(ids: {empty_documents[:10]})"
                )

            report.documents_without_embeddings = len(self.repository.documents_without_embeddings())
        except SQLAlchemyError as e:
            report.discrepancies.append(f"store error during consistency check: {e}")

        for discrepancy in report.discrepancies:
            logger.warning("consistency_discrepancy", detail=discrepancy)

        logger.info(
            "consistency_check_complete",
            documents=report.documents,
            questions=report.questions,
            embeddings=report.embeddings,
            flagged=report.flagged_questions,
            normalized_answer_keys=report.normalized_answer_keys,
            discrepancies=len(report.discrepancies),
        )
        return report
