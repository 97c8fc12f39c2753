"""Question repository: the relational store interface used by the pipeline.

All methods are synchronous and open their own short transaction;
async callers run them through ``asyncio.to_thread``.
"""

import hashlib
from datetime import datetime

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from qbank_pipeline.models import DocumentMetadata, QuestionRecord

from .database import create_engine_from_url, create_session_factory, init_db, session_scope
from .models import Document, DocumentEmbedding, Question

logger = structlog.get_logger(__name__)

UPDATABLE_FIELDS = {
    "stem",
    "option_a",
    "option_b",
    "option_c",
    "option_d",
    "option_e",
    "explanation",
    "area",
    "subarea",
    "topic",
    "quality_flag",
}


class PersistenceError(Exception):
    """A store operation failed for reasons other than a duplicate."""

    pass


def normalize_stem(stem: str) -> str:
    """Collapse whitespace, trim and case-fold a stem."""
    return " ".join((stem or "").split()).casefold()


def stem_hash(stem: str) -> str:
    """Deduplication key: SHA-256 of the normalized stem."""
    return hashlib.sha256(normalize_stem(stem).encode("utf-8")).hexdigest()


def _is_stem_hash_conflict(error: IntegrityError) -> bool:
    return "stem_hash" in str(error.orig)


class QuestionRepository:
    """Documents, questions and embeddings behind one session factory."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    @classmethod
    def from_url(cls, database_url: str) -> "QuestionRepository":
        """Create the engine, ensure tables exist and return a repository."""
        engine = create_engine_from_url(database_url)
        init_db(engine)
        return cls(create_session_factory(engine))

    # Documents

    def upsert_document(self, title: str, metadata: DocumentMetadata | None = None) -> int:
        """Return the id of the document with this title, creating it if needed.

        A concurrent insert of the same title is resolved by re-selecting
        after the unique-constraint violation.
        """
        existing = self.get_document_id(title)
        if existing is not None:
            return existing

        try:
            with session_scope(self.session_factory) as db:
                document = Document(
                    title=title,
                    doc_type=metadata.doc_type.value if metadata else "exam",
                    institution=metadata.institution if metadata else None,
                    year=metadata.year if metadata else None,
                    source_file=metadata.source_file if metadata else None,
                )
                db.add(document)
                db.flush()
                document_id = document.id
        except IntegrityError:
            document_id = self.get_document_id(title)
            if document_id is None:
                raise PersistenceError(f"Could not create or find document {title!r}")
            logger.debug("document_insert_race_resolved", title=title, document_id=document_id)
            return document_id
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to create document {title!r}: {e}") from e

        logger.info("document_created", title=title, document_id=document_id)
        return document_id

    def get_document_id(self, title: str) -> int | None:
        with session_scope(self.session_factory) as db:
            return db.execute(select(Document.id).where(Document.title == title)).scalar_one_or_none()

    def get_document(self, document_id: int) -> Document | None:
        with session_scope(self.session_factory) as db:
            return db.get(Document, document_id)

    def list_document_ids(self) -> list[int]:
        with session_scope(self.session_factory) as db:
            return list(db.execute(select(Document.id).order_by(Document.id)).scalars())

    def mark_document_processed(self, document_id: int) -> None:
        try:
            with session_scope(self.session_factory) as db:
                document = db.get(Document, document_id)
                if document is not None:
                    document.processed = True
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to mark document {document_id} processed: {e}") from e

    # Questions

    def find_question_by_stem(self, stem: str) -> QuestionRecord | None:
        with session_scope(self.session_factory) as db:
            row = db.execute(
                select(Question).where(Question.stem_hash == stem_hash(stem))
            ).scalar_one_or_none()
            return QuestionRecord.model_validate(row) if row else None

    def insert_question(self, document_id: int, fields: dict) -> int | None:
        """Insert one question in its own transaction.

        Returns:
            The new question id, or None if a question with the same
            normalized stem already exists.

        Raises:
            PersistenceError: On any other store failure.
        """
        row = {
            k: v
            for k, v in fields.items()
            if hasattr(Question, k) and k not in ("id", "document_id", "stem_hash")
        }
        try:
            with session_scope(self.session_factory) as db:
                question = Question(
                    **row,
                    document_id=document_id,
                    stem_hash=stem_hash(row.get("stem", "")),
                )
                db.add(question)
                db.flush()
                return question.id
        except IntegrityError as e:
            if _is_stem_hash_conflict(e):
                return None
            raise PersistenceError(f"Integrity error inserting question: {e.orig}") from e
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to insert question: {e}") from e

    def update_question(self, question_id: int, partial: dict) -> QuestionRecord:
        """Apply a partial update in place; id, document and answer key never change.

        Raises:
            PersistenceError: If the question is missing or the update fails.
        """
        changes = {k: v for k, v in partial.items() if k in UPDATABLE_FIELDS}
        try:
            with session_scope(self.session_factory) as db:
                question = db.get(Question, question_id)
                if question is None:
                    raise PersistenceError(f"Question {question_id} not found")
                for key, value in changes.items():
                    setattr(question, key, value)
                if "stem" in changes:
                    question.stem_hash = stem_hash(changes["stem"])
                question.updated_at = datetime.utcnow()
                db.flush()
                return QuestionRecord.model_validate(question)
        except IntegrityError as e:
            raise PersistenceError(f"Update of question {question_id} conflicts: {e.orig}") from e
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to update question {question_id}: {e}") from e

    def set_quality_flag(self, question_id: int, flag: str | None) -> None:
        try:
            with session_scope(self.session_factory) as db:
                question = db.get(Question, question_id)
                if question is not None:
                    question.quality_flag = flag
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to flag question {question_id}: {e}") from e

    def set_answer_key(self, question_id: int, letter: str) -> QuestionRecord:
        """Overwrite the answer key of a question stored with a default key.

        This is the only write path for ``correct_option``; it also clears
        ``answer_key_normalized``.

        Raises:
            PersistenceError: If the question is missing or the update fails.
        """
        try:
            with session_scope(self.session_factory) as db:
                question = db.get(Question, question_id)
                if question is None:
                    raise PersistenceError(f"Question {question_id} not found")
                question.correct_option = letter
                question.answer_key_normalized = False
                question.updated_at = datetime.utcnow()
                db.flush()
                return QuestionRecord.model_validate(question)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to set answer key of question {question_id}: {e}") from e

    def get_question(self, question_id: int) -> QuestionRecord | None:
        with session_scope(self.session_factory) as db:
            row = db.get(Question, question_id)
            return QuestionRecord.model_validate(row) if row else None

    def list_questions(self, document_id: int) -> list[QuestionRecord]:
        with session_scope(self.session_factory) as db:
            rows = db.execute(
                select(Question).where(Question.document_id == document_id).order_by(Question.id)
            ).scalars()
            return [QuestionRecord.model_validate(r) for r in rows]

    def list_flagged_questions(self, document_id: int | None = None) -> list[QuestionRecord]:
        with session_scope(self.session_factory) as db:
            query = select(Question).where(Question.quality_flag.is_not(None))
            if document_id is not None:
                query = query.where(Question.document_id == document_id)
            rows = db.execute(query.order_by(Question.id)).scalars()
            return [QuestionRecord.model_validate(r) for r in rows]

    def list_normalized_key_questions(self, document_ids: list[int] | None = None) -> list[QuestionRecord]:
        with session_scope(self.session_factory) as db:
            query = select(Question).where(Question.answer_key_normalized.is_(True))
            if document_ids is not None:
                query = query.where(Question.document_id.in_(document_ids))
            rows = db.execute(query.order_by(Question.id)).scalars()
            return [QuestionRecord.model_validate(r) for r in rows]

    def list_document_stems(self, document_id: int) -> list[str]:
        with session_scope(self.session_factory) as db:
            return list(
                db.execute(select(Question.stem).where(Question.document_id == document_id)).scalars()
            )

    def count_questions(self, document_id: int | None = None) -> int:
        with session_scope(self.session_factory) as db:
            query = select(func.count(Question.id))
            if document_id is not None:
                query = query.where(Question.document_id == document_id)
            return db.execute(query).scalar_one()

    # Embeddings

    def document_context(self, document_id: int, limit: int = 3, max_chars: int = 6000) -> str:
        """Concatenate the first stored embedding chunks of a document."""
        with session_scope(self.session_factory) as db:
            contents = db.execute(
                select(DocumentEmbedding.content)
                .where(DocumentEmbedding.document_id == document_id)
                .order_by(DocumentEmbedding.id)
                .limit(limit)
            ).scalars()
            return "\n\n".join(contents)[:max_chars]

    def add_embedding(self, document_id: int, content: str, embedding: list[float] | None = None) -> int:
        with session_scope(self.session_factory) as db:
            row = DocumentEmbedding(document_id=document_id, content=content, embedding=embedding)
            db.add(row)
            db.flush()
            return row.id

    # Consistency queries

    def counts(self) -> dict[str, int]:
        with session_scope(self.session_factory) as db:
            return {
                "documents": db.execute(select(func.count(Document.id))).scalar_one(),
                "questions": db.execute(select(func.count(Question.id))).scalar_one(),
                "embeddings": db.execute(select(func.count(DocumentEmbedding.id))).scalar_one(),
                "flagged_questions": db.execute(
                    select(func.count(Question.id)).where(Question.quality_flag.is_not(None))
                ).scalar_one(),
                "normalized_answer_keys": db.execute(
                    select(func.count(Question.id)).where(Question.answer_key_normalized.is_(True))
                ).scalar_one(),
            }

    def orphan_question_ids(self) -> list[int]:
        with session_scope(self.session_factory) as db:
            return list(
                db.execute(
                    select(Question.id)
                    .outerjoin(Document, Question.document_id == Document.id)
                    .where(Document.id.is_(None))
                ).scalars()
            )

    def orphan_embedding_ids(self) -> list[int]:
        with session_scope(self.session_factory) as db:
            return list(
                db.execute(
                    select(DocumentEmbedding.id)
                    .outerjoin(Document, DocumentEmbedding.document_id == Document.id)
                    .where(Document.id.is_(None))
                ).scalars()
            )

    def processed_documents_without_questions(self) -> list[int]:
        with session_scope(self.session_factory) as db:
            return list(
                db.execute(
                    select(Document.id)
                    .outerjoin(Question, Question.document_id == Document.id)
                    .where(Document.processed.is_(True), Question.id.is_(None))
                    .order_by(Document.id)
                ).scalars()
            )

    def documents_without_embeddings(self) -> list[int]:
        with session_scope(self.session_factory) as db:
            return list(
                db.execute(
                    select(Document.id)
                    .outerjoin(DocumentEmbedding, DocumentEmbedding.document_id == Document.id)
                    .where(DocumentEmbedding.id.is_(None))
                    .order_by(Document.id)
                ).scalars()
            )
