"""
ORM models for documents, questions and document embeddings.
"""

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from .database import Base


class Document(Base):
    __tablename__ = "documents"
    __table_args__ = (UniqueConstraint("title", name="uq_documents_title"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(500), nullable=False, index=True)
    doc_type = Column(String(50), nullable=False, default="exam")
    institution = Column(String(100), nullable=True)
    year = Column(Integer, nullable=True)
    source_file = Column(String(500), nullable=True)
    processed = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f"<Document(id={self.id}, title={self.title!r}, processed={self.processed})>"


class Question(Base):
    __tablename__ = "questions"
    __table_args__ = (UniqueConstraint("stem_hash", name="uq_questions_stem_hash"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    document_id = Column(Integer, ForeignKey("documents.id"), nullable=False, index=True)
    number_in_exam = Column(Integer, nullable=True)
    stem = Column(Text, nullable=False)
    stem_hash = Column(String(64), nullable=False)
    option_a = Column(Text, nullable=False)
    option_b = Column(Text, nullable=False)
    option_c = Column(Text, nullable=False)
    option_d = Column(Text, nullable=False)
    option_e = Column(Text, nullable=True)
    correct_option = Column(String(1), nullable=False)
    # Set when the gate replaced a missing or invalid key with the default one
    answer_key_normalized = Column(Boolean, nullable=False, default=False, index=True)
    explanation = Column(Text, nullable=True)
    area = Column(String(100), nullable=True)
    subarea = Column(String(200), nullable=True)
    topic = Column(String(200), nullable=True)
    quality_flag = Column(String(50), nullable=True, index=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return (
            f"<Question(id={self.id}, document_id={self.document_id}, "
            f"number={self.number_in_exam}, flag={self.quality_flag!r})>"
        )


class DocumentEmbedding(Base):
    __tablename__ = "document_embeddings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    # No FK: embeddings are written by an external indexer and may outlive documents
    document_id = Column(Integer, nullable=False, index=True)
    content = Column(Text, nullable=False)
    embedding = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f"<DocumentEmbedding(id={self.id}, document_id={self.document_id})>"
