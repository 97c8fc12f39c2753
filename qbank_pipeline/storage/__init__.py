"""Relational store: engine/session setup, ORM models and the question repository."""

from .database import Base, create_engine_from_url, create_session_factory, init_db
from .models import Document, DocumentEmbedding, Question
from .repository import PersistenceError, QuestionRepository, normalize_stem, stem_hash

__all__ = [
    "Base",
    "create_engine_from_url",
    "create_session_factory",
    "init_db",
    "Document",
    "Question",
    "DocumentEmbedding",
    "QuestionRepository",
    "PersistenceError",
    "normalize_stem",
    "stem_hash",
]
