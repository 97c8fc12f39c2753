"""Unit tests for the question repository."""

import pytest

from qbank_pipeline.models import DocumentMetadata
from qbank_pipeline.storage import PersistenceError, normalize_stem, stem_hash

STEM = "Paciente de 25 anos apresenta dor em fossa ilíaca direita há 24 horas."


class TestStemHash:
    """Tests for stem normalization and hashing."""

    def test_normalize_stem(self):
        assert normalize_stem("  Paciente   de 25\nanos ") == "paciente de 25 anos"

    def test_hash_ignores_whitespace_and_case(self):
        assert stem_hash(STEM) == stem_hash("  " + STEM.upper().replace(" ", "  "))

    def test_hash_differs_for_different_stems(self):
        assert stem_hash(STEM) != stem_hash(STEM + " Qual o diagnóstico?")


class TestDocuments:
    """Tests for document linking."""

    def test_upsert_is_idempotent(self, repository):
        metadata = DocumentMetadata(title="USP 2022", institution="USP", year=2022)
        first = repository.upsert_document("USP 2022", metadata)
        second = repository.upsert_document("USP 2022", metadata)

        assert first == second
        assert repository.list_document_ids() == [first]

    def test_metadata_stored(self, repository, document_id):
        document = repository.get_document(document_id)
        assert document.institution == "ENARE"
        assert document.year == 2023
        assert document.processed is False

    def test_mark_processed(self, repository, document_id):
        repository.mark_document_processed(document_id)
        assert repository.get_document(document_id).processed is True


class TestQuestions:
    """Tests for question insert, lookup and update."""

    def test_insert_and_get(self, repository, document_id, make_question):
        question_id = repository.insert_question(document_id, make_question(STEM))

        question = repository.get_question(question_id)
        assert question.document_id == document_id
        assert question.stem == STEM
        assert question.correct_option == "A"
        assert question.quality_flag is None

    def test_duplicate_stem_returns_none(self, repository, document_id, make_question):
        assert repository.insert_question(document_id, make_question(STEM)) is not None

        variant = "  " + STEM.lower() + "  "
        assert repository.insert_question(document_id, make_question(variant)) is None
        assert repository.count_questions() == 1

    def test_duplicate_across_documents(self, repository, document_id, make_question):
        other_id = repository.upsert_document("USP 2022")
        repository.insert_question(document_id, make_question(STEM))

        assert repository.insert_question(other_id, make_question(STEM)) is None

    def test_unknown_document_raises(self, repository, make_question):
        with pytest.raises(PersistenceError):
            repository.insert_question(999, make_question(STEM))

    def test_find_question_by_stem(self, repository, document_id, make_question):
        question_id = repository.insert_question(document_id, make_question(STEM))

        found = repository.find_question_by_stem(STEM.upper())
        assert found.id == question_id
        assert repository.find_question_by_stem("Outro enunciado qualquer") is None

    def test_update_keeps_identity_and_answer_key(self, repository, document_id, make_question):
        question_id = repository.insert_question(document_id, make_question(STEM))

        updated = repository.update_question(
            question_id,
            {"stem": "Homem de 40 anos com dor torácica opressiva há duas horas.", "correct_option": "C"},
        )

        assert updated.id == question_id
        assert updated.document_id == document_id
        assert updated.correct_option == "A"
        assert repository.find_question_by_stem(STEM) is None
        assert repository.find_question_by_stem(updated.stem).id == question_id

    def test_update_missing_question(self, repository):
        with pytest.raises(PersistenceError):
            repository.update_question(12345, {"stem": "Novo enunciado"})

    def test_quality_flag(self, repository, document_id, make_question):
        question_id = repository.insert_question(document_id, make_question(STEM))

        repository.set_quality_flag(question_id, "STEM_TRUNCATED")
        assert [q.id for q in repository.list_flagged_questions()] == [question_id]
        assert repository.list_flagged_questions(document_id=document_id + 1) == []

        repository.set_quality_flag(question_id, None)
        assert repository.list_flagged_questions() == []

    def test_list_questions_in_insert_order(self, repository, document_id, make_question):
        ids = [
            repository.insert_question(document_id, make_question(f"{STEM} Variante {i}.", number_in_exam=i))
            for i in range(1, 4)
        ]
        assert [q.id for q in repository.list_questions(document_id)] == ids
        assert repository.count_questions(document_id) == 3


class TestNormalizedAnswerKeys:
    """Tests for the defaulted answer-key marker."""

    def test_marker_defaults_to_false(self, repository, document_id, make_question):
        question_id = repository.insert_question(document_id, make_question(STEM))
        assert repository.get_question(question_id).answer_key_normalized is False
        assert repository.list_normalized_key_questions() == []

    def test_list_marked_questions(self, repository, document_id, make_question):
        repository.insert_question(document_id, make_question(STEM))
        marked = repository.insert_question(
            document_id, make_question(STEM + " Qual a conduta?", answer_key_normalized=True)
        )

        assert [q.id for q in repository.list_normalized_key_questions()] == [marked]
        assert [q.id for q in repository.list_normalized_key_questions([document_id])] == [marked]
        assert repository.list_normalized_key_questions([document_id + 1]) == []
        assert repository.counts()["normalized_answer_keys"] == 1

    def test_set_answer_key_clears_marker(self, repository, document_id, make_question):
        question_id = repository.insert_question(
            document_id, make_question(STEM, answer_key_normalized=True)
        )

        updated = repository.set_answer_key(question_id, "C")

        assert updated.correct_option == "C"
        assert updated.answer_key_normalized is False
        assert repository.list_normalized_key_questions() == []

    def test_set_answer_key_missing_question(self, repository):
        with pytest.raises(PersistenceError):
            repository.set_answer_key(999, "B")

    def test_update_question_cannot_clear_marker(self, repository, document_id, make_question):
        question_id = repository.insert_question(
            document_id, make_question(STEM, answer_key_normalized=True)
        )
        repository.update_question(question_id, {"answer_key_normalized": False, "correct_option": "D"})

        stored = repository.get_question(question_id)
        assert stored.answer_key_normalized is True
        assert stored.correct_option == "A"


class TestEmbeddings:
    """Tests for embedding-backed document context."""

    def test_document_context(self, repository, document_id):
        for i in range(4):
            repository.add_embedding(document_id, f"Trecho {i} " + "x" * 20)

        context = repository.document_context(document_id, limit=3)
        assert "Trecho 0" in context
        assert "Trecho 2" in context
        assert "Trecho 3" not in context

    def test_document_context_truncated(self, repository, document_id):
        repository.add_embedding(document_id, "y" * 100)
        assert len(repository.document_context(document_id, max_chars=40)) == 40

    def test_no_context(self, repository, document_id):
        assert repository.document_context(document_id) == ""
