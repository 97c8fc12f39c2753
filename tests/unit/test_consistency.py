"""Unit tests for the store consistency check."""

from qbank_pipeline.pipeline.stages import ConsistencyChecker

STEM = "Paciente de 25 anos apresenta dor em fossa ilíaca direita há 24 horas."


class TestConsistencyChecker:
    """Tests for ConsistencyChecker."""

    def test_empty_store_is_consistent(self, repository):
        report = ConsistencyChecker(repository).check()

        assert report.consistent
        assert report.documents == 0
        assert report.questions == 0

    def test_counts(self, repository, document_id, make_question):
        question_id = repository.insert_question(document_id, make_question(STEM))
        repository.add_embedding(document_id, "Trecho do documento")
        repository.set_quality_flag(question_id, "STEM_TRUNCATED")

        report = ConsistencyChecker(repository).check()

        assert report.consistent
        assert report.documents == 1
        assert report.questions == 1
        assert report.embeddings == 1
        assert report.flagged_questions == 1
        assert report.documents_without_embeddings == 0

    def test_orphan_embeddings_reported(self, repository, document_id):
        repository.add_embedding(document_id + 100, "Trecho órfão")

        report = ConsistencyChecker(repository).check()

        assert not report.consistent
        assert any("embeddings reference a missing document" in d for d in report.discrepancies)

    def test_processed_document_without_questions(self, repository, document_id):
        repository.mark_document_processed(document_id)

        report = ConsistencyChecker(repository).check()

        assert report.documents_without_questions == 1
        assert any("processed documents have no questions" in d for d in report.discrepancies)

    def test_unprocessed_empty_document_is_fine(self, repository, document_id):
        report = ConsistencyChecker(repository).check()

        assert report.consistent
        assert report.documents_without_embeddings == 1

    def test_check_is_read_only(self, repository, document_id, make_question):
        repository.insert_question(document_id, make_question(STEM))
        before = repository.counts()

        ConsistencyChecker(repository).check()

        assert repository.counts() == before

    def test_normalized_answer_keys_counted(self, repository, document_id, make_question):
        repository.insert_question(document_id, make_question(STEM, answer_key_normalized=True))
        repository.insert_question(document_id, make_question(STEM + " Qual a conduta?"))

        report = ConsistencyChecker(repository).check()

        assert report.consistent
        assert report.normalized_answer_keys == 1
