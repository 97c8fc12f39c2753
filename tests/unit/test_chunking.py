"""Unit tests for text chunking."""

from qbank_pipeline.extraction.chunker import (
    ChunkingConfig,
    _find_split_points,
    chunk_document,
    chunk_text,
    count_tokens,
)
from qbank_pipeline.models import PageContent, RawDocument


class TestChunkingConfig:
    """Tests for ChunkingConfig."""

    def test_default_config(self):
        config = ChunkingConfig()
        assert config.target_tokens == 3000
        assert config.overlap_tokens == 200

    def test_custom_config(self):
        config = ChunkingConfig(target_tokens=1000, overlap_tokens=100)
        assert config.target_tokens == 1000
        assert config.overlap_tokens == 100


class TestFindSplitPoints:
    """Tests for split point detection."""

    def test_question_markers(self):
        text = "Cabeçalho da prova.\nQUESTÃO 1\nEnunciado.\nQuestão 2\nOutro enunciado."
        points = _find_split_points(text)

        question_points = [p for p in points if p[1] == 100]
        assert len(question_points) == 2

    def test_numbered_question_markers(self):
        text = "Instruções gerais.\n1. Primeira questão\n2) Segunda questão"
        points = _find_split_points(text)

        question_points = [p for p in points if p[1] == 100]
        assert len(question_points) == 2

    def test_paragraph_boundaries(self):
        text = "Primeiro parágrafo.\n\nSegundo parágrafo."
        points = _find_split_points(text)

        paragraph_points = [p for p in points if p[1] == 90]
        assert len(paragraph_points) == 1

    def test_sentence_boundaries(self):
        text = "Primeira frase. Segunda frase. Terceira frase."
        points = _find_split_points(text)

        sentence_points = [p for p in points if p[1] == 50]
        assert len(sentence_points) >= 2


class TestCountTokens:
    """Tests for token counting."""

    def test_count_tokens_basic(self):
        tokens = count_tokens("Hello world")
        assert 0 < tokens < 10

    def test_count_tokens_empty(self):
        assert count_tokens("") == 0


class TestChunkDocument:
    """Tests for document chunking."""

    def test_small_document_single_chunk(self, sample_exam_text):
        chunks = chunk_text(sample_exam_text)

        assert len(chunks) == 1
        assert chunks[0].chunk_index == 0
        assert "QUESTÃO 5" in chunks[0].text

    def test_large_document_multiple_chunks(self):
        sentence = "Paciente com quadro clínico descrito em detalhes, exames alterados. "
        text = "".join(f"QUESTÃO {i}\n" + sentence * 4 + "\n" for i in range(1, 120))
        config = ChunkingConfig(target_tokens=500, overlap_tokens=50, max_chunk_tokens=700)

        chunks = chunk_text(text, config)

        assert len(chunks) > 1
        for i, chunk in enumerate(chunks):
            assert chunk.chunk_index == i
        # Consecutive chunks leave no gap
        for prev, nxt in zip(chunks, chunks[1:]):
            assert nxt.char_offset_start <= prev.char_offset_end

    def test_chunks_prefer_question_boundaries(self):
        question = "QUESTÃO {n}\n" + ("Texto do enunciado com várias palavras. " * 30) + "\n"
        text = "".join(question.format(n=i) for i in range(1, 40))
        config = ChunkingConfig(target_tokens=500, overlap_tokens=0, max_chunk_tokens=900)

        chunks = chunk_text(text, config)

        assert len(chunks) > 1
        assert all(c.text.startswith("QUESTÃO") for c in chunks[1:])

    def test_page_range_tracked(self):
        doc = RawDocument(
            source_file="prova.pdf",
            total_pages=2,
            pages=[
                PageContent(page_number=1, text="Página um.", char_offset_start=0, char_offset_end=10),
                PageContent(page_number=2, text="Página dois.", char_offset_start=11, char_offset_end=23),
            ],
            total_characters=23,
        )

        chunks = chunk_document(doc)

        assert len(chunks) == 1
        assert chunks[0].start_page == 1
        assert chunks[0].end_page == 2
