"""Unit tests for structuring strategies and selection."""

import asyncio
import json

from langchain_core.language_models import FakeListLLM

from qbank_pipeline.llm import LLMChainError, LLMService, RateLimitedError, RetryPolicy
from qbank_pipeline.models import CandidateQuestion
from qbank_pipeline.structuring import (
    LLMStructuringStrategy,
    RegexStructuringStrategy,
    StructuringResult,
    StructuringSelector,
    StructuringStrategy,
    merge_candidates,
)


def llm_json(payload) -> str:
    return json.dumps(payload, ensure_ascii=False)


def _item(number: int, stem: str | None = None) -> dict:
    return {
        "number": number,
        "stem": stem or f"Enunciado da questão número {number} com contexto clínico.",
        "option_a": "Primeira alternativa",
        "option_b": "Segunda alternativa",
        "option_c": "Terceira alternativa",
        "option_d": "Quarta alternativa",
        "correct_option": "A",
    }


def _service(responses: list[str]) -> LLMService:
    return LLMService(
        llm=FakeListLLM(responses=responses),
        policy=RetryPolicy(max_attempts=1, wait_min=0, wait_max=0),
    )


class StubService:
    """Service double raising a given error on every structuring call."""

    def __init__(self, error: Exception):
        self.error = error
        self.calls = 0

    def is_available(self) -> bool:
        return True

    async def structure(self, text, chunk_index=0, total_chunks=1):
        self.calls += 1
        raise self.error

    async def count_questions(self, text):
        raise self.error


class FixedStrategy(StructuringStrategy):
    def __init__(self, name: str, candidates: list[CandidateQuestion], available: bool = True):
        self.name = name
        self.candidates = candidates
        self.available = available
        self.calls = 0

    def is_available(self) -> bool:
        return self.available

    async def structure(self, text, cancel_event=None) -> StructuringResult:
        self.calls += 1
        return StructuringResult(strategy=self.name, candidates=self.candidates)


class TestMergeCandidates:
    """Tests for merging candidate batches."""

    def test_first_occurrence_by_number_wins(self):
        first = CandidateQuestion.model_validate(_item(1, "Versão do primeiro trecho"))
        repeat = CandidateQuestion.model_validate(_item(1, "Versão do trecho sobreposto"))
        second = CandidateQuestion.model_validate(_item(2))

        merged = merge_candidates([[first], [repeat, second]])

        assert [c.number for c in merged] == [1, 2]
        assert merged[0].stem == "Versão do primeiro trecho"

    def test_unnumbered_deduplicated_by_stem(self):
        a = CandidateQuestion(stem="Mesmo  enunciado")
        b = CandidateQuestion(stem="mesmo enunciado")
        assert len(merge_candidates([[a], [b]])) == 1


class TestRegexStrategy:
    """Tests for the regex strategy."""

    def test_structures_sample(self, sample_exam_text):
        result = asyncio.run(RegexStructuringStrategy().structure(sample_exam_text))

        assert result.strategy == "regex"
        assert len(result.candidates) == 5
        assert result.errors == []


class TestLLMStrategyChunked:
    """Tests for chunked LLM structuring."""

    def test_single_chunk(self, sample_exam_text):
        service = _service([llm_json([_item(1), _item(2)])])
        strategy = LLMStructuringStrategy(service, mode="chunked")

        result = asyncio.run(strategy.structure(sample_exam_text))

        assert [c.number for c in result.candidates] == [1, 2]
        assert all(c.strategy == "llm" for c in result.candidates)
        assert result.chunks_attempted == 1
        assert service.calls_made == 1

    def test_non_object_items_skipped(self):
        service = _service([llm_json([_item(1), "lixo", 42])])
        strategy = LLMStructuringStrategy(service)

        result = asyncio.run(strategy.structure("Texto curto de prova."))

        assert [c.number for c in result.candidates] == [1]

    def test_failed_chunk_recorded(self):
        strategy = LLMStructuringStrategy(StubService(LLMChainError("structure failed: bad json")))

        result = asyncio.run(strategy.structure("Texto curto de prova."))

        assert result.candidates == []
        assert result.chunks_failed == 1
        assert len(result.errors) == 1
        assert not result.rate_limited

    def test_rate_limit_stops_document(self):
        service = StubService(RateLimitedError("429"))
        strategy = LLMStructuringStrategy(service)

        result = asyncio.run(strategy.structure("Texto curto de prova."))

        assert result.rate_limited
        assert result.errors[0].retryable
        assert service.calls == 1

    def test_cancelled_before_first_chunk(self):
        cancel = asyncio.Event()
        cancel.set()
        service = _service([llm_json([_item(1)])])

        result = asyncio.run(LLMStructuringStrategy(service).structure("Texto", cancel_event=cancel))

        assert result.cancelled
        assert service.calls_made == 0


class TestLLMStrategyPaginated:
    """Tests for paginated LLM structuring."""

    def test_pages_until_count(self):
        service = _service([
            "3",
            llm_json([_item(1), _item(2)]),
            llm_json([_item(2), _item(3)]),
        ])
        strategy = LLMStructuringStrategy(service, mode="paginated", page_size=2)

        result = asyncio.run(strategy.structure("Texto da prova"))

        assert [c.number for c in result.candidates] == [1, 2, 3]
        assert result.chunks_attempted == 2
        assert service.calls_made == 3

    def test_empty_page_stops(self):
        service = _service(["10", llm_json([_item(1), _item(2)]), "[]"])
        strategy = LLMStructuringStrategy(service, mode="paginated", page_size=2)

        result = asyncio.run(strategy.structure("Texto da prova"))

        assert len(result.candidates) == 2
        assert result.chunks_attempted == 2

    def test_count_capped_by_max_questions(self):
        service = _service(["500", llm_json([_item(1)])])
        strategy = LLMStructuringStrategy(service, mode="paginated", page_size=5, max_questions=5)

        result = asyncio.run(strategy.structure("Texto da prova"))

        assert result.chunks_attempted == 1
        assert len(result.candidates) == 1


class TestStructuringSelector:
    """Tests for strategy selection."""

    def _candidate(self) -> CandidateQuestion:
        return CandidateQuestion.model_validate(_item(1))

    def test_auto_stops_at_first_with_candidates(self):
        first = FixedStrategy("regex", [self._candidate()])
        second = FixedStrategy("llm", [self._candidate()])

        result = asyncio.run(StructuringSelector([first, second]).structure("texto"))

        assert result.strategy == "regex"
        assert second.calls == 0

    def test_auto_falls_through_on_empty(self):
        first = FixedStrategy("regex", [])
        second = FixedStrategy("llm", [self._candidate()])

        result = asyncio.run(StructuringSelector([first, second]).structure("texto"))

        assert result.strategy == "llm"
        assert len(result.candidates) == 1

    def test_unavailable_strategy_skipped(self):
        first = FixedStrategy("regex", [])
        second = FixedStrategy("llm", [self._candidate()], available=False)

        result = asyncio.run(StructuringSelector([first, second]).structure("texto"))

        assert result.strategy == "regex"
        assert second.calls == 0

    def test_explicit_mode(self):
        first = FixedStrategy("regex", [self._candidate()])
        second = FixedStrategy("llm", [self._candidate()])

        result = asyncio.run(StructuringSelector([first, second], mode="llm").structure("texto"))

        assert result.strategy == "llm"
        assert first.calls == 0

    def test_nothing_available(self):
        only = FixedStrategy("llm", [], available=False)
        result = asyncio.run(StructuringSelector([only], mode="llm").structure("texto"))
        assert result.strategy == "none"
        assert result.candidates == []
