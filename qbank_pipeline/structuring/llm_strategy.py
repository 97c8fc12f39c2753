"""Structuring strategy backed by the LLM extraction service."""

import asyncio
from typing import Literal

import structlog
from pydantic import ValidationError

from qbank_pipeline.extraction.chunker import ChunkingConfig, chunk_text
from qbank_pipeline.llm import LLMChainError, LLMService, RateLimitedError
from qbank_pipeline.models import CandidateQuestion, ErrorSeverity, FailureKind, ProcessingError

from .base import StructuringResult, StructuringStrategy

logger = structlog.get_logger(__name__)

ExtractionMode = Literal["chunked", "paginated"]


def merge_candidates(batches: list[list[CandidateQuestion]]) -> list[CandidateQuestion]:
    """Merge candidate batches, dropping repeats.

    Candidates are keyed by ordinal number (first wins); candidates
    without a number are keyed by their whitespace-normalized stem.
    """
    seen: set = set()
    merged = []
    for batch in batches:
        for candidate in batch:
            if candidate.number is not None:
                key = ("number", candidate.number)
            else:
                key = ("stem", " ".join(candidate.stem.split()).casefold())
            if key in seen:
                continue
            seen.add(key)
            merged.append(candidate)
    return merged


def _to_candidates(items: list[dict], strategy: str) -> list[CandidateQuestion]:
    candidates = []
    for item in items:
        try:
            candidate = CandidateQuestion.model_validate(item)
        except ValidationError as e:
            logger.debug("llm_item_invalid", error=str(e))
            continue
        candidates.append(candidate.model_copy(update={"strategy": strategy}))
    return candidates


class LLMStructuringStrategy(StructuringStrategy):
    """Extract candidates with the LLM service.

    ``chunked`` mode sends one structuring call per token-bounded chunk.
    ``paginated`` mode asks for the question count and then for pages of
    ``page_size`` questions until an empty page or ``max_questions``.
    Calls are sequential within a document; a failed chunk yields zero
    candidates and an error, a rate-limit stops the document.
    """

    name = "llm"

    def __init__(
        self,
        service: LLMService,
        mode: ExtractionMode = "chunked",
        chunking: ChunkingConfig | None = None,
        page_size: int = 25,
        max_questions: int = 150,
    ):
        self.service = service
        self.mode = mode
        self.chunking = chunking or ChunkingConfig()
        self.page_size = max(1, page_size)
        self.max_questions = max_questions

    def is_available(self) -> bool:
        return self.service.is_available()

    async def structure(
        self,
        text: str,
        cancel_event: asyncio.Event | None = None,
    ) -> StructuringResult:
        if self.mode == "paginated":
            return await self._structure_paginated(text, cancel_event)
        return await self._structure_chunked(text, cancel_event)

    def _error(self, message: str, details: dict, retryable: bool = False) -> ProcessingError:
        return ProcessingError.create(
            kind=FailureKind.STRUCTURING_FAILURE,
            stage="structuring",
            message=message,
            severity=ErrorSeverity.WARNING,
            details=details,
            retryable=retryable,
        )

    async def _structure_chunked(
        self,
        text: str,
        cancel_event: asyncio.Event | None,
    ) -> StructuringResult:
        chunks = chunk_text(text, self.chunking)
        result = StructuringResult(strategy=self.name)
        batches = []

        for chunk in chunks:
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                break

            result.chunks_attempted += 1
            try:
                items = await self.service.structure(
                    chunk.text, chunk_index=chunk.chunk_index, total_chunks=len(chunks)
                )
            except RateLimitedError as e:
                result.chunks_failed += 1
                result.rate_limited = True
                result.errors.append(
                    self._error(
                        f"Rate limited while structuring: {e}",
                        {"chunk_index": chunk.chunk_index},
                        retryable=True,
                    )
                )
                logger.warning("structuring_stopped_rate_limited", chunk_index=chunk.chunk_index)
                break
            except LLMChainError as e:
                result.chunks_failed += 1
                result.errors.append(
                    self._error(f"Chunk structuring failed: {e}", {"chunk_index": chunk.chunk_index})
                )
                logger.warning("chunk_structuring_failed", chunk_index=chunk.chunk_index, error=str(e))
                continue

            batches.append(_to_candidates(items, self.name))

        result.candidates = merge_candidates(batches)
        logger.info(
            "llm_structuring_complete",
            mode="chunked",
            chunks=len(chunks),
            chunks_failed=result.chunks_failed,
            candidates=len(result.candidates),
        )
        return result

    async def _structure_paginated(
        self,
        text: str,
        cancel_event: asyncio.Event | None,
    ) -> StructuringResult:
        result = StructuringResult(strategy=self.name)
        batches = []

        try:
            expected = await self.service.count_questions(text)
        except RateLimitedError as e:
            result.rate_limited = True
            result.errors.append(
                self._error(f"Rate limited while counting questions: {e}", {"page": 0}, retryable=True)
            )
            return result
        except LLMChainError as e:
            logger.warning("question_count_failed", error=str(e))
            expected = self.max_questions

        limit = min(expected, self.max_questions) if expected > 0 else self.max_questions
        logger.info("paginated_structuring_started", expected=expected, limit=limit)

        for start in range(1, limit + 1, self.page_size):
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                break

            end = min(start + self.page_size - 1, limit)
            result.chunks_attempted += 1
            try:
                items = await self.service.structure_range(text, start, end)
            except RateLimitedError as e:
                result.chunks_failed += 1
                result.rate_limited = True
                result.errors.append(
                    self._error(
                        f"Rate limited while structuring: {e}",
                        {"start": start, "end": end},
                        retryable=True,
                    )
                )
                break
            except LLMChainError as e:
                result.chunks_failed += 1
                result.errors.append(
                    self._error(f"Page structuring failed: {e}", {"start": start, "end": end})
                )
                continue

            page = _to_candidates(items, self.name)
            if not page:
                logger.debug("empty_page_stop", start=start, end=end)
                break
            batches.append(page)

        result.candidates = merge_candidates(batches)
        logger.info(
            "llm_structuring_complete",
            mode="paginated",
            pages=result.chunks_attempted,
            chunks_failed=result.chunks_failed,
            candidates=len(result.candidates),
        )
        return result
