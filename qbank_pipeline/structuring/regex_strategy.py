"""Structuring strategy backed by the deterministic segmenter."""

import asyncio

from qbank_pipeline.extraction.segmenter import SegmenterConfig, segment_questions

from .base import StructuringResult, StructuringStrategy


class RegexStructuringStrategy(StructuringStrategy):
    """Pattern-based segmentation; no external calls."""

    name = "regex"

    def __init__(self, config: SegmenterConfig | None = None):
        self.config = config or SegmenterConfig()

    async def structure(
        self,
        text: str,
        cancel_event: asyncio.Event | None = None,
    ) -> StructuringResult:
        if cancel_event is not None and cancel_event.is_set():
            return StructuringResult(strategy=self.name, cancelled=True)

        candidates = segment_questions(text, self.config)
        return StructuringResult(candidates=candidates, strategy=self.name, chunks_attempted=1)
