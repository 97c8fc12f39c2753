"""Structuring strategy interface and availability-based selection."""

import asyncio
from abc import ABC, abstractmethod
from typing import Literal

import structlog
from pydantic import BaseModel, Field

from qbank_pipeline.models import CandidateQuestion, ProcessingError

logger = structlog.get_logger(__name__)

SelectionMode = Literal["auto", "regex", "llm"]


class StructuringResult(BaseModel):
    """Candidates produced by one strategy for one document."""

    candidates: list[CandidateQuestion] = Field(default_factory=list)
    strategy: str = Field(..., description="Name of the strategy that produced the result")
    chunks_attempted: int = Field(default=0, ge=0)
    chunks_failed: int = Field(default=0, ge=0)
    errors: list[ProcessingError] = Field(default_factory=list)
    rate_limited: bool = False
    cancelled: bool = False


class StructuringStrategy(ABC):
    """Turns document text into candidate questions."""

    name: str = "base"

    def is_available(self) -> bool:
        return True

    @abstractmethod
    async def structure(
        self,
        text: str,
        cancel_event: asyncio.Event | None = None,
    ) -> StructuringResult:
        """Produce candidates from the full document text."""


class StructuringSelector:
    """Pick a structuring strategy by availability.

    Strategies are held in preference order. In ``auto`` mode the first
    available strategy runs and the next one is tried whenever the
    previous produced no candidates. In any other mode only the strategy
    with that name runs.
    """

    def __init__(self, strategies: list[StructuringStrategy], mode: SelectionMode = "auto"):
        self.strategies = strategies
        self.mode = mode

    def candidates_for_mode(self) -> list[StructuringStrategy]:
        if self.mode == "auto":
            pool = self.strategies
        else:
            pool = [s for s in self.strategies if s.name == self.mode]
        return [s for s in pool if s.is_available()]

    async def structure(
        self,
        text: str,
        cancel_event: asyncio.Event | None = None,
    ) -> StructuringResult:
        strategies = self.candidates_for_mode()
        if not strategies:
            logger.warning("no_structuring_strategy_available", mode=self.mode)
            return StructuringResult(strategy="none")

        errors = []
        result = None
        for strategy in strategies:
            if cancel_event is not None and cancel_event.is_set():
                return StructuringResult(strategy=strategy.name, errors=errors, cancelled=True)

            result = await strategy.structure(text, cancel_event=cancel_event)
            errors.extend(result.errors)
            logger.info(
                "structuring_strategy_finished",
                strategy=strategy.name,
                candidates=len(result.candidates),
                chunks_failed=result.chunks_failed,
            )
            if result.candidates or result.cancelled:
                break

        return result.model_copy(update={"errors": errors})
