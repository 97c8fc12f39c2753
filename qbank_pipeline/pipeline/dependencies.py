"""Wiring of the collaborators shared by every document in a run."""

import asyncio
from dataclasses import dataclass, field

from qbank_pipeline.config import Settings, get_settings
from qbank_pipeline.extraction.chunker import ChunkingConfig
from qbank_pipeline.extraction.segmenter import SegmenterConfig
from qbank_pipeline.llm import LLMService
from qbank_pipeline.quality import QualityGateConfig
from qbank_pipeline.storage import QuestionRepository
from qbank_pipeline.structuring import (
    LLMStructuringStrategy,
    RegexStructuringStrategy,
    StructuringSelector,
)

from .stages import AnswerKeyResolver, Auditor, AutoFixer, ConsistencyChecker, QuestionPersistor


@dataclass
class PipelineDependencies:
    """Everything the per-document graph needs, built once per run."""

    settings: Settings
    repository: QuestionRepository
    llm_service: LLMService
    selector: StructuringSelector
    gate_config: QualityGateConfig
    persistor: QuestionPersistor
    auditor: Auditor
    fixer: AutoFixer
    answer_keys: AnswerKeyResolver
    consistency: ConsistencyChecker
    auto_fix: bool = True
    resolve_answer_keys: bool = False
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)


def build_dependencies(
    settings: Settings | None = None,
    repository: QuestionRepository | None = None,
    llm_service: LLMService | None = None,
    strategy: str | None = None,
    mode: str | None = None,
    auto_fix: bool | None = None,
    resolve_answer_keys: bool | None = None,
) -> PipelineDependencies:
    """Build pipeline collaborators from settings, with optional overrides.

    Args:
        settings: Settings to use; cached settings if not provided.
        repository: Store to use; built from ``settings.database_url`` if not provided.
        llm_service: LLM service to use; built from settings if not provided.
        strategy: Structuring selection mode (auto, regex, llm).
        mode: LLM extraction mode (chunked, paginated).
        auto_fix: Whether audit findings are sent for repair.
        resolve_answer_keys: Whether defaulted answer keys are sent to the LLM after a run.
    """
    settings = settings or get_settings()
    repository = repository or QuestionRepository.from_url(settings.database_url)
    llm_service = llm_service or LLMService.from_settings(settings)
    gate_config = QualityGateConfig.from_settings(settings)

    regex_strategy = RegexStructuringStrategy(
        SegmenterConfig(
            min_questions=settings.segmenter_min_questions,
            min_alternatives=settings.segmenter_min_alternatives,
            min_stem_length=settings.gate_min_stem_length,
        )
    )
    llm_strategy = LLMStructuringStrategy(
        llm_service,
        mode=mode or settings.llm_extraction_mode,
        chunking=ChunkingConfig(
            target_tokens=settings.chunk_target_tokens,
            overlap_tokens=settings.chunk_overlap_tokens,
            min_chunk_tokens=settings.chunk_min_tokens,
            max_chunk_tokens=settings.chunk_max_tokens,
        ),
        page_size=settings.llm_page_size,
        max_questions=settings.llm_max_questions,
    )
    selector = StructuringSelector(
        [regex_strategy, llm_strategy], mode=strategy or settings.structuring_strategy
    )

    return PipelineDependencies(
        settings=settings,
        repository=repository,
        llm_service=llm_service,
        selector=selector,
        gate_config=gate_config,
        persistor=QuestionPersistor(repository, fuzzy_threshold=settings.dedup_fuzzy_threshold),
        auditor=Auditor(repository, gate_config),
        fixer=AutoFixer(
            repository,
            llm_service,
            gate_config,
            batch_size=settings.repair_batch_size,
            context_chars=settings.repair_context_chars,
        ),
        answer_keys=AnswerKeyResolver(
            repository, llm_service, batch_size=settings.answer_key_batch_size
        ),
        consistency=ConsistencyChecker(repository),
        auto_fix=settings.auto_fix_enabled if auto_fix is None else auto_fix,
        resolve_answer_keys=(
            settings.answer_key_resolution_enabled
            if resolve_answer_keys is None
            else resolve_answer_keys
        ),
    )
