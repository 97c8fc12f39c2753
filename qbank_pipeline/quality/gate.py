"""Quality gate: classify candidate questions as accepted or rejected.

Rules run in order and the first failing rule decides the verdict:

1. stem empty or shorter than ``min_stem_length`` -> STEM_TOO_SHORT
2. stem starts with a lower-case letter -> STEM_TRUNCATED
3. any of alternatives A-D empty -> ALTERNATIVES_MISSING
4. two alternatives identical or near-identical -> ALTERNATIVES_SIMILAR
5. answer key missing, outside A-E or pointing at an empty alternative
   -> normalized to the default key, or ANSWER_KEY_INVALID under the
   ``reject`` policy

Rules 1-4 are shared with the auditor and the repair re-check through
``check_question_fields``.
"""

import re
from dataclasses import dataclass
from itertools import combinations
from typing import Literal

import structlog

from qbank_pipeline.config import Settings
from qbank_pipeline.models import (
    MANDATORY_LETTERS,
    OPTION_LETTERS,
    CandidateQuestion,
    DefectReason,
    GateResult,
    GateVerdict,
)

logger = structlog.get_logger(__name__)

TRAILING_PUNCTUATION = re.compile(r"[.,;:!?]+$")


@dataclass
class QualityGateConfig:
    """Thresholds and answer-key policy for the quality gate."""

    min_stem_length: int = 30
    similarity_ratio: float = 0.8
    similarity_min_length: int = 10
    answer_key_policy: Literal["normalize", "reject"] = "normalize"
    default_answer_key: str = "A"

    @classmethod
    def from_settings(cls, settings: Settings) -> "QualityGateConfig":
        return cls(
            min_stem_length=settings.gate_min_stem_length,
            similarity_ratio=settings.gate_similarity_ratio,
            similarity_min_length=settings.gate_similarity_min_length,
            answer_key_policy=settings.answer_key_policy,
            default_answer_key=settings.default_answer_key.upper(),
        )


def normalize_option(text: str) -> str:
    """Lower-case, trim and drop trailing punctuation."""
    return TRAILING_PUNCTUATION.sub("", text.strip().lower()).strip()


def options_similar(a: str, b: str, config: QualityGateConfig | None = None) -> bool:
    """True if two alternatives are identical or one contains most of the other."""
    config = config or QualityGateConfig()
    a, b = normalize_option(a), normalize_option(b)
    if a == b:
        return True

    shorter, longer = (a, b) if len(a) <= len(b) else (b, a)
    if len(shorter) <= config.similarity_min_length:
        return False
    prefix = shorter[: int(len(shorter) * config.similarity_ratio)]
    return prefix in longer


def find_similar_pair(
    options: list[str | None],
    config: QualityGateConfig | None = None,
) -> str | None:
    """Return a description of the first similar pair of present alternatives, or None."""
    present = [
        (OPTION_LETTERS[i], text)
        for i, text in enumerate(options[: len(OPTION_LETTERS)])
        if text and text.strip()
    ]
    for (letter_a, text_a), (letter_b, text_b) in combinations(present, 2):
        if options_similar(text_a, text_b, config):
            return f"{letter_a} and {letter_b} are similar"
    return None


def check_question_fields(
    stem: str | None,
    options: list[str | None],
    config: QualityGateConfig | None = None,
) -> tuple[DefectReason, str] | None:
    """Apply gate rules 1-4 to a stem and its alternatives (A-E order).

    Returns:
        (reason, detail) for the first failing rule, or None if all pass.
    """
    config = config or QualityGateConfig()
    stem = (stem or "").strip()

    if len(stem) < config.min_stem_length:
        return DefectReason.STEM_TOO_SHORT, f"stem has {len(stem)} characters"

    if stem[0].islower():
        return DefectReason.STEM_TRUNCATED, f"stem starts with {stem[:20]!r}"

    padded = list(options) + [None] * (len(OPTION_LETTERS) - len(options))
    missing = [
        letter
        for letter, text in zip(MANDATORY_LETTERS, padded)
        if not text or not text.strip()
    ]
    if missing:
        return DefectReason.ALTERNATIVES_MISSING, f"missing {', '.join(missing)}"

    similar = find_similar_pair(padded, config)
    if similar:
        return DefectReason.ALTERNATIVES_SIMILAR, similar

    return None


def evaluate(candidate: CandidateQuestion, config: QualityGateConfig | None = None) -> GateResult:
    """Classify one candidate.

    Accepted candidates come back with a valid answer key; under the
    ``normalize`` policy an invalid key is replaced by the default key
    and ``answer_key_normalized`` is set.
    """
    config = config or QualityGateConfig()

    defect = check_question_fields(candidate.stem, candidate.options, config)
    if defect:
        reason, detail = defect
        return GateResult(
            verdict=GateVerdict.REJECTED, reason=reason, detail=detail, candidate=candidate
        )

    key = candidate.correct_option
    option_text = candidate.option_for(key) if key else None
    if option_text and option_text.strip():
        return GateResult(verdict=GateVerdict.ACCEPTED, candidate=candidate)

    detail = f"answer key {key!r} does not reference a present alternative"
    if config.answer_key_policy == "reject":
        return GateResult(
            verdict=GateVerdict.REJECTED,
            reason=DefectReason.ANSWER_KEY_INVALID,
            detail=detail,
            candidate=candidate,
        )

    logger.debug(
        "answer_key_normalized",
        number=candidate.number,
        original=key,
        normalized=config.default_answer_key,
    )
    return GateResult(
        verdict=GateVerdict.ACCEPTED,
        detail=detail,
        candidate=candidate.model_copy(
            update={"correct_option": config.default_answer_key, "answer_key_normalized": True}
        ),
        answer_key_normalized=True,
    )
