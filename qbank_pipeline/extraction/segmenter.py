"""Deterministic, pattern-based segmentation of exam text into candidate questions."""

import re
from dataclasses import dataclass

import structlog

from qbank_pipeline.models import OPTION_LETTERS, CandidateQuestion

logger = structlog.get_logger(__name__)

# Question boundaries, tried in order. Group 1 is the question number.
QUESTION_MARKERS: list[tuple[str, re.Pattern]] = [
    (
        "explicit",
        re.compile(
            r"\b(?:quest[ãa]o|question)\s*(?:n[º°o.]\s*)?(\d{1,3})\b\s*[.:)\-–]*",
            re.IGNORECASE,
        ),
    ),
    ("numbered", re.compile(r"^[ \t]*(\d{1,3})[ \t]*[.)][ \t]+", re.MULTILINE)),
]

# Alternative boundaries, tried in order. Group 1 is the letter.
ALTERNATIVE_MARKERS: list[tuple[str, re.Pattern]] = [
    ("parenthesized", re.compile(r"\(([A-Ea-e])\)")),
    ("letter_paren", re.compile(r"(?:(?<=\s)|^)([A-Ea-e])\)", re.MULTILINE)),
    ("letter_period", re.compile(r"(?:(?<=\s)|^)([A-E])\.(?=\s)", re.MULTILINE)),
]

# Must open a line and carry a separator; "resposta a ..." in prose is not a key.
# Group 1 is a letter after "letra", group 2 a bare upper-case letter.
ANSWER_KEY_PATTERN = re.compile(
    r"^[ \t]*\(?[ \t]*(?i:gabarito|resposta(?:[ \t]+correta)?)[ \t]*[:\-][ \t]*"
    r"(?:(?i:letra)[ \t]+\(?([A-Ea-e])\)?|\(?([A-E])\)?)(?![\wÀ-ÿ])",
    re.MULTILINE,
)
COMMENT_PATTERN = re.compile(r"\bcoment[áa]rio\s*:", re.IGNORECASE)


@dataclass
class SegmenterConfig:
    """Thresholds for the deterministic segmenter."""

    min_questions: int = 3
    min_alternatives: int = 4
    min_stem_length: int = 30


def segment_questions(
    text: str,
    config: SegmenterConfig | None = None,
) -> list[CandidateQuestion]:
    """Split exam text into candidate questions.

    Question marker patterns are tried in order; a pattern is used only
    when it finds at least ``min_questions`` markers, and the first one
    that yields candidates wins. Blocks without ``min_alternatives``
    sequential alternatives are dropped. Nothing is invented: when no
    pattern fits, the result is empty.

    Args:
        text: Full document text.
        config: Segmenter thresholds.

    Returns:
        Candidate questions in document order.
    """
    config = config or SegmenterConfig()
    if not text or not text.strip():
        return []

    for pattern_name, pattern in QUESTION_MARKERS:
        markers = list(pattern.finditer(text))
        if len(markers) < config.min_questions:
            continue

        candidates = []
        for i, marker in enumerate(markers):
            end = markers[i + 1].start() if i + 1 < len(markers) else len(text)
            block = text[marker.end():end].strip()
            if len(block) < config.min_stem_length:
                continue

            candidate = _parse_block(int(marker.group(1)), block, config)
            if candidate is not None:
                candidates.append(candidate)

        logger.debug(
            "segmenter_pattern_tried",
            pattern=pattern_name,
            markers=len(markers),
            candidates=len(candidates),
        )
        if candidates:
            logger.info("segmentation_complete", pattern=pattern_name, candidates=len(candidates))
            return candidates

    logger.info("segmentation_found_nothing", chars=len(text))
    return []


def _parse_block(number: int, block: str, config: SegmenterConfig) -> CandidateQuestion | None:
    """Parse one question block into a candidate, or None without enough alternatives."""
    for _, pattern in ALTERNATIVE_MARKERS:
        chain = _find_alternative_chain(block, pattern)
        if len(chain) < config.min_alternatives:
            continue

        stem = _squash(block[: chain[0][1]])
        options: dict[str, str] = {}
        for j, (letter, _start, body_start) in enumerate(chain):
            body_end = chain[j + 1][1] if j + 1 < len(chain) else len(block)
            options[letter] = block[body_start:body_end]

        last_letter = chain[-1][0]
        options[last_letter], correct_option, explanation = _split_trailer(options[last_letter])

        return CandidateQuestion(
            number=number,
            stem=stem,
            option_a=_squash(options.get("A", "")),
            option_b=_squash(options.get("B", "")),
            option_c=_squash(options.get("C", "")),
            option_d=_squash(options.get("D", "")),
            option_e=_squash(options["E"]) if "E" in options else None,
            correct_option=correct_option,
            explanation=explanation,
            strategy="regex",
        )

    return None


def _find_alternative_chain(block: str, pattern: re.Pattern) -> list[tuple[str, int, int]]:
    """Find the longest run of sequential letter markers (A, B, C, ...).

    Each chain starts at an "A" marker and greedily takes the next
    expected letter. Among the longest chains the last one wins, so a
    stray "A." in the stem does not steal the real alternatives.

    Returns:
        List of (letter, marker_start, body_start) tuples.
    """
    matches = [(m.group(1).upper(), m.start(), m.end()) for m in pattern.finditer(block)]
    best: list[tuple[str, int, int]] = []

    for i, (letter, _, _) in enumerate(matches):
        if letter != "A":
            continue
        chain = [matches[i]]
        for candidate in matches[i + 1:]:
            if len(chain) == len(OPTION_LETTERS):
                break
            if candidate[0] == OPTION_LETTERS[len(chain)]:
                chain.append(candidate)
        if len(chain) >= len(best):
            best = chain

    return best


def _split_trailer(text: str) -> tuple[str, str | None, str | None]:
    """Lift an inline answer key and commentary out of the last alternative."""
    correct_option = None
    explanation = None
    cut = len(text)

    key_match = ANSWER_KEY_PATTERN.search(text)
    if key_match:
        correct_option = (key_match.group(1) or key_match.group(2)).upper()
        cut = min(cut, key_match.start())

    comment_match = COMMENT_PATTERN.search(text)
    if comment_match:
        explanation = _squash(text[comment_match.end():]) or None
        cut = min(cut, comment_match.start())

    return text[:cut], correct_option, explanation


def _squash(text: str) -> str:
    """Collapse whitespace runs (including line breaks) to single spaces."""
    return " ".join(text.split())
