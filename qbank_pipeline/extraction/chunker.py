"""Question-aware text chunking for LLM structuring."""

import re
import uuid
from collections.abc import Callable
from dataclasses import dataclass

import structlog
import tiktoken

from qbank_pipeline.models import DocumentChunk, PageContent, RawDocument

logger = structlog.get_logger(__name__)

# Start of a question block ("QUESTÃO 12", "Questão 3 -", "12." at line start)
QUESTION_START_PATTERN = re.compile(
    r"^[ \t]*(?:quest[ãa]o\s*\d{1,3}|question\s*\d{1,3}|\d{1,3}\s*[.)]\s)",
    re.IGNORECASE | re.MULTILINE,
)


@dataclass
class ChunkingConfig:
    """Configuration for document chunking."""

    target_tokens: int = 3000  # ~12000 characters
    overlap_tokens: int = 200  # ~800 characters
    min_chunk_tokens: int = 500
    max_chunk_tokens: int = 4000
    encoding_name: str = "cl100k_base"


def get_token_counter(encoding_name: str = "cl100k_base") -> Callable[[str], int]:
    """Return a token counting function.

    Falls back to a 4-characters-per-token estimate when the tiktoken
    encoding cannot be loaded (e.g. offline without a cached BPE file).
    """
    try:
        encoding = tiktoken.get_encoding(encoding_name)
    except Exception as e:
        logger.warning("tiktoken_encoding_unavailable", requested=encoding_name, error=str(e))
        return lambda text: len(text) // 4

    return lambda text: len(encoding.encode(text))


def chunk_document(
    doc: RawDocument,
    config: ChunkingConfig | None = None,
) -> list[DocumentChunk]:
    """Chunk a document for LLM processing.

    Split points are ranked so chunks end right before a question
    marker whenever possible, then at paragraph, sentence and clause
    boundaries. Consecutive chunks overlap so a question cut at a
    boundary is seen whole by at least one call.

    Args:
        doc: Raw document to chunk.
        config: Chunking configuration.

    Returns:
        List of document chunks.
    """
    config = config or ChunkingConfig()
    count_tokens = get_token_counter(config.encoding_name)

    full_text, page_boundaries = _build_full_text_with_boundaries(doc)

    logger.info(
        "chunking_document",
        source=doc.source_file,
        total_chars=len(full_text),
        target_tokens=config.target_tokens,
    )

    split_points = _find_split_points(full_text)

    chunks = _build_chunks(
        full_text=full_text,
        page_boundaries=page_boundaries,
        split_points=split_points,
        count_tokens=count_tokens,
        config=config,
    )

    logger.info("chunking_complete", num_chunks=len(chunks))

    return chunks


def chunk_text(text: str, config: ChunkingConfig | None = None) -> list[DocumentChunk]:
    """Chunk plain text that has no page structure."""
    doc = RawDocument(
        source_file="<text>",
        total_pages=1,
        pages=[
            PageContent(page_number=1, text=text, char_offset_start=0, char_offset_end=len(text))
        ],
        total_characters=len(text),
    )
    return chunk_document(doc, config)


def _build_full_text_with_boundaries(
    doc: RawDocument,
) -> tuple[str, list[tuple[int, int, int]]]:
    """Build full text and track (page_num, start_offset, end_offset) per page."""
    text_parts = []
    page_boundaries = []
    current_offset = 0

    for i, page in enumerate(doc.pages):
        if i > 0:
            text_parts.append("\n")
            current_offset += 1

        start = current_offset
        text_parts.append(page.text)
        current_offset += len(page.text)
        page_boundaries.append((page.page_number, start, current_offset))

    return "".join(text_parts), page_boundaries


def _find_split_points(text: str) -> list[tuple[int, int]]:
    """Find potential split points in text with priority scores.

    Priority levels:
    - 100: Right before a question marker
    - 90: Paragraph boundary (double newline)
    - 50: Sentence boundary
    - 20: Clause boundary (comma, semicolon)
    """
    split_points: list[tuple[int, int]] = []

    for match in QUESTION_START_PATTERN.finditer(text):
        if match.start() > 0:
            split_points.append((match.start(), 100))

    for match in re.finditer(r"\n\n", text):
        split_points.append((match.end(), 90))

    for match in re.finditer(r"[.!?]\s+(?=[A-ZÀ-Ý])", text):
        split_points.append((match.end(), 50))

    for match in re.finditer(r"[,;]\s+", text):
        split_points.append((match.end(), 20))

    split_points.sort(key=lambda x: x[0])

    return split_points


def _build_chunks(
    full_text: str,
    page_boundaries: list[tuple[int, int, int]],
    split_points: list[tuple[int, int]],
    count_tokens: Callable[[str], int],
    config: ChunkingConfig,
) -> list[DocumentChunk]:
    chunks: list[DocumentChunk] = []
    current_start = 0
    chunk_index = 0

    while current_start < len(full_text):
        target_end = _find_chunk_end(
            text=full_text,
            start=current_start,
            split_points=split_points,
            count_tokens=count_tokens,
            config=config,
        )

        text = full_text[current_start:target_end].strip()
        if not text:
            break

        token_count = count_tokens(text)
        start_page, end_page = _get_page_range(current_start, target_end, page_boundaries)

        overlap_prev = 0
        if chunks:
            overlap_prev = max(chunks[-1].char_offset_end - current_start, 0)
            chunks[-1].overlap_with_next = overlap_prev

        chunks.append(
            DocumentChunk(
                chunk_id=f"chunk_{uuid.uuid4().hex[:8]}",
                chunk_index=chunk_index,
                text=text,
                start_page=start_page,
                end_page=end_page,
                char_offset_start=current_start,
                char_offset_end=target_end,
                token_count=token_count,
                overlap_with_previous=overlap_prev,
            )
        )

        logger.debug(
            "chunk_created",
            index=chunk_index,
            tokens=token_count,
            pages=f"{start_page}-{end_page}",
        )

        if target_end >= len(full_text):
            break

        next_start = target_end - _tokens_to_chars(config.overlap_tokens)
        if next_start <= current_start:
            next_start = target_end

        next_start = _find_nearest_split_point(next_start, split_points, full_text)
        # The next chunk must start past the current one and leave no gap
        if next_start <= current_start or next_start > target_end:
            next_start = target_end

        current_start = min(next_start, len(full_text))
        chunk_index += 1

    return chunks


def _find_chunk_end(
    text: str,
    start: int,
    split_points: list[tuple[int, int]],
    count_tokens: Callable[[str], int],
    config: ChunkingConfig,
) -> int:
    """Find the end position for a chunk starting at ``start``.

    Picks the highest-priority split point between 80% of the target
    size and the maximum size, closest to the target.
    """
    target_chars = _tokens_to_chars(config.target_tokens)
    max_chars = _tokens_to_chars(config.max_chunk_tokens)

    ideal_end = min(start + target_chars, len(text))
    max_end = min(start + max_chars, len(text))

    if count_tokens(text[start:]) <= config.max_chunk_tokens:
        return len(text)

    min_acceptable = start + int(target_chars * 0.8)
    candidates = [
        (pos, priority) for pos, priority in split_points if min_acceptable <= pos <= max_end
    ]
    if candidates:
        candidates.sort(key=lambda x: (-x[1], abs(x[0] - ideal_end)))
        return candidates[0][0]

    fallback_candidates = [
        (pos, priority) for pos, priority in split_points if start < pos <= max_end
    ]
    if fallback_candidates:
        fallback_candidates.sort(key=lambda x: (-x[1], -x[0]))
        return fallback_candidates[0][0]

    return max_end


def _find_nearest_split_point(
    position: int,
    split_points: list[tuple[int, int]],
    text: str,
    max_distance: int = 500,
) -> int:
    """Find the best split point at or after ``position`` within ``max_distance``."""
    candidates = [
        (pos, priority)
        for pos, priority in split_points
        if position <= pos <= position + max_distance
    ]

    if candidates:
        candidates.sort(key=lambda x: (-x[1], abs(x[0] - position)))
        return candidates[0][0]

    return min(position, len(text))


def _get_page_range(
    start_offset: int,
    end_offset: int,
    page_boundaries: list[tuple[int, int, int]],
) -> tuple[int, int]:
    start_page = 1
    end_page = 1

    for page_num, page_start, page_end in page_boundaries:
        if page_start <= start_offset < page_end:
            start_page = page_num
        if page_start < end_offset <= page_end or end_offset > page_end:
            end_page = page_num

    return start_page, max(start_page, end_page)


def _tokens_to_chars(tokens: int) -> int:
    """Estimate character count from token count (~4 characters per token)."""
    return tokens * 4


def count_tokens(text: str, encoding_name: str = "cl100k_base") -> int:
    """Count tokens in text."""
    return get_token_counter(encoding_name)(text)
