"""Text extraction, metadata inference, chunking and segmentation."""

from .chunker import ChunkingConfig, chunk_document, chunk_text, count_tokens
from .metadata import infer_metadata
from .pdf_extractor import TextExtractionError, extract_pdf, extract_text
from .segmenter import SegmenterConfig, segment_questions

__all__ = [
    "extract_pdf",
    "extract_text",
    "TextExtractionError",
    "infer_metadata",
    "ChunkingConfig",
    "chunk_document",
    "chunk_text",
    "count_tokens",
    "SegmenterConfig",
    "segment_questions",
]
