"""Text extraction from exam PDFs (and plain-text dumps) using pdfplumber."""

import io
from datetime import datetime
from pathlib import Path

import pdfplumber
import structlog

from qbank_pipeline.models import PageContent, RawDocument

logger = structlog.get_logger(__name__)

MIN_DOCUMENT_CHARS = 50
TEXT_SUFFIXES = (".txt",)


class TextExtractionError(Exception):
    """Error during text extraction."""

    pass


def extract_pdf(source: str | Path | bytes, source_name: str | None = None) -> RawDocument:
    """Extract text content from a PDF file or raw PDF bytes.

    Extracts text from each page while preserving page boundaries
    and tracking character offsets. Paths ending in ``.txt`` are read
    as a single page.

    Args:
        source: Path to the file, or the raw PDF bytes.
        source_name: Name recorded on the document when ``source`` is bytes.

    Returns:
        RawDocument with extracted content.

    Raises:
        TextExtractionError: If the file is missing, unreadable, or holds
            too little text to contain questions.
    """
    if isinstance(source, bytes):
        name = source_name or "<bytes>"
        logger.info("extracting_pdf", source=name, size=len(source))
        page_texts = _read_pdf_pages(io.BytesIO(source), name)
    else:
        path = Path(source)
        name = source_name or str(path)
        if not path.exists():
            raise TextExtractionError(f"File not found: {path}")

        suffix = path.suffix.lower()
        logger.info("extracting_pdf", source=name)
        if suffix in TEXT_SUFFIXES:
            try:
                page_texts = [path.read_text(encoding="utf-8", errors="replace")]
            except OSError as e:
                raise TextExtractionError(f"Failed to read {path}: {e}") from e
        elif suffix == ".pdf":
            page_texts = _read_pdf_pages(path, name)
        else:
            raise TextExtractionError(f"Unsupported file type: {path}")

    return build_raw_document(page_texts, name)


def extract_text(text: str, source_name: str) -> RawDocument:
    """Wrap pre-extracted text as a single-page document."""
    return build_raw_document([text], source_name)


def build_raw_document(page_texts: list[str], source_name: str) -> RawDocument:
    """Clean page texts and assemble a RawDocument with offsets.

    Raises:
        TextExtractionError: If the cleaned text is shorter than
            ``MIN_DOCUMENT_CHARS``.
    """
    pages: list[PageContent] = []
    char_offset = 0

    for page_num, raw_text in enumerate(page_texts, start=1):
        text = _clean_page_text(raw_text)
        pages.append(
            PageContent(
                page_number=page_num,
                text=text,
                char_offset_start=char_offset,
                char_offset_end=char_offset + len(text),
            )
        )
        # +1 for the newline joining pages
        char_offset += len(text) + 1

    total_chars = sum(len(p.text) for p in pages)
    if total_chars < MIN_DOCUMENT_CHARS:
        logger.warning("insufficient_text", source=source_name, chars=total_chars)
        raise TextExtractionError(
            f"Insufficient text in {source_name}: {total_chars} characters extracted"
        )

    raw_doc = RawDocument(
        source_file=source_name,
        extraction_timestamp=datetime.utcnow(),
        total_pages=len(pages),
        pages=pages,
        total_characters=total_chars,
    )

    logger.info(
        "text_extraction_complete",
        source=source_name,
        pages=raw_doc.total_pages,
        total_chars=raw_doc.total_characters,
    )
    return raw_doc


def _read_pdf_pages(stream, name: str) -> list[str]:
    try:
        with pdfplumber.open(stream) as pdf:
            logger.debug("pdf_opened", source=name, total_pages=len(pdf.pages))
            return [page.extract_text() or "" for page in pdf.pages]
    except Exception as e:
        logger.error("pdf_extraction_failed", source=name, error=str(e))
        raise TextExtractionError(f"Failed to extract PDF {name}: {e}") from e


def _clean_page_text(text: str) -> str:
    """Clean extracted page text.

    - Normalizes runs of spaces to a single space
    - Strips trailing whitespace from lines
    - Collapses three or more newlines into a paragraph break
    """
    if not text:
        return ""

    lines = []
    for line in text.replace("\r\n", "\n").split("\n"):
        line = line.rstrip()
        while "  " in line:
            line = line.replace("  ", " ")
        lines.append(line)

    result = "\n".join(lines)
    while "\n\n\n" in result:
        result = result.replace("\n\n\n", "\n\n")

    return result.strip()

