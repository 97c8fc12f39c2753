"""Models for document sources, text extraction and chunking."""

from datetime import datetime

from pydantic import BaseModel, Field, model_validator

from .enums import DocumentType


class DocumentSource(BaseModel):
    """A document handed to the pipeline.

    Either raw PDF bytes or pre-extracted text must be present.
    """

    filename: str = Field(..., description="Original file name, used for metadata inference")
    data: bytes | None = Field(None, description="Raw PDF bytes")
    text: str | None = Field(None, description="Pre-extracted plain text")
    title: str | None = Field(None, description="Explicit document title (defaults to file stem)")

    @model_validator(mode="after")
    def _require_content(self) -> "DocumentSource":
        if self.data is None and self.text is None:
            raise ValueError("DocumentSource needs either data or text")
        return self


class DocumentMetadata(BaseModel):
    """Metadata of a source exam paper, inferred from its file name."""

    title: str = Field(..., min_length=1, description="Unique document title")
    doc_type: DocumentType = Field(DocumentType.EXAM, description="Kind of document")
    institution: str | None = Field(None, description="Exam institution (e.g. ENARE, USP)")
    year: int | None = Field(None, ge=1900, le=2100, description="Exam year")
    source_file: str | None = Field(None, description="Original file name")


class PageContent(BaseModel):
    """Content extracted from a single PDF page."""

    page_number: int = Field(..., ge=1, description="1-indexed page number")
    text: str = Field(..., description="Extracted text content")
    char_offset_start: int = Field(..., ge=0, description="Global character position start")
    char_offset_end: int = Field(..., ge=0, description="Global character position end")


class RawDocument(BaseModel):
    """Complete extracted document."""

    source_file: str = Field(..., description="Name or path of the source file")
    extraction_timestamp: datetime = Field(
        default_factory=datetime.utcnow, description="When extraction occurred"
    )
    total_pages: int = Field(..., ge=1, description="Total number of pages")
    pages: list[PageContent] = Field(..., description="Content per page")
    total_characters: int = Field(..., ge=0, description="Total character count")

    @property
    def full_text(self) -> str:
        """Get concatenated text from all pages."""
        return "\n".join(page.text for page in self.pages)


class DocumentChunk(BaseModel):
    """A chunk of document text for LLM processing."""

    chunk_id: str = Field(..., description="Unique identifier for this chunk")
    chunk_index: int = Field(..., ge=0, description="Order index of chunk")
    text: str = Field(..., description="Chunk text content")
    start_page: int = Field(..., ge=1, description="Starting page number")
    end_page: int = Field(..., ge=1, description="Ending page number")
    char_offset_start: int = Field(..., ge=0, description="Global character position start")
    char_offset_end: int = Field(..., ge=0, description="Global character position end")
    token_count: int = Field(..., ge=0, description="Estimated token count")
    overlap_with_previous: int = Field(
        default=0, ge=0, description="Characters overlapping with previous chunk"
    )
    overlap_with_next: int = Field(
        default=0, ge=0, description="Characters overlapping with next chunk"
    )
