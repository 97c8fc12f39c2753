"""Infer document metadata (institution, year, type) from exam file names."""

import re
from pathlib import Path

import structlog

from qbank_pipeline.models import DocumentMetadata, DocumentType

logger = structlog.get_logger(__name__)

# Order matters: UNIFESP and UNESP must be tested before USP.
KNOWN_INSTITUTIONS: list[tuple[tuple[str, ...], str]] = [
    (("unicamp",), "UNICAMP"),
    (("unifesp",), "UNIFESP"),
    (("unesp",), "UNESP"),
    (("iscmsp", "santa casa", "santa-casa", "santacasa"), "ISCMSP"),
    (("sus-sp", "sus_sp", "sussp"), "SUS-SP"),
    (("psu-mg", "psu_mg", "psumg", "fhemig"), "PSU-MG"),
    (("usp",), "USP"),
    (("ufes",), "UFES"),
    (("ufrj",), "UFRJ"),
    (("enare",), "ENARE"),
    (("amrigs",), "AMRIGS"),
    (("sirio", "hsl"), "HSL"),
    (("einstein",), "EINSTEIN"),
]

YEAR_PATTERN = re.compile(r"(?<!\d)((?:19|20)\d{2})(?!\d)")

TYPE_KEYWORDS: list[tuple[tuple[str, ...], DocumentType]] = [
    (("simulado",), DocumentType.SIMULATED_TEST),
    (("aula", "apostila", "resumo"), DocumentType.LESSON),
]


def infer_institution(name: str) -> str | None:
    lowered = name.lower()
    for needles, institution in KNOWN_INSTITUTIONS:
        if any(needle in lowered for needle in needles):
            return institution
    return None


def infer_year(name: str) -> int | None:
    match = YEAR_PATTERN.search(name)
    return int(match.group(1)) if match else None


def infer_doc_type(name: str) -> DocumentType:
    lowered = name.lower()
    for needles, doc_type in TYPE_KEYWORDS:
        if any(needle in lowered for needle in needles):
            return doc_type
    return DocumentType.EXAM


def infer_metadata(filename: str, title: str | None = None) -> DocumentMetadata:
    """Build document metadata from a file name.

    The title defaults to the file stem. Institution and year are left
    empty when the name carries no recognizable token.
    """
    stem = Path(filename).stem
    metadata = DocumentMetadata(
        title=title or stem or filename,
        doc_type=infer_doc_type(stem),
        institution=infer_institution(stem),
        year=infer_year(stem),
        source_file=Path(filename).name,
    )
    logger.debug(
        "metadata_inferred",
        filename=filename,
        institution=metadata.institution,
        year=metadata.year,
        doc_type=metadata.doc_type.value,
    )
    return metadata
