"""Unit tests for metadata inference from file names."""

import pytest

from qbank_pipeline.extraction.metadata import (
    infer_doc_type,
    infer_institution,
    infer_metadata,
    infer_year,
)
from qbank_pipeline.models import DocumentType


class TestInferInstitution:
    """Tests for institution detection."""

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("ENARE_2023_prova_objetiva", "ENARE"),
            ("unifesp-2022", "UNIFESP"),
            ("UNESP 2021 R1", "UNESP"),
            ("usp_sp_2020", "USP"),
            ("Santa Casa 2019", "ISCMSP"),
            ("prova_fhemig_2018", "PSU-MG"),
        ],
    )
    def test_known_institutions(self, name, expected):
        assert infer_institution(name) == expected

    def test_unknown_institution(self):
        assert infer_institution("prova_final") is None


class TestInferYear:
    """Tests for year detection."""

    def test_year_found(self):
        assert infer_year("ENARE_2023_caderno1") == 2023

    def test_longer_numbers_ignored(self):
        assert infer_year("protocolo_120234") is None

    def test_no_year(self):
        assert infer_year("prova") is None


class TestInferMetadata:
    """Tests for infer_metadata."""

    def test_full_metadata(self):
        metadata = infer_metadata("ENARE_2023_prova.pdf")

        assert metadata.title == "ENARE_2023_prova"
        assert metadata.institution == "ENARE"
        assert metadata.year == 2023
        assert metadata.doc_type == DocumentType.EXAM
        assert metadata.source_file == "ENARE_2023_prova.pdf"

    def test_explicit_title(self):
        metadata = infer_metadata("arquivo.pdf", title="USP 2022 - Clínica Médica")
        assert metadata.title == "USP 2022 - Clínica Médica"
        # Inference uses the file name, not the title
        assert metadata.institution is None

    def test_simulated_test(self):
        assert infer_doc_type("simulado_usp_2021") == DocumentType.SIMULATED_TEST

    def test_lesson(self):
        assert infer_doc_type("apostila_cardiologia") == DocumentType.LESSON
