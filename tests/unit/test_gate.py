"""Unit tests for the quality gate."""

import pytest

from qbank_pipeline.models import CandidateQuestion, DefectReason, GateVerdict
from qbank_pipeline.quality import (
    QualityGateConfig,
    check_question_fields,
    evaluate,
    find_similar_pair,
    normalize_option,
    options_similar,
)

STEM = "Paciente de 25 anos apresenta dor em fossa ilíaca direita há 24 horas."


def _candidate(**overrides) -> CandidateQuestion:
    fields = {
        "number": 1,
        "stem": STEM,
        "option_a": "Apendicite aguda",
        "option_b": "Colecistite calculosa",
        "option_c": "Pancreatite biliar",
        "option_d": "Diverticulite de sigmoide",
        "correct_option": "A",
    }
    fields.update(overrides)
    return CandidateQuestion(**fields)


class TestOptionSimilarity:
    """Tests for alternative similarity."""

    def test_normalize_option(self):
        assert normalize_option("  Apendicite Aguda.  ") == "apendicite aguda"

    def test_identical_after_normalization(self):
        assert options_similar("Dengue", "dengue.")

    def test_prefix_contained(self):
        assert options_similar(
            "Insuficiência cardíaca congestiva",
            "Insuficiência cardíaca congestiva descompensada",
        )

    def test_short_options_only_compared_for_equality(self):
        assert not options_similar("Dengue", "Dengue grave")

    def test_different_options(self):
        assert not options_similar("Apendicite aguda", "Colecistite calculosa")

    def test_find_similar_pair_reports_letters(self):
        options = ["Sarampo", "Rubéola", "Hipertensão arterial sistêmica", "Hipertensão arterial sistêmica."]
        assert find_similar_pair(options) == "C and D are similar"

    def test_find_similar_pair_ignores_missing_e(self):
        assert find_similar_pair(["um", "dois", "três", "quatro", None]) is None


class TestCheckQuestionFields:
    """Tests for gate rules 1-4."""

    def test_valid_question(self):
        candidate = _candidate()
        assert check_question_fields(candidate.stem, candidate.options) is None

    def test_stem_too_short(self):
        reason, _ = check_question_fields("Qual o diagnóstico?", _candidate().options)
        assert reason == DefectReason.STEM_TOO_SHORT

    def test_empty_stem(self):
        reason, _ = check_question_fields("", _candidate().options)
        assert reason == DefectReason.STEM_TOO_SHORT

    def test_stem_truncated(self):
        reason, _ = check_question_fields("dor em fossa ilíaca direita há 24 horas e febre.", _candidate().options)
        assert reason == DefectReason.STEM_TRUNCATED

    def test_stem_starting_with_digit_not_truncated(self):
        stem = "25 anos, sexo masculino, com dor em fossa ilíaca direita há 24 horas."
        assert check_question_fields(stem, _candidate().options) is None

    def test_alternatives_missing(self):
        candidate = _candidate(option_c="   ")
        reason, detail = check_question_fields(candidate.stem, candidate.options)
        assert reason == DefectReason.ALTERNATIVES_MISSING
        assert "C" in detail

    def test_alternatives_similar(self):
        candidate = _candidate(option_d="Apendicite aguda.")
        reason, _ = check_question_fields(candidate.stem, candidate.options)
        assert reason == DefectReason.ALTERNATIVES_SIMILAR

    def test_rules_apply_in_order(self):
        # Short stem and missing alternatives: the stem rule wins
        reason, _ = check_question_fields("curto", ["", "", "", ""])
        assert reason == DefectReason.STEM_TOO_SHORT


class TestEvaluate:
    """Tests for candidate classification."""

    def test_accepts_valid_candidate(self):
        result = evaluate(_candidate())
        assert result.verdict == GateVerdict.ACCEPTED
        assert result.accepted
        assert not result.answer_key_normalized

    def test_rejects_with_reason(self):
        result = evaluate(_candidate(stem="Curto demais"))
        assert result.verdict == GateVerdict.REJECTED
        assert result.reason == DefectReason.STEM_TOO_SHORT

    @pytest.mark.parametrize("key", ["E", None, "F"])
    def test_invalid_key_normalized(self, key):
        result = evaluate(_candidate(correct_option=key))

        assert result.accepted
        assert result.answer_key_normalized
        assert result.candidate.correct_option == "A"
        assert result.candidate.answer_key_normalized is True

    @pytest.mark.parametrize("key", ["Letra C", "(C)", "C)"])
    def test_decorated_key_kept(self, key):
        result = evaluate(_candidate(correct_option=key))

        assert result.accepted
        assert not result.answer_key_normalized
        assert result.candidate.correct_option == "C"
        assert result.candidate.answer_key_normalized is False

    def test_key_e_valid_when_fifth_alternative_present(self):
        result = evaluate(_candidate(option_e="Adenite mesentérica", correct_option="E"))

        assert result.accepted
        assert not result.answer_key_normalized
        assert result.candidate.correct_option == "E"

    def test_invalid_key_rejected_under_reject_policy(self):
        config = QualityGateConfig(answer_key_policy="reject")
        result = evaluate(_candidate(correct_option="E"), config)

        assert result.verdict == GateVerdict.REJECTED
        assert result.reason == DefectReason.ANSWER_KEY_INVALID

    def test_custom_default_key(self):
        config = QualityGateConfig(default_answer_key="B")
        result = evaluate(_candidate(correct_option=None), config)
        assert result.candidate.correct_option == "B"

    def test_original_candidate_untouched(self):
        candidate = _candidate(correct_option="E")
        evaluate(candidate)
        assert candidate.correct_option == "E"
