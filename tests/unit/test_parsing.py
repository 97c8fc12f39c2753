"""Unit tests for LLM response parsing."""

import pytest

from qbank_pipeline.llm.parsing import (
    LLMResponseParseError,
    parse_count,
    parse_json_array,
    parse_json_object,
    repair_truncated_array,
)


class TestParseJsonArray:
    """Tests for parse_json_array."""

    def test_plain_array(self):
        items = parse_json_array('[{"stem": "Enunciado um"}, {"stem": "Enunciado dois"}]')
        assert [i["stem"] for i in items] == ["Enunciado um", "Enunciado dois"]

    def test_code_fence(self):
        response = 'Aqui está:\n```json\n[{"stem": "Enunciado"}]\n```'
        assert parse_json_array(response) == [{"stem": "Enunciado"}]

    def test_preamble_before_array(self):
        response = 'Identifiquei as questões abaixo.\n[{"stem": "Enunciado", "option_a": "um"}]\nFim.'
        assert parse_json_array(response)[0]["option_a"] == "um"

    def test_wrapper_object(self):
        response = '{"questions": [{"stem": "Enunciado"}], "total": 1}'
        assert parse_json_array(response) == [{"stem": "Enunciado"}]

    def test_portuguese_wrapper(self):
        response = '{"questoes": [{"texto_questao": "Enunciado"}]}'
        assert parse_json_array(response) == [{"texto_questao": "Enunciado"}]

    def test_single_question_object(self):
        response = '{"stem": "Enunciado", "option_a": "um"}'
        assert parse_json_array(response) == [{"stem": "Enunciado", "option_a": "um"}]

    def test_trailing_commas(self):
        response = '[{"stem": "Enunciado", "option_a": "um",},]'
        assert parse_json_array(response) == [{"stem": "Enunciado", "option_a": "um"}]

    def test_brackets_inside_strings(self):
        response = 'Resultado: [{"stem": "Valor [normal] até 5 {mg}"}]'
        assert parse_json_array(response)[0]["stem"] == "Valor [normal] até 5 {mg}"

    def test_non_dict_items_dropped(self):
        assert parse_json_array('[{"stem": "Enunciado"}, "lixo", 3]') == [{"stem": "Enunciado"}]

    def test_empty_array(self):
        assert parse_json_array("[]") == []

    def test_truncated_array_recovered(self):
        response = '[{"stem": "Primeira"}, {"stem": "Segunda"}, {"stem": "Terc'
        items = parse_json_array(response)
        assert [i["stem"] for i in items] == ["Primeira", "Segunda"]

    def test_empty_response(self):
        with pytest.raises(LLMResponseParseError):
            parse_json_array("   ")

    def test_garbage(self):
        with pytest.raises(LLMResponseParseError):
            parse_json_array("Não encontrei nenhuma questão neste trecho.")


class TestRepairTruncatedArray:
    """Tests for truncated array repair."""

    def test_keeps_complete_elements(self):
        repaired = repair_truncated_array('[{"a": 1}, {"b": [1, 2]}, {"c": ')
        assert repaired == '[{"a": 1}, {"b": [1, 2]}]'

    def test_complete_array_returned_as_is(self):
        assert repair_truncated_array('xx [{"a": 1}] yy') == '[{"a": 1}]'

    def test_nothing_complete(self):
        assert repair_truncated_array('[{"a": ') is None

    def test_no_array(self):
        assert repair_truncated_array('{"a": 1}') is None


class TestParseJsonObject:
    """Tests for parse_json_object."""

    def test_object_with_preamble(self):
        response = 'Segue a correção: {"fixed_questions": [{"index": 0}]}'
        assert parse_json_object(response) == {"fixed_questions": [{"index": 0}]}

    def test_array_is_not_an_object(self):
        with pytest.raises(LLMResponseParseError):
            parse_json_object("[1, 2, 3]")


class TestParseCount:
    """Tests for parse_count."""

    def test_bare_number(self):
        assert parse_count("42") == 42

    def test_number_in_sentence(self):
        assert parse_count("O texto contém 17 questões.") == 17

    def test_no_number(self):
        with pytest.raises(LLMResponseParseError):
            parse_count("nenhuma")
