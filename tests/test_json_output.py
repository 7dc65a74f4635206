"""Tests for the two-stage JSON parse of model output."""

from __future__ import annotations

import pytest

from errors import OutputParseError
from models.study import LessonPlan, Quiz
from services.json_output import (
    _fix_invalid_json_escapes,
    parse_model_output,
    parse_strict_json_or_extract,
)


class TestParseStrictJsonOrExtract:
    def test_plain_json(self):
        assert parse_strict_json_or_extract('{"course": "X", "modules": []}') == {
            "course": "X",
            "modules": [],
        }

    def test_markdown_fence(self):
        text = '```json\n{"course": "X", "modules": []}\n```'
        assert parse_strict_json_or_extract(text)["course"] == "X"

    def test_leading_and_trailing_prose(self):
        text = 'Here is the outline:\n{"course": "X", "modules": [{"module": "M", "lessons": []}]}\nEnjoy!'
        assert parse_strict_json_or_extract(text)["modules"][0]["module"] == "M"

    def test_latex_escapes_are_repaired(self):
        text = '{"question": "What is \\frac{1}{2} + \\(x\\)?"}'
        assert parse_strict_json_or_extract(text)["question"] == "What is \\frac{1}{2} + \\(x\\)?"

    @pytest.mark.parametrize("text", ["", "no json here", "} backwards {", '{"a": '])
    def test_failure_raises(self, text):
        with pytest.raises(OutputParseError) as exc_info:
            parse_strict_json_or_extract(text)
        assert exc_info.value.raw_output == text


class TestFixInvalidEscapes:
    def test_valid_escapes_untouched(self):
        assert _fix_invalid_json_escapes('"a\\nb \\"q\\" \\\\"') == '"a\\nb \\"q\\" \\\\"'

    def test_lone_backslash_doubled(self):
        assert _fix_invalid_json_escapes("\\(x\\)") == "\\\\(x\\\\)"

    def test_latex_command_with_escape_letter(self):
        assert _fix_invalid_json_escapes("\\theta") == "\\\\theta"


class TestParseModelOutput:
    def test_lesson_plan(self):
        plan = parse_model_output(
            '{"course": "Bio", "modules": [{"module": "Cells", "lessons": ["Mitosis"]}]}',
            LessonPlan,
        )
        assert plan.course == "Bio"
        assert plan.modules[0].lessons == ["Mitosis"]

    def test_shape_mismatch(self):
        with pytest.raises(OutputParseError):
            parse_model_output('{"modules": []}', LessonPlan)

    def test_quiz_with_three_options_rejected(self):
        text = '{"questions": [{"question": "q", "options": ["a", "b", "c"], "correct": 0}]}'
        with pytest.raises(OutputParseError):
            parse_model_output(text, Quiz)

    def test_quiz_correct_index_out_of_range(self):
        text = '{"questions": [{"question": "q", "options": ["a", "b", "c", "d"], "correct": 4}]}'
        with pytest.raises(OutputParseError):
            parse_model_output(text, Quiz)
