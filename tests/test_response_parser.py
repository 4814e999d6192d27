"""Tests for JSON recovery from model output."""

import json

import pytest

from response_parser import (
    AIResponseParseError,
    close_truncated,
    insert_missing_commas,
    parse_ai_json,
    sanitize_json,
    strip_trailing_commas,
)

VALID = {"date": None, "scenes": [{"sceneNumber": "4A", "castNumbers": [1, 2]}, {"sceneNumber": "6"}]}


class TestParseAIJson:
    """Test the parse cascade."""

    def test_valid_json(self):
        assert parse_ai_json(json.dumps(VALID)) == VALID

    def test_sanitizing_valid_json_is_lossless(self):
        assert json.loads(sanitize_json(json.dumps(VALID, indent=2))) == VALID

    def test_markdown_fences(self):
        raw = "```json\n" + json.dumps(VALID) + "\n```"

        assert parse_ai_json(raw) == VALID

    def test_surrounding_prose(self):
        raw = "Here is the schedule:\n" + json.dumps(VALID) + "\nLet me know if you need more."

        assert parse_ai_json(raw) == VALID

    def test_trailing_commas(self):
        assert parse_ai_json('{"scenes": [{"a": 1,},],}') == {"scenes": [{"a": 1}]}

    def test_missing_commas(self):
        raw = '{"scenes": [{"a": 1} {"a": 2}] "location": "FARM"}'

        assert parse_ai_json(raw) == {"scenes": [{"a": 1}, {"a": 2}], "location": "FARM"}

    def test_null_strings(self):
        assert parse_ai_json('{"date": "null", "scenes": [],}') == {"date": None, "scenes": []}

    def test_repairs_leave_string_contents_alone(self):
        raw = '{"scenes": [{"sceneNumber": "1", "description": "uses {braces}"},]}'

        assert parse_ai_json(raw) == {"scenes": [{"sceneNumber": "1", "description": "uses {braces}"}]}

    def test_truncated_array_keeps_complete_entries(self):
        raw = (
            '{"scenes": [{"sceneNumber": "1", "castNumbers": [1, 2]}, '
            '{"sceneNumber": "2", "castNumbers": [3]}, '
            '{"sceneNumber": "3", "cast'
        )

        result = parse_ai_json(raw, array_field="scenes")

        assert [s["sceneNumber"] for s in result["scenes"]] == ["1", "2"]

    def test_truncated_without_complete_entry_raises(self):
        raw = '{"scenes": [{"sceneNumber": "1", "castNumbers": [1, 2'

        with pytest.raises(AIResponseParseError):
            parse_ai_json(raw, array_field="scenes")

    def test_array_field_recovery(self):
        """Test the named array is salvaged when the rest is beyond repair."""
        raw = '{"location": unquoted text here, "scenes": [{"sceneNumber": "4A"}]}'

        assert parse_ai_json(raw, array_field="scenes") == {"scenes": [{"sceneNumber": "4A"}]}

    @pytest.mark.parametrize("raw", ["", "   ", "I could not find any scenes."])
    def test_unusable_input_raises(self, raw):
        with pytest.raises(AIResponseParseError):
            parse_ai_json(raw)


class TestRepairSteps:
    """Test individual repair steps."""

    def test_sanitize_is_idempotent(self):
        raw = '```\n{"scenes": [{"a": 1,} {"b": "null"},],}\n```'

        once = sanitize_json(raw)

        assert sanitize_json(once) == once
        assert json.loads(once) == {"scenes": [{"a": 1}, {"b": None}]}

    def test_nested_trailing_commas(self):
        assert strip_trailing_commas('[[1,],]') == '[[1]]'

    def test_close_truncated_ignores_brackets_in_strings(self):
        text = '{"scenes": [{"description": "a ] or } here"}, {"description": "cut'

        assert json.loads(close_truncated(text)) == {"scenes": [{"description": "a ] or } here"}]}

    def test_balanced_text_unchanged(self):
        assert close_truncated('{"a": [1]}') == '{"a": [1]}'

    def test_commas_only_added_between_values(self):
        text = '{"a": "x] [y", "b": "} \\"q\\" {"}'

        assert insert_missing_commas(text) == text
        assert insert_missing_commas('[{"a": "}"} {"b": 1}]') == '[{"a": "}"}, {"b": 1}]'

    def test_trailing_comma_inside_string_kept(self):
        assert strip_trailing_commas('{"a": "1, ]",}') == '{"a": "1, ]"}'
