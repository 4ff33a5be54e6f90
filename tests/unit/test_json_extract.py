"""Unit tests for JSON extraction from model output."""

from __future__ import annotations

from news_funnel.services.json_extract import Malformed, Parsed, extract_json, strip_fences


class TestExtractJson:
    def test_bare_array(self):
        assert extract_json('[{"id": 1, "score": 90}]', "array") == Parsed([{"id": 1, "score": 90}])

    def test_fenced_object(self):
        text = '```json\n{"articles": [], "combined": {}}\n```'
        assert extract_json(text, "object") == Parsed({"articles": [], "combined": {}})

    def test_surrounding_chatter(self):
        text = 'Sure! Here you go:\n[{"id": 0, "score": 12}]\nLet me know if you need more.'
        result = extract_json(text, "array")
        assert isinstance(result, Parsed)
        assert result.value == [{"id": 0, "score": 12}]

    def test_brackets_inside_strings(self):
        text = '{"summary_points": ["range [1-2] and {braces}"], "n": 1} trailing }'
        result = extract_json(text, "object")
        assert isinstance(result, Parsed)
        assert result.value["summary_points"] == ["range [1-2] and {braces}"]

    def test_invalid_escape_repaired(self):
        result = extract_json(r'{"title": "S\&P 500 rallies"}', "object")
        assert isinstance(result, Parsed)
        assert result.value["title"] == r"S\&P 500 rallies"

    def test_empty(self):
        assert extract_json("", "array") == Malformed(raw_text="", reason="empty")
        assert extract_json(None, "object").reason == "empty"
        assert extract_json("   \n", "object").reason == "empty"

    def test_missing_container(self):
        assert extract_json("no json here", "array").reason == "no_array"
        assert extract_json("[1, 2]", "object").reason == "no_object"

    def test_unbalanced(self):
        assert extract_json('{"a": [1, 2', "object").reason == "no_object"

    def test_array_after_bracketed_prose(self):
        text = 'Scores on a [0-100] scale:\n[{"id": 0, "score": 90}]'
        assert extract_json(text, "array") == Parsed([{"id": 0, "score": 90}])

    def test_object_after_bracketed_prose(self):
        text = 'Output for {n} items below\n{"articles": [{"idx": 0}], "combined": {}}'
        result = extract_json(text, "object")
        assert isinstance(result, Parsed)
        assert result.value["articles"] == [{"idx": 0}]

    def test_unbalanced_prose_bracket_is_skipped(self):
        text = 'Range [0-100 as asked\n[{"id": 1, "score": 5}]'
        assert extract_json(text, "array") == Parsed([{"id": 1, "score": 5}])

    def test_invalid_json_keeps_raw_text(self):
        result = extract_json("{'single': 'quotes'}", "object")
        assert isinstance(result, Malformed)
        assert result.reason == "invalid_json"
        assert result.raw_text == "{'single': 'quotes'}"


class TestStripFences:
    def test_language_tag(self):
        assert strip_fences("```json\n[1]\n```") == "[1]"

    def test_plain_text_untouched(self):
        assert strip_fences("  [1]  ") == "[1]"
