"""Tests for model output parsing and incremental answer extraction."""

import json

import pytest

from grounded_chat.chat.parser import (
    AnswerStreamExtractor,
    parse_model_response,
    strip_code_fences,
)


class TestParseModelResponse:
    def test_parses_structured_answer(self):
        raw = json.dumps(
            {
                "answer": "We open at 9.",
                "suggestion_chips": ["Weekend hours?", "Holidays?"],
                "escalation_offered": True,
            }
        )
        parsed = parse_model_response(raw, max_chips=3)
        assert parsed.answer == "We open at 9."
        assert parsed.suggestion_chips == ["Weekend hours?", "Holidays?"]
        assert parsed.escalation_offered is True

    def test_strips_code_fences(self):
        raw = '```json\n{"answer": "Fenced.", "suggestion_chips": []}\n```'
        parsed = parse_model_response(raw)
        assert parsed.answer == "Fenced."
        assert parsed.escalation_offered is False

    def test_truncates_chips(self):
        raw = json.dumps({"answer": "A", "suggestion_chips": ["1", "2", "3", "4", "5"]})
        assert parse_model_response(raw, max_chips=2).suggestion_chips == ["1", "2"]

    def test_drops_non_string_chips(self):
        raw = json.dumps({"answer": "A", "suggestion_chips": ["ok", 3, None, "  "]})
        assert parse_model_response(raw).suggestion_chips == ["ok"]

    @pytest.mark.parametrize(
        "raw",
        [
            "Plain text answer without JSON.",
            '["not", "an", "object"]',
            '{"suggestion_chips": ["x"]}',
            '{"answer": ""}',
        ],
    )
    def test_falls_back_to_raw_text(self, raw):
        parsed = parse_model_response(raw)
        assert parsed.answer == raw
        assert parsed.escalation_offered is False

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ('{"answer": "unterminated', "unterminated"),
            ('{"answer": "The plan is $49.", "suggestion_chips": ["Wh', "The plan is $49."),
            ('```json\n{"answer": "Fenced \\u00e9", "sugg', "Fenced é"),
        ],
    )
    def test_truncated_json_keeps_written_answer(self, raw, expected):
        parsed = parse_model_response(raw)
        assert parsed.answer == expected
        assert parsed.suggestion_chips == []

    def test_truncated_json_without_answer_text_falls_back(self):
        raw = '{"suggestion_chips": ["a"'
        assert parse_model_response(raw).answer == raw

    def test_literal_newlines_in_strings(self):
        raw = '{"answer": "Line one\nLine two", "suggestion_chips": []}'
        assert parse_model_response(raw).answer == "Line one\nLine two"

    def test_escalation_string_true(self):
        raw = json.dumps({"answer": "A", "escalation_offered": "true"})
        assert parse_model_response(raw).escalation_offered is True

    def test_strip_code_fences(self):
        assert strip_code_fences("```json\n{}\n```") == "{}"


def _stream(text: str, size: int) -> tuple[str, AnswerStreamExtractor]:
    extractor = AnswerStreamExtractor()
    out = "".join(extractor.feed(text[i : i + size]) for i in range(0, len(text), size))
    return out, extractor


class TestAnswerStreamExtractor:
    @pytest.mark.parametrize("size", [1, 2, 5, 64])
    def test_emits_only_answer_text(self, size):
        raw = json.dumps(
            {"answer": 'Say "hi"\nthen leave \\ now', "suggestion_chips": ["a"]}
        )
        out, extractor = _stream(raw, size)
        assert out == 'Say "hi"\nthen leave \\ now'
        assert extractor.finish(parse_model_response(raw).answer) == ""

    def test_decodes_unicode_escapes_split_across_fragments(self):
        raw = '{"answer": "caf\\u00e9 \\ud83d\\ude00"}'
        out, _ = _stream(raw, 3)
        assert out == "café 😀"

    def test_fenced_json(self):
        raw = '```json\n{"answer": "Fenced answer", "escalation_offered": false}\n```'
        out, _ = _stream(raw, 4)
        assert out == "Fenced answer"

    def test_answer_key_after_other_keys(self):
        raw = '{"suggestion_chips": ["x"], "answer": "Late key"}'
        out, _ = _stream(raw, 6)
        assert out == "Late key"

    def test_raw_text_passes_through(self):
        raw = "Just a plain answer."
        out, extractor = _stream(raw, 4)
        assert out == raw
        assert extractor.finish(parse_model_response(raw).answer) == ""

    def test_finish_emits_missing_tail(self):
        """JSON without an answer key streams nothing; the tail is the whole fallback text."""
        raw = '{"suggestion_chips": ["a", "b"]}'
        out, extractor = _stream(raw, 5)
        assert out == ""
        final = parse_model_response(raw).answer
        assert extractor.finish(final) == raw
        assert extractor.emitted == raw

    def test_truncated_json_stream_equals_parsed_answer(self):
        raw = '{"answer": "Partial answer", "suggestion_chips": ["Wh'
        out, extractor = _stream(raw, 5)
        assert out == "Partial answer"
        assert extractor.finish(parse_model_response(raw).answer) == ""
        assert extractor.emitted == "Partial answer"

    def test_divergent_final_answer_is_not_retracted(self):
        out, extractor = _stream('{"answer": "Partial', 5)
        assert out == "Partial"
        assert extractor.finish("Something else") == ""
        assert extractor.emitted == "Partial"

    def test_finish_after_full_answer_is_empty(self):
        raw = '{"answer": "Done"}'
        _, extractor = _stream(raw, 2)
        assert extractor.finish("Done") == ""
        assert extractor.emitted == "Done"
