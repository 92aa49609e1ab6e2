"""Tests for the tolerant result parser."""

import json

import pytest

from viralyze.services.result_parser import (
    INSUFFICIENT_CONTENT,
    ParseErrorKind,
    ResultParser,
    extract_brace_span,
    extract_fenced_block,
    looks_like_refusal,
)


@pytest.fixture
def parser() -> ResultParser:
    return ResultParser(min_content_chars=100)


class TestExtraction:
    def test_fenced_block_with_language(self) -> None:
        text = 'Here you go:\n```json\n{"a": 1}\n```\nThanks'
        assert extract_fenced_block(text) == '{"a": 1}'

    def test_fenced_block_without_language(self) -> None:
        assert extract_fenced_block('```\n{"a": 1}\n```') == '{"a": 1}'

    def test_no_fence(self) -> None:
        assert extract_fenced_block('{"a": 1}') is None

    def test_brace_span_ignores_braces_in_strings(self) -> None:
        text = 'prefix {"hook": "uses {curly} and \\"quotes\\" }", "n": {"x": 1}} suffix {}'
        span = extract_brace_span(text)
        assert json.loads(span) == {"hook": 'uses {curly} and "quotes" }', "n": {"x": 1}}

    def test_brace_span_unbalanced(self) -> None:
        assert extract_brace_span('{"a": 1') is None


class TestParse:
    def test_bare_json(self, parser, valid_json) -> None:
        outcome = parser.parse(valid_json)
        assert outcome.ok
        assert outcome.stage == "braces"
        assert outcome.payload.classification == "comedy"
        assert outcome.payload.primary_factors == ["relatable setup", "fast punchline"]

    def test_fenced_with_prose_equals_bare(self, parser, valid_json) -> None:
        wrapped = f"Sure! Here is my analysis.\n\n```json\n{valid_json}\n```\n\nLet me know if you need more."
        bare = parser.parse(valid_json)
        fenced = parser.parse(wrapped)
        assert fenced.ok
        assert fenced.stage == "fenced"
        assert fenced.payload == bare.payload

    def test_json_embedded_in_prose(self, parser, valid_json) -> None:
        outcome = parser.parse(f"My answer is {valid_json} hope that helps")
        assert outcome.ok
        assert outcome.payload.opening_strategy == "Starts mid-action"

    def test_legacy_field_names(self, parser) -> None:
        raw = json.dumps(
            {
                "content_type": "tutorial",
                "viral_factors": ["a", "b", "c", "d", "e", "f", "g"],
                "emotional_core": ["curiosity"],
                "hook_strategy": "Question",
                "confidence_score": 1.7,
                "target_audience": "students",
            }
        )
        outcome = parser.parse(raw)
        assert outcome.ok
        payload = outcome.payload
        assert payload.classification == "tutorial"
        assert payload.primary_factors == ["a", "b", "c", "d", "e"]
        assert payload.emotional_factors == ["curiosity"]
        assert payload.opening_strategy == "Question"
        assert payload.confidence == 1.0
        assert payload.model_extra["target_audience"] == "students"

    def test_missing_required_fields(self, parser) -> None:
        outcome = parser.parse('{"classification": "comedy", "primary_factors": []}')
        assert not outcome.ok
        assert outcome.error_kind is ParseErrorKind.INVALID_PAYLOAD
        assert "primary_factors" in outcome.message

    def test_malformed_json(self, parser) -> None:
        outcome = parser.parse('```json\n{"classification": "comedy",}\n```')
        assert not outcome.ok
        assert outcome.error_kind is ParseErrorKind.MALFORMED

    def test_array_is_malformed(self, parser) -> None:
        outcome = parser.parse('```json\n["comedy"]\n```')
        assert outcome.error_kind is ParseErrorKind.MALFORMED

    def test_long_prose_is_no_json(self, parser) -> None:
        outcome = parser.parse("This video is popular because " + "it is very engaging " * 10)
        assert not outcome.ok
        assert outcome.error_kind is ParseErrorKind.NO_JSON

    def test_empty_response(self, parser) -> None:
        outcome = parser.parse("")
        assert outcome.error_kind is ParseErrorKind.NO_JSON

    def test_never_raises_on_none(self, parser) -> None:
        assert not parser.parse(None).ok


class TestSynthesis:
    def test_short_text_is_synthesized(self, parser) -> None:
        outcome = parser.parse("Dance clip with music.")
        assert outcome.ok
        assert outcome.synthesized
        assert outcome.payload.classification == INSUFFICIENT_CONTENT
        assert outcome.payload.primary_factors == [INSUFFICIENT_CONTENT]
        assert outcome.payload.opening_strategy == "Dance clip with music."
        assert outcome.payload.confidence == 0.0

    def test_short_refusal_is_not_synthesized(self, parser) -> None:
        outcome = parser.parse("I apologize, but I cannot analyze this.")
        assert not outcome.ok
        assert outcome.error_kind is ParseErrorKind.NO_JSON

    def test_short_text_with_brace_is_not_synthesized(self, parser) -> None:
        outcome = parser.parse('{"classification": ')
        assert not outcome.ok
        assert not outcome.synthesized


class TestRefusal:
    @pytest.mark.parametrize(
        "text",
        [
            "I apologize, but I can't help with that.",
            "I'm unable to view this video.",
            "As an AI, I cannot watch videos.",
        ],
    )
    def test_refusals(self, text) -> None:
        assert looks_like_refusal(text)

    def test_json_answer_is_not_refusal(self, valid_json) -> None:
        assert not looks_like_refusal(valid_json.replace("relatable setup", "I cannot stop watching"))

    def test_plain_answer(self) -> None:
        assert not looks_like_refusal("A cooking video with a fast opening.")
