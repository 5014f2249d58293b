"""Tests for consultants/normalizer.py."""

import json

import pytest

from consultants.dispatcher import DispatchResult
from consultants.errors import FailureKind
from consultants.normalizer import (
    ERROR_SUMMARY,
    FREE_TEXT_CAVEAT,
    NO_CONFIDENCE_REASONING,
    ParseOutcome,
    coerce_confidence,
    extract_json_object,
    normalize,
    normalize_dispatch,
    parse,
)
from tests.conftest import structured


@pytest.mark.parametrize("raw,expected", [(8, 8), (8.4, 8), ("7", 7), ("9/10", 9), (15, 10), (0, 1), (-3, 1)])
def test_coerce_confidence(raw, expected):
    assert coerce_confidence(raw) == expected


@pytest.mark.parametrize("raw", [True, "high", None, float("nan")])
def test_coerce_confidence_rejects(raw):
    with pytest.raises(ValueError):
        coerce_confidence(raw)


def test_extract_json_plain():
    assert extract_json_object('{"a": 1}') == {"a": 1}


def test_extract_json_from_fence():
    text = 'Here you go:\n```json\n{"a": 2}\n```\nThanks'
    assert extract_json_object(text) == {"a": 2}


def test_extract_json_between_braces():
    assert extract_json_object('prefix {"a": {"b": 3}} suffix') == {"a": {"b": 3}}


def test_extract_json_none_for_prose():
    assert extract_json_object("just words") is None
    assert extract_json_object("[1, 2]") is None


def test_parse_outcomes():
    assert parse(structured("Repository Pattern")).outcome is ParseOutcome.STRUCTURED
    assert parse("Use a repository.").outcome is ParseOutcome.FREE_TEXT
    assert parse('{"response": {"detailed": "no summary"}}').outcome is ParseOutcome.FREE_TEXT
    assert parse("   ").outcome is ParseOutcome.UNPARSEABLE
    assert parse(None).outcome is ParseOutcome.UNPARSEABLE


def test_normalize_structured():
    resp = normalize(structured("Repository Pattern", score=9), "alpha", "m1", "The Architect", latency_ms=120)
    assert resp.consultant == "alpha"
    assert resp.response.approach == "Repository Pattern"
    assert resp.confidence.score == 9
    assert resp.metadata.latency_ms == 120
    assert not resp.is_error


def test_normalize_clamps_confidence():
    text = json.dumps({"response": {"summary": "s", "approach": "a"}, "confidence": {"score": 42}})
    assert normalize(text, "alpha", "m", "p").confidence.score == 10


def test_normalize_missing_confidence_defaults_to_five():
    text = json.dumps({"response": {"summary": "s", "approach": "a"}})
    resp = normalize(text, "alpha", "m", "p")
    assert resp.confidence.score == 5
    assert resp.confidence.reasoning == NO_CONFIDENCE_REASONING


def test_normalize_free_text():
    text = "x" * 800
    resp = normalize(text, "alpha", "m", "p")
    assert resp.response.approach == "unknown"
    assert len(resp.response.summary) == 500
    assert resp.response.detailed == text
    assert resp.response.caveats == [FREE_TEXT_CAVEAT]
    assert resp.confidence.score == 5


def test_normalize_debate_block():
    text = structured(
        "CQRS",
        debate={
            "round": 2,
            "position_changed": True,
            "critiques": [{"target": "beta", "critique": "too simple", "severity": "Major"}],
        },
    )
    resp = normalize(text, "alpha", "m", "p")
    assert resp.debate.position_changed is True
    assert resp.debate.critiques[0].severity == "major"


def test_normalize_empty_is_error():
    resp = normalize("", "alpha", "m", "p")
    assert resp.is_error
    assert resp.response.summary == ERROR_SUMMARY


def test_normalize_dispatch_failure_carries_kind():
    result = DispatchResult(
        text=None,
        classification=FailureKind.AUTH_FAILURE,
        attempts=1,
        latency_ms=50,
        error="HTTP 401 bearer abc123",
    )
    resp = normalize_dispatch(result, "alpha", "m", "p")
    assert resp.is_error
    assert resp.metadata.error.startswith("auth_failure:")
    assert "abc123" not in resp.metadata.error
    assert resp.metadata.latency_ms == 50


def test_normalize_dispatch_success():
    result = DispatchResult(
        text=structured("CQRS", 6), classification=FailureKind.SUCCESS, attempts=1, latency_ms=10, tokens_used=99
    )
    resp = normalize_dispatch(result, "alpha", "m", "p")
    assert resp.confidence.score == 6
    assert resp.metadata.tokens_used == 99


def _with_response_fields(score: object = 9, **fields) -> str:
    response = {"summary": "Use a repository.", "approach": "Repository Pattern", **fields}
    return json.dumps({"response": response, "confidence": {"score": score, "reasoning": "Done it."}})


def test_string_alternatives_become_named_alternatives():
    resp = normalize(_with_response_fields(alternatives=["Active Record"]), "alpha", "m", "p")
    assert resp.response.approach == "Repository Pattern"
    assert resp.confidence.score == 9
    assert resp.response.alternatives[0].name == "Active Record"
    assert FREE_TEXT_CAVEAT not in resp.response.caveats


def test_string_code_snippets_become_snippets():
    resp = normalize(_with_response_fields(code_snippets=["repo.get(1)"]), "alpha", "m", "p")
    assert resp.response.code_snippets[0].code == "repo.get(1)"
    assert resp.confidence.score == 9


@pytest.mark.parametrize("raw,expected", [(8, 8), ("7/10", 7), (None, 5)])
def test_bare_confidence_value_is_the_score(raw, expected):
    text = json.dumps({"response": {"summary": "s", "approach": "CQRS"}, "confidence": raw})
    resp = normalize(text, "alpha", "m", "p")
    assert parse(text).outcome is ParseOutcome.STRUCTURED
    assert resp.response.approach == "CQRS"
    assert resp.confidence.score == expected


def test_invalid_optional_fields_are_dropped_not_fatal():
    text = json.dumps(
        {
            "response": {"summary": "s", "approach": "CQRS", "pros": [1, 2], "cons": ["slow writes"]},
            "confidence": {"score": "high", "reasoning": "gut"},
            "debate": {"round": "second"},
        }
    )
    resp = normalize(text, "alpha", "m", "p")
    assert resp.response.approach == "CQRS"
    assert resp.response.pros == []
    assert resp.response.cons == ["slow writes"]
    assert resp.confidence.score == 5
    assert resp.debate is None


def test_invalid_summary_still_falls_back_to_free_text():
    text = json.dumps({"response": {"summary": ["not", "a", "string"], "approach": "CQRS"}})
    assert parse(text).outcome is ParseOutcome.FREE_TEXT
