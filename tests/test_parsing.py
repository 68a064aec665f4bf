from __future__ import annotations
import json

import pytest

from examprep.parsing import (
    ParseFailure,
    as_number,
    candidate_strings,
    coerce_mark_scheme,
    parse_json_response,
    repair_backslashes,
)


@pytest.mark.parametrize(
    "text",
    [
        '{"a": "line\\nbreak", "b": "tab\\tstop"}',
        '{"path": "C:\\\\temp", "quote": "say \\"hi\\""}',
        '{"unicode": "\\u00e9", "slash": "a\\/b"}',
        '{"plain": "no escapes at all"}',
    ],
)
def test_repair_leaves_valid_escapes_alone(text):
    assert repair_backslashes(text) == text
    assert parse_json_response(text) == json.loads(text)


def test_repair_fixes_single_bare_backslash():
    text = '{"question_text": "Evaluate \\sqrt{16}"}'
    with pytest.raises(ValueError):
        json.loads(text)
    assert json.loads(repair_backslashes(text)) == {"question_text": "Evaluate \\sqrt{16}"}


def test_latex_inside_prose_wrapped_json():
    raw = 'Sure! Here it is:\n```json\n{"question_text": "Find \\Delta H for the reaction", "max_marks": 3}\n```'
    parsed = parse_json_response(raw)
    assert parsed == {"question_text": "Find \\Delta H for the reaction", "max_marks": 3}


def test_candidate_order():
    raw = 'prefix {"a": 1} suffix'
    candidates = candidate_strings(raw)
    assert candidates[0] == raw
    assert candidates[2] == '{"a": 1}'


@pytest.mark.parametrize(
    "raw",
    ["", "   ", "I cannot help with that.", "```json\n{broken\n```", "[1, 2, 3]", "{{{{", None],
)
def test_parse_never_raises(raw):
    result = parse_json_response(raw)
    assert isinstance(result, ParseFailure)
    assert result.raw == (raw or "")


def test_failure_preview_is_truncated():
    failure = parse_json_response("x" * 1000)
    assert isinstance(failure, ParseFailure)
    assert len(failure.preview()) == 300


def test_coerce_mark_scheme_drops_bad_lines():
    scheme = coerce_mark_scheme([
        {"label": "Method", "marks": 2},
        {"label": "Answer", "description": "with units"},
        {"marks": 1},
        "not a dict",
        {"label": "Negative", "marks": -1},
    ])
    assert [(c.label, c.marks) for c in scheme] == [("Method", 2), ("Answer", 1)]
    assert coerce_mark_scheme("Method: 2 marks") == []


def test_as_number_rejects_bools_and_strings():
    assert as_number(3) == 3
    assert as_number(2.5) == 2.5
    assert as_number(True, 0) == 0
    assert as_number("4", None) is None
