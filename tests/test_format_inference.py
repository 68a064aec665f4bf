from __future__ import annotations
import asyncio
import json

import pytest

from examprep.agents.format_inference import (
    FormatInferenceAgent,
    normalize_question_type,
    positive_int,
    sanitize_format,
)
from examprep.schemas import QUESTION_TYPES
from tests.fakes import FakeProvider


@pytest.mark.parametrize(
    "raw",
    [
        {},
        None,
        "sections",
        [],
        {"sections": None},
        {"sections": "Section A"},
        {"sections": [None, 1, "x", {}]},
        {"sections": [{"name": "A", "num_questions": 0}]},
        {"sections": [{"name": "", "num_questions": 5}]},
        {"sections": [{"name": "A", "num_questions": -3, "question_type": "mcq"}]},
        {"sections": [{"name": "A", "num_questions": float("nan")}]},
        {"sections": [{"name": "A", "num_questions": True}]},
        {"sections": [{"name": "A", "num_questions": "12", "question_type": "Essay"}]},
        {"sections": [{"name": "A", "num_questions": 10 ** 9, "question_type": 7}]},
    ],
)
def test_sanitize_always_yields_usable_sections(raw):
    draft = sanitize_format(raw, "Mock Exam")
    assert draft.sections
    for section in draft.sections:
        assert section.num_questions >= 1
        assert section.question_type in QUESTION_TYPES


def test_sanitize_keeps_good_sections():
    draft = sanitize_format(
        {
            "name": "IB Biology HL Paper 2",
            "time_minutes": 135,
            "sections": [
                {"name": "Section A", "question_type": "data analysis", "num_questions": 3, "marks_per_question": 6},
                {"name": "Section B", "question_type": "Extended Response", "num_questions": "2"},
            ],
        },
        "IB Biology",
    )
    assert draft.name == "IB Biology HL Paper 2"
    assert draft.time_minutes == 135
    assert [(s.question_type, s.num_questions) for s in draft.sections] == [
        ("data_analysis", 3),
        ("long_answer", 2),
    ]
    assert draft.sections[0].marks_per_question == 6


def test_sanitize_caps_question_count():
    draft = sanitize_format({"sections": [{"name": "A", "num_questions": 5000}]}, "X")
    assert draft.sections[0].num_questions == 100


@pytest.mark.parametrize(
    "value, expected",
    [
        ("mcq", "mcq"),
        ("Multiple Choice", "mcq"),
        ("multiple-choice", "mcq"),
        ("essay", "long_answer"),
        ("Numerical", "calculation"),
        ("data_response", "data_analysis"),
        ("interpretive dance", "short_answer"),
        (None, "short_answer"),
    ],
)
def test_normalize_question_type(value, expected):
    assert normalize_question_type(value) == expected


def test_positive_int():
    assert positive_int(2.6) == 3
    assert positive_int("7") == 7
    assert positive_int(0) is None
    assert positive_int("seven") is None
    assert positive_int(False) is None
    assert positive_int(250, 100) == 100


@pytest.mark.parametrize("response", ["", "Sorry, I don't know that exam.", "{not json", '{"sections": []}'])
def test_a_level_chemistry_falls_back_to_two_sections(response):
    provider = FakeProvider([response])
    draft = asyncio.run(FormatInferenceAgent(provider).infer("A-Level Chemistry", "Chemistry"))

    assert draft.name == "A-Level Chemistry"
    assert [(s.question_type, s.num_questions, s.marks_per_question) for s in draft.sections] == [
        ("mcq", 20, 1),
        ("short_answer", 5, 4),
    ]
    assert provider.calls[0]["temperature"] == 0.3
    assert '"A-Level Chemistry"' in provider.prompt()


def test_inference_uses_model_format():
    response = json.dumps({
        "name": "AP Calculus AB",
        "total_marks": 108,
        "sections": [
            {"name": "Section I", "question_type": "multiple_choice", "num_questions": 45, "marks_per_question": 1},
            {"name": "Section II", "question_type": "calculation", "num_questions": 6, "marks_per_question": 9},
        ],
    })
    draft = asyncio.run(FormatInferenceAgent(FakeProvider([response])).infer("AP Calc", "Calculus"))
    assert draft.name == "AP Calculus AB"
    assert draft.total_marks == 108
    assert [s.question_type for s in draft.sections] == ["mcq", "calculation"]
