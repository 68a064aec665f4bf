from __future__ import annotations
import io

import pandas as pd

from examprep.export import questions_to_csv_bytes, questions_to_dataframe, questions_to_pdf_bytes
from examprep.reporting import compute_coverage_report, compute_topic_readiness
from examprep.schemas import ExamQuestion, MarkCriterion
from examprep.storage.bank import MarkedAnswerRow


def test_readiness_counts_half_marks_as_correct():
    rows = [
        MarkedAnswerRow("t1", "Energetics", 2, 4),
        MarkedAnswerRow("t1", "Energetics", 1, 4),
        MarkedAnswerRow("t1", "Energetics", 4, 4),
        MarkedAnswerRow("t2", "Alkenes", 0, 1),
    ]
    readiness = {r.topic_id: r for r in compute_topic_readiness(rows)}

    assert readiness["t1"].questions_attempted == 3
    assert readiness["t1"].questions_correct == 2
    assert readiness["t1"].readiness_score == 67
    assert readiness["t2"].readiness_score == 0
    assert readiness["t2"].topic_name == "Alkenes"


def test_readiness_empty():
    assert compute_topic_readiness([]) == []


def _questions():
    return [
        ExamQuestion(
            id="q1", format_id="f", section_id="s1", section_name="Section A", question_type="mcq",
            topic_name="Alkenes", question_text="Which reagent decolourises bromine water?",
            options=["Ethane", "Ethene", "Ethanol", "Ethanoic acid"], correct_option_index=1, max_marks=1,
            mark_scheme=[MarkCriterion(label="Correct option", marks=1)],
        ),
        ExamQuestion(
            id="q2", format_id="f", section_id="s2", section_name="Section B", question_type="calculation",
            topic_name="Energetics", question_text="Calculate the enthalpy change of combustion.",
            dataset="mass of water = 100 g, temperature rise = 12.5 K", max_marks=4,
            mark_scheme=[
                MarkCriterion(label="q = mc dT", marks=2),
                MarkCriterion(label="Answer", description="-52.3 kJ/mol", marks=2),
            ],
        ),
        ExamQuestion(
            id="q3", format_id="f", section_id="s2", section_name="Section B", question_type="calculation",
            question_text="Calculate the bond enthalpy.", max_marks=3,
        ),
    ]


def test_coverage_report():
    report = compute_coverage_report(_questions())
    assert report["total_questions"] == 3
    assert report["total_marks"] == 8
    assert report["section_distribution"] == {"Section A": 1, "Section B": 2}
    assert report["topic_distribution"] == {"Alkenes": 1, "Energetics": 1, "Unassigned": 1}
    assert report["type_distribution"] == {"mcq": 1, "calculation": 2}


def test_dataframe_and_csv():
    df = questions_to_dataframe(_questions())
    assert list(df["id"]) == ["q1", "q2", "q3"]
    assert df.loc[0, "correct_option"] == "B"
    assert df.loc[0, "options"] == "Ethane | Ethene | Ethanol | Ethanoic acid"
    assert df.loc[1, "mark_scheme"] == "q = mc dT (2); Answer (2): -52.3 kJ/mol"

    parsed = pd.read_csv(io.BytesIO(questions_to_csv_bytes(_questions())))
    assert len(parsed) == 3
    assert parsed.loc[1, "max_marks"] == 4


def test_pdf_export():
    questions = _questions()
    pdf = questions_to_pdf_bytes(questions, compute_coverage_report(questions), include_mark_scheme=True)
    assert pdf.startswith(b"%PDF")
    assert len(pdf) > 500
