from __future__ import annotations
import io
import pandas as pd
from reportlab.lib.pagesizes import letter
from reportlab.lib.units import inch
from reportlab.pdfgen import canvas

from examprep.schemas import ExamQuestion, MarkCriterion

OPTION_LETTERS = "ABCDEFGH"


def _scheme_text(scheme: list[MarkCriterion]) -> str:
    return "; ".join(
        f"{c.label} ({c.marks})" + (f": {c.description}" if c.description else "") for c in scheme
    )


def questions_to_dataframe(questions: list[ExamQuestion]) -> pd.DataFrame:
    rows = []
    for q in questions:
        correct = None
        if q.options and q.correct_option_index is not None:
            correct = OPTION_LETTERS[q.correct_option_index]
        rows.append(
            {
                "id": q.id,
                "section": q.section_name,
                "question_type": q.question_type,
                "topic": q.topic_name,
                "question_text": q.question_text,
                "dataset": q.dataset,
                "options": " | ".join(q.options or []),
                "correct_option": correct,
                "max_marks": q.max_marks,
                "mark_scheme": _scheme_text(q.mark_scheme),
            }
        )
    return pd.DataFrame(rows)


def questions_to_csv_bytes(questions: list[ExamQuestion]) -> bytes:
    df = questions_to_dataframe(questions)
    return df.to_csv(index=False).encode("utf-8")


def _question_lines(number: int, q: ExamQuestion, include_mark_scheme: bool) -> list[str]:
    lines = [f"{number}. ({q.max_marks} marks) {q.question_text}"]
    if q.dataset:
        lines.append("Data: " + q.dataset)
    for i, option in enumerate(q.options or []):
        lines.append(f"   {OPTION_LETTERS[i]}. {option}")
    if include_mark_scheme:
        if q.options and q.correct_option_index is not None:
            lines.append("Answer: " + OPTION_LETTERS[q.correct_option_index])
        for c in q.mark_scheme:
            lines.append(f"   [{c.marks}] {c.label}" + (f" - {c.description}" if c.description else ""))
    return lines


def questions_to_pdf_bytes(
    questions: list[ExamQuestion],
    coverage_report: dict,
    title: str = "Practice Paper",
    include_mark_scheme: bool = False,
) -> bytes:
    buffer = io.BytesIO()
    c = canvas.Canvas(buffer, pagesize=letter)
    width, height = letter
    y = height - inch

    c.setFont("Helvetica-Bold", 14)
    c.drawString(inch, y, title)
    y -= 0.4 * inch

    c.setFont("Helvetica", 10)
    c.drawString(
        inch, y,
        f"Total questions: {coverage_report.get('total_questions', 0)}"
        f"    Total marks: {coverage_report.get('total_marks', 0)}",
    )
    y -= 0.3 * inch

    c.setFont("Helvetica-Bold", 11)
    c.drawString(inch, y, "Coverage")
    y -= 0.25 * inch

    c.setFont("Helvetica", 9)
    for key in ["section_distribution", "topic_distribution", "type_distribution"]:
        for chunk in _wrap_text(f"{key}: {coverage_report.get(key)}", width - 2 * inch):
            c.drawString(inch, y, chunk)
            y -= 0.2 * inch
            if y < inch:
                c.showPage()
                y = height - inch

    section = None
    number = 0
    for q in questions:
        if q.section_name != section:
            section = q.section_name
            y -= 0.15 * inch
            c.setFont("Helvetica-Bold", 11)
            c.drawString(inch, y, section or "Questions")
            y -= 0.3 * inch
            c.setFont("Helvetica", 9)
        number += 1
        for line in _question_lines(number, q, include_mark_scheme):
            for chunk in _wrap_text(line, width - 2 * inch):
                c.drawString(inch, y, chunk)
                y -= 0.18 * inch
                if y < inch:
                    c.showPage()
                    c.setFont("Helvetica", 9)
                    y = height - inch
        y -= 0.2 * inch
        if y < inch:
            c.showPage()
            c.setFont("Helvetica", 9)
            y = height - inch

    c.save()
    return buffer.getvalue()


def _wrap_text(text: str, max_width: float) -> list[str]:
    # approximate wrap by character count at 9pt
    max_chars = int(max_width / 6)
    lines = []
    for paragraph in text.splitlines() or [""]:
        line = ""
        for w in paragraph.split():
            if line and len(line) + len(w) + 1 > max_chars:
                lines.append(line)
                line = w
            else:
                line = f"{line} {w}".strip()
        if line:
            lines.append(line)
    return lines
