from __future__ import annotations
import re
from dataclasses import dataclass

from examprep.config import PAPER_TEXT_CHAR_LIMIT
from examprep.schemas import MarkCriterion

JSON_ONLY = "Return ONLY valid JSON - no markdown, no code fences, no extra text."

DIFFICULTY_LABELS = {
    1: "Easy (direct recall)",
    2: "Medium-easy (single-step application)",
    3: "Standard (typical exam question)",
    4: "Hard (multi-step reasoning)",
    5: "Stretch (top-grade discriminator)",
}

EXISTING_QUESTIONS_LIMIT = 6


@dataclass(frozen=True)
class AcademicLevel:
    label: str
    instructions: str


_YEAR_SIGNALS = [
    (r"grad|master|phd|doctoral|postgrad", AcademicLevel(
        "graduate",
        "Assume full undergraduate mastery. Use rigorous notation and expect critical engagement.",
    )),
    (r"4th|fourth|senior|year\s*4\b|yr\s*4\b", AcademicLevel(
        "senior undergraduate",
        "Use field-standard terminology freely and go beyond textbook treatments.",
    )),
    (r"3rd|third|junior|year\s*3\b|yr\s*3\b", AcademicLevel(
        "junior undergraduate",
        "Solid fundamentals are assumed; focus on deeper reasoning over definitions.",
    )),
    (r"2nd|second|sophomore|year\s*2\b|yr\s*2\b", AcademicLevel(
        "sophomore",
        "Introductory material is known; specialised terms still need a brief definition.",
    )),
    (r"1st|first|freshman|fresher|year\s*1\b|yr\s*1\b", AcademicLevel(
        "freshman",
        "Ideas are being met formally for the first time; keep notation light.",
    )),
]

_COURSE_SIGNALS = [
    (r"intro|101|general|foundation|basic|fundamentals", AcademicLevel(
        "introductory",
        "Build intuition first and define every technical term.",
    )),
    (r"advanced|graduate|grad|seminar|research", AcademicLevel(
        "advanced",
        "Assume solid prior knowledge and use rigorous language.",
    )),
]

DEFAULT_LEVEL = AcademicLevel(
    "undergraduate",
    "Assume mid-level undergraduate knowledge with appropriate rigour for the discipline.",
)


def infer_academic_level(year_of_study: str | None = None, course_name: str | None = None) -> AcademicLevel:
    year = (year_of_study or "").lower().strip()
    for pattern, level in _YEAR_SIGNALS:
        if year and re.search(pattern, year, re.IGNORECASE):
            return level
    for pattern, level in _COURSE_SIGNALS:
        if re.search(pattern, course_name or "", re.IGNORECASE):
            return level
    return DEFAULT_LEVEL


def difficulty_label(difficulty: int) -> str:
    return DIFFICULTY_LABELS[max(1, min(5, int(difficulty)))]


def _type_name(question_type: str) -> str:
    return question_type.replace("_", " ")


# ----------------------------------------------------------------------------
# Format inference
# ----------------------------------------------------------------------------

def build_format_infer_prompt(exam_name: str, course_name: str) -> str:
    return f"""You are an educational exam specialist. Generate a realistic exam format based on the exam name and course.

Exam: "{exam_name}"
Course: "{course_name}"

{JSON_ONLY}
{{
  "name": "Full exam name",
  "description": "Brief description of the exam format",
  "total_marks": 100,
  "time_minutes": 180,
  "instructions": "General exam instructions for the candidate",
  "sections": [
    {{
      "name": "Section A - Multiple Choice",
      "question_type": "mcq",
      "num_questions": 30,
      "marks_per_question": 1,
      "instructions": "Answer ALL questions in this section."
    }}
  ]
}}

question_type must be one of: mcq, short_answer, long_answer, data_analysis, calculation

Rules:
- Generate 2-4 sections that accurately reflect the real exam structure for "{exam_name}" if known
- Use realistic mark allocations and timings
- For well-known exams (A-Level, IB, AP, SAT, GRE, GCSE, etc.) use the actual section structure
- If the exam is not widely known, generate a sensible structure based on the subject and level inferred from the course name
- Vary question types appropriately: essay subjects need long_answer, sciences need calculation, sciences and geography need data_analysis
"""


# ----------------------------------------------------------------------------
# Question generation
# ----------------------------------------------------------------------------

QUESTION_TYPE_INSTRUCTIONS = {
    "mcq": """Generate a multiple-choice question with exactly 4 options. ONE must be correct, THREE must be plausible distractors (common misconceptions, subtly wrong values, reversed causality).
Return JSON fields: question_text, options (array of 4 strings), correct_option_index (0-3), max_marks, mark_scheme ([{"label", "marks"}])""",
    "short_answer": """Generate a short-answer question requiring 2-4 sentences. Include stimulus material if relevant.
Return JSON fields: question_text, max_marks, mark_scheme ([{"label", "description", "marks"}]) - each criterion worth 1 mark""",
    "long_answer": """Generate a structured essay/extended answer question worth multiple marks.
Return JSON fields: question_text, max_marks, mark_scheme ([{"label", "description", "marks"}]) - group into assessment objectives (Knowledge, Application, Analysis, Evaluation)""",
    "data_analysis": """Generate a data analysis question with a dataset. The dataset must be a markdown table or clearly formatted scenario with specific numerical values.
Return JSON fields: question_text, dataset (markdown table or scenario text), max_marks, mark_scheme ([{"label", "description", "marks"}])""",
    "calculation": """Generate a quantitative calculation question. Include all necessary constants, units, and values in the question. Show the expected working in the mark scheme.
Return JSON fields: question_text, max_marks, mark_scheme ([{"label", "description", "marks"}]) - include Method (1), Substitution (1), Answer with units (1+) criteria""",
}


def build_question_prompt(
    section_name: str,
    question_type: str,
    marks_for_question: int | float,
    topic_name: str,
    course_name: str,
    level_label: str,
    difficulty: int,
    subject_name: str | None = None,
    exam_name: str | None = None,
    existing_questions: list[str] | None = None,
) -> str:
    type_instructions = QUESTION_TYPE_INSTRUCTIONS.get(question_type, QUESTION_TYPE_INSTRUCTIONS["short_answer"])

    avoid_text = ""
    recent = (existing_questions or [])[-EXISTING_QUESTIONS_LIMIT:]
    if recent:
        avoid_lines = "\n".join([f'- "{q}"' for q in recent])
        avoid_text = f"""

Do NOT repeat or closely paraphrase these already-generated questions. Pick a different scenario, example, or angle:
{avoid_lines}"""

    setter = f"{exam_name} " if exam_name else ""
    subject_line = f'\nSubject: "{subject_name}"' if subject_name else ""

    return f"""You are an expert {setter}question setter generating a single exam question for a {level_label} student.

Course: "{course_name}"
Topic: "{topic_name}"{subject_line}
Section: "{section_name}"
Question type: {_type_name(question_type)}
Marks available: {marks_for_question}
Difficulty: {difficulty}/5 - {difficulty_label(difficulty)}{avoid_text}

{type_instructions}

Quality requirements:
- Test genuine understanding - mechanism, application, analysis, evaluation, or synthesis (NOT surface recall or definition repetition)
- Mark scheme must be specific, unambiguous, and examinable - each criterion must be directly observable in the student's written answer
- Mark scheme marks must add up to {marks_for_question}
- Difficulty calibrated to {level_label} level at the requested difficulty - challenging but fair
- For calculation questions: include every piece of data the student needs; state units
- For data analysis: dataset must have at least 4 data points; question must require processing the data (not just reading it off)
- LaTeX is allowed inside strings but every backslash must be escaped as \\\\

{JSON_ONLY}
{{
  "question_text": "...",
  [additional fields depending on type]
  "max_marks": {marks_for_question},
  "mark_scheme": [{{"label": "...", "description": "...", "marks": 1}}]
}}
"""


# ----------------------------------------------------------------------------
# Past-paper extraction
# ----------------------------------------------------------------------------

IMAGE_PAPER_PLACEHOLDER = "[See attached images - extract all questions and exam format from them]"


def build_paper_extraction_prompt(paper_text: str) -> str:
    text = (paper_text or "")[:PAPER_TEXT_CHAR_LIMIT]
    return f"""You are an exam analyst. Read the past exam paper below and reconstruct its format and questions.

Paper:
\"\"\"
{text}
\"\"\"

{JSON_ONLY}
{{
  "name": "Exam name as printed on the paper",
  "total_marks": 100,
  "time_minutes": 120,
  "instructions": "General instructions printed on the paper",
  "sections": [
    {{"name": "Section A", "question_type": "mcq", "num_questions": 20, "marks_per_question": 1, "instructions": "..."}}
  ],
  "questions": [
    {{
      "section_index": 0,
      "question_text": "Question copied verbatim",
      "dataset": "Table or source material if any",
      "options": ["A", "B", "C", "D"],
      "correct_option_index": 0,
      "max_marks": 1,
      "mark_scheme": [{{"label": "...", "description": "...", "marks": 1}}]
    }}
  ],
  "questions_truncated": false
}}

Rules:
- question_type must be one of: mcq, short_answer, long_answer, data_analysis, calculation
- section_index is the 0-based position of the question's section in "sections"
- options and correct_option_index only for mcq questions
- If a mark scheme is not printed, write a sensible one that sums to max_marks
- If you cannot extract every question, return those you can and set "questions_truncated": true
"""


# ----------------------------------------------------------------------------
# Marking, hints, worked answers
# ----------------------------------------------------------------------------

MARKING_PHILOSOPHY = {
    "calculation": "Award method, substitution, and final answer with correct units as separate marks; allow error carried forward.",
    "short_answer": "Award one mark per distinct, correct point that matches a mark scheme line.",
    "long_answer": "Judge the answer against the assessment objectives (knowledge, application, analysis, evaluation) and place it in the matching band.",
    "data_analysis": "Credit correct processing of the data (trends, calculations, comparisons) over restating values.",
}


def format_mark_scheme(mark_scheme: list[MarkCriterion]) -> str:
    lines = []
    for c in mark_scheme:
        suffix = "" if c.marks == 1 else "s"
        desc = f": {c.description}" if c.description else ""
        lines.append(f"  - {c.label}{desc} [{c.marks} mark{suffix}]")
    return "\n".join(lines)


def build_marking_prompt(
    question_text: str,
    question_type: str,
    mark_scheme: list[MarkCriterion],
    max_marks: int | float,
    student_answer: str,
    dataset: str | None = None,
    custom_rubric: str | None = None,
) -> str:
    dataset_text = f"\nData / Context:\n{dataset}\n" if dataset else ""
    philosophy = MARKING_PHILOSOPHY.get(question_type, MARKING_PHILOSOPHY["short_answer"])
    rubric_text = ""
    if custom_rubric and custom_rubric.strip():
        rubric_text = f"\nAdditional marking guidance from the student's settings:\n{custom_rubric.strip()}\n"

    return f"""You are an examiner marking a student's answer. Award marks strictly according to the mark scheme.

Question: {question_text}
{dataset_text}
Mark Scheme ({max_marks} marks total):
{format_mark_scheme(mark_scheme)}

Student's Answer:
{student_answer}

Marking approach: {philosophy}
{rubric_text}
Instructions:
- Award marks only for content clearly present in the student's answer
- Partial credit is allowed where mark scheme permits multi-mark criteria
- Total score must not exceed {max_marks}
- Feedback should explain what was awarded and what was missing, with reference to specific mark scheme points
- Keep feedback concise (3-6 sentences)

Return ONLY valid JSON:
{{
  "score": 2,
  "feedback": "Your explanation here.",
  "criteria_awarded": [
    {{"label": "Criterion name", "awarded": true}},
    {{"label": "Another criterion", "awarded": false, "note": "Missing specific detail about X"}}
  ]
}}
"""


HINT_TIERS = (
    "Give a broad Socratic hint that points the student toward the right approach without revealing any answer content.",
    "The student has already received one hint. Give a more specific hint that clarifies the key concept or method they are missing - but still do not reveal the answer directly.",
)


def build_hint_prompt(
    question_text: str,
    question_type: str,
    hints_used: int,
    dataset: str | None = None,
    student_answer: str | None = None,
) -> str:
    specificity = HINT_TIERS[0] if hints_used <= 0 else HINT_TIERS[1]
    dataset_text = f"\nData / Context:\n{dataset}\n" if dataset else ""
    answer_text = ""
    if student_answer and student_answer.strip():
        answer_text = f"\nStudent's current answer:\n{student_answer}\n"

    return f"""You are a tutor helping a student with an exam question. Do NOT give the answer.

Question: {question_text}
Question type: {_type_name(question_type)}
{dataset_text}{answer_text}
{specificity}

Respond with a single concise hint (2-3 sentences maximum). Do NOT quote the mark scheme or reveal any mark scheme points directly.
"""


def build_full_answer_prompt(
    question_text: str,
    question_type: str,
    mark_scheme: list[MarkCriterion],
    max_marks: int | float,
    dataset: str | None = None,
) -> str:
    dataset_text = f"\nData / Context:\n{dataset}\n" if dataset else ""
    return f"""You are an expert examiner writing a model answer that would earn full marks.

Question: {question_text}
Question type: {_type_name(question_type)}
{dataset_text}
Mark Scheme ({max_marks} marks total):
{format_mark_scheme(mark_scheme)}

Write the complete worked answer a top candidate would give:
- Cover every mark scheme point, in a natural exam-answer order
- For calculations, show method, substitution, and the final answer with units
- For extended answers, use clear paragraphs that address each assessment objective
- Use markdown for structure and LaTeX for mathematics where helpful

Respond with the answer only, no preamble.
"""
