from __future__ import annotations
import logging
from typing import Any

from examprep.llm import ChatCompletionProvider, user_message
from examprep.parsing import ParseFailure, parse_json_response
from examprep.prompts import build_format_infer_prompt
from examprep.schemas import QUESTION_TYPES, FormatDraft, SectionDraft

logger = logging.getLogger(__name__)

DEFAULT_QUESTION_TYPE = "short_answer"
MAX_SECTION_QUESTIONS = 100
MAX_MARKS_PER_QUESTION = 100

QUESTION_TYPE_ALIASES = {
    "multiple_choice": "mcq",
    "multiplechoice": "mcq",
    "multi_choice": "mcq",
    "mc": "mcq",
    "objective": "mcq",
    "short": "short_answer",
    "short_response": "short_answer",
    "structured": "short_answer",
    "long": "long_answer",
    "essay": "long_answer",
    "extended": "long_answer",
    "extended_response": "long_answer",
    "extended_answer": "long_answer",
    "data": "data_analysis",
    "data_response": "data_analysis",
    "data_interpretation": "data_analysis",
    "numerical": "calculation",
    "numeric": "calculation",
    "quantitative": "calculation",
    "problem_solving": "calculation",
    "calculations": "calculation",
}


def fallback_sections() -> list[SectionDraft]:
    return [
        SectionDraft(name="Section A - Multiple Choice", question_type="mcq", num_questions=20, marks_per_question=1),
        SectionDraft(name="Section B - Short Answer", question_type="short_answer", num_questions=5, marks_per_question=4),
    ]


def normalize_question_type(value: Any) -> str:
    if not isinstance(value, str):
        return DEFAULT_QUESTION_TYPE
    key = value.strip().lower().replace("-", "_").replace(" ", "_")
    if key in QUESTION_TYPES:
        return key
    return QUESTION_TYPE_ALIASES.get(key, DEFAULT_QUESTION_TYPE)


def positive_int(value: Any, upper: int | None = None) -> int | None:
    """Rounds numbers and numeric strings; anything below 1 becomes None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if not isinstance(value, (int, float)) or value != value:
        return None
    try:
        n = round(value)
    except OverflowError:
        return None
    if n < 1:
        return None
    return min(n, upper) if upper else n


def _text(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def sanitize_section(raw: Any) -> SectionDraft | None:
    if not isinstance(raw, dict):
        return None
    name = _text(raw.get("name"))
    num_questions = positive_int(raw.get("num_questions"), MAX_SECTION_QUESTIONS)
    if not name or not num_questions:
        return None
    return SectionDraft(
        name=name,
        question_type=normalize_question_type(raw.get("question_type")),
        num_questions=num_questions,
        marks_per_question=positive_int(raw.get("marks_per_question"), MAX_MARKS_PER_QUESTION),
        total_marks=positive_int(raw.get("total_marks")),
        instructions=_text(raw.get("instructions")),
    )


def sanitize_format(raw: Any, exam_name: str) -> FormatDraft:
    """
    Coerces whatever the model returned into a usable format.
    Always yields at least one section.
    """
    data = raw if isinstance(raw, dict) else {}
    raw_sections = data.get("sections")
    sections = [s for s in (sanitize_section(r) for r in (raw_sections if isinstance(raw_sections, list) else [])) if s]
    if not sections:
        logger.warning("no usable sections inferred for %r, using fallback format", exam_name)
        sections = fallback_sections()

    return FormatDraft(
        name=_text(data.get("name")) or exam_name.strip() or "Exam",
        description=_text(data.get("description")),
        total_marks=positive_int(data.get("total_marks")),
        time_minutes=positive_int(data.get("time_minutes")),
        instructions=_text(data.get("instructions")),
        sections=sections,
    )


class FormatInferenceAgent:
    def __init__(self, provider: ChatCompletionProvider):
        self.provider = provider

    async def infer(self, exam_name: str, course_name: str) -> FormatDraft:
        prompt = build_format_infer_prompt(exam_name, course_name)
        raw = await self.provider.complete([user_message(prompt)], temperature=0.3, max_tokens=1200)
        parsed = parse_json_response(raw)
        if isinstance(parsed, ParseFailure):
            logger.warning("format inference output unparseable: %s", parsed.preview())
            parsed = {}
        return sanitize_format(parsed, exam_name)
