from __future__ import annotations
import logging

from examprep.config import MAX_HINTS
from examprep.errors import HintLimitError
from examprep.llm import ChatCompletionProvider, image_part, user_message
from examprep.papers.pdf_text import PdfTextExtractor, PyPDF2TextExtractor
from examprep.parsing import ParseFailure, as_number, parse_json_response
from examprep.prompts import build_full_answer_prompt, build_hint_prompt, build_marking_prompt
from examprep.schemas import Attachment, ExamQuestion, MarkingResult

logger = logging.getLogger(__name__)

MARKING_TEMPERATURE = 0.2
HINT_TEMPERATURE = 0.6
FULL_ANSWER_TEMPERATURE = 0.3

UPLOADED_DOCUMENT_MARKER = "[Uploaded document content:]"
UNMARKABLE_FEEDBACK = "Unable to mark answer automatically. Please self-assess."
EMPTY_ANSWER_FEEDBACK = "No answer was provided, so no marks could be awarded."


def clamp_score(score: int | float, max_marks: int | float) -> int | float:
    return min(max(score, 0), max_marks)


def mark_mcq(question: ExamQuestion, selected_option_index: int | None) -> MarkingResult:
    """MCQ answers are fully determined by the option index; no model call."""
    correct_index = question.correct_option_index
    correct = selected_option_index is not None and selected_option_index == correct_index
    if correct:
        feedback = f"Correct! Option {correct_index + 1} is right."
    elif correct_index is None:
        feedback = "Incorrect. No correct option is recorded for this question."
    else:
        feedback = f"Incorrect. The correct answer was option {correct_index + 1}."
    return MarkingResult(score=question.max_marks if correct else 0, max_marks=question.max_marks, feedback=feedback)


def parse_marking_result(raw: str, max_marks: int | float) -> MarkingResult:
    parsed = parse_json_response(raw)
    if isinstance(parsed, ParseFailure):
        logger.error("marking output unparseable: %s", parsed.preview())
        return MarkingResult(score=0, max_marks=max_marks, feedback=UNMARKABLE_FEEDBACK)
    score = as_number(parsed.get("score"), 0)
    feedback = parsed.get("feedback")
    return MarkingResult(
        score=clamp_score(score, max_marks),
        max_marks=max_marks,
        feedback=feedback if isinstance(feedback, str) else "",
    )


class MarkingAgent:
    def __init__(self, provider: ChatCompletionProvider, pdf_extractor: PdfTextExtractor | None = None):
        self.provider = provider
        self.pdf_extractor = pdf_extractor or PyPDF2TextExtractor()

    async def _answer_with_attachments(
        self,
        answer_text: str | None,
        attachments: list[Attachment] | None,
    ) -> tuple[str, list[dict]]:
        images = [image_part(a.data, a.mime_type) for a in attachments or [] if a.is_image]
        pdf_texts = []
        for pdf in [a for a in attachments or [] if a.is_pdf]:
            try:
                text = await self.pdf_extractor.extract(pdf.data)
            except Exception as e:
                logger.warning("could not read uploaded PDF %s: %s", pdf.filename or "", e)
                continue
            if text.strip():
                pdf_texts.append(text)

        answer = answer_text or ""
        if pdf_texts:
            answer += f"\n\n{UPLOADED_DOCUMENT_MARKER}\n" + "\n".join(pdf_texts)
        return answer, images

    async def mark(
        self,
        question: ExamQuestion,
        answer_text: str | None = None,
        selected_option_index: int | None = None,
        attachments: list[Attachment] | None = None,
        custom_rubric: str | None = None,
    ) -> MarkingResult:
        if question.question_type == "mcq":
            return mark_mcq(question, selected_option_index)

        student_answer, images = await self._answer_with_attachments(answer_text, attachments)
        if not student_answer.strip() and not images:
            return MarkingResult(score=0, max_marks=question.max_marks, feedback=EMPTY_ANSWER_FEEDBACK)

        prompt = build_marking_prompt(
            question_text=question.question_text,
            question_type=question.question_type,
            mark_scheme=question.mark_scheme,
            max_marks=question.max_marks,
            student_answer=student_answer,
            dataset=question.dataset,
            custom_rubric=custom_rubric,
        )
        raw = await self.provider.complete(
            [user_message(prompt, images)], temperature=MARKING_TEMPERATURE, max_tokens=800
        )
        return parse_marking_result(raw, question.max_marks)

    async def get_hint(self, question: ExamQuestion, hints_used: int, student_answer: str | None = None) -> str:
        """Tier 0 is a broad nudge, tier 1 names the missing concept. A third hint is refused."""
        if hints_used >= MAX_HINTS:
            raise HintLimitError(f"Only {MAX_HINTS} hints are available per question")
        prompt = build_hint_prompt(
            question_text=question.question_text,
            question_type=question.question_type,
            hints_used=hints_used,
            dataset=question.dataset,
            student_answer=student_answer,
        )
        hint = await self.provider.complete([user_message(prompt)], temperature=HINT_TEMPERATURE, max_tokens=250)
        return hint.strip()

    async def get_full_answer(self, question: ExamQuestion) -> str:
        prompt = build_full_answer_prompt(
            question_text=question.question_text,
            question_type=question.question_type,
            mark_scheme=question.mark_scheme,
            max_marks=question.max_marks,
            dataset=question.dataset,
        )
        answer = await self.provider.complete(
            [user_message(prompt)], temperature=FULL_ANSWER_TEMPERATURE, max_tokens=1400
        )
        return answer.strip()
