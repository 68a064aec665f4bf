from __future__ import annotations
import logging

from examprep.agents.format_inference import FormatInferenceAgent
from examprep.agents.generator import QuestionGenerator, run_with_concurrency
from examprep.agents.marker import MarkingAgent
from examprep.agents.paper_extraction import PaperExtractionAgent, extraction_to_format
from examprep.config import GENERATION_CONCURRENCY, MAX_BATCH_COUNT
from examprep.errors import ExamPrepError, GenerationError, NotFoundError
from examprep.export import questions_to_csv_bytes, questions_to_pdf_bytes
from examprep.llm import ChatCompletionProvider
from examprep.papers.pdf_text import PdfTextExtractor, PyPDF2TextExtractor
from examprep.reporting import compute_coverage_report, compute_topic_readiness
from examprep.schemas import (
    Attachment,
    AttemptMode,
    CourseContext,
    ExamAttempt,
    ExamAttemptAnswer,
    ExamFormat,
    ExamQuestion,
    ExamSection,
    FormatDraft,
    MarkingResult,
    SectionDraft,
    TopicReadiness,
    TopicRef,
)
from examprep.storage.bank import QuestionBank
from examprep.storage.courses import CourseTopicProvider

logger = logging.getLogger(__name__)


class ExamPrepService:
    """
    The request-level flows: build or top up a question bank, mark answers,
    hand out hints, and run practice/exam attempts against the bank.
    """

    def __init__(
        self,
        bank: QuestionBank,
        catalog: CourseTopicProvider,
        provider: ChatCompletionProvider,
        pdf_extractor: PdfTextExtractor | None = None,
        concurrency: int = GENERATION_CONCURRENCY,
    ):
        pdf_extractor = pdf_extractor or PyPDF2TextExtractor()
        self.bank = bank
        self.catalog = catalog
        self.concurrency = concurrency
        self.format_agent = FormatInferenceAgent(provider)
        self.paper_agent = PaperExtractionAgent(provider, pdf_extractor)
        self.generator = QuestionGenerator(provider, concurrency)
        self.marker = MarkingAgent(provider, pdf_extractor)

    # -- lookups --------------------------------------------------------------

    def _course(self, course_id: str) -> CourseContext:
        course = self.catalog.get_course_context(course_id)
        if course is None:
            raise NotFoundError("Course not found")
        return course

    def _format(self, format_id: str, user_id: str | None) -> ExamFormat:
        fmt = self.bank.get_format(format_id, user_id)
        if fmt is None:
            raise NotFoundError("Format not found")
        return fmt

    def _question(self, question_id: str) -> ExamQuestion:
        question = self.bank.get_question_by_id(question_id)
        if question is None:
            raise NotFoundError("Question not found")
        return question

    def _attempt(self, attempt_id: str, user_id: str) -> ExamAttempt:
        attempt = self.bank.get_attempt(attempt_id, user_id)
        if attempt is None:
            raise NotFoundError("Attempt not found")
        return attempt

    def _open_attempt(self, attempt_id: str, user_id: str) -> ExamAttempt:
        attempt = self._attempt(attempt_id, user_id)
        if attempt.submitted_at is not None:
            raise ExamPrepError("Attempt has already been submitted")
        return attempt

    def _attempt_question(self, attempt: ExamAttempt, question_id: str) -> ExamQuestion:
        question = self.bank.get_question_by_id(question_id)
        if question is None or question.format_id != attempt.format_id:
            raise NotFoundError("Question not found in this exam")
        return question

    def _rubric(self, user_id: str | None) -> str | None:
        if user_id is None:
            return None
        return self.bank.get_scoring_rubric(user_id) or None

    # -- formats --------------------------------------------------------------

    async def infer_format(self, course_id: str, exam_name: str) -> FormatDraft:
        course = self._course(course_id)
        return await self.format_agent.infer(exam_name, course.name)

    def create_format(self, course_id: str, draft: FormatDraft, user_id: str | None = None) -> ExamFormat:
        self._course(course_id)
        return self.bank.create_format(course_id, draft, user_id)

    async def create_format_from_paper(
        self,
        course_id: str,
        files: list[Attachment],
        user_id: str | None = None,
    ) -> ExamFormat:
        self._course(course_id)
        extraction = await self.paper_agent.extract_upload(files)
        return self.bank.create_format(course_id, extraction_to_format(extraction), user_id)

    def replace_sections(
        self,
        format_id: str,
        sections: list[SectionDraft],
        user_id: str | None = None,
    ) -> list[ExamSection]:
        try:
            return self.bank.replace_sections(format_id, sections, user_id)
        except LookupError as e:
            raise NotFoundError(str(e)) from e

    # -- generation -----------------------------------------------------------

    async def build_question_bank(
        self,
        format_id: str,
        user_id: str | None = None,
        difficulty: int | None = None,
    ) -> list[ExamQuestion]:
        """
        Regenerates the whole bank for a format. The old questions are only
        replaced once at least one new question exists.
        """
        fmt = self._format(format_id, user_id)
        course = self._course(fmt.course_id)
        topics = self.catalog.list_topics(course.id)
        if not topics:
            raise GenerationError("Course has no topics to generate questions from")
        if not fmt.sections:
            raise GenerationError("Format has no sections")

        generated = await self.generator.generate_full(
            fmt.sections, topics, course.name,
            exam_name=fmt.name, year_of_study=course.year_of_study, difficulty=difficulty,
        )
        removed, saved = self.bank.replace_questions(format_id, course.id, generated, user_id)
        logger.info("format %s: replaced %d questions with %d", format_id, removed, len(saved))
        return saved

    def _batch_topics(self, course_id: str, topic_id: str | None, chapter_id: str | None) -> list[TopicRef]:
        if chapter_id:
            chapter = self.catalog.get_chapter_topic(chapter_id)
            if chapter is None:
                raise NotFoundError("Chapter not found")
            return [chapter]
        topics = self.catalog.list_topics(course_id)
        if topic_id:
            topics = [t for t in topics if t.id == topic_id]
            if not topics:
                raise NotFoundError("Topic not found")
        return topics

    async def generate_more(
        self,
        format_id: str,
        user_id: str | None = None,
        count: int = 5,
        difficulty: int = 3,
        section_id: str | None = None,
        topic_id: str | None = None,
        chapter_id: str | None = None,
    ) -> list[ExamQuestion]:
        """Appends a sequentially generated batch to the bank, optionally scoped to a section/topic/chapter."""
        fmt = self._format(format_id, user_id)
        course = self._course(fmt.course_id)
        sections = [s for s in fmt.sections if section_id is None or s.id == section_id]
        if not sections:
            raise NotFoundError("Section not found")
        topics = self._batch_topics(course.id, topic_id, chapter_id)
        if not topics:
            raise GenerationError("Course has no topics to generate questions from")

        generated = await self.generator.generate_batch(
            sections, topics, course.name, min(count, MAX_BATCH_COUNT), difficulty,
            exam_name=fmt.name, year_of_study=course.year_of_study,
        )
        return self.bank.save_questions(format_id, course.id, generated, user_id)

    # -- session marking ------------------------------------------------------

    async def mark_question(
        self,
        question_id: str,
        user_id: str | None = None,
        answer_text: str | None = None,
        selected_option_index: int | None = None,
        attachments: list[Attachment] | None = None,
    ) -> MarkingResult:
        question = self._question(question_id)
        return await self.marker.mark(
            question, answer_text, selected_option_index, attachments, custom_rubric=self._rubric(user_id)
        )

    async def request_hint(self, question_id: str, hints_used: int, student_answer: str | None = None) -> str:
        # session flow: the caller keeps the hint count and text
        return await self.marker.get_hint(self._question(question_id), hints_used, student_answer)

    async def get_full_answer(self, question_id: str) -> str:
        return await self.marker.get_full_answer(self._question(question_id))

    # -- attempts -------------------------------------------------------------

    def start_attempt(self, user_id: str, format_id: str, mode: AttemptMode = "practice") -> ExamAttempt:
        self._format(format_id, user_id)
        return self.bank.create_attempt(user_id, format_id, mode)

    def save_answer(
        self,
        attempt_id: str,
        user_id: str,
        question_id: str,
        answer_text: str | None = None,
        selected_option_index: int | None = None,
    ) -> ExamAttemptAnswer:
        attempt = self._open_attempt(attempt_id, user_id)
        self._attempt_question(attempt, question_id)
        existing = attempt.answer_for(question_id)
        return self.bank.upsert_answer(
            attempt_id, question_id, answer_text,
            hints_used=existing.hints_used if existing else 0,
            selected_option_index=selected_option_index,
        )

    async def mark_attempt_answer(
        self,
        attempt_id: str,
        user_id: str,
        question_id: str,
        attachments: list[Attachment] | None = None,
    ) -> MarkingResult:
        """Practice mode marks each answer as soon as the student asks for it."""
        attempt = self._open_attempt(attempt_id, user_id)
        if attempt.mode != "practice":
            raise ExamPrepError("Exam attempts are marked on submission")
        question = self._attempt_question(attempt, question_id)
        answer = attempt.answer_for(question_id)
        result = await self.marker.mark(
            question,
            answer.answer_text if answer else None,
            answer.selected_option_index if answer else None,
            attachments,
            custom_rubric=self._rubric(user_id),
        )
        self.bank.mark_answer(attempt_id, question_id, result.score, result.feedback)
        return result

    async def request_attempt_hint(self, attempt_id: str, user_id: str, question_id: str) -> str:
        """Only the incremented hint count is persisted, never the hint itself."""
        attempt = self._open_attempt(attempt_id, user_id)
        question = self._attempt_question(attempt, question_id)
        answer = attempt.answer_for(question_id)
        hints_used = answer.hints_used if answer else 0
        hint = await self.marker.get_hint(question, hints_used, answer.answer_text if answer else None)
        self.bank.upsert_answer(
            attempt_id, question_id,
            answer.answer_text if answer else None,
            hints_used=hints_used + 1,
            selected_option_index=answer.selected_option_index if answer else None,
        )
        return hint

    async def submit_attempt(self, attempt_id: str, user_id: str) -> ExamAttempt:
        """
        Marks every answer that is still unmarked, then totals the attempt
        against the full format. An answer whose marking fails stays unmarked
        and scores nothing.
        """
        attempt = self._open_attempt(attempt_id, user_id)
        questions = {q.id: q for q in self.bank.get_questions(attempt.format_id)}
        rubric = self._rubric(user_id)
        pending = [a for a in attempt.answers if not a.is_marked and a.question_id in questions]

        tasks = [
            lambda a=a: self.marker.mark(
                questions[a.question_id], a.answer_text, a.selected_option_index, custom_rubric=rubric
            )
            for a in pending
        ]
        results, errors = await run_with_concurrency(tasks, self.concurrency)
        if errors:
            logger.warning("attempt %s: %d answers could not be marked", attempt_id, len(errors))
        for answer, result in zip(pending, results):
            if result is not None:
                self.bank.mark_answer(attempt_id, answer.question_id, result.score, result.feedback)

        marked = self._attempt(attempt_id, user_id)
        total_score = sum(a.score or 0 for a in marked.answers if a.is_marked and a.question_id in questions)
        max_score = sum(q.max_marks for q in questions.values())
        self.bank.submit_attempt(attempt_id, total_score, max_score)
        return self._attempt(attempt_id, user_id)

    # -- settings and reports -------------------------------------------------

    def get_scoring_rubric(self, user_id: str) -> str:
        return self.bank.get_scoring_rubric(user_id)

    def set_scoring_rubric(self, user_id: str, rubric: str) -> None:
        self.bank.set_scoring_rubric(user_id, rubric)

    def topic_readiness(self, user_id: str, course_id: str) -> list[TopicReadiness]:
        return compute_topic_readiness(self.bank.marked_answers_for_course(user_id, course_id))

    def export_questions(
        self,
        format_id: str,
        user_id: str | None = None,
        as_pdf: bool = False,
        include_mark_scheme: bool = False,
    ) -> bytes:
        fmt = self._format(format_id, user_id)
        questions = self.bank.get_questions(format_id)
        order = {s.id: s.sort_order for s in fmt.sections}
        questions.sort(key=lambda q: order.get(q.section_id, 0))
        if not as_pdf:
            return questions_to_csv_bytes(questions)
        return questions_to_pdf_bytes(
            questions, compute_coverage_report(questions), title=fmt.name, include_mark_scheme=include_mark_scheme
        )
