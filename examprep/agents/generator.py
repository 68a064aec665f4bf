from __future__ import annotations
import asyncio
import logging
import re
from typing import Awaitable, Callable, TypeVar

from examprep.config import GENERATION_CONCURRENCY, MAX_BATCH_COUNT
from examprep.errors import GenerationError, classify_provider_error, is_provider_auth_error
from examprep.llm import ChatCompletionProvider, user_message
from examprep.parsing import ParseFailure, as_number, as_text, coerce_mark_scheme, parse_json_response
from examprep.prompts import EXISTING_QUESTIONS_LIMIT, build_question_prompt, infer_academic_level
from examprep.schemas import ExamSection, GeneratedQuestion, TopicRef

logger = logging.getLogger(__name__)

T = TypeVar("T")

FULL_MODE_TEMPERATURE = 0.85
BATCH_MODE_TEMPERATURE = 0.9
SNIPPET_LENGTH = 120
MCQ_OPTION_COUNT = 4

MAX_TOKENS_BY_TYPE = {
    "long_answer": 1400,
    "data_analysis": 1400,
    "calculation": 900,
    "short_answer": 900,
}
DEFAULT_MAX_TOKENS = 700


def marks_to_default_difficulty(marks: int | float) -> int:
    """1 mark -> recall (1), 2 -> application, 3 -> standard, 4 -> hard, 5+ -> stretch (5)."""
    if marks <= 1:
        return 1
    if marks <= 2:
        return 2
    if marks <= 3:
        return 3
    if marks <= 4:
        return 4
    return 5


def max_tokens_for_type(question_type: str) -> int:
    return MAX_TOKENS_BY_TYPE.get(question_type, DEFAULT_MAX_TOKENS)


def question_snippet(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()[:SNIPPET_LENGTH]


def clamp_difficulty(difficulty: int) -> int:
    return max(1, min(5, int(difficulty)))


def _mcq_fields(parsed: dict) -> tuple[list[str], int] | None:
    options = parsed.get("options")
    index = parsed.get("correct_option_index")
    if not isinstance(options, list) or len(options) != MCQ_OPTION_COUNT:
        return None
    if not all(isinstance(o, str) for o in options):
        return None
    if not isinstance(index, int) or isinstance(index, bool) or not 0 <= index < len(options):
        return None
    return options, index


def parse_generated_question(
    raw: str,
    section: ExamSection,
    topic_id: str | None,
    default_marks: int | float,
) -> GeneratedQuestion | None:
    parsed = parse_json_response(raw)
    if isinstance(parsed, ParseFailure):
        logger.error("[examQ] parse failed for all strategies. Raw (first 300): %s", parsed.preview())
        return None

    question_text = as_text(parsed.get("question_text"))
    if not question_text:
        logger.error("[examQ] missing/invalid question_text. Keys: %s", list(parsed.keys()))
        return None

    options = correct = None
    if section.question_type == "mcq":
        mcq = _mcq_fields(parsed)
        if mcq is None:
            logger.error("[examQ] mcq without usable options/correct_option_index for section %s", section.id)
            return None
        options, correct = mcq

    max_marks = as_number(parsed.get("max_marks"))
    return GeneratedQuestion(
        section_id=section.id,
        topic_id=topic_id,
        question_text=question_text,
        dataset=as_text(parsed.get("dataset")),
        options=options,
        correct_option_index=correct,
        max_marks=max_marks if max_marks and max_marks > 0 else default_marks,
        mark_scheme=coerce_mark_scheme(parsed.get("mark_scheme")),
    )


async def run_with_concurrency(
    tasks: list[Callable[[], Awaitable[T]]],
    concurrency: int = GENERATION_CONCURRENCY,
) -> tuple[list[T | None], list[BaseException]]:
    """
    Runs tasks in consecutive groups of `concurrency`. A failing task yields
    None in its slot and never cancels its siblings.
    """
    results: list[T | None] = [None] * len(tasks)
    errors: list[BaseException] = []
    for start in range(0, len(tasks), concurrency):
        batch = tasks[start:start + concurrency]
        settled = await asyncio.gather(*(task() for task in batch), return_exceptions=True)
        for offset, outcome in enumerate(settled):
            if isinstance(outcome, BaseException):
                logger.error("[examQ] task %d rejected: %s", start + offset, outcome)
                errors.append(outcome)
            else:
                results[start + offset] = outcome
    return results, errors


def _total_failure(first_error: BaseException | None) -> GenerationError:
    if first_error is None:
        return GenerationError("Failed to generate any questions")
    if is_provider_auth_error(first_error):
        return classify_provider_error(first_error)
    return GenerationError(f"Failed to generate any questions: {first_error}")


class QuestionGenerator:
    def __init__(self, provider: ChatCompletionProvider, concurrency: int = GENERATION_CONCURRENCY):
        self.provider = provider
        self.concurrency = concurrency

    async def _generate_one(
        self,
        section: ExamSection,
        topic: TopicRef,
        course_name: str,
        level_label: str,
        difficulty: int,
        temperature: float,
        exam_name: str | None = None,
        existing_questions: list[str] | None = None,
    ) -> GeneratedQuestion | None:
        default_marks = section.default_marks()
        prompt = build_question_prompt(
            section_name=section.name,
            question_type=section.question_type,
            marks_for_question=default_marks,
            topic_name=topic.name,
            course_name=course_name,
            level_label=level_label,
            difficulty=difficulty,
            subject_name=topic.subject_name,
            exam_name=exam_name,
            existing_questions=existing_questions,
        )
        raw = await self.provider.complete(
            [user_message(prompt)],
            temperature=temperature,
            max_tokens=max_tokens_for_type(section.question_type),
        )
        return parse_generated_question(raw, section, topic.id, default_marks)

    async def generate_full(
        self,
        sections: list[ExamSection],
        topics: list[TopicRef],
        course_name: str,
        exam_name: str | None = None,
        year_of_study: str | None = None,
        difficulty: int | None = None,
    ) -> list[GeneratedQuestion]:
        """
        One question per section slot, topics assigned round-robin, at most
        `concurrency` provider calls in flight. Partial results are returned;
        raises GenerationError only when nothing at all succeeded.
        """
        if not sections or not topics:
            return []
        level = infer_academic_level(year_of_study, course_name)

        tasks: list[Callable[[], Awaitable[GeneratedQuestion | None]]] = []
        for section in sections:
            question_difficulty = (
                clamp_difficulty(difficulty) if difficulty is not None
                else marks_to_default_difficulty(section.default_marks())
            )
            for slot in range(section.num_questions):
                topic = topics[slot % len(topics)]

                def task(section=section, topic=topic, question_difficulty=question_difficulty):
                    return self._generate_one(
                        section, topic, course_name, level.label, question_difficulty,
                        FULL_MODE_TEMPERATURE, exam_name=exam_name,
                    )

                tasks.append(task)

        results, errors = await run_with_concurrency(tasks, self.concurrency)
        valid = [r for r in results if r is not None]
        logger.info(
            "[examQ] generated %d/%d questions (%d failed)", len(valid), len(tasks), len(tasks) - len(valid)
        )
        if not valid:
            first_error = errors[0] if errors else None
            raise _total_failure(first_error) from first_error
        return valid

    async def generate_batch(
        self,
        sections: list[ExamSection],
        topics: list[TopicRef],
        course_name: str,
        count: int,
        difficulty: int,
        exam_name: str | None = None,
        year_of_study: str | None = None,
    ) -> list[GeneratedQuestion]:
        """
        Generates `count` questions strictly one after another. Each prompt
        lists the most recent questions of this batch so the model moves on
        to a different example instead of repeating the obvious one.
        """
        if not sections or not topics:
            return []
        count = max(1, min(count, MAX_BATCH_COUNT))
        difficulty = clamp_difficulty(difficulty)
        level = infer_academic_level(year_of_study, course_name)

        generated: list[GeneratedQuestion] = []
        seen_texts: list[str] = []
        first_error: BaseException | None = None

        for qi in range(count):
            section = sections[qi % len(sections)]
            topic = topics[qi % len(topics)]
            try:
                result = await self._generate_one(
                    section, topic, course_name, level.label, difficulty,
                    BATCH_MODE_TEMPERATURE, exam_name=exam_name,
                    existing_questions=seen_texts[-EXISTING_QUESTIONS_LIMIT:],
                )
            except Exception as e:
                logger.warning("[examQ batch] question %d failed: %s", qi + 1, e)
                if first_error is None:
                    first_error = e
                continue
            if result is not None:
                generated.append(result)
                seen_texts.append(question_snippet(result.question_text))

        logger.info("[examQ] generated %d/%d questions (sequential batch)", len(generated), count)
        if not generated:
            raise _total_failure(first_error) from first_error
        return generated

    async def generate(
        self,
        sections: list[ExamSection],
        topics: list[TopicRef],
        course_name: str,
        exam_name: str | None = None,
        year_of_study: str | None = None,
        batch_count: int | None = None,
        difficulty: int | None = None,
    ) -> list[GeneratedQuestion]:
        if batch_count is not None:
            return await self.generate_batch(
                sections, topics, course_name, batch_count,
                difficulty if difficulty is not None else 3,
                exam_name=exam_name, year_of_study=year_of_study,
            )
        return await self.generate_full(
            sections, topics, course_name, exam_name=exam_name,
            year_of_study=year_of_study, difficulty=difficulty,
        )
