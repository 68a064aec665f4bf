from __future__ import annotations
import logging
from collections import Counter
from typing import Any

from examprep.agents.format_inference import normalize_question_type, positive_int, sanitize_format
from examprep.errors import PaperExtractionError
from examprep.llm import ChatCompletionProvider, image_part, user_message
from examprep.papers.pdf_text import PdfTextExtractor, PyPDF2TextExtractor
from examprep.parsing import ParseFailure, as_number, as_text, coerce_mark_scheme, parse_json_response
from examprep.prompts import IMAGE_PAPER_PLACEHOLDER, build_paper_extraction_prompt
from examprep.schemas import (
    Attachment,
    ExtractedQuestion,
    ExtractedSection,
    FormatDraft,
    PaperExtractionResult,
)

logger = logging.getLogger(__name__)

DEFAULT_PAPER_NAME = "Uploaded exam paper"


def _options(value: Any) -> list[str] | None:
    if isinstance(value, list) and value and all(isinstance(o, str) for o in value):
        return value
    return None


def _question(raw: Any) -> ExtractedQuestion | None:
    if not isinstance(raw, dict) or not as_text(raw.get("question_text")):
        return None
    index = raw.get("section_index")
    correct = raw.get("correct_option_index")
    return ExtractedQuestion(
        section_index=index if isinstance(index, int) and not isinstance(index, bool) and index >= 0 else 0,
        question_text=raw["question_text"],
        dataset=as_text(raw.get("dataset")),
        options=_options(raw.get("options")),
        correct_option_index=correct if isinstance(correct, int) and not isinstance(correct, bool) else None,
        max_marks=as_number(raw.get("max_marks"), 1),
        mark_scheme=coerce_mark_scheme(raw.get("mark_scheme")),
    )


def parse_paper_extraction(raw: str) -> PaperExtractionResult:
    parsed = parse_json_response(raw)
    if isinstance(parsed, ParseFailure):
        logger.error("paper extraction output unparseable: %s", parsed.preview())
        raise PaperExtractionError("Failed to parse paper extraction result")

    raw_questions = parsed.get("questions") if isinstance(parsed.get("questions"), list) else []
    questions = [q for q in (_question(r) for r in raw_questions) if q]
    per_section = Counter(q.section_index for q in questions)

    raw_sections = parsed.get("sections") if isinstance(parsed.get("sections"), list) else []
    sections = []
    for i, s in enumerate(raw_sections):
        if not isinstance(s, dict):
            continue
        sections.append(
            ExtractedSection(
                name=as_text(s.get("name")) or f"Section {i + 1}",
                question_type=normalize_question_type(s.get("question_type")),
                num_questions=positive_int(s.get("num_questions")) or per_section.get(i) or 1,
                marks_per_question=positive_int(s.get("marks_per_question")),
                instructions=as_text(s.get("instructions")),
            )
        )

    return PaperExtractionResult(
        name=as_text(parsed.get("name")) or DEFAULT_PAPER_NAME,
        total_marks=positive_int(parsed.get("total_marks")),
        time_minutes=positive_int(parsed.get("time_minutes")),
        instructions=as_text(parsed.get("instructions")),
        sections=sections,
        questions=questions,
        questions_truncated=parsed.get("questions_truncated") is True,
    )


def extraction_to_format(result: PaperExtractionResult) -> FormatDraft:
    """
    Keeps only the paper's structure. The verbatim questions are dropped so
    students never practise on the exact paper they uploaded.
    """
    return sanitize_format(result.model_dump(exclude={"questions", "questions_truncated"}), result.name)


class PaperExtractionAgent:
    def __init__(self, provider: ChatCompletionProvider, pdf_extractor: PdfTextExtractor | None = None):
        self.provider = provider
        self.pdf_extractor = pdf_extractor or PyPDF2TextExtractor()

    async def _run(self, message: dict) -> PaperExtractionResult:
        raw = await self.provider.complete([message], temperature=0.2, max_tokens=6000)
        result = parse_paper_extraction(raw)
        logger.info(
            "extracted %d sections, %d questions (truncated=%s)",
            len(result.sections), len(result.questions), result.questions_truncated,
        )
        return result

    async def extract(
        self,
        pdf_text: str | None = None,
        images: list[Attachment] | None = None,
    ) -> PaperExtractionResult:
        if pdf_text is not None:
            return await self._run(user_message(build_paper_extraction_prompt(pdf_text)))
        if images:
            parts = [image_part(img.data, img.mime_type) for img in images]
            return await self._run(user_message(build_paper_extraction_prompt(IMAGE_PAPER_PLACEHOLDER), parts))
        raise PaperExtractionError("No paper content supplied")

    async def extract_upload(self, files: list[Attachment]) -> PaperExtractionResult:
        """First PDF wins; otherwise every image is sent as one paper."""
        pdfs = [f for f in files if f.is_pdf]
        if pdfs:
            text = await self.pdf_extractor.extract(pdfs[0].data)
            return await self.extract(pdf_text=text)
        images = [f for f in files if f.is_image]
        if not images:
            raise PaperExtractionError("No PDF or image uploaded")
        return await self.extract(images=images)
