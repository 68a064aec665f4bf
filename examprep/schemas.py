from __future__ import annotations
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field
from typing import Literal

QuestionType = Literal["mcq", "short_answer", "long_answer", "data_analysis", "calculation"]
AttemptMode = Literal["practice", "exam"]

QUESTION_TYPES: tuple[str, ...] = ("mcq", "short_answer", "long_answer", "data_analysis", "calculation")


class MarkCriterion(BaseModel):
    label: str
    description: str | None = None
    marks: int | float = Field(1, ge=0)


class TopicRef(BaseModel):
    id: str
    name: str
    subject_name: str | None = None


class Attachment(BaseModel):
    """An uploaded file (photo of working, scanned page, PDF)."""

    data: bytes
    mime_type: str
    filename: str | None = None

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")

    @property
    def is_pdf(self) -> bool:
        return self.mime_type == "application/pdf"


class CourseContext(BaseModel):
    id: str
    name: str
    year_of_study: str | None = None


class SectionDraft(BaseModel):
    name: str
    question_type: QuestionType
    num_questions: int = Field(..., ge=1)
    marks_per_question: int | None = Field(None, ge=1)
    total_marks: int | None = Field(None, ge=1)
    instructions: str | None = None


class FormatDraft(BaseModel):
    """Exam format before it is persisted (inferred, extracted, or typed in)."""

    name: str
    description: str | None = None
    total_marks: int | None = None
    time_minutes: int | None = None
    instructions: str | None = None
    sections: list[SectionDraft]


class ExamSection(BaseModel):
    id: str
    format_id: str
    name: str
    question_type: QuestionType
    num_questions: int = Field(..., ge=1)
    marks_per_question: int | None = None
    total_marks: int | None = None
    instructions: str | None = None
    sort_order: int = 0

    def default_marks(self) -> int:
        if self.marks_per_question:
            return self.marks_per_question
        if self.total_marks:
            return max(1, round(self.total_marks / self.num_questions))
        return 1


class ExamFormat(BaseModel):
    id: str
    course_id: str
    user_id: str | None = None
    name: str
    description: str | None = None
    total_marks: int | None = None
    time_minutes: int | None = None
    instructions: str | None = None
    sections: list[ExamSection] = Field(default_factory=list)
    question_count: int = 0


class GeneratedQuestion(BaseModel):
    section_id: str
    topic_id: str | None = None
    question_text: str
    dataset: str | None = None
    options: list[str] | None = None
    correct_option_index: int | None = None
    max_marks: int | float
    mark_scheme: list[MarkCriterion] = Field(default_factory=list)


class ExamQuestion(BaseModel):
    id: str
    format_id: str
    section_id: str
    section_name: str = ""
    question_type: QuestionType = "short_answer"
    topic_id: str | None = None
    topic_name: str | None = None
    course_id: str | None = None
    question_text: str
    dataset: str | None = None
    options: list[str] | None = None
    correct_option_index: int | None = None
    max_marks: int | float
    mark_scheme: list[MarkCriterion] = Field(default_factory=list)
    depth: int = 3


class ExamAttemptAnswer(BaseModel):
    attempt_id: str
    question_id: str
    answer_text: str | None = None
    selected_option_index: int | None = None
    hints_used: int = 0
    score: int | float | None = None
    feedback: str | None = None
    marked_at: datetime | None = None

    @property
    def is_marked(self) -> bool:
        return self.marked_at is not None


class ExamAttempt(BaseModel):
    id: str
    user_id: str
    format_id: str
    mode: AttemptMode
    started_at: datetime
    submitted_at: datetime | None = None
    total_score: float | None = None
    max_score: float | None = None
    answers: list[ExamAttemptAnswer] = Field(default_factory=list)

    def answer_for(self, question_id: str) -> ExamAttemptAnswer | None:
        return next((a for a in self.answers if a.question_id == question_id), None)


class TopicReadiness(BaseModel):
    topic_id: str
    topic_name: str
    questions_attempted: int
    questions_correct: int
    readiness_score: int


class MarkingResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    score: int | float
    max_marks: int | float = Field(..., alias="maxMarks")
    feedback: str

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True)


class ExtractedSection(BaseModel):
    name: str
    question_type: str
    num_questions: int
    marks_per_question: int | None = None
    instructions: str | None = None


class ExtractedQuestion(BaseModel):
    section_index: int = 0
    question_text: str
    dataset: str | None = None
    options: list[str] | None = None
    correct_option_index: int | None = None
    max_marks: int | float = 1
    mark_scheme: list[MarkCriterion] = Field(default_factory=list)


class PaperExtractionResult(BaseModel):
    name: str
    total_marks: int | None = None
    time_minutes: int | None = None
    instructions: str | None = None
    sections: list[ExtractedSection] = Field(default_factory=list)
    questions: list[ExtractedQuestion] = Field(default_factory=list)
    questions_truncated: bool = False
