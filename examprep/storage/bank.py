from __future__ import annotations
import logging
from dataclasses import dataclass

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session, sessionmaker

from examprep.schemas import (
    ExamAttempt,
    ExamAttemptAnswer,
    ExamFormat,
    ExamQuestion,
    ExamSection,
    FormatDraft,
    GeneratedQuestion,
    MarkCriterion,
    SectionDraft,
)
from examprep.storage.orm import (
    ExamAttemptAnswerRow,
    ExamAttemptRow,
    ExamFormatRow,
    ExamQuestionRow,
    ExamSectionRow,
    Topic,
    UserSettings,
    utcnow,
)

logger = logging.getLogger(__name__)

FORMAT_FIELDS = ("name", "description", "total_marks", "time_minutes", "instructions")


@dataclass
class MarkedAnswerRow:
    topic_id: str
    topic_name: str
    score: float
    max_marks: float


def _section(row: ExamSectionRow) -> ExamSection:
    return ExamSection(
        id=row.id,
        format_id=row.format_id,
        name=row.name,
        question_type=row.question_type,
        num_questions=row.num_questions,
        marks_per_question=row.marks_per_question,
        total_marks=row.total_marks,
        instructions=row.instructions,
        sort_order=row.sort_order,
    )


def _format(row: ExamFormatRow, question_count: int = 0) -> ExamFormat:
    return ExamFormat(
        id=row.id,
        course_id=row.course_id,
        user_id=row.user_id,
        name=row.name,
        description=row.description,
        total_marks=row.total_marks,
        time_minutes=row.time_minutes,
        instructions=row.instructions,
        sections=[_section(s) for s in row.sections],
        question_count=question_count,
    )


def _marks(value: float) -> int | float:
    return int(value) if float(value).is_integer() else value


def _question(row: ExamQuestionRow) -> ExamQuestion:
    return ExamQuestion(
        id=row.id,
        format_id=row.format_id,
        section_id=row.section_id,
        section_name=row.section.name,
        question_type=row.section.question_type,
        topic_id=row.topic_id,
        topic_name=row.topic.name if row.topic else None,
        course_id=row.course_id,
        question_text=row.question_text,
        dataset=row.dataset,
        options=row.options,
        correct_option_index=row.correct_option_index,
        max_marks=_marks(row.max_marks),
        mark_scheme=[MarkCriterion.model_validate(c) for c in row.mark_scheme or []],
        depth=row.depth,
    )


def _answer(row: ExamAttemptAnswerRow) -> ExamAttemptAnswer:
    return ExamAttemptAnswer(
        attempt_id=row.attempt_id,
        question_id=row.question_id,
        answer_text=row.answer_text,
        selected_option_index=row.selected_option_index,
        hints_used=row.hints_used,
        score=_marks(row.score) if row.score is not None else None,
        feedback=row.feedback,
        marked_at=row.marked_at,
    )


def _attempt(row: ExamAttemptRow) -> ExamAttempt:
    return ExamAttempt(
        id=row.id,
        user_id=row.user_id,
        format_id=row.format_id,
        mode=row.mode,
        started_at=row.started_at,
        submitted_at=row.submitted_at,
        total_score=row.total_score,
        max_score=row.max_score,
        answers=[_answer(a) for a in row.answers],
    )


def _section_row(format_id: str, draft: SectionDraft, sort_order: int) -> ExamSectionRow:
    return ExamSectionRow(
        format_id=format_id,
        name=draft.name,
        question_type=draft.question_type,
        num_questions=draft.num_questions,
        marks_per_question=draft.marks_per_question,
        total_marks=draft.total_marks,
        instructions=draft.instructions,
        sort_order=sort_order,
    )


class QuestionBank:
    """Relational store for formats, sections, questions, attempts and answers."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    # -- formats --------------------------------------------------------------

    def _owned_format(self, session: Session, format_id: str, user_id: str | None) -> ExamFormatRow | None:
        row = session.get(ExamFormatRow, format_id)
        if row is None or (user_id is not None and row.user_id != user_id):
            return None
        return row

    def _question_count(self, session: Session, format_id: str) -> int:
        return session.scalar(
            select(func.count()).select_from(ExamQuestionRow).where(ExamQuestionRow.format_id == format_id)
        ) or 0

    def create_format(self, course_id: str, draft: FormatDraft, user_id: str | None = None) -> ExamFormat:
        with self.session_factory() as session, session.begin():
            row = ExamFormatRow(
                user_id=user_id,
                course_id=course_id,
                **{f: getattr(draft, f) for f in FORMAT_FIELDS},
            )
            session.add(row)
            session.flush()
            row.sections = [_section_row(row.id, s, i) for i, s in enumerate(draft.sections)]
            session.flush()
            return _format(row)

    def get_format(self, format_id: str, user_id: str | None = None) -> ExamFormat | None:
        with self.session_factory() as session:
            row = self._owned_format(session, format_id, user_id)
            if row is None:
                return None
            return _format(row, self._question_count(session, format_id))

    def list_formats(self, course_id: str, user_id: str | None = None) -> list[ExamFormat]:
        with self.session_factory() as session:
            stmt = select(ExamFormatRow).where(ExamFormatRow.course_id == course_id)
            if user_id is not None:
                stmt = stmt.where(ExamFormatRow.user_id == user_id)
            rows = session.scalars(stmt.order_by(ExamFormatRow.created_at.desc())).all()
            return [_format(r, self._question_count(session, r.id)) for r in rows]

    def update_format(self, format_id: str, user_id: str | None = None, **fields) -> ExamFormat | None:
        unknown = set(fields) - set(FORMAT_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update format fields: {sorted(unknown)}")
        with self.session_factory() as session, session.begin():
            row = self._owned_format(session, format_id, user_id)
            if row is None:
                return None
            for key, value in fields.items():
                setattr(row, key, value)
            session.flush()
            return _format(row, self._question_count(session, format_id))

    def replace_sections(
        self,
        format_id: str,
        sections: list[SectionDraft],
        user_id: str | None = None,
    ) -> list[ExamSection]:
        """
        Replaces the section list. A section whose (name, question_type) matches
        an existing one keeps its id and questions; existing sections without a
        match are deleted together with their questions.
        """
        with self.session_factory() as session, session.begin():
            row = self._owned_format(session, format_id, user_id)
            if row is None:
                raise LookupError("Format not found")

            existing = {(s.name, s.question_type): s for s in row.sections}
            kept: list[ExamSectionRow] = []
            for i, draft in enumerate(sections):
                match = existing.pop((draft.name, draft.question_type), None)
                if match is None:
                    kept.append(_section_row(format_id, draft, i))
                    continue
                match.num_questions = draft.num_questions
                match.marks_per_question = draft.marks_per_question
                match.total_marks = draft.total_marks
                match.instructions = draft.instructions
                match.sort_order = i
                kept.append(match)

            for orphan in existing.values():
                # delete-orphan cascade takes the section's questions and answers with it
                logger.info("removing section %s and %d questions", orphan.id, len(orphan.questions))
            row.sections = kept
            session.flush()
            return [_section(s) for s in row.sections]

    def delete_format(self, format_id: str, user_id: str | None = None) -> bool:
        with self.session_factory() as session, session.begin():
            row = self._owned_format(session, format_id, user_id)
            if row is None:
                return False
            session.delete(row)
            return True

    # -- questions ------------------------------------------------------------

    def get_questions(self, format_id: str, section_id: str | None = None) -> list[ExamQuestion]:
        with self.session_factory() as session:
            stmt = select(ExamQuestionRow).where(ExamQuestionRow.format_id == format_id)
            if section_id:
                stmt = stmt.where(ExamQuestionRow.section_id == section_id)
            rows = session.scalars(stmt.order_by(ExamQuestionRow.created_at, ExamQuestionRow.position)).all()
            return [_question(r) for r in rows]

    def get_question_by_id(self, question_id: str) -> ExamQuestion | None:
        with self.session_factory() as session:
            row = session.get(ExamQuestionRow, question_id)
            return _question(row) if row else None

    def _insert_questions(
        self,
        session: Session,
        format_id: str,
        course_id: str | None,
        questions: list[GeneratedQuestion],
        user_id: str | None,
    ) -> list[ExamQuestion]:
        section_ids = set(
            session.scalars(select(ExamSectionRow.id).where(ExamSectionRow.format_id == format_id)).all()
        )
        rows = []
        now = utcnow()
        for position, q in enumerate(questions):
            if q.section_id not in section_ids:
                raise ValueError(f"Section {q.section_id} does not belong to format {format_id}")
            rows.append(
                ExamQuestionRow(
                    format_id=format_id,
                    section_id=q.section_id,
                    topic_id=q.topic_id,
                    course_id=course_id,
                    user_id=user_id,
                    question_text=q.question_text,
                    dataset=q.dataset,
                    options=q.options,
                    correct_option_index=q.correct_option_index,
                    max_marks=q.max_marks,
                    mark_scheme=[c.model_dump(exclude_none=True) for c in q.mark_scheme],
                    created_at=now,
                    position=position,
                )
            )
        session.add_all(rows)
        session.flush()
        return [_question(r) for r in rows]

    def _delete_questions(self, session: Session, format_id: str) -> int:
        question_ids = select(ExamQuestionRow.id).where(ExamQuestionRow.format_id == format_id)
        session.execute(
            delete(ExamAttemptAnswerRow)
            .where(ExamAttemptAnswerRow.question_id.in_(question_ids))
            .execution_options(synchronize_session=False)
        )
        result = session.execute(
            delete(ExamQuestionRow)
            .where(ExamQuestionRow.format_id == format_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    def save_questions(
        self,
        format_id: str,
        course_id: str | None,
        questions: list[GeneratedQuestion],
        user_id: str | None = None,
    ) -> list[ExamQuestion]:
        """Appends questions to the bank and returns them with their new ids."""
        with self.session_factory() as session, session.begin():
            return self._insert_questions(session, format_id, course_id, questions, user_id)

    def delete_questions(self, format_id: str) -> int:
        with self.session_factory() as session, session.begin():
            return self._delete_questions(session, format_id)

    def replace_questions(
        self,
        format_id: str,
        course_id: str | None,
        questions: list[GeneratedQuestion],
        user_id: str | None = None,
    ) -> tuple[int, list[ExamQuestion]]:
        """
        Swaps the whole bank of a format in one transaction. If any new
        question is rejected the old questions and their answers survive.
        """
        with self.session_factory() as session, session.begin():
            removed = self._delete_questions(session, format_id)
            return removed, self._insert_questions(session, format_id, course_id, questions, user_id)

    # -- attempts -------------------------------------------------------------

    def create_attempt(self, user_id: str, format_id: str, mode: str) -> ExamAttempt:
        with self.session_factory() as session, session.begin():
            row = ExamAttemptRow(user_id=user_id, format_id=format_id, mode=mode)
            session.add(row)
            session.flush()
            return _attempt(row)

    def get_attempt(self, attempt_id: str, user_id: str | None = None) -> ExamAttempt | None:
        with self.session_factory() as session:
            row = session.get(ExamAttemptRow, attempt_id)
            if row is None or (user_id is not None and row.user_id != user_id):
                return None
            return _attempt(row)

    def _answer_row(self, session: Session, attempt_id: str, question_id: str) -> ExamAttemptAnswerRow | None:
        return session.scalar(
            select(ExamAttemptAnswerRow).where(
                ExamAttemptAnswerRow.attempt_id == attempt_id,
                ExamAttemptAnswerRow.question_id == question_id,
            )
        )

    def upsert_answer(
        self,
        attempt_id: str,
        question_id: str,
        answer_text: str | None,
        hints_used: int,
        selected_option_index: int | None = None,
    ) -> ExamAttemptAnswer:
        with self.session_factory() as session, session.begin():
            row = self._answer_row(session, attempt_id, question_id)
            if row is None:
                row = ExamAttemptAnswerRow(attempt_id=attempt_id, question_id=question_id)
                session.add(row)
            row.answer_text = answer_text
            row.hints_used = hints_used
            if selected_option_index is not None:
                row.selected_option_index = selected_option_index
            session.flush()
            return _answer(row)

    def mark_answer(self, attempt_id: str, question_id: str, score: float, feedback: str) -> None:
        with self.session_factory() as session, session.begin():
            row = self._answer_row(session, attempt_id, question_id)
            if row is None:
                row = ExamAttemptAnswerRow(attempt_id=attempt_id, question_id=question_id, hints_used=0)
                session.add(row)
            row.score = score
            row.feedback = feedback
            row.marked_at = utcnow()

    def submit_attempt(self, attempt_id: str, total_score: float, max_score: float) -> None:
        with self.session_factory() as session, session.begin():
            row = session.get(ExamAttemptRow, attempt_id)
            if row is None:
                raise LookupError("Attempt not found")
            row.submitted_at = utcnow()
            row.total_score = total_score
            row.max_score = max_score

    def marked_answers_for_course(self, user_id: str, course_id: str) -> list[MarkedAnswerRow]:
        with self.session_factory() as session:
            stmt = (
                select(ExamAttemptAnswerRow.score, ExamQuestionRow.max_marks, ExamQuestionRow.topic_id, Topic.name)
                .select_from(ExamAttemptAnswerRow)
                .join(ExamQuestionRow, ExamAttemptAnswerRow.question_id == ExamQuestionRow.id)
                .join(ExamAttemptRow, ExamAttemptAnswerRow.attempt_id == ExamAttemptRow.id)
                .outerjoin(Topic, ExamQuestionRow.topic_id == Topic.id)
                .where(
                    ExamAttemptRow.user_id == user_id,
                    ExamQuestionRow.course_id == course_id,
                    ExamAttemptAnswerRow.marked_at.is_not(None),
                    ExamQuestionRow.topic_id.is_not(None),
                )
            )
            return [
                MarkedAnswerRow(topic_id=tid, topic_name=tname or "Unknown", score=score or 0, max_marks=max_marks)
                for score, max_marks, tid, tname in session.execute(stmt).all()
            ]

    # -- settings -------------------------------------------------------------

    def get_scoring_rubric(self, user_id: str) -> str:
        with self.session_factory() as session:
            row = session.get(UserSettings, user_id)
            return (row.scoring_rubric or "") if row else ""

    def set_scoring_rubric(self, user_id: str, rubric: str) -> None:
        with self.session_factory() as session, session.begin():
            row = session.get(UserSettings, user_id)
            if row is None:
                row = UserSettings(user_id=user_id)
                session.add(row)
            row.scoring_rubric = rubric or None
