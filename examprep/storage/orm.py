from __future__ import annotations
from datetime import datetime, timezone
from pathlib import Path
from uuid import uuid4

from sqlalchemy import JSON, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from examprep.config import DATABASE_URL


def new_id() -> str:
    return str(uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


# -- course tree ------------------------------------------------------------

class Course(Base):
    __tablename__ = "courses"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str | None] = mapped_column(String, nullable=True)
    name: Mapped[str] = mapped_column(String)
    year_of_study: Mapped[str | None] = mapped_column(String, nullable=True)
    subjects: Mapped[list["Subject"]] = relationship(
        back_populates="course", cascade="all, delete-orphan", order_by="Subject.sort_order"
    )


class Subject(Base):
    __tablename__ = "subjects"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    course_id: Mapped[str] = mapped_column(String(36), ForeignKey("courses.id"))
    name: Mapped[str] = mapped_column(String)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    course: Mapped[Course] = relationship(back_populates="subjects")
    topics: Mapped[list["Topic"]] = relationship(
        back_populates="subject", cascade="all, delete-orphan", order_by="Topic.sort_order"
    )


class Topic(Base):
    __tablename__ = "topics"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    subject_id: Mapped[str] = mapped_column(String(36), ForeignKey("subjects.id"))
    name: Mapped[str] = mapped_column(String)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    subject: Mapped[Subject] = relationship(back_populates="topics")
    chapters: Mapped[list["Chapter"]] = relationship(
        back_populates="topic", cascade="all, delete-orphan", order_by="Chapter.sort_order"
    )


class Chapter(Base):
    __tablename__ = "chapters"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    topic_id: Mapped[str] = mapped_column(String(36), ForeignKey("topics.id"))
    name: Mapped[str] = mapped_column(String)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    topic: Mapped[Topic] = relationship(back_populates="chapters")


class UserSettings(Base):
    __tablename__ = "user_settings"
    user_id: Mapped[str] = mapped_column(String, primary_key=True)
    scoring_rubric: Mapped[str | None] = mapped_column(Text, nullable=True)


# -- exam bank --------------------------------------------------------------

class ExamFormatRow(Base):
    __tablename__ = "exam_formats"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str | None] = mapped_column(String, nullable=True)
    course_id: Mapped[str] = mapped_column(String(36))
    name: Mapped[str] = mapped_column(String)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    total_marks: Mapped[int | None] = mapped_column(Integer, nullable=True)
    time_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    sections: Mapped[list["ExamSectionRow"]] = relationship(
        back_populates="format", cascade="all, delete-orphan", order_by="ExamSectionRow.sort_order"
    )
    questions: Mapped[list["ExamQuestionRow"]] = relationship(
        back_populates="format", cascade="all, delete-orphan"
    )
    attempts: Mapped[list["ExamAttemptRow"]] = relationship(
        back_populates="format", cascade="all, delete-orphan"
    )


class ExamSectionRow(Base):
    __tablename__ = "exam_sections"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    format_id: Mapped[str] = mapped_column(String(36), ForeignKey("exam_formats.id"))
    name: Mapped[str] = mapped_column(String)
    question_type: Mapped[str] = mapped_column(String(20))
    num_questions: Mapped[int] = mapped_column(Integer)
    marks_per_question: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_marks: Mapped[int | None] = mapped_column(Integer, nullable=True)
    instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    format: Mapped[ExamFormatRow] = relationship(back_populates="sections")
    questions: Mapped[list["ExamQuestionRow"]] = relationship(
        back_populates="section", cascade="all, delete-orphan"
    )


class ExamQuestionRow(Base):
    __tablename__ = "exam_questions"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    format_id: Mapped[str] = mapped_column(String(36), ForeignKey("exam_formats.id"))
    section_id: Mapped[str] = mapped_column(String(36), ForeignKey("exam_sections.id"))
    topic_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("topics.id"), nullable=True)
    course_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    user_id: Mapped[str | None] = mapped_column(String, nullable=True)
    question_text: Mapped[str] = mapped_column(Text)
    dataset: Mapped[str | None] = mapped_column(Text, nullable=True)
    options: Mapped[list | None] = mapped_column(JSON, nullable=True)
    correct_option_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_marks: Mapped[float] = mapped_column(Float)
    mark_scheme: Mapped[list] = mapped_column(JSON, default=list)
    depth: Mapped[int] = mapped_column(Integer, default=3)
    position: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    format: Mapped[ExamFormatRow] = relationship(back_populates="questions")
    section: Mapped[ExamSectionRow] = relationship(back_populates="questions")
    topic: Mapped[Topic | None] = relationship()
    answers: Mapped[list["ExamAttemptAnswerRow"]] = relationship(
        back_populates="question", cascade="all, delete-orphan"
    )


class ExamAttemptRow(Base):
    __tablename__ = "exam_attempts"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String)
    format_id: Mapped[str] = mapped_column(String(36), ForeignKey("exam_formats.id"))
    mode: Mapped[str] = mapped_column(String(10))
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    total_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    max_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    format: Mapped[ExamFormatRow] = relationship(back_populates="attempts")
    answers: Mapped[list["ExamAttemptAnswerRow"]] = relationship(
        back_populates="attempt", cascade="all, delete-orphan"
    )


class ExamAttemptAnswerRow(Base):
    __tablename__ = "exam_attempt_answers"
    __table_args__ = (UniqueConstraint("attempt_id", "question_id"),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    attempt_id: Mapped[str] = mapped_column(String(36), ForeignKey("exam_attempts.id"))
    question_id: Mapped[str] = mapped_column(String(36), ForeignKey("exam_questions.id"))
    answer_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    selected_option_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
    hints_used: Mapped[int] = mapped_column(Integer, default=0)
    score: Mapped[float | None] = mapped_column(Float, nullable=True)
    feedback: Mapped[str | None] = mapped_column(Text, nullable=True)
    marked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    attempt: Mapped[ExamAttemptRow] = relationship(back_populates="answers")
    question: Mapped[ExamQuestionRow] = relationship(back_populates="answers")


def make_engine(url: str = DATABASE_URL) -> Engine:
    if url.startswith("sqlite") and ":memory:" in url:
        # one shared connection, otherwise every session sees an empty database
        return create_engine(
            url, connect_args={"check_same_thread": False}, poolclass=StaticPool
        )
    if url.startswith("sqlite:///"):
        Path(url.removeprefix("sqlite:///")).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(url, pool_pre_ping=True)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    Base.metadata.create_all(engine)
