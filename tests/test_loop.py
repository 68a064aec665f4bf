from __future__ import annotations
import asyncio
import json

import pytest

from examprep.agents.loop import ExamPrepService
from examprep.errors import ExamPrepError, GenerationError, HintLimitError, NotFoundError
from examprep.schemas import Attachment, FormatDraft, SectionDraft
from tests.fakes import FakePdfExtractor, FakeProvider, mcq_json, question_json

USER = "user-1"


def generated(messages):
    prompt = messages[0]["content"]
    if "Question type: mcq" in prompt:
        return mcq_json(correct=2)
    return question_json()


@pytest.fixture
def provider():
    return FakeProvider(default=generated)


@pytest.fixture
def service(bank, catalog, provider):
    return ExamPrepService(bank, catalog, provider, FakePdfExtractor("Paper 1 text"))


@pytest.fixture
def fmt(service, course_id):
    draft = FormatDraft(
        name="A-Level Chemistry Paper 1",
        sections=[
            SectionDraft(name="Section A", question_type="mcq", num_questions=2, marks_per_question=1),
            SectionDraft(name="Section B", question_type="short_answer", num_questions=2, marks_per_question=4),
        ],
    )
    return service.create_format(course_id, draft, user_id=USER)


def test_infer_format_falls_back_for_unknown_exam(service, provider, course_id):
    provider.default = "Sorry, not sure."
    draft = asyncio.run(service.infer_format(course_id, "A-Level Chemistry"))
    assert [s.question_type for s in draft.sections] == ["mcq", "short_answer"]
    assert 'Course: "A-Level Chemistry"' in provider.prompt()

    with pytest.raises(NotFoundError):
        asyncio.run(service.infer_format("missing", "Anything"))


def test_create_format_from_paper_stores_structure_only(service, provider, bank, course_id):
    provider.default = json.dumps({
        "name": "June 2023 Paper 2",
        "sections": [{"name": "Section A", "question_type": "long_answer", "num_questions": 3}],
        "questions": [{"section_index": 0, "question_text": "Discuss...", "max_marks": 20}],
    })
    fmt = asyncio.run(
        service.create_format_from_paper(course_id, [Attachment(data=b"%PDF", mime_type="application/pdf")], USER)
    )
    assert fmt.name == "June 2023 Paper 2"
    assert [(s.question_type, s.num_questions) for s in fmt.sections] == [("long_answer", 3)]
    assert bank.get_questions(fmt.id) == []
    assert "Paper 1 text" in provider.prompt()


def test_build_question_bank(service, bank, catalog, course_id, fmt):
    questions = asyncio.run(service.build_question_bank(fmt.id, USER))

    topics = catalog.list_topics(course_id)
    assert len(questions) == 4
    assert [q.question_type for q in questions] == ["mcq", "mcq", "short_answer", "short_answer"]
    assert [q.topic_id for q in questions] == [topics[0].id, topics[1].id, topics[0].id, topics[1].id]
    assert all(q.course_id == course_id for q in questions)
    assert questions[0].options and questions[0].correct_option_index == 2

    # a rebuild replaces the bank rather than adding to it
    asyncio.run(service.build_question_bank(fmt.id, USER))
    assert len(bank.get_questions(fmt.id)) == 4


def test_failed_rebuild_keeps_existing_questions(service, provider, bank, fmt):
    asyncio.run(service.build_question_bank(fmt.id, USER))
    provider.default = RuntimeError("upstream 503")

    with pytest.raises(GenerationError, match="upstream 503"):
        asyncio.run(service.build_question_bank(fmt.id, USER))
    assert len(bank.get_questions(fmt.id)) == 4


def test_build_requires_topics(service, catalog):
    empty_course = catalog.create_course("Empty Course", {})
    fmt = service.create_format(empty_course, FormatDraft(
        name="Quiz", sections=[SectionDraft(name="A", question_type="mcq", num_questions=1)],
    ))
    with pytest.raises(GenerationError, match="no topics"):
        asyncio.run(service.build_question_bank(fmt.id))


def test_build_unknown_format(service):
    with pytest.raises(NotFoundError):
        asyncio.run(service.build_question_bank("missing", USER))


def test_generate_more_appends(service, provider, bank, fmt):
    asyncio.run(service.build_question_bank(fmt.id, USER))
    provider.calls.clear()
    provider.max_in_flight = 0

    added = asyncio.run(service.generate_more(fmt.id, USER, count=3, difficulty=5, section_id=fmt.sections[1].id))
    assert len(added) == 3
    assert all(q.section_id == fmt.sections[1].id for q in added)
    assert provider.max_in_flight == 1
    assert "Difficulty: 5/5" in provider.prompt()
    assert len(bank.get_questions(fmt.id)) == 7


def test_generate_more_for_a_chapter(service, provider, catalog, course_id, fmt):
    energetics = catalog.list_topics(course_id)[1]
    chapter_id = catalog.add_chapter(energetics.id, "Hess's Law")

    added = asyncio.run(service.generate_more(fmt.id, USER, count=2, chapter_id=chapter_id))
    assert [q.topic_id for q in added] == [energetics.id, energetics.id]
    assert 'Topic: "Hess\'s Law"' in provider.prompt()
    assert 'Subject: "Energetics"' in provider.prompt()


def test_generate_more_for_a_topic(service, provider, catalog, course_id, fmt):
    alkenes = catalog.list_topics(course_id)[2]
    added = asyncio.run(service.generate_more(fmt.id, USER, count=2, topic_id=alkenes.id))
    assert {q.topic_id for q in added} == {alkenes.id}

    with pytest.raises(NotFoundError):
        asyncio.run(service.generate_more(fmt.id, USER, topic_id="missing"))
    with pytest.raises(NotFoundError):
        asyncio.run(service.generate_more(fmt.id, USER, chapter_id="missing"))
    with pytest.raises(NotFoundError):
        asyncio.run(service.generate_more(fmt.id, USER, section_id="missing"))


def test_replace_sections_unknown_format(service):
    with pytest.raises(NotFoundError):
        service.replace_sections("missing", [])


def test_session_marking(service, provider, bank, fmt):
    questions = asyncio.run(service.build_question_bank(fmt.id, USER))
    mcq, short = questions[0], questions[2]
    provider.calls.clear()

    result = asyncio.run(service.mark_question(mcq.id, USER, selected_option_index=2))
    assert result.score == 1
    assert provider.calls == []

    service.set_scoring_rubric(USER, "Accept answers without units")
    provider.default = '{"score": 3, "feedback": "Mostly there"}'
    result = asyncio.run(service.mark_question(short.id, USER, answer_text="Nuclear charge increases"))
    assert result.to_payload() == {"score": 3, "maxMarks": 4, "feedback": "Mostly there"}
    assert "Accept answers without units" in provider.prompt()
    assert service.get_scoring_rubric(USER) == "Accept answers without units"

    with pytest.raises(NotFoundError):
        asyncio.run(service.mark_question("missing", USER, answer_text="x"))


def test_session_hints_and_full_answer(service, provider, fmt):
    [question, *_] = asyncio.run(service.build_question_bank(fmt.id, USER))
    provider.default = "Think about the nucleus."
    assert asyncio.run(service.request_hint(question.id, 0)) == "Think about the nucleus."
    with pytest.raises(HintLimitError):
        asyncio.run(service.request_hint(question.id, 2))

    provider.default = "Full worked answer"
    assert asyncio.run(service.get_full_answer(question.id)) == "Full worked answer"


def test_practice_attempt(service, provider, bank, fmt):
    questions = asyncio.run(service.build_question_bank(fmt.id, USER))
    short = questions[2]
    attempt = service.start_attempt(USER, fmt.id, "practice")

    provider.default = "Consider shielding."
    asyncio.run(service.request_attempt_hint(attempt.id, USER, short.id))
    asyncio.run(service.request_attempt_hint(attempt.id, USER, short.id))
    with pytest.raises(HintLimitError):
        asyncio.run(service.request_attempt_hint(attempt.id, USER, short.id))

    saved = service.save_answer(attempt.id, USER, short.id, "Nuclear charge rises; shielding similar")
    assert saved.hints_used == 2
    assert saved.feedback is None

    provider.default = '{"score": 9, "feedback": "Excellent"}'
    result = asyncio.run(service.mark_attempt_answer(attempt.id, USER, short.id))
    assert result.score == 4

    answer = bank.get_attempt(attempt.id).answer_for(short.id)
    assert answer.score == 4
    assert answer.feedback == "Excellent"
    assert answer.hints_used == 2
    assert "Consider shielding." not in (answer.answer_text or "")


def test_exam_attempt_submission(service, provider, bank, course_id, fmt):
    questions = asyncio.run(service.build_question_bank(fmt.id, USER))
    mcq, _, short_1, short_2 = questions
    attempt = service.start_attempt(USER, fmt.id, "exam")

    service.save_answer(attempt.id, USER, mcq.id, selected_option_index=2)
    service.save_answer(attempt.id, USER, short_1.id, "A strong answer")
    service.save_answer(attempt.id, USER, short_2.id, "unmarkable-answer")
    with pytest.raises(ExamPrepError):
        asyncio.run(service.mark_attempt_answer(attempt.id, USER, short_1.id))

    def marking(messages):
        if "unmarkable-answer" in messages[0]["content"]:
            raise RuntimeError("timeout")
        return '{"score": 3, "feedback": "Good"}'

    provider.default = marking
    submitted = asyncio.run(service.submit_attempt(attempt.id, USER))

    assert submitted.submitted_at is not None
    assert submitted.total_score == 4
    assert submitted.max_score == 10
    assert submitted.answer_for(short_2.id).is_marked is False
    assert submitted.answer_for(mcq.id).feedback.startswith("Correct!")

    with pytest.raises(ExamPrepError):
        service.save_answer(attempt.id, USER, short_2.id, "too late")

    [readiness] = service.topic_readiness(USER, course_id)
    assert readiness.topic_id == mcq.topic_id == short_1.topic_id
    assert readiness.questions_attempted == 2
    assert readiness.questions_correct == 2
    assert readiness.readiness_score == 100


def test_attempt_belongs_to_user(service, fmt):
    attempt = service.start_attempt(USER, fmt.id, "practice")
    with pytest.raises(NotFoundError):
        service.save_answer(attempt.id, "intruder", "q", "x")
    with pytest.raises(NotFoundError):
        service.start_attempt("intruder", fmt.id, "practice")


def test_attempt_only_accepts_questions_from_its_format(service, provider, bank, course_id, fmt):
    asyncio.run(service.build_question_bank(fmt.id, USER))
    other = service.create_format(course_id, FormatDraft(
        name="Someone else's paper",
        sections=[SectionDraft(name="Section B", question_type="short_answer", num_questions=3, marks_per_question=4)],
    ), user_id="someone-else")
    foreign = asyncio.run(service.build_question_bank(other.id, "someone-else"))
    attempt = service.start_attempt(USER, fmt.id, "practice")

    with pytest.raises(NotFoundError):
        service.save_answer(attempt.id, USER, foreign[0].id, "An answer")
    with pytest.raises(NotFoundError):
        asyncio.run(service.mark_attempt_answer(attempt.id, USER, foreign[0].id))
    with pytest.raises(NotFoundError):
        asyncio.run(service.request_attempt_hint(attempt.id, USER, foreign[0].id))
    assert bank.get_attempt(attempt.id).answers == []

    # rows written around the service never count towards the total
    for q in foreign:
        bank.upsert_answer(attempt.id, q.id, "An answer", hints_used=0)
        bank.mark_answer(attempt.id, q.id, 4, "Good")
    submitted = asyncio.run(service.submit_attempt(attempt.id, USER))
    assert submitted.max_score == 10
    assert submitted.total_score == 0


def test_export(service, fmt):
    asyncio.run(service.build_question_bank(fmt.id, USER))
    csv_bytes = service.export_questions(fmt.id, USER)
    assert csv_bytes.decode("utf-8").splitlines()[0].startswith("id,section,question_type")
    assert service.export_questions(fmt.id, USER, as_pdf=True, include_mark_scheme=True).startswith(b"%PDF")
