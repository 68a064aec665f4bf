from __future__ import annotations
from collections import Counter

from examprep.schemas import ExamQuestion, TopicReadiness
from examprep.storage.bank import MarkedAnswerRow

CORRECT_THRESHOLD = 0.5


def is_correct(score: float, max_marks: float) -> bool:
    return max_marks > 0 and score >= CORRECT_THRESHOLD * max_marks


def compute_topic_readiness(rows: list[MarkedAnswerRow]) -> list[TopicReadiness]:
    attempted = Counter(r.topic_id for r in rows)
    correct = Counter(r.topic_id for r in rows if is_correct(r.score, r.max_marks))
    names = {r.topic_id: r.topic_name for r in rows}

    return [
        TopicReadiness(
            topic_id=topic_id,
            topic_name=names[topic_id],
            questions_attempted=count,
            questions_correct=correct[topic_id],
            readiness_score=round(correct[topic_id] / count * 100),
        )
        for topic_id, count in attempted.items()
    ]


def compute_coverage_report(questions: list[ExamQuestion]) -> dict:
    section_counts = Counter([q.section_name or q.section_id for q in questions])
    topic_counts = Counter([q.topic_name or "Unassigned" for q in questions])
    type_counts = Counter([q.question_type for q in questions])

    return {
        "section_distribution": dict(section_counts),
        "topic_distribution": dict(topic_counts),
        "type_distribution": dict(type_counts),
        "total_marks": sum(q.max_marks for q in questions),
        "total_questions": len(questions),
    }
