from __future__ import annotations
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from examprep.schemas import CourseContext, TopicRef
from examprep.storage.orm import Chapter, Course, Subject, Topic


class CourseTopicProvider(Protocol):
    def list_topics(self, course_id: str) -> list[TopicRef]: ...

    def get_course_context(self, course_id: str) -> CourseContext | None: ...

    def get_chapter_topic(self, chapter_id: str) -> TopicRef | None: ...


class SqlCourseCatalog:
    """Reads the course -> subject -> topic -> chapter tree from the database."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def create_course(
        self,
        name: str,
        subjects: dict[str, list[str]],
        year_of_study: str | None = None,
        user_id: str | None = None,
    ) -> str:
        with self.session_factory() as session, session.begin():
            course = Course(name=name, year_of_study=year_of_study, user_id=user_id)
            course.subjects = [
                Subject(
                    name=subject_name,
                    sort_order=i,
                    topics=[Topic(name=t, sort_order=j) for j, t in enumerate(topic_names)],
                )
                for i, (subject_name, topic_names) in enumerate(subjects.items())
            ]
            session.add(course)
            session.flush()
            return course.id

    def add_chapter(self, topic_id: str, name: str) -> str:
        with self.session_factory() as session, session.begin():
            chapter = Chapter(topic_id=topic_id, name=name)
            session.add(chapter)
            session.flush()
            return chapter.id

    def list_topics(self, course_id: str) -> list[TopicRef]:
        with self.session_factory() as session:
            rows = session.execute(
                select(Topic.id, Topic.name, Subject.name)
                .join(Subject, Topic.subject_id == Subject.id)
                .where(Subject.course_id == course_id)
                .order_by(Subject.sort_order, Topic.sort_order)
            ).all()
            return [TopicRef(id=tid, name=tname, subject_name=sname) for tid, tname, sname in rows]

    def get_course_context(self, course_id: str) -> CourseContext | None:
        with self.session_factory() as session:
            course = session.get(Course, course_id)
            if course is None:
                return None
            return CourseContext(id=course.id, name=course.name, year_of_study=course.year_of_study)

    def get_chapter_topic(self, chapter_id: str) -> TopicRef | None:
        """
        A chapter seen as a generation topic: the chapter name is what questions are
        about, the parent topic stands in as subject and owns the id.
        """
        with self.session_factory() as session:
            chapter = session.get(Chapter, chapter_id)
            if chapter is None:
                return None
            return TopicRef(id=chapter.topic_id, name=chapter.name, subject_name=chapter.topic.name)
