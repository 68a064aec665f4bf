from __future__ import annotations

import pytest

from examprep.storage.bank import QuestionBank
from examprep.storage.courses import SqlCourseCatalog
from examprep.storage.orm import init_db, make_engine, make_session_factory


@pytest.fixture
def session_factory():
    engine = make_engine("sqlite+pysqlite:///:memory:")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def bank(session_factory):
    return QuestionBank(session_factory)


@pytest.fixture
def catalog(session_factory):
    return SqlCourseCatalog(session_factory)


@pytest.fixture
def course_id(catalog):
    return catalog.create_course(
        "A-Level Chemistry",
        {
            "Physical Chemistry": ["Atomic Structure", "Energetics"],
            "Organic Chemistry": ["Alkenes"],
        },
        year_of_study="Year 13",
        user_id="user-1",
    )
