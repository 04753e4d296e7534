from __future__ import annotations
from typing import Any, List, Sequence

import pandas as pd
import pytest

from contacteur.contacts import Contact, RosterCourse, RosterStudent, import_roster
from contacteur.db import init_db
from contacteur.hierarchy import GRADE_OFFSET
from contacteur.repository import SQLiteRepository


def build_sheet(
    evaluations: Sequence[Any],
    sections: Sequence[Any],
    components: Sequence[Any],
    students: Sequence[Sequence[Any]] = (),
) -> pd.DataFrame:
    """
    Raw sheet matrix: three header rows over the grade columns, then one row
    per student (preferred, labels, family, given, course, grades...).
    """
    rows: List[List[Any]] = [
        [None] * GRADE_OFFSET + list(evaluations),
        [None] * GRADE_OFFSET + list(sections),
        [None] * GRADE_OFFSET + list(components),
    ]
    rows.extend(list(s) for s in students)
    width = max(len(r) for r in rows)
    rows = [r + [None] * (width - len(r)) for r in rows]
    return pd.DataFrame(rows, dtype=object)


@pytest.fixture
def make_sheet():
    return build_sheet


@pytest.fixture
def db(tmp_path):
    database = init_db(tmp_path / "t.db3")
    yield database
    database.close()


@pytest.fixture
def repo(db):
    return SQLiteRepository(db)


@pytest.fixture
def roster(repo):
    courses = [
        RosterCourse("MAT1A", [
            RosterStudent("Ada", "Lovelace", "2010-12-10", [
                Contact("Anne Lovelace", relation="Mère", email="anne@example.org", correspondence=True, priority=1),
            ]),
            RosterStudent("Alan", "Turing"),
        ]),
        RosterCourse("MAT1A1", [
            RosterStudent("Grace", "Hopper"),
        ]),
    ]
    import_roster(repo, courses)
    return courses
