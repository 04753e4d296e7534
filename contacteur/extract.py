from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

import pandas as pd

from .hierarchy import HEADER_ROWS, EvaluationHierarchy, decode_evaluations
from .ingest import Source, is_course_sheet, load_tables
from .utils import cell_number, cell_text, is_blank, load_json, rules_path

logger = logging.getLogger(__name__)

RULES = load_json(rules_path(), {})

COL_PREFERRED_NAME = 0
COL_LABELS = 1
COL_FAMILY_NAME = 2
COL_GIVEN_NAME = 3
COL_COURSE = 4

# label name -> marker looked up in the labels cell (case sensitive)
LABEL_MARKERS: Dict[str, str] = RULES.get("label_markers", {"Virtuel": "V", "AP": "AP"})

RETAKE_SHEET = RULES.get("retake_sheet", "Reprises")
RETAKE_EXCLUDED_SUFFIX = " (x)"
RETAKE_MAX_GRADES = 4
# =========================

# Records
# =========================
@dataclass
class Student:
    given_name: str
    family_name: str
    preferred_name: str
    course_code: str
    labels: Set[str] = field(default_factory=set)
    grades: List[Optional[float]] = field(default_factory=list)
    row: int = -1

    def grade(self, leaf_index: int) -> Optional[float]:
        return self.grades[leaf_index]


@dataclass
class Course:
    code: str
    evaluations: EvaluationHierarchy
    students: List[Student] = field(default_factory=list)
    sheet_name: str = ""


@dataclass
class Retake:
    taken_at: str
    course_code: str
    preferred_name: str
    excluded: bool
    evaluation_number: int
    section_name: str
    grades: List[float] = field(default_factory=list)
    row: int = -1
# =========================

# Students and grades
# =========================
def _text(df: pd.DataFrame, row: int, col: int) -> str:
    if row >= df.shape[0] or col >= df.shape[1]:
        return ""
    return cell_text(df.iat[row, col])


def _number(df: pd.DataFrame, row: int, col: int) -> Optional[float]:
    if row >= df.shape[0] or col >= df.shape[1]:
        return None
    return cell_number(df.iat[row, col])


def derive_labels(cell: str, markers: Dict[str, str] = LABEL_MARKERS) -> Set[str]:
    return {label for label, marker in markers.items() if marker and marker in cell}


def read_grades(df: pd.DataFrame, row: int, hierarchy: EvaluationHierarchy) -> List[Optional[float]]:
    # positional zip: one slot per component, in leaf order
    return [_number(df, row, col) for col in hierarchy.leaf_columns]


def extract_students(df_raw: pd.DataFrame, hierarchy: EvaluationHierarchy, sheet_code: str) -> List[Course]:
    """
    Reads body rows into students and splits them by effective course code.

    A row is a student when its preferred-name cell is filled; blank rows are
    skipped, never treated as the end of the list. The course column overrides
    the sheet code for that student.
    """
    courses: Dict[str, Course] = {}

    for row in range(HEADER_ROWS, df_raw.shape[0]):
        preferred = _text(df_raw, row, COL_PREFERRED_NAME)
        if not preferred:
            continue

        code = _text(df_raw, row, COL_COURSE) or sheet_code
        course = courses.get(code)
        if course is None:
            course = Course(code=code, evaluations=hierarchy, sheet_name=sheet_code)
            courses[code] = course

        course.students.append(Student(
            given_name=_text(df_raw, row, COL_GIVEN_NAME),
            family_name=_text(df_raw, row, COL_FAMILY_NAME),
            preferred_name=preferred,
            course_code=code,
            labels=derive_labels(_text(df_raw, row, COL_LABELS)),
            grades=read_grades(df_raw, row, hierarchy),
            row=row,
        ))

    if len(courses) > 1:
        logger.info("sheet %s split into %s", sheet_code, ", ".join(courses))
    return list(courses.values())


def extract_courses(tables: List[Dict[str, Any]]) -> List[Course]:
    out: List[Course] = []
    for t in tables:
        sheet = t["sheet_name"]
        if not is_course_sheet(sheet):
            logger.debug("sheet %s skipped (not a course code)", sheet)
            continue
        hierarchy = decode_evaluations(t["df_raw"])
        courses = extract_students(t["df_raw"], hierarchy, sheet)
        logger.info(
            "sheet %s: %d components, %d students",
            sheet, hierarchy.leaf_count, sum(len(c.students) for c in courses),
        )
        out.extend(courses)
    return out


def load_courses(source: Source) -> List[Course]:
    return extract_courses(load_tables(source))
# =========================

# Retakes
# =========================
def _row_grades(df: pd.DataFrame, row: int) -> List[float]:
    grades = []
    for i in range(RETAKE_MAX_GRADES):
        v = _number(df, row, 6 + i)
        if v is None:
            break
        grades.append(v)
    return grades


def extract_retakes(df_raw: pd.DataFrame) -> List[Retake]:
    """
    Retake sheet layout (row 0 is a header):
      0 timestamp | 1 course | 2 (unused) | 3 preferred name | 4 evaluation no. |
      5 section | 6..9 grades
    A following row whose first cell is empty continues the grade list.
    """
    out: List[Retake] = []
    for row in range(1, df_raw.shape[0]):
        first = df_raw.iat[row, 0] if df_raw.shape[1] else None
        if is_blank(first) or not hasattr(first, "year"):
            continue

        course = _text(df_raw, row, 1)
        section = _text(df_raw, row, 5)
        number = _number(df_raw, row, 4)
        if not course or not section or number is None:
            continue

        name = _text(df_raw, row, 3)
        excluded = name.endswith(RETAKE_EXCLUDED_SUFFIX)
        if excluded:
            name = name[: -len(RETAKE_EXCLUDED_SUFFIX)]
        name = name.strip()
        if not name:
            logger.debug("retake row %s skipped (no student)", row + 1)
            continue

        grades = _row_grades(df_raw, row)
        if row + 1 < df_raw.shape[0] and not _text(df_raw, row + 1, 0):
            grades.extend(_row_grades(df_raw, row + 1))

        out.append(Retake(
            taken_at=cell_text(first),
            course_code=course,
            preferred_name=name,
            excluded=excluded,
            evaluation_number=int(number),
            section_name=section,
            grades=grades,
            row=row,
        ))
    return out


def find_retakes(tables: List[Dict[str, Any]]) -> List[Retake]:
    for t in tables:
        if t["sheet_name"] == RETAKE_SHEET:
            return extract_retakes(t["df_raw"])
    return []
