"""
Merges decoded courses into the database.

For every course, inside one transaction:
- resolve the course and its students by natural key (they must already exist)
- update preferred names and labels
- drop the course's evaluation items, results and retakes
- reinsert the hierarchy in decode order with parent ids and sibling indices
- insert one result per (component, student) holding a number

Re-running on an edited workbook is how edits propagate; there is no diffing.
"""
from __future__ import annotations
import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from .errors import ContacteurError, UnknownCourse, UnknownStudent
from .extract import Course, Retake, extract_courses, find_retakes
from .forest import NodeId
from .hierarchy import EvaluationHierarchy
from .ingest import Source, load_tables
from .repository import SQLiteRepository
from .utils import load_json, norm_text, rules_path

logger = logging.getLogger(__name__)

RULES = load_json(rules_path(), {})
DEFAULT_SCALE = RULES.get("default_scale", "Niveau")


@dataclass
class ImportStats:
    course: str
    students: int = 0
    items: int = 0
    results: int = 0
    items_deleted: int = 0
    results_deleted: int = 0


@dataclass
class ImportReport:
    imported: List[ImportStats] = field(default_factory=list)
    failed: List[Dict[str, str]] = field(default_factory=list)
    retakes: int = 0
    retakes_skipped: int = 0

    @property
    def ok(self) -> bool:
        return not self.failed


def _insert_subtree(
    repo: SQLiteRepository,
    hierarchy: EvaluationHierarchy,
    node: NodeId,
    *,
    course_id: int,
    parent_id: Optional[int],
    sibling_index: int,
    scale_id: Optional[int],
    item_ids: Dict[int, int],
    stats: ImportStats,
) -> None:
    item = hierarchy.item(node)
    item_id = repo.insert_evaluation_item(
        name=item.name,
        course_id=course_id,
        parent_id=parent_id,
        sibling_index=sibling_index,
        scale_id=scale_id if item.is_component else None,
        formula=item.formula if item.is_component else None,
    )
    stats.items += 1
    if item.is_component:
        item_ids[item.leaf_index] = item_id
    for i, child in enumerate(hierarchy.children(node)):
        _insert_subtree(
            repo, hierarchy, child,
            course_id=course_id, parent_id=item_id, sibling_index=i,
            scale_id=scale_id, item_ids=item_ids, stats=stats,
        )


def import_course(repo: SQLiteRepository, course: Course, *, scale: str = DEFAULT_SCALE) -> ImportStats:
    stats = ImportStats(course=course.code)
    hierarchy = course.evaluations

    with repo.db.transaction():
        course_id = repo.get_course_id(code=course.code)
        if course_id is None:
            raise UnknownCourse(course.code)

        student_ids: List[int] = []
        for s in course.students:
            sid = repo.find_student_id(given_name=s.given_name, family_name=s.family_name, course_id=course_id)
            if sid is None:
                raise UnknownStudent(s.given_name, s.family_name, course.code)
            repo.set_preferred_name(student_id=sid, preferred_name=s.preferred_name)
            repo.add_student_labels(student_id=sid, labels=s.labels)
            student_ids.append(sid)
        stats.students = len(student_ids)

        stats.items_deleted, stats.results_deleted = repo.delete_evaluations(course_id=course_id)

        scale_id = repo.get_scale_id(name=scale)
        if scale_id is None:
            raise ContacteurError(f"Scale '{scale}' is not defined in the database.")

        # leaf_index -> evaluation_item.id
        item_ids: Dict[int, int] = {}
        for i, ev in enumerate(hierarchy.evaluations):
            _insert_subtree(
                repo, hierarchy, ev,
                course_id=course_id, parent_id=None, sibling_index=i,
                scale_id=scale_id, item_ids=item_ids, stats=stats,
            )

        for leaf_index in range(hierarchy.leaf_count):
            item_id = item_ids[leaf_index]
            for sid, s in zip(student_ids, course.students):
                value = s.grade(leaf_index)
                if value is None:
                    continue
                repo.insert_result(item_id=item_id, student_id=sid, result=value)
                stats.results += 1

    logger.info(
        "%s: %d students, %d items, %d results (replaced %d items, %d results)",
        stats.course, stats.students, stats.items, stats.results,
        stats.items_deleted, stats.results_deleted,
    )
    return stats


def _section_components(repo: SQLiteRepository, course_id: int, evaluation_number: int, section_name: str) -> List[int]:
    rows = repo.evaluation_rows(course_id=course_id)
    evaluations = [r for r in rows if r["parent_id"] is None]
    if not 1 <= evaluation_number <= len(evaluations):
        return []
    ev_id = evaluations[evaluation_number - 1]["id"]
    key = norm_text(section_name)
    for r in rows:
        if r["parent_id"] == ev_id and norm_text(r["name"]) == key:
            return [c["id"] for c in rows if c["parent_id"] == r["id"]]
    return []


def import_retakes(
    repo: SQLiteRepository,
    retakes: List[Retake],
    *,
    skip_courses: Iterable[str] = (),
) -> tuple[int, int]:
    """
    Stores retakes after the courses are imported.
    Retakes of `skip_courses` (courses whose import failed, so their old
    retakes are still stored) are skipped.
    Grades map onto the section's components by position.
    Returns (imported, skipped).
    """
    imported = skipped = 0
    skip = set(skip_courses)
    with repo.db.transaction():
        for r in retakes:
            if r.course_code in skip:
                logger.warning("retake row %s skipped (%s was not imported)", r.row + 1, r.course_code)
                skipped += 1
                continue
            course_id = repo.get_course_id(code=r.course_code)
            sid = None
            components: List[int] = []
            if course_id is not None:
                sid = repo.find_student_by_preferred_name(preferred_name=r.preferred_name, course_id=course_id)
                components = _section_components(repo, course_id, r.evaluation_number, r.section_name)
            if sid is None or not components or not r.grades:
                logger.warning(
                    "retake row %s skipped (%s, %s, evaluation %s, section %s)",
                    r.row + 1, r.course_code, r.preferred_name, r.evaluation_number, r.section_name,
                )
                skipped += 1
                continue

            retake_id = repo.insert_retake(taken_at=r.taken_at, excluded=r.excluded)
            for item_id, value in zip(components, r.grades):
                repo.insert_result(item_id=item_id, student_id=sid, result=value, retake_id=retake_id)
            imported += 1
    return imported, skipped


def import_courses(
    repo: SQLiteRepository,
    courses: List[Course],
    *,
    scale: str = DEFAULT_SCALE,
    skip_failed: bool = False,
) -> ImportReport:
    """
    Imports each course in its own transaction. A failing course is rolled
    back; with skip_failed it is recorded and the batch goes on, otherwise
    the error propagates and later courses are left untouched.
    """
    report = ImportReport()
    for course in courses:
        try:
            report.imported.append(import_course(repo, course, scale=scale))
        except (ContacteurError, sqlite3.Error) as e:
            if not skip_failed:
                raise
            logger.error("%s: import skipped: %s", course.code, e)
            report.failed.append({"course": course.code, "error": str(e)})
    return report


def import_workbook(
    repo: SQLiteRepository,
    source: Source,
    *,
    scale: str = DEFAULT_SCALE,
    skip_failed: bool = False,
) -> ImportReport:
    tables = load_tables(source)
    report = import_courses(repo, extract_courses(tables), scale=scale, skip_failed=skip_failed)
    retakes = find_retakes(tables)
    if retakes:
        report.retakes, report.retakes_skipped = import_retakes(
            repo, retakes, skip_courses=[f["course"] for f in report.failed],
        )
    return report


def summarize(report: ImportReport) -> List[Dict[str, Any]]:
    return [
        {
            "Cours": s.course,
            "Élèves": s.students,
            "Items": s.items,
            "Résultats": s.results,
            "Items remplacés": s.items_deleted,
            "Résultats remplacés": s.results_deleted,
        }
        for s in report.imported
    ]
