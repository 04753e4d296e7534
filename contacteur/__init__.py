"""
This package holds:
- workbook loading (XLSX/ODS)
- the evaluation hierarchy decoder (three header rows -> ordered tree)
- student and grade extraction
- the SQLite store and its repository
- the roster (students/contacts) and grade importers
- the report export
"""
from .errors import ContacteurError, InvalidHandle, UnknownCourse, UnknownStudent, WorkbookError
from .forest import Forest, NodeId
from .ingest import load_tables, is_course_sheet
from .hierarchy import EvaluationHierarchy, EvaluationItem, decode_evaluations, tree_from_rows
from .extract import Course, Student, extract_students, extract_courses, load_courses
from .db import SQLiteDatabase, init_db
from .repository import SQLiteRepository
from .contacts import Contact, RosterCourse, RosterStudent, import_roster
from .importer import ImportReport, ImportStats, import_course, import_courses, import_workbook
from .export import export_to_excel_bytes, load_evaluation_tree

__all__ = [
    "ContacteurError",
    "InvalidHandle",
    "UnknownCourse",
    "UnknownStudent",
    "WorkbookError",
    "Forest",
    "NodeId",
    "load_tables",
    "is_course_sheet",
    "EvaluationHierarchy",
    "EvaluationItem",
    "decode_evaluations",
    "tree_from_rows",
    "Course",
    "Student",
    "extract_students",
    "extract_courses",
    "load_courses",
    "SQLiteDatabase",
    "init_db",
    "SQLiteRepository",
    "Contact",
    "RosterCourse",
    "RosterStudent",
    "import_roster",
    "ImportReport",
    "ImportStats",
    "import_course",
    "import_courses",
    "import_workbook",
    "export_to_excel_bytes",
    "load_evaluation_tree",
]
