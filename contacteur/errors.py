"""Exceptions raised by the decoder, the forest and the importers.

Store constraint violations are not wrapped: `sqlite3.IntegrityError`
reaches the caller as raised by the driver.
"""

from __future__ import annotations


class ContacteurError(RuntimeError):
    """Base class for every error raised by this package."""


class InvalidHandle(ContacteurError):
    """A node handle that does not belong to the forest it was used with."""


class UnknownCourse(ContacteurError):
    def __init__(self, code: str):
        super().__init__(
            f"Course '{code}' is not in the database. "
            "Run the roster import before importing grades."
        )
        self.code = code


class UnknownStudent(ContacteurError):
    def __init__(self, given_name: str, family_name: str, course_code: str):
        super().__init__(
            f"Student '{given_name} {family_name}' is not enrolled in '{course_code}'. "
            "Run the roster import before importing grades."
        )
        self.given_name = given_name
        self.family_name = family_name
        self.course_code = course_code


class WorkbookError(ContacteurError):
    """The workbook could not be opened or has an unsupported format."""
