from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from .repository import SQLiteRepository

logger = logging.getLogger(__name__)

# contact_type.type values
EMAIL = "Courriel"
HOME_PHONE = "Téléphone au domicile"
WORK_PHONE = "Téléphone au travail"
CELL_PHONE = "Téléphone cellulaire"


@dataclass
class Contact:
    full_name: str
    relation: Optional[str] = None
    home_phone: Optional[str] = None
    work_phone: Optional[str] = None
    cell_phone: Optional[str] = None
    email: Optional[str] = None
    correspondence: bool = False
    priority: Optional[int] = None

    def coordinates(self) -> List[tuple[str, str]]:
        pairs = [
            (HOME_PHONE, self.home_phone),
            (WORK_PHONE, self.work_phone),
            (CELL_PHONE, self.cell_phone),
            (EMAIL, self.email),
        ]
        return [(t, v.strip()) for t, v in pairs if v and v.strip()]


@dataclass
class RosterStudent:
    given_name: str
    family_name: str
    birth_date: Optional[str] = None
    contacts: List[Contact] = field(default_factory=list)


@dataclass
class RosterCourse:
    code: str
    students: List[RosterStudent] = field(default_factory=list)


def import_roster(repo: SQLiteRepository, courses: Iterable[RosterCourse]) -> dict:
    """
    Provisioning pass run before any grade import: creates the missing
    courses, students, contacts and contact items. Existing rows are kept.
    Contacts without a single coordinate are skipped.
    """
    stats = {"courses": 0, "students": 0, "contacts": 0, "contacts_skipped": 0}

    with repo.db.transaction():
        for course in courses:
            course_id = repo.ensure_course(code=course.code)
            stats["courses"] += 1

            for st in course.students:
                sid = repo.ensure_student(
                    given_name=st.given_name,
                    family_name=st.family_name,
                    course_id=course_id,
                    birth_date=st.birth_date,
                )
                stats["students"] += 1

                for contact in st.contacts:
                    coords = contact.coordinates()
                    if not coords:
                        stats["contacts_skipped"] += 1
                        continue
                    contact_id = repo.ensure_contact(
                        student_id=sid,
                        full_name=contact.full_name,
                        relation=contact.relation,
                        correspondence=contact.correspondence,
                        priority=contact.priority,
                    )
                    for contact_type, value in coords:
                        repo.add_contact_item(contact_id=contact_id, contact_type=contact_type, value=value)
                    stats["contacts"] += 1

    logger.info(
        "roster: %d courses, %d students, %d contacts (%d without coordinates)",
        stats["courses"], stats["students"], stats["contacts"], stats["contacts_skipped"],
    )
    return stats
