"""SQLite repository used by the importers and the report export.

Methods never commit: callers wrap them in `SQLiteDatabase.transaction()`
so one course is written atomically.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional

from .db import SQLiteDatabase
from .utils import norm_text


@dataclass
class SQLiteRepository:
    """Thin data-access layer over the contacteur schema."""

    db: SQLiteDatabase

    # ---- courses & students -------------------------------------------------

    def get_course_id(self, *, code: str) -> Optional[int]:
        conn = self.db.connect()
        row = conn.execute("SELECT id FROM course WHERE code = ?;", (code,)).fetchone()
        return int(row["id"]) if row else None

    def ensure_course(self, *, code: str, name: Optional[str] = None) -> int:
        conn = self.db.connect()
        conn.execute("INSERT OR IGNORE INTO course(code, name) VALUES (?, ?);", (code, name))
        course_id = self.get_course_id(code=code)
        assert course_id is not None
        return course_id

    def ensure_student(
        self,
        *,
        given_name: str,
        family_name: str,
        course_id: int,
        birth_date: Optional[str] = None,
    ) -> int:
        conn = self.db.connect()
        conn.execute(
            """
            INSERT INTO student(given_name, family_name, course_id, birth_date)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(given_name, family_name, course_id) DO UPDATE SET
              birth_date=COALESCE(excluded.birth_date, student.birth_date)
            ;
            """,
            (given_name, family_name, course_id, birth_date),
        )
        row = conn.execute(
            "SELECT id FROM student WHERE given_name = ? AND family_name = ? AND course_id = ?;",
            (given_name, family_name, course_id),
        ).fetchone()
        assert row is not None
        return int(row["id"])

    def find_student_id(self, *, given_name: str, family_name: str, course_id: int) -> Optional[int]:
        """Natural-key lookup, case and whitespace insensitive."""
        conn = self.db.connect()
        key = (norm_text(given_name), norm_text(family_name))
        rows = conn.execute(
            "SELECT id, given_name, family_name FROM student WHERE course_id = ? ORDER BY id;",
            (course_id,),
        ).fetchall()
        for r in rows:
            if (norm_text(r["given_name"]), norm_text(r["family_name"])) == key:
                return int(r["id"])
        return None

    def find_student_by_preferred_name(self, *, preferred_name: str, course_id: int) -> Optional[int]:
        conn = self.db.connect()
        key = norm_text(preferred_name)
        if not key:
            return None
        rows = conn.execute(
            "SELECT id, preferred_name FROM student WHERE course_id = ? AND preferred_name IS NOT NULL ORDER BY id;",
            (course_id,),
        ).fetchall()
        for r in rows:
            if norm_text(r["preferred_name"]) == key:
                return int(r["id"])
        return None

    def set_preferred_name(self, *, student_id: int, preferred_name: str) -> None:
        conn = self.db.connect()
        conn.execute("UPDATE student SET preferred_name = ? WHERE id = ?;", (preferred_name, student_id))

    def add_student_labels(self, *, student_id: int, labels: Iterable[str]) -> None:
        conn = self.db.connect()
        for label in sorted(labels):
            # labels are an open set: unknown markers get their own row
            conn.execute("INSERT OR IGNORE INTO label(name) VALUES (?);", (label,))
            conn.execute(
                """
                INSERT OR IGNORE INTO student_label(student_id, label_id)
                SELECT ?, id FROM label WHERE name = ?;
                """,
                (student_id, label),
            )

    # ---- contacts -------------------------------------------------------------

    def ensure_contact(
        self,
        *,
        student_id: int,
        full_name: str,
        relation: Optional[str],
        correspondence: bool,
        priority: Optional[int],
    ) -> int:
        conn = self.db.connect()
        conn.execute(
            """
            INSERT OR IGNORE INTO student_contact(student_id, full_name, relation, correspondence, automatic, priority)
            VALUES (?, ?, ?, ?, 1, ?);
            """,
            (student_id, full_name, relation, 1 if correspondence else 0, priority),
        )
        row = conn.execute(
            "SELECT id FROM student_contact WHERE student_id = ? AND full_name = ?;",
            (student_id, full_name),
        ).fetchone()
        assert row is not None
        return int(row["id"])

    def add_contact_item(self, *, contact_id: int, contact_type: str, value: str) -> None:
        conn = self.db.connect()
        conn.execute(
            """
            INSERT OR IGNORE INTO student_contact_item(contact_id, type_id, value, automatic)
            SELECT ?, id, ?, 1 FROM contact_type WHERE type = ?;
            """,
            (contact_id, value, contact_type),
        )

    # ---- evaluations ----------------------------------------------------------

    def get_scale_id(self, *, name: str) -> Optional[int]:
        conn = self.db.connect()
        row = conn.execute("SELECT id FROM scale WHERE name = ?;", (name,)).fetchone()
        return int(row["id"]) if row else None

    def delete_evaluations(self, *, course_id: int) -> tuple[int, int]:
        """
        Removes every evaluation item, result and retake of a course.
        Returns (items deleted, results deleted).
        """
        conn = self.db.connect()
        retake_ids = [
            int(r["retake_id"])
            for r in conn.execute(
                """
                SELECT DISTINCT r.retake_id
                FROM evaluation_result AS r
                JOIN evaluation_item AS i ON i.id = r.item_id
                WHERE i.course_id = ? AND r.retake_id IS NOT NULL;
                """,
                (course_id,),
            ).fetchall()
        ]
        n_results = conn.execute(
            "DELETE FROM evaluation_result WHERE item_id IN (SELECT id FROM evaluation_item WHERE course_id = ?);",
            (course_id,),
        ).rowcount
        # a retake can only go once no other course still points at it
        conn.executemany(
            """
            DELETE FROM evaluation_retake
            WHERE id = ? AND NOT EXISTS (SELECT 1 FROM evaluation_result WHERE retake_id = ?);
            """,
            [(rid, rid) for rid in retake_ids],
        )
        n_items = conn.execute("DELETE FROM evaluation_item WHERE course_id = ?;", (course_id,)).rowcount
        return n_items, n_results

    def insert_evaluation_item(
        self,
        *,
        name: str,
        course_id: int,
        parent_id: Optional[int],
        sibling_index: int,
        scale_id: Optional[int] = None,
        formula: Optional[str] = None,
    ) -> int:
        conn = self.db.connect()
        cur = conn.execute(
            """
            INSERT INTO evaluation_item(name, course_id, parent_id, sibling_index, scale_id, formula)
            VALUES (?, ?, ?, ?, ?, ?);
            """,
            (name, course_id, parent_id, sibling_index, scale_id, formula),
        )
        return int(cur.lastrowid)

    def insert_result(
        self,
        *,
        item_id: int,
        student_id: int,
        result: float,
        retake_id: Optional[int] = None,
    ) -> None:
        conn = self.db.connect()
        conn.execute(
            "INSERT INTO evaluation_result(item_id, retake_id, student_id, result) VALUES (?, ?, ?, ?);",
            (item_id, retake_id, student_id, float(result)),
        )

    def insert_retake(self, *, taken_at: str, excluded: bool) -> int:
        conn = self.db.connect()
        cur = conn.execute(
            "INSERT INTO evaluation_retake(taken_at, excluded) VALUES (?, ?);",
            (taken_at, 1 if excluded else 0),
        )
        return int(cur.lastrowid)

    def evaluation_rows(self, *, course_id: int) -> List[dict]:
        """
        Evaluation items of a course reachable from a top-level item,
        parents before children, siblings by sibling_index.
        """
        conn = self.db.connect()
        rows = conn.execute(
            """
            WITH RECURSIVE tree(id, name, parent_id, sibling_index, scale_id, depth) AS (
                SELECT id, name, parent_id, sibling_index, scale_id, 0
                    FROM evaluation_item
                    WHERE course_id = ? AND parent_id IS NULL
                UNION ALL
                SELECT i.id, i.name, i.parent_id, i.sibling_index, i.scale_id, tree.depth + 1
                    FROM evaluation_item AS i
                    JOIN tree ON i.parent_id = tree.id
            )
            SELECT id, name, parent_id, sibling_index, scale_id, depth
            FROM tree
            ORDER BY depth, parent_id, sibling_index;
            """,
            (course_id,),
        ).fetchall()
        return [dict(r) for r in rows]

    # ---- reporting ------------------------------------------------------------

    def list_courses(self) -> List[dict]:
        conn = self.db.connect()
        return [dict(r) for r in conn.execute("SELECT id, code, name FROM course ORDER BY code;").fetchall()]

    def list_students(self) -> List[dict]:
        conn = self.db.connect()
        rows = conn.execute(
            """
            SELECT s.id, c.code AS course, s.given_name, s.family_name, s.preferred_name,
                   COALESCE(GROUP_CONCAT(l.name, ', '), '') AS labels
            FROM student AS s
            JOIN course AS c ON c.id = s.course_id
            LEFT JOIN student_label AS sl ON sl.student_id = s.id
            LEFT JOIN label AS l ON l.id = sl.label_id
            GROUP BY s.id
            ORDER BY c.code, s.given_name, s.family_name;
            """
        ).fetchall()
        return [dict(r) for r in rows]

    def list_contacts(self) -> List[dict]:
        """One row per contact with correspondence enabled, coordinates pivoted into columns."""
        conn = self.db.connect()
        rows = conn.execute(
            """
            SELECT c.code AS course, s.given_name, s.family_name,
                   sc.full_name, COALESCE(sc.relation, '') AS relation, sc.priority,
                   COALESCE(MAX(CASE WHEN t.type = 'Courriel' THEN i.value END), '') AS email,
                   COALESCE(MAX(CASE WHEN t.type = 'Téléphone au domicile' THEN i.value END), '') AS home_phone,
                   COALESCE(MAX(CASE WHEN t.type = 'Téléphone au travail' THEN i.value END), '') AS work_phone,
                   COALESCE(MAX(CASE WHEN t.type = 'Téléphone cellulaire' THEN i.value END), '') AS cell_phone
            FROM student_contact AS sc
            JOIN student AS s ON s.id = sc.student_id
            JOIN course AS c ON c.id = s.course_id
            LEFT JOIN student_contact_item AS i ON i.contact_id = sc.id
            LEFT JOIN contact_type AS t ON t.id = i.type_id
            WHERE sc.correspondence = 1
            GROUP BY sc.id
            ORDER BY c.code, s.given_name, s.family_name, sc.priority, sc.full_name;
            """
        ).fetchall()
        return [dict(r) for r in rows]

    def list_results(self, *, course_id: int) -> List[dict]:
        conn = self.db.connect()
        rows = conn.execute(
            """
            SELECT r.item_id, r.student_id, r.result, r.retake_id,
                   s.given_name, s.family_name, s.preferred_name
            FROM evaluation_result AS r
            JOIN evaluation_item AS i ON i.id = r.item_id
            JOIN student AS s ON s.id = r.student_id
            WHERE i.course_id = ? AND r.result IS NOT NULL
            ORDER BY s.given_name, s.family_name;
            """,
            (course_id,),
        ).fetchall()
        return [dict(r) for r in rows]

    def count_rows(self, table: str, *, course_id: Optional[int] = None) -> int:
        conn = self.db.connect()
        if course_id is None:
            row = conn.execute(f"SELECT COUNT(*) AS n FROM {table};").fetchone()
        elif table == "evaluation_item":
            row = conn.execute("SELECT COUNT(*) AS n FROM evaluation_item WHERE course_id = ?;", (course_id,)).fetchone()
        elif table == "evaluation_result":
            row = conn.execute(
                """
                SELECT COUNT(*) AS n FROM evaluation_result
                WHERE item_id IN (SELECT id FROM evaluation_item WHERE course_id = ?);
                """,
                (course_id,),
            ).fetchone()
        else:
            raise ValueError(f"count by course is not supported for {table}")
        return int(row["n"])
