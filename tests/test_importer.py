import sqlite3

import pytest

from contacteur.errors import ContacteurError, UnknownCourse, UnknownStudent
from contacteur.export import load_evaluation_tree, results_frame
from contacteur.extract import Retake, extract_students
from contacteur.hierarchy import decode_evaluations
from contacteur.importer import import_course, import_courses, import_retakes, summarize

HEADERS = (
    ["Term 1", "", ""],
    ["Tests", "", "Homework"],
    ["Quiz 1", "Quiz 2", "HW 1"],
)
STUDENTS = [
    ["Ada", "V", "Lovelace", "Ada", None, 3, 4, None],
    ["Al", "", "Turing", "Alan", None, 2, None, 4],
]


def _courses(make_sheet, students=STUDENTS, headers=HEADERS, code="MAT1A"):
    df = make_sheet(*headers, students)
    return extract_students(df, decode_evaluations(df), code)


def _course(make_sheet, students=STUDENTS, headers=HEADERS, code="MAT1A"):
    return _courses(make_sheet, students, headers, code)[0]


def _counts(repo, course_id):
    return (
        repo.count_rows("evaluation_item", course_id=course_id),
        repo.count_rows("evaluation_result", course_id=course_id),
    )


def _tree(repo, course_id):
    f = load_evaluation_tree(repo, course_id)
    return [(f.depth(n), f.value(n)["name"], f.value(n)["sibling_index"]) for n in f.walk()]


class TestImportCourse:
    def test_inserts_hierarchy_and_sparse_results(self, repo, roster, make_sheet):
        stats = import_course(repo, _course(make_sheet))
        course_id = repo.get_course_id(code="MAT1A")

        assert (stats.students, stats.items, stats.results) == (2, 6, 4)
        assert _counts(repo, course_id) == (6, 4)

        frame = results_frame(repo)
        assert frame[["Prénom", "Composant", "Résultat"]].values.tolist() == [
            ["Ada", "Quiz 1", 3.0],
            ["Alan", "Quiz 1", 2.0],
            ["Ada", "Quiz 2", 4.0],
            ["Alan", "HW 1", 4.0],
        ]

    def test_only_components_carry_a_scale(self, repo, roster, make_sheet):
        import_course(repo, _course(make_sheet))
        rows = repo.evaluation_rows(course_id=repo.get_course_id(code="MAT1A"))
        niveau = repo.get_scale_id(name="Niveau")
        assert [r["scale_id"] for r in rows if r["depth"] < 2] == [None] * 3
        assert [r["scale_id"] for r in rows if r["depth"] == 2] == [niveau] * 3

    def test_round_trip_keeps_sibling_order(self, repo, roster, make_sheet):
        course = _course(make_sheet)
        import_course(repo, course)

        h = course.evaluations
        decoded = [
            (h.forest.depth(n), h.item(n).name, h.item(n).local_index) for n in h.forest.walk()
        ]
        assert _tree(repo, repo.get_course_id(code="MAT1A")) == decoded

    def test_idempotent(self, repo, roster, make_sheet):
        import_course(repo, _course(make_sheet))
        course_id = repo.get_course_id(code="MAT1A")
        counts, tree, frame = _counts(repo, course_id), _tree(repo, course_id), results_frame(repo)
        labels = repo.count_rows("student_label")

        stats = import_course(repo, _course(make_sheet))
        assert (stats.items_deleted, stats.results_deleted) == (6, 4)
        assert _counts(repo, course_id) == counts
        assert _tree(repo, course_id) == tree
        assert results_frame(repo).equals(frame)
        assert repo.count_rows("student_label") == labels

    def test_removed_section_column(self, repo, roster, make_sheet):
        import_course(repo, _course(make_sheet))
        course_id = repo.get_course_id(code="MAT1A")

        students = [
            ["Ada", "V", "Lovelace", "Ada", None, None],
            ["Al", "", "Turing", "Alan", None, 4],
        ]
        import_course(repo, _course(make_sheet, students, (["Term 1"], ["Homework"], ["HW 1"])))

        assert _tree(repo, course_id) == [(0, "Term 1", 0), (1, "Homework", 0), (2, "HW 1", 0)]
        assert _counts(repo, course_id) == (3, 1)
        frame = results_frame(repo)
        assert frame["Section"].tolist() == ["Homework"]

    def test_students_preferred_names_and_labels(self, repo, roster, make_sheet):
        import_course(repo, _course(make_sheet))
        by_name = {s["given_name"]: s for s in repo.list_students()}
        assert by_name["Ada"]["preferred_name"] == "Ada"
        assert by_name["Ada"]["labels"] == "Virtuel"
        assert by_name["Alan"]["preferred_name"] == "Al"
        assert by_name["Alan"]["labels"] == ""

        students = [["Alan T.", "AP", "Turing", "Alan", None]]
        import_course(repo, _course(make_sheet, students))
        by_name = {s["given_name"]: s for s in repo.list_students()}
        assert by_name["Alan"]["preferred_name"] == "Alan T."
        assert by_name["Alan"]["labels"] == "AP"
        # labels are only ever added
        assert by_name["Ada"]["labels"] == "Virtuel"

    def test_natural_key_ignores_case_and_spacing(self, repo, roster, make_sheet):
        students = [["Ada", "", "  LOVELACE ", "ada", None, 1]]
        stats = import_course(repo, _course(make_sheet, students))
        assert stats.students == 1

    def test_unknown_course(self, repo, roster, make_sheet):
        with pytest.raises(UnknownCourse) as exc:
            import_course(repo, _course(make_sheet, code="PHY2B"))
        assert exc.value.code == "PHY2B"
        assert repo.count_rows("evaluation_item") == 0

    def test_unknown_student_rolls_back(self, repo, roster, make_sheet):
        import_course(repo, _course(make_sheet))
        course_id = repo.get_course_id(code="MAT1A")
        before = (_counts(repo, course_id), _tree(repo, course_id))

        students = STUDENTS + [["Bob", "", "Nobody", "Bob", None, 1, 1, 1]]
        with pytest.raises(UnknownStudent) as exc:
            import_course(repo, _course(make_sheet, students, (["Term 2"], ["Labs"], ["Lab 1"])))
        assert (exc.value.given_name, exc.value.course_code) == ("Bob", "MAT1A")

        assert (_counts(repo, course_id), _tree(repo, course_id)) == before

    def test_student_listed_twice_rolls_back(self, repo, roster, make_sheet):
        import_course(repo, _course(make_sheet))
        course_id = repo.get_course_id(code="MAT1A")
        before = (_counts(repo, course_id), results_frame(repo))

        students = STUDENTS + [["Ada", "", "Lovelace", "Ada", None, 1, None, None]]
        with pytest.raises(sqlite3.IntegrityError):
            import_course(repo, _course(make_sheet, students))

        assert _counts(repo, course_id) == before[0]
        assert results_frame(repo).equals(before[1])

    def test_unknown_scale_after_delete_rolls_back(self, repo, roster, make_sheet):
        import_course(repo, _course(make_sheet))
        course_id = repo.get_course_id(code="MAT1A")
        before = (_counts(repo, course_id), _tree(repo, course_id))

        with pytest.raises(ContacteurError):
            import_course(repo, _course(make_sheet), scale="Lettres")
        assert (_counts(repo, course_id), _tree(repo, course_id)) == before

    def test_percentage_scale(self, repo, roster, make_sheet):
        import_course(repo, _course(make_sheet), scale="Pourcentage")
        rows = repo.evaluation_rows(course_id=repo.get_course_id(code="MAT1A"))
        pct = repo.get_scale_id(name="Pourcentage")
        assert {r["scale_id"] for r in rows if r["depth"] == 2} == {pct}


class TestImportCourses:
    def test_fanned_out_courses(self, repo, roster, make_sheet):
        students = STUDENTS + [["Grace", "", "Hopper", "Grace", "MAT1A1", 4, 4, 4]]
        report = import_courses(repo, _courses(make_sheet, students))
        assert report.ok
        assert [s.course for s in report.imported] == ["MAT1A", "MAT1A1"]
        assert _counts(repo, repo.get_course_id(code="MAT1A1")) == (6, 3)

    def test_failure_stops_batch(self, repo, roster, make_sheet):
        courses = [_course(make_sheet, code="PHY2B"), _course(make_sheet)]
        with pytest.raises(UnknownCourse):
            import_courses(repo, courses)
        assert repo.count_rows("evaluation_item") == 0

    def test_skip_failed_keeps_other_courses(self, repo, roster, make_sheet):
        courses = [_course(make_sheet, code="PHY2B"), _course(make_sheet)]
        report = import_courses(repo, courses, skip_failed=True)

        assert not report.ok
        assert [f["course"] for f in report.failed] == ["PHY2B"]
        assert [s.course for s in report.imported] == ["MAT1A"]
        assert summarize(report)[0]["Résultats"] == 4
        assert repo.count_rows("evaluation_item") == 6


class TestImportRetakes:
    def _retake(self, **kw):
        data = dict(
            taken_at="2024-03-01 10:30:00", course_code="MAT1A", preferred_name="Ada",
            excluded=False, evaluation_number=1, section_name="tests", grades=[4.0, 3.0],
        )
        data.update(kw)
        return Retake(**data)

    def test_retake_results_map_to_section_components(self, repo, roster, make_sheet):
        import_course(repo, _course(make_sheet))
        imported, skipped = import_retakes(repo, [
            self._retake(),
            self._retake(preferred_name="Nobody"),
            self._retake(section_name="Labs"),
            self._retake(evaluation_number=3),
        ])
        assert (imported, skipped) == (1, 3)
        assert repo.count_rows("evaluation_retake") == 1

        frame = results_frame(repo)
        retakes = frame[frame["Reprise"] == "oui"]
        assert retakes[["Composant", "Résultat"]].values.tolist() == [["Quiz 1", 4.0], ["Quiz 2", 3.0]]

    def test_reimport_drops_retakes(self, repo, roster, make_sheet):
        import_course(repo, _course(make_sheet))
        import_retakes(repo, [self._retake()])
        import_course(repo, _course(make_sheet))
        assert repo.count_rows("evaluation_retake") == 0
        assert _counts(repo, repo.get_course_id(code="MAT1A")) == (6, 4)


def test_store_constraints_surface_verbatim(repo, roster):
    course_id = repo.get_course_id(code="MAT1A")
    with pytest.raises(sqlite3.IntegrityError):
        with repo.db.transaction():
            repo.insert_evaluation_item(name="Term 1", course_id=course_id, parent_id=None, sibling_index=0, scale_id=1)


class TestRetakeMatching:
    def _retake(self, **kw):
        data = dict(
            taken_at="2024-03-01 10:30:00", course_code="MAT1A", preferred_name="Ada",
            excluded=False, evaluation_number=1, section_name="Tests", grades=[4.0],
        )
        data.update(kw)
        return Retake(**data)

    def test_blank_name_never_matches_students_without_preferred_name(self, repo, roster, make_sheet):
        # only Ada is on the sheet, Alan keeps a NULL preferred name
        import_course(repo, _course(make_sheet, [STUDENTS[0]]))
        imported, skipped = import_retakes(repo, [self._retake(preferred_name="")])

        assert (imported, skipped) == (0, 1)
        assert repo.count_rows("evaluation_retake") == 0
        assert repo.find_student_by_preferred_name(
            preferred_name="", course_id=repo.get_course_id(code="MAT1A"),
        ) is None

    def test_retakes_of_failed_courses_skipped(self, repo, roster, make_sheet):
        import_course(repo, _course(make_sheet))
        imported, skipped = import_retakes(repo, [self._retake()], skip_courses=["MAT1A"])
        assert (imported, skipped) == (0, 1)
        assert repo.count_rows("evaluation_retake") == 0
