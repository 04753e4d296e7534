from __future__ import annotations
from io import BytesIO
from typing import Dict, List

import pandas as pd

from .forest import Forest
from .hierarchy import tree_from_rows
from .repository import SQLiteRepository

STUDENT_COLS = ["Cours", "Prénom", "Nom", "Prénom préféré", "Étiquettes"]
CONTACT_COLS = ["Cours", "Prénom", "Nom", "Contact", "Relation", "Priorité",
                "Courriel", "Domicile", "Travail", "Cellulaire"]
EMAIL_COLS = ["Cours", "Prénom", "Nom", "Contact", "Relation", "Priorité", "Courriel"]
PHONE_COLS = ["Cours", "Prénom", "Nom", "Contact", "Relation", "Priorité", "Domicile", "Travail", "Cellulaire"]
RESULT_COLS = ["Cours", "Prénom", "Nom", "Évaluation", "Section", "Composant", "Résultat", "Reprise"]


def load_evaluation_tree(repo: SQLiteRepository, course_id: int) -> Forest[dict]:
    # rows come back parents first, siblings by sibling_index
    return tree_from_rows(repo.evaluation_rows(course_id=course_id))


def _leaf_paths(forest: Forest[dict]) -> List[Dict]:
    out = []
    for node in forest.walk():
        if not forest.is_leaf(node) or forest.depth(node) != 2:
            continue
        section = forest.parent(node)
        evaluation = forest.parent(section)
        out.append({
            "item_id": forest.value(node)["id"],
            "Évaluation": forest.value(evaluation)["name"],
            "Section": forest.value(section)["name"],
            "Composant": forest.value(node)["name"],
        })
    return out


def students_frame(repo: SQLiteRepository) -> pd.DataFrame:
    rows = repo.list_students()
    return pd.DataFrame(
        [[r["course"], r["given_name"], r["family_name"], r["preferred_name"] or "", r["labels"]] for r in rows],
        columns=STUDENT_COLS,
    )


def contacts_frame(repo: SQLiteRepository) -> pd.DataFrame:
    rows = repo.list_contacts()
    return pd.DataFrame(
        [[
            r["course"], r["given_name"], r["family_name"], r["full_name"], r["relation"],
            "" if r["priority"] is None else str(r["priority"]),
            r["email"], r["home_phone"], r["work_phone"], r["cell_phone"],
        ] for r in rows],
        columns=CONTACT_COLS,
    )


def results_frame(repo: SQLiteRepository) -> pd.DataFrame:
    """Every stored result, ordered course by course along the evaluation tree."""
    out = []
    for course in repo.list_courses():
        paths = _leaf_paths(load_evaluation_tree(repo, course["id"]))
        by_item: Dict[int, List[dict]] = {}
        for r in repo.list_results(course_id=course["id"]):
            by_item.setdefault(r["item_id"], []).append(r)
        for p in paths:
            for r in by_item.get(p["item_id"], []):
                out.append([
                    course["code"], r["given_name"], r["family_name"],
                    p["Évaluation"], p["Section"], p["Composant"],
                    float(r["result"]), "oui" if r["retake_id"] is not None else "",
                ])
    return pd.DataFrame(out, columns=RESULT_COLS)


def export_to_excel_bytes(repo: SQLiteRepository) -> bytes:
    students_df = students_frame(repo)
    contacts_df = contacts_frame(repo)
    emails_df = contacts_df[contacts_df["Courriel"] != ""][EMAIL_COLS]
    phones_df = contacts_df[PHONE_COLS]
    results_df = results_frame(repo)

    sheets = [
        ("Élèves", students_df),
        ("Contacts", contacts_df),
        ("Courriels", emails_df),
        ("Téléphones", phones_df),
        ("Résultats", results_df),
    ]

    bio = BytesIO()
    with pd.ExcelWriter(bio, engine="xlsxwriter") as writer:
        for name, df in sheets:
            df.to_excel(writer, index=False, sheet_name=name)

        wb = writer.book
        fmt_header = wb.add_format({"bold": True, "font_name": "Palatino Linotype", "font_size": 12,
                                    "bg_color": "#F2F2F2", "border": 1, "valign": "vcenter"})

        def format_df_sheet(sheet_name: str, df: pd.DataFrame, default_width: int = 16, max_width: int = 40):
            ws = writer.sheets.get(sheet_name)
            if ws is None:
                return
            ws.freeze_panes(1, 0)
            ws.autofilter(0, 0, max(1, len(df)), max(0, len(df.columns) - 1))
            for col, name in enumerate(df.columns):
                ws.write(0, col, name, fmt_header)
                w = max(10, min(max_width, int(len(str(name)) * 1.2) + 6))
                ws.set_column(col, col, max(default_width, w))

        for name, df in sheets:
            format_df_sheet(name, df)

    return bio.getvalue()
