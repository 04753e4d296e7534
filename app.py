from __future__ import annotations
import streamlit as st
import pandas as pd
from contacteur.errors import ContacteurError
from contacteur.ingest import load_tables
from contacteur.extract import extract_courses, find_retakes
from contacteur.db import init_db
from contacteur.repository import SQLiteRepository
from contacteur.importer import DEFAULT_SCALE, import_courses, import_retakes, summarize
from contacteur.export import export_to_excel_bytes
from contacteur.utils import db_path, setup_logging

setup_logging()
st.set_page_config(page_title="Contacteur", layout="wide")
st.title("Importation des résultats d'évaluation")
# =========================

# Helpers
# =========================
def _paths_frame(course) -> pd.DataFrame:
    rows = [
        {"Colonne": col + 1, "Évaluation": ev, "Section": sec, "Composant": comp}
        for col, (ev, sec, comp) in zip(course.evaluations.leaf_columns, course.evaluations.paths())
    ]
    return pd.DataFrame(rows, columns=["Colonne", "Évaluation", "Section", "Composant"])


def _students_frame(course) -> pd.DataFrame:
    rows = []
    for s in course.students:
        filled = sum(1 for g in s.grades if g is not None)
        rows.append({
            "Ligne": s.row + 1,
            "Prénom préféré": s.preferred_name,
            "Prénom": s.given_name,
            "Nom": s.family_name,
            "Étiquettes": ", ".join(sorted(s.labels)),
            "Résultats": f"{filled}/{len(s.grades)}",
        })
    return pd.DataFrame(rows)
# =========================

# Sources
# =========================
st.subheader("Base de données")
db_file = st.text_input("Fichier SQLite", value=str(db_path()))
scale = st.text_input("Échelle des composants", value=DEFAULT_SCALE)
skip_failed = st.checkbox("Continuer si un cours échoue", value=True)

st.subheader("Classeur")
upload = st.file_uploader("Classeur de résultats (XLSX/ODS)", type=["xlsx", "xlsm", "ods"])

if not upload:
    st.warning("Téléversez un classeur.")
    st.stop()

try:
    tables = load_tables(upload)
except ContacteurError as e:
    st.error(str(e))
    st.stop()

courses = extract_courses(tables)
retakes = find_retakes(tables)
st.info(f"Feuilles: {len(tables)} | cours reconnus: {len(courses)} | reprises: {len(retakes)}")

if not courses:
    st.error("Aucune feuille ne porte un code de cours reconnu.")
    st.stop()
# =========================

# Preview
# =========================
st.subheader("Contrôle du décodage")
for idx, course in enumerate(courses):
    title = f"#{idx + 1} {course.code}"
    if course.code != course.sheet_name:
        title += f" (feuille {course.sheet_name})"
    title += f" | {course.evaluations.leaf_count} composants, {len(course.students)} élèves"

    with st.expander(title, expanded=False):
        tab_tree, tab_students = st.tabs(["Évaluations", "Élèves"])
        with tab_tree:
            st.dataframe(_paths_frame(course), width="stretch", hide_index=True)
        with tab_students:
            st.dataframe(_students_frame(course), width="stretch", hide_index=True)
# =========================

# Import
# =========================
if st.button("Importer dans la base", type="primary"):
    db = init_db(db_file)
    repo = SQLiteRepository(db)
    try:
        report = import_courses(repo, courses, scale=scale.strip() or DEFAULT_SCALE, skip_failed=skip_failed)
        if retakes:
            report.retakes, report.retakes_skipped = import_retakes(
                repo, retakes, skip_courses=[f["course"] for f in report.failed],
            )
    except ContacteurError as e:
        st.error(str(e))
        st.stop()
    finally:
        db.close()

    st.session_state["report"] = report
    st.session_state["db_file"] = db_file
    st.success("Importation terminée.")

report = st.session_state.get("report")
if report is not None:
    st.subheader("Bilan")
    c1, c2, c3 = st.columns(3)
    with c1:
        st.metric("Cours importés", len(report.imported))
    with c2:
        st.metric("Cours en échec", len(report.failed))
    with c3:
        st.metric("Reprises", f"{report.retakes} (+{report.retakes_skipped} ignorées)")

    st.dataframe(pd.DataFrame(summarize(report)), width="stretch", hide_index=True)
    if report.failed:
        st.error("Cours non importés (les autres sont enregistrés):")
        st.dataframe(
            pd.DataFrame([{"Cours": f["course"], "Erreur": f["error"]} for f in report.failed]),
            width="stretch",
            hide_index=True,
        )

    db = init_db(st.session_state["db_file"])
    try:
        xbytes = export_to_excel_bytes(SQLiteRepository(db))
    finally:
        db.close()
    st.download_button(
        "Télécharger le rapport Excel",
        data=xbytes,
        file_name="Contacteur.xlsx",
        mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    )
