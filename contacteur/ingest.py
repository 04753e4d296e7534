from __future__ import annotations
import re
import zipfile
from io import BytesIO
from pathlib import Path
from typing import Any, Dict, List, Union

import pandas as pd
from openpyxl import load_workbook

from .errors import WorkbookError
from .utils import load_json, rules_path

RULES = load_json(rules_path(), {})

COURSE_CODE_RE = re.compile(RULES.get("course_code_pattern", r"[A-Z]{3}[1-4][A-Z][0-9]?"))

EXCEL_SUFFIXES = (".xlsx", ".xlsm")
ODS_SUFFIXES = (".ods",)
# =========================

# Excel: the sheet as a raw matrix
# =========================
def _sheet_to_matrix(ws) -> List[List[Any]]:
    # Merged cells are NOT expanded: only the top-left cell keeps the value,
    # the rest of the span reads as blank, which is exactly the
    # "continue the current evaluation/section" rule of the header rows.
    rows = []
    for row in ws.iter_rows(min_row=1, max_row=ws.max_row, max_col=ws.max_column, values_only=True):
        rows.append(list(row))
    return rows


def _read_excel_bytes(data: bytes) -> Dict[str, pd.DataFrame]:
    wb = load_workbook(BytesIO(data), read_only=False, data_only=True)
    out = {}
    for ws in wb.worksheets:
        matrix = _sheet_to_matrix(ws)
        out[ws.title] = pd.DataFrame(matrix, dtype=object)
    return out


def _read_ods_bytes(data: bytes) -> Dict[str, pd.DataFrame]:
    sheets = pd.read_excel(BytesIO(data), sheet_name=None, header=None, engine="odf", dtype=object)
    return {name: df.astype(object) for name, df in sheets.items()}
# =========================

# Main: source -> tables
# =========================
Source = Union[str, Path, Any]


def _name_and_bytes(source: Source) -> tuple[str, bytes]:
    if isinstance(source, (str, Path)):
        path = Path(source)
        try:
            return path.name, path.read_bytes()
        except OSError as e:
            raise WorkbookError(f"{path}: cannot read workbook ({e}).") from e
    # streamlit UploadedFile and similar
    return source.name, source.getvalue()


def load_tables(source: Source) -> List[Dict[str, Any]]:
    """
    Returns one entry per sheet:
      {
        "source_name": <file name>,
        "sheet_name": <sheet name>,
        "df_raw": DataFrame  (raw cell values, no header, object dtype),
      }
    Row/column positions in df_raw are the 0-based sheet coordinates.
    """
    name, data = _name_and_bytes(source)
    low = name.lower()

    try:
        if low.endswith(EXCEL_SUFFIXES):
            sheets = _read_excel_bytes(data)
        elif low.endswith(ODS_SUFFIXES):
            sheets = _read_ods_bytes(data)
        else:
            raise WorkbookError(f"{name}: unsupported workbook format (expected .xlsx, .xlsm or .ods).")
    except WorkbookError:
        raise
    except (OSError, ValueError, KeyError, zipfile.BadZipFile) as e:
        raise WorkbookError(f"{name}: cannot parse workbook ({e}).") from e

    return [
        {"source_name": name, "sheet_name": sheet, "df_raw": df}
        for sheet, df in sheets.items()
    ]


def is_course_sheet(sheet_name: str) -> bool:
    return COURSE_CODE_RE.search(sheet_name or "") is not None
