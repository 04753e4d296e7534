import os
import re
import json
import logging
import datetime as dt
from pathlib import Path
from typing import Any, Optional

import numpy as np
import pandas as pd

BASE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_DATA_DIR = BASE_DIR / "data"

APPDATA = os.environ.get("APPDATA")
if APPDATA:
    USER_DATA_DIR = Path(APPDATA) / "Contacteur" / "data"
else:
    USER_DATA_DIR = DEFAULT_DATA_DIR  # fallback

LOG_FORMAT = "%(asctime)s | %(levelname)-5s | %(name)s | %(message)s"


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def load_json(path: Path, default: Any):
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError):
        return default


_DASH_CHARS_RE = re.compile(r"[\u2010\u2011\u2012\u2013\u2014\u2212]")
_NBSP_RE = re.compile(r"[\u00A0\u2007\u202F]")  # NBSP variants


def norm_text(s: Any) -> str:
    """
    Text normalization used for natural-key matching:
    - lower
    - BOM / non-breaking spaces
    - outer quotes
    - every dash variant -> '-'
    - collapsed whitespace
    """
    if s is None:
        return ""

    s = str(s)

    # invisible characters common in spreadsheet exports
    s = s.replace("\ufeff", "")
    s = _NBSP_RE.sub(" ", s)
    s = s.strip()
    if len(s) >= 2 and s[0] == s[-1] and s[0] in ('"', "'"):
        s = s[1:-1].strip()
    s = s.lower()
    s = _DASH_CHARS_RE.sub("-", s)
    s = re.sub(r"\s+", " ", s).strip()
    return s


def is_blank(v: Any) -> bool:
    # None, NaN and NaT all mean an empty cell
    if v is None:
        return True
    if isinstance(v, str):
        return False
    return bool(pd.isna(v))


def cell_text(v: Any) -> str:
    """
    Plain-text coercion of a spreadsheet cell, trimmed.
    Empty cells (None / NaN) give "".
    """
    if is_blank(v):
        return ""
    if isinstance(v, (bool, np.bool_)):
        return "v" if v else "f"
    if isinstance(v, (int, np.integer)):
        return str(int(v))
    if isinstance(v, (float, np.floating)):
        f = float(v)
        return str(int(f)) if f.is_integer() else str(f)
    if isinstance(v, dt.datetime):
        return v.strftime("%Y-%m-%d %H:%M:%S")
    if isinstance(v, (dt.date, dt.time)):
        return v.isoformat()
    if isinstance(v, dt.timedelta):
        return str(v.total_seconds())
    return str(v).strip()


def cell_number(v: Any) -> Optional[float]:
    # only numeric-typed cells count; "12" as text is not a grade
    if isinstance(v, (bool, np.bool_)):
        return None
    if isinstance(v, (int, float, np.integer, np.floating)):
        f = float(v)
        if np.isnan(f):
            return None
        return f
    return None


def rules_path() -> Path:
    return DEFAULT_DATA_DIR / "rules.json"


def db_path() -> Path:
    env = os.environ.get("CONTACTEUR_DB")
    if env:
        return Path(env)
    USER_DATA_DIR.mkdir(parents=True, exist_ok=True)
    return USER_DATA_DIR / "contacteur.db3"
