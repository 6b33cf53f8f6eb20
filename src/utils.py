import re
from datetime import date, datetime
from typing import Optional

import pandas as pd

def normalize_text(s: str) -> str:
    if s is None:
        return ""
    s = str(s).lower().strip()
    s = re.sub(r"[^a-z0-9\s]", " ", s)
    s = re.sub(r"\s+", " ", s).strip()
    return s

def norm_key(s) -> Optional[str]:
    """Trimmed upper-case key, or None for blank input."""
    if s is None:
        return None
    s = str(s).strip()
    return s.upper() if s else None

def coerce_date(value) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    ts = pd.to_datetime(value, errors="coerce")
    if pd.isna(ts):
        return None
    return ts.date()

def coerce_amount(value) -> Optional[float]:
    if value is None or value == "":
        return None
    num = pd.to_numeric(value, errors="coerce")
    if pd.isna(num):
        return None
    return float(num)

def days_between(later: Optional[date], earlier: Optional[date]) -> Optional[int]:
    if later is None or earlier is None:
        return None
    return (coerce_date(later) - coerce_date(earlier)).days

def coerce_date_series(series: pd.Series) -> pd.Series:
    return pd.to_datetime(series, errors="coerce").dt.date

def coerce_amount_series(series: pd.Series) -> pd.Series:
    return pd.to_numeric(series, errors="coerce").astype("float64")
