import json
from dataclasses import fields
from typing import Dict, List, Optional

import pandas as pd

from models import AccountSide, DwingsGuarantee, DwingsInvoice, ReconciliationRecord
from utils import coerce_amount, coerce_date

REQUIRED = {
    "ambre": ["id", "account_id", "signed_amount"],
    "dwings_invoices": ["invoice_id"],
    "dwings_guarantees": ["guarantee_id"],
}

_DATE_FIELDS = {"operation_date", "value_date", "to_remind_date", "action_date", "trigger_date",
                "first_claim_date", "last_claim_date", "start_date", "end_date"}
_AMOUNT_FIELDS = {"signed_amount", "billing_amount", "outstanding_amount"}
_INT_FIELDS = {"category", "action", "kpi", "incident_type", "reason_non_risky"}
_BOOL_FIELDS = {"risky_item", "to_remind", "action_status", "is_transitory", "has_manual_match", "comm_id_email"}

def _norm(s: str) -> str:
    return str(s).strip().lower()

def load_column_map(path: str = "config/column_map.json") -> dict:
    with open(path, "r") as f:
        return json.load(f)

def load_csv(path: str) -> pd.DataFrame:
    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    df.columns = [c.strip() for c in df.columns]
    return df

def _find_column(df: pd.DataFrame, candidates: List[str]) -> Optional[str]:
    cols = {_norm(c): c for c in df.columns}
    for cand in candidates:
        key = _norm(cand)
        if key in cols:
            return cols[key]
    return None

def apply_mapping(df: pd.DataFrame, source: str, column_map: Dict) -> pd.DataFrame:
    """
    Returns a new DF with standardized column names, pulling each field from the first
    matching header found in the source export.
    """
    src_map = column_map.get(source)
    if not src_map:
        raise ValueError(f"No column mapping found for source='{source}' in config/column_map.json")

    out = pd.DataFrame(index=df.index)

    missing_required = []
    for std in REQUIRED.get(source, []):
        found = _find_column(df, src_map.get(std, [std]))
        if not found:
            missing_required.append(std)
        else:
            out[std] = df[found]
    if missing_required:
        raise ValueError(f"Missing required standardized fields for {source}: {missing_required}. "
                         f"Check config/column_map.json and your input headers.")

    for std, candidates in src_map.items():
        if std in out.columns:
            continue
        found = _find_column(df, candidates)
        if found:
            out[std] = df[found]

    return out

def _blank(value) -> bool:
    if value is None:
        return True
    try:
        if pd.isna(value):
            return True
    except (TypeError, ValueError):
        return False
    return isinstance(value, str) and not value.strip()

def _to_bool(value) -> Optional[bool]:
    if _blank(value):
        return None
    if isinstance(value, bool):
        return value
    key = str(value).strip().lower()
    if key in ("true", "yes", "y", "1", "-1"):
        return True
    if key in ("false", "no", "n", "0"):
        return False
    raise ValueError(f"Not a boolean: {value!r}")

def _to_int(value) -> Optional[int]:
    amount = coerce_amount(value) if not _blank(value) else None
    return None if amount is None else int(amount)

def _convert(name: str, value):
    if _blank(value):
        return None
    if name in _DATE_FIELDS:
        return coerce_date(value)
    if name in _AMOUNT_FIELDS:
        return coerce_amount(value)
    if name in _INT_FIELDS:
        return _to_int(value)
    if name in _BOOL_FIELDS:
        return _to_bool(value)
    if name == "account_side":
        return AccountSide(str(value).strip().upper())
    return str(value).strip()

def _rows_to(cls, df: pd.DataFrame) -> list:
    names = [f.name for f in fields(cls) if f.name in df.columns]
    out = []
    for row in df[names].to_dict(orient="records"):
        kwargs = {k: _convert(k, v) for k, v in row.items()}
        kwargs = {k: v for k, v in kwargs.items() if v is not None}
        out.append(cls(**kwargs))
    return out

def records_from_frame(df: pd.DataFrame) -> List[ReconciliationRecord]:
    return _rows_to(ReconciliationRecord, df)

def invoices_from_frame(df: pd.DataFrame) -> List[DwingsInvoice]:
    return _rows_to(DwingsInvoice, df)

def guarantees_from_frame(df: pd.DataFrame) -> List[DwingsGuarantee]:
    return _rows_to(DwingsGuarantee, df)
