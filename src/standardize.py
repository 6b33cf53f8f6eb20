from typing import Tuple

import pandas as pd

from utils import coerce_amount_series, coerce_date_series

def standardize_records(df: pd.DataFrame) -> Tuple[pd.DataFrame, pd.DataFrame]:
    out = df.copy()

    out["id"] = out["id"].fillna("").astype(str).str.strip()
    out["account_id"] = out["account_id"].fillna("").astype(str).str.strip().str.upper()
    out["signed_amount"] = coerce_amount_series(out["signed_amount"])
    for col in ("operation_date", "value_date"):
        if col in out.columns:
            out[col] = coerce_date_series(out[col])
    if "currency" in out.columns:
        out["currency"] = out["currency"].fillna("").astype(str).str.strip().str.upper()

    bad_id = (out["id"] == "") | out["id"].duplicated(keep="first")
    bad_amount = out["signed_amount"].isna()
    bad_account = out["account_id"] == ""

    bad_mask = bad_id | bad_amount | bad_account
    exceptions = out.loc[bad_mask].copy()
    exceptions["exception_reason"] = ""
    exceptions.loc[bad_id[bad_mask], "exception_reason"] += "bad_id;"
    exceptions.loc[bad_amount[bad_mask], "exception_reason"] += "bad_amount;"
    exceptions.loc[bad_account[bad_mask], "exception_reason"] += "bad_account;"

    clean = out.loc[~bad_mask].copy()
    return clean, exceptions
