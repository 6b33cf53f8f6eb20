import os
import json
from dataclasses import asdict
from typing import Sequence

import pandas as pd

from models import ReconciliationRecord

DECISION_COLUMNS = ["record_id", "outcome", "rule_id", "apply_target", "auto_apply", "persisted",
                    "outputs", "counterparts", "message"]
FAILURE_COLUMNS = ["record_id", "stage", "error"]

def ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)

def records_frame(records: Sequence[ReconciliationRecord]) -> pd.DataFrame:
    rows = []
    for r in records:
        row = asdict(r)
        row["account_side"] = r.account_side.value if r.account_side is not None else None
        rows.append(row)
    return pd.DataFrame(rows)

def write_outputs(outputs_dir: str, result, records: Sequence[ReconciliationRecord]) -> None:
    ensure_dir(outputs_dir)

    decisions = pd.DataFrame(result.decision_rows, columns=DECISION_COLUMNS)
    failures = pd.DataFrame(result.failures, columns=FAILURE_COLUMNS)

    decisions.to_csv(os.path.join(outputs_dir, "decisions.csv"), index=False)
    records_frame(records).to_csv(os.path.join(outputs_dir, "records.csv"), index=False)
    failures.to_csv(os.path.join(outputs_dir, "failures.csv"), index=False)
    if len(result.exceptions):
        result.exceptions.to_csv(os.path.join(outputs_dir, "exceptions.csv"), index=False)

    summary = {
        "records": int(len(records)),
        "evaluated": int(result.evaluated),
        "applied": int(result.applied),
        "proposed": int(result.proposed),
        "no_match": int(result.no_match),
        "failed": int(len(result.failures)),
        "exceptions_rows": int(len(result.exceptions)),
        "matched_across_accounts": int(sum(1 for r in records if r.is_matched_across_accounts)),
        "cancelled": bool(result.cancelled),
        "rule_breakdown": decisions["rule_id"].dropna().value_counts().to_dict() if len(decisions) else {},
    }

    with open(os.path.join(outputs_dir, "batch_summary.json"), "w") as f:
        json.dump(summary, f, indent=2, default=str)
