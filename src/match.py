import logging
from typing import Dict, FrozenSet, List, Optional, Sequence, Set, Tuple

import pandas as pd

from config import ReconConfig
from models import AccountSide, CandidateType, Country, MatchCandidate, ReconciliationRecord
from utils import norm_key

logger = logging.getLogger(__name__)

EVENT_POINTS = 3
DWINGS_REF_POINTS = 3
OPPOSITE_AMOUNT_POINTS = 2
DATE_WINDOW_POINTS = 1

def dwings_refs(record: ReconciliationRecord) -> FrozenSet[str]:
    values = (record.dwings_guarantee_id, record.dwings_invoice_id, record.dwings_bgpmt, record.receivable_dw_ref)
    return frozenset(k for k in (norm_key(v) for v in values) if k)

def is_opposite_amount(a: Optional[float], b: Optional[float], tolerance: float = 0.01) -> bool:
    if a is None or b is None:
        return False
    return abs(a + b) <= tolerance * max(1.0, max(abs(a), abs(b)))

def is_close_date(a, b, max_days: int = 7) -> bool:
    if a is None or b is None:
        return False
    return abs((pd.Timestamp(a).normalize() - pd.Timestamp(b).normalize()).days) <= max_days

def peer_score(a: ReconciliationRecord, b: ReconciliationRecord,
               tolerance: float = 0.01, max_days: int = 7) -> Tuple[int, Set[str]]:
    """Additive score of one pair, no filtering applied."""
    score = 0
    matched_on: Set[str] = set()
    if norm_key(a.event_num) and norm_key(a.event_num) == norm_key(b.event_num):
        score += EVENT_POINTS
        matched_on.add("event_num")
    if dwings_refs(a) & dwings_refs(b):
        score += DWINGS_REF_POINTS
        matched_on.add("dwings_ref")
    if is_opposite_amount(a.signed_amount, b.signed_amount, tolerance):
        score += OPPOSITE_AMOUNT_POINTS
        matched_on.add("opposite_amount")
    if is_close_date(a.operation_date, b.operation_date, max_days):
        score += DATE_WINDOW_POINTS
        matched_on.add("operation_date")
    return score, matched_on

def _pool_frame(pool: Sequence[ReconciliationRecord], country: Optional[Country]) -> pd.DataFrame:
    rows = []
    for pos, r in enumerate(pool):
        side = r.resolve_side(country)
        rows.append({
            "pos": pos,
            "id": str(r.id),
            "side": side.value if side else None,
            "account_key": norm_key(r.account_id),
            "recon_num": r.reconciliation_num,
            "recon_origin_num": r.reconciliation_origin_num,
            "event_key": norm_key(r.event_num),
            "refs": dwings_refs(r),
            "amount": r.signed_amount,
            "op_date": r.operation_date,
        })
    return pd.DataFrame(rows)

def find_peer_matches(record: ReconciliationRecord,
                      pool: Sequence[ReconciliationRecord],
                      config: ReconConfig = ReconConfig(),
                      country: Optional[Country] = None) -> List[MatchCandidate]:
    """
    Cross-account candidates for one line: opposite account side only, optionally narrowed
    to lines sharing its reconciliation number, scored event +3 / DWINGS ref +3 /
    opposite amount +2 / operation date window +1.
    Tolerance, date window and result cap come from ``config``.
    """
    if not pool:
        return []
    tolerance = config.peer_amount_tolerance
    date_window_days = config.peer_date_window_days
    max_results = config.peer_max_results

    df = _pool_frame(pool, country)
    src_side = record.resolve_side(country)
    src_account = norm_key(record.account_id)

    df = df.loc[df["id"] != str(record.id)].copy()

    # other account side; fall back to account id when the side is unknown
    if src_side is not None:
        df = df.loc[df["side"].notna() & (df["side"] != src_side.value)].copy()
    elif src_account is not None:
        df = df.loc[df["account_key"] != src_account].copy()

    if record.reconciliation_num:
        same_num = (df["recon_num"] == record.reconciliation_num) | (df["recon_origin_num"] == record.reconciliation_num)
        df = df.loc[same_num].copy()

    if df.empty:
        return []

    event = norm_key(record.event_num)
    df["s_event"] = (df["event_key"] == event).astype(int) * EVENT_POINTS if event else 0

    src_refs = dwings_refs(record)
    df["s_refs"] = df["refs"].apply(lambda refs: bool(refs & src_refs)).astype(int) * DWINGS_REF_POINTS

    amounts = pd.to_numeric(df["amount"], errors="coerce")
    if record.signed_amount is not None:
        a = float(record.signed_amount)
        scale = amounts.abs().clip(lower=abs(a)).clip(lower=1.0)
        opposite = (amounts + a).abs() <= tolerance * scale
        df["s_amount"] = opposite.fillna(False).astype(int) * OPPOSITE_AMOUNT_POINTS
    else:
        df["s_amount"] = 0

    if record.operation_date is not None:
        dates = pd.to_datetime(df["op_date"], errors="coerce").dt.normalize()
        diff = (dates - pd.Timestamp(record.operation_date).normalize()).abs().dt.days
        df["s_date"] = (diff <= date_window_days).astype(int) * DATE_WINDOW_POINTS
    else:
        df["s_date"] = 0

    df["score"] = df["s_event"] + df["s_refs"] + df["s_amount"] + df["s_date"]
    df = df.loc[df["score"] > 0]
    df = df.sort_values(["score", "id"], ascending=[False, True]).head(max_results)

    names: Dict[str, str] = {"s_event": "event_num", "s_refs": "dwings_ref",
                             "s_amount": "opposite_amount", "s_date": "operation_date"}
    out = []
    for _, row in df.iterrows():
        out.append(MatchCandidate(
            type=CandidateType.PEER_LINE,
            id=row["id"],
            score=float(row["score"]),
            matched_on=frozenset(n for col, n in names.items() if row[col] > 0),
            source=pool[int(row["pos"])],
        ))

    logger.debug("find_peer_matches %s: %d candidates", record.id, len(out))
    return out

def opposite_side(side: Optional[AccountSide]) -> Optional[AccountSide]:
    if side is None:
        return None
    return AccountSide.RECEIVABLE if side == AccountSide.PIVOT else AccountSide.PIVOT
