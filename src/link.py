import logging
import threading
from typing import Dict, Optional, Sequence

import pandas as pd

from match import opposite_side
from models import AccountSide, CandidateType, Country, DwingsGuarantee, DwingsInvoice, MatchCandidate, ReconciliationRecord
from utils import norm_key

logger = logging.getLogger(__name__)

# Group recomputation reads and writes the whole pool.
_RECOMPUTE_LOCK = threading.Lock()

LINK_FIELDS = ("dwings_invoice_id", "dwings_bgpmt", "dwings_guarantee_id")

def _write(record: ReconciliationRecord, field: str, value: Optional[str], written: Dict[str, str]) -> None:
    if value is None or not str(value).strip():
        return
    setattr(record, field, str(value).strip())
    written[field] = getattr(record, field)

def _adopt_missing(target: ReconciliationRecord, other: ReconciliationRecord) -> Dict[str, str]:
    written: Dict[str, str] = {}
    for f in LINK_FIELDS:
        if norm_key(getattr(target, f)) is None:
            _write(target, f, getattr(other, f), written)
    return written

def apply_link(record: ReconciliationRecord,
               candidate: MatchCandidate,
               pool: Optional[Sequence[ReconciliationRecord]] = None,
               country: Optional[Country] = None) -> Dict[str, str]:
    """
    Persist an accepted candidate onto the record and recompute the matched flags.
    Returns the identifier fields written on ``record``.
    """
    written: Dict[str, str] = {}
    ctype = CandidateType(candidate.type)

    if ctype == CandidateType.INVOICE:
        inv = candidate.source if isinstance(candidate.source, DwingsInvoice) else None
        _write(record, "dwings_invoice_id", candidate.id, written)
        if inv is not None:
            _write(record, "dwings_bgpmt", inv.bgpmt, written)
            _write(record, "dwings_guarantee_id", inv.guarantee_ref, written)
    elif ctype == CandidateType.GUARANTEE:
        g = candidate.source if isinstance(candidate.source, DwingsGuarantee) else None
        _write(record, "dwings_guarantee_id", g.guarantee_id if g is not None else candidate.id, written)
    else:
        peer = candidate.source
        if peer is None and pool is not None:
            peer = next((r for r in pool if str(r.id) == str(candidate.id)), None)
        if peer is None:
            raise ValueError(f"Peer line {candidate.id} not found for link on {record.id}")
        written = _adopt_missing(record, peer)
        _adopt_missing(peer, record)

    logger.info("link %s -> %s %s: %s", record.id, ctype.value, candidate.id, written)

    if pool is not None:
        recompute_matched_flags(pool, country)
    return written

def unlink(record: ReconciliationRecord) -> None:
    # payment_reference stays; flags are refreshed by the next recompute
    for f in LINK_FIELDS:
        setattr(record, f, None)
    logger.info("unlink %s", record.id)

def recompute_matched_flags(pool: Sequence[ReconciliationRecord], country: Optional[Country] = None) -> int:
    """
    Full recomputation of the cross-account flags, grouped by DWINGS invoice id.
    A group is matched when it holds at least one Pivot and one Receivable line.
    Returns the number of matched records.
    """
    with _RECOMPUTE_LOCK:
        if not pool:
            return 0

        rows = []
        for pos, r in enumerate(pool):
            side = r.resolve_side(country)
            rows.append({
                "pos": pos,
                "key": norm_key(r.dwings_invoice_id),
                "side": side.value if side else None,
                "amount": r.signed_amount,
            })
        df = pd.DataFrame(rows)
        df["amount"] = pd.to_numeric(df["amount"], errors="coerce").fillna(0.0)

        grouped = df.loc[df["key"].notna()]
        matched_keys = set()
        side_totals: Dict[tuple, float] = {}
        side_counts: Dict[tuple, int] = {}
        if not grouped.empty:
            sides = grouped.loc[grouped["side"].notna()].groupby("key")["side"].nunique()
            matched_keys = set(sides.loc[sides >= 2].index)
            by_side = grouped.loc[grouped["side"].notna()].groupby(["key", "side"])["amount"]
            side_totals = by_side.sum().to_dict()
            side_counts = by_side.count().to_dict()

        matched = 0
        for row in df.itertuples(index=False):
            rec = pool[row.pos]
            if row.key in matched_keys:
                other = opposite_side(AccountSide(row.side)).value
                rec.is_matched_across_accounts = True
                rec.missing_amount = round(side_totals.get((row.key, AccountSide.PIVOT.value), 0.0)
                                           + side_totals.get((row.key, AccountSide.RECEIVABLE.value), 0.0), 2)
                rec.counterpart_total_amount = round(side_totals.get((row.key, other), 0.0), 2)
                rec.counterpart_count = int(side_counts.get((row.key, other), 0))
                matched += 1
            else:
                rec.is_matched_across_accounts = False
                rec.missing_amount = None
                rec.counterpart_total_amount = None
                rec.counterpart_count = None

        logger.debug("recompute_matched_flags: %d/%d matched", matched, len(pool))
        return matched
