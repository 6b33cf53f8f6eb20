import logging
from dataclasses import asdict
from typing import List, Optional, Sequence

import pandas as pd
from rapidfuzz import fuzz

from config import MatchWeights
from models import CandidateType, DwingsGuarantee, DwingsInvoice, MatchCandidate, ReconciliationRecord
from tokens import extract_bgi, extract_bgpmt, extract_guarantee_id, reference_tokens
from utils import norm_key, normalize_text

logger = logging.getLogger(__name__)

AMOUNT_TOLERANCE = 0.01
MIN_FUZZY_REF_LEN = 6

def first_of(*values) -> Optional[str]:
    for v in values:
        key = norm_key(v)
        if key:
            return key
    return None

def record_bgi(record: ReconciliationRecord) -> Optional[str]:
    # explicit AMBRE invoice ref, then Rec_Num -> RecOrigin_Num -> label
    return first_of(
        record.receivable_invoice_ref,
        extract_bgi(record.reconciliation_num),
        extract_bgi(record.reconciliation_origin_num),
        extract_bgi(record.raw_label),
    )

def record_bgpmt(record: ReconciliationRecord) -> Optional[str]:
    return first_of(
        extract_bgpmt(record.reconciliation_num),
        extract_bgpmt(record.reconciliation_origin_num),
        extract_bgpmt(record.raw_label),
    )

def record_guarantee_id(record: ReconciliationRecord) -> Optional[str]:
    return first_of(
        record.dwings_guarantee_id,
        extract_guarantee_id(record.reconciliation_num),
        extract_guarantee_id(record.raw_label),
    )

def _haystack(record: ReconciliationRecord) -> str:
    parts = [record.raw_label, record.reconciliation_num, record.reconciliation_origin_num,
             record.receivable_dw_ref, record.receivable_invoice_ref]
    return " ".join(str(p) for p in parts if p).upper()

def _key_series(frame: pd.DataFrame, col: str) -> pd.Series:
    return frame[col].fillna("").astype(str).str.strip().str.upper()

def _amount_scores(amounts: pd.Series, ref: Optional[float], weights: MatchWeights) -> pd.DataFrame:
    out = pd.DataFrame(index=amounts.index)
    if ref is None:
        out["amount_exact"] = 0
        out["amount_opposite"] = 0
        return out
    exact = (amounts - ref).abs() <= AMOUNT_TOLERANCE
    opposite = ~exact & ((amounts + ref).abs() <= AMOUNT_TOLERANCE)
    out["amount_exact"] = exact.astype(int) * weights.amount_exact
    out["amount_opposite"] = opposite.astype(int) * weights.amount_opposite
    return out

def _to_candidates(frame: pd.DataFrame, ctype: CandidateType, id_col: str,
                   sources: Sequence, signal_cols: List[str], take: int) -> List[MatchCandidate]:
    frame = frame.loc[frame["score"] > 0].copy()
    if frame.empty or take <= 0:
        return []

    frame = frame.sort_values(["score", id_col], ascending=[False, True], kind="mergesort").head(take)

    out = []
    for idx, row in frame.iterrows():
        matched_on = frozenset(c for c in signal_cols if row[c] > 0)
        out.append(MatchCandidate(
            type=ctype,
            id=str(row[id_col]),
            score=float(row["score"]),
            matched_on=matched_on,
            source=sources[idx],
        ))
    return out

def suggest_invoices(record: ReconciliationRecord,
                     catalog: Sequence[DwingsInvoice],
                     take: int = 20,
                     weights: MatchWeights = MatchWeights(),
                     min_similarity: int = 85,
                     date_horizon_days: int = 30) -> List[MatchCandidate]:
    """
    Rank DWINGS invoices for one bank line.
    Identifier signals (BGI, verbatim id, BGPMT, guarantee, official ref, fuzzy ref) open a
    candidate; amount and date proximity only refine candidates that already have one.
    """
    if not catalog:
        return []

    invoices = list(catalog)
    inv = pd.DataFrame([asdict(i) for i in invoices])

    bgi = record_bgi(record)
    bgpmt = record_bgpmt(record) or norm_key(record.dwings_bgpmt)
    gid = record_guarantee_id(record)
    tokens = reference_tokens(record.reconciliation_num, record.reconciliation_origin_num)
    haystack = _haystack(record)
    label_norm = normalize_text(record.raw_label)

    id_key = _key_series(inv, "invoice_id")
    scores = pd.DataFrame(index=inv.index)

    scores["bgi"] = (id_key == bgi).astype(int) * weights.bgi if bgi else 0
    scores["invoice_in_text"] = id_key.apply(lambda k: bool(k) and k in haystack).astype(int) * weights.invoice_in_text
    scores["bgpmt"] = (_key_series(inv, "bgpmt") == bgpmt).astype(int) * weights.bgpmt if bgpmt else 0
    if gid:
        hit = (_key_series(inv, "business_case_reference") == gid) | (_key_series(inv, "business_case_id") == gid)
        scores["guarantee"] = hit.astype(int) * weights.guarantee
    else:
        scores["guarantee"] = 0
    sender = _key_series(inv, "sender_reference")
    scores["official_ref"] = sender.apply(lambda s: bool(s) and s in tokens).astype(int) * weights.official_ref

    identifier_cols = ["bgi", "invoice_in_text", "bgpmt", "guarantee", "official_ref"]
    has_identifier = scores[identifier_cols].sum(axis=1) > 0

    def fuzzy_hit(i: int) -> int:
        if has_identifier.loc[i] or not label_norm:
            return 0
        for col in ("sender_reference", "receiver_reference"):
            ref = normalize_text(inv.at[i, col])
            if len(ref) >= MIN_FUZZY_REF_LEN and fuzz.partial_ratio(ref, label_norm) >= min_similarity:
                return weights.fuzzy_ref
        return 0

    scores["fuzzy_ref"] = [fuzzy_hit(i) for i in inv.index]
    has_identifier = has_identifier | (scores["fuzzy_ref"] > 0)

    amounts = pd.to_numeric(inv["billing_amount"], errors="coerce")
    scores = scores.join(_amount_scores(amounts, record.signed_amount, weights))

    ref_date = record.value_date or record.operation_date
    if ref_date is not None and date_horizon_days > 0:
        inv_dates = pd.to_datetime(inv["start_date"], errors="coerce").fillna(
            pd.to_datetime(inv["end_date"], errors="coerce"))
        diff = (inv_dates - pd.Timestamp(ref_date)).abs().dt.days
        decay = (1 - diff / date_horizon_days).clip(lower=0).fillna(0)
        scores["value_date"] = (decay * weights.date_max).round(2)
    else:
        scores["value_date"] = 0

    refine_cols = ["amount_exact", "amount_opposite", "value_date"]
    scores.loc[~has_identifier, refine_cols] = 0

    signal_cols = identifier_cols + ["fuzzy_ref"] + refine_cols
    scores["score"] = scores[signal_cols].sum(axis=1)
    scores["invoice_id"] = inv["invoice_id"].astype(str)

    out = _to_candidates(scores, CandidateType.INVOICE, "invoice_id", invoices, signal_cols, take)
    logger.debug("suggest_invoices %s: %d/%d candidates", record.id, len(out), len(invoices))
    return out

def suggest_guarantees(record: ReconciliationRecord,
                       guarantees: Sequence[DwingsGuarantee],
                       take: int = 20,
                       weights: MatchWeights = MatchWeights()) -> List[MatchCandidate]:
    if not guarantees:
        return []

    items = list(guarantees)
    g = pd.DataFrame([asdict(x) for x in items])

    gid = record_guarantee_id(record)
    haystack = _haystack(record)

    scores = pd.DataFrame(index=g.index)
    gid_key = _key_series(g, "guarantee_id")
    scores["guarantee"] = (gid_key == gid).astype(int) * weights.guarantee if gid else 0
    official = _key_series(g, "official_ref")
    scores["official_ref"] = official.apply(lambda s: bool(s) and s in haystack).astype(int) * weights.official_ref

    has_identifier = scores[["guarantee", "official_ref"]].sum(axis=1) > 0

    outstanding = pd.to_numeric(g["outstanding_amount"], errors="coerce").abs()
    ref_amount = abs(record.signed_amount) if record.signed_amount is not None else None
    amount = _amount_scores(outstanding, ref_amount, weights)
    scores["amount_exact"] = amount["amount_exact"]

    ccy = norm_key(record.currency)
    scores["currency"] = (_key_series(g, "currency") == ccy).astype(int) * weights.currency if ccy else 0
    scores.loc[~has_identifier, ["amount_exact", "currency"]] = 0

    signal_cols = ["guarantee", "official_ref", "amount_exact", "currency"]
    scores["score"] = scores[signal_cols].sum(axis=1)
    scores["guarantee_id"] = g["guarantee_id"].astype(str)

    out = _to_candidates(scores, CandidateType.GUARANTEE, "guarantee_id", items, signal_cols, take)
    logger.debug("suggest_guarantees %s: %d/%d candidates", record.id, len(out), len(items))
    return out
