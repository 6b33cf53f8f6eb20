import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from config import ReconConfig
from facts import normalize_guarantee_type
from models import DwingsGuarantee, DwingsInvoice, ReconciliationRecord
from suggest import first_of, record_bgi, suggest_invoices
from tokens import extract_bgi, extract_bgpmt, extract_guarantee_id, reference_tokens
from utils import coerce_date, norm_key

logger = logging.getLogger(__name__)

AMOUNT_TOLERANCE = 0.01
_FAR = float("inf")

@dataclass(frozen=True)
class DwingsRefs:
    invoice_id: Optional[str] = None
    bgpmt: Optional[str] = None
    guarantee_id: Optional[str] = None

def _amount_delta(inv: DwingsInvoice, amount: Optional[float]) -> float:
    if inv.billing_amount is None:
        return _FAR
    return abs((amount or 0.0) - inv.billing_amount)

def _date_delta(inv: DwingsInvoice, when) -> float:
    when = coerce_date(when)
    best = coerce_date(inv.start_date) or coerce_date(inv.end_date)
    if when is None or best is None:
        return _FAR
    return abs((best - when).days)

def _pick_by_amount(candidates: List[DwingsInvoice], amount: Optional[float]) -> Optional[DwingsInvoice]:
    if not candidates:
        return None
    if amount is not None:
        for inv in candidates:
            if inv.billing_amount is not None and abs(amount - inv.billing_amount) <= AMOUNT_TOLERANCE:
                return inv
    return min(candidates, key=lambda i: _amount_delta(i, amount))

def resolve_invoice_by_bgi(invoices: Sequence[DwingsInvoice], bgi: Optional[str],
                           amount: Optional[float] = None) -> Optional[DwingsInvoice]:
    key = norm_key(bgi)
    if not key:
        return None
    return _pick_by_amount([i for i in invoices if norm_key(i.invoice_id) == key], amount)

def resolve_invoice_by_bgpmt(invoices: Sequence[DwingsInvoice], bgpmt: Optional[str],
                             amount: Optional[float] = None) -> Optional[DwingsInvoice]:
    key = norm_key(bgpmt)
    if not key:
        return None
    return _pick_by_amount([i for i in invoices if norm_key(i.bgpmt) == key], amount)

def resolve_invoices_by_guarantee(invoices: Sequence[DwingsInvoice], guarantee_id: Optional[str],
                                  when=None, amount: Optional[float] = None,
                                  take: int = 50) -> List[DwingsInvoice]:
    """Invoices of a guarantee, exact business-case match preferred over contains, nearest date then amount first."""
    key = norm_key(guarantee_id)
    if not key or not invoices:
        return []

    def refs(i: DwingsInvoice):
        return [k for k in (norm_key(i.business_case_reference), norm_key(i.business_case_id)) if k]

    exact = [i for i in invoices if key in refs(i)]
    candidates = exact or [i for i in invoices if any(key in r for r in refs(i))]
    candidates = sorted(candidates, key=lambda i: (_date_delta(i, when), _amount_delta(i, amount)))
    return candidates[:max(1, take)]

def resolve_by_official_ref(record: ReconciliationRecord,
                            invoices: Sequence[DwingsInvoice]) -> Optional[DwingsInvoice]:
    tokens = reference_tokens(record.reconciliation_num, record.reconciliation_origin_num)
    if not tokens or not invoices:
        return None
    hits = [i for i in invoices if norm_key(i.sender_reference) in tokens]
    if not hits:
        return None
    when = record.operation_date or record.value_date
    return min(hits, key=lambda i: (_date_delta(i, when), _amount_delta(i, record.signed_amount)))

def resolve_dwings_refs(record: ReconciliationRecord,
                        is_pivot: bool,
                        invoices: Sequence[DwingsInvoice],
                        config: ReconConfig = ReconConfig()) -> DwingsRefs:
    """
    Automatic DWINGS reference resolution for a freshly imported line.
    Chain: BGI -> BGPMT -> official reference -> guarantee -> best suggestion.
    The invoice id is only set when it exists in the catalog.
    """
    bgpmt_token = first_of(
        extract_bgpmt(record.reconciliation_num),
        extract_bgpmt(record.reconciliation_origin_num),
        extract_bgpmt(record.raw_label),
    )
    guarantee_token = first_of(
        extract_guarantee_id(record.reconciliation_num),
        extract_guarantee_id(record.raw_label),
    )
    if is_pivot:
        bgi = first_of(
            extract_bgi(record.raw_label),
            extract_bgi(record.reconciliation_num),
            extract_bgi(record.reconciliation_origin_num),
        )
    else:
        bgi = record_bgi(record)

    amount = record.signed_amount
    when = record.operation_date or record.value_date

    hit = resolve_invoice_by_bgi(invoices, bgi, amount)
    if hit is None:
        hit = resolve_invoice_by_bgpmt(invoices, bgpmt_token, amount)
    if hit is None:
        hit = resolve_by_official_ref(record, invoices)
    if hit is None and guarantee_token:
        hits = resolve_invoices_by_guarantee(invoices, guarantee_token, when, amount, take=1)
        hit = hits[0] if hits else None
    if hit is None:
        suggestions = suggest_invoices(record, invoices, take=1, weights=config.weights,
                                       min_similarity=config.min_similarity,
                                       date_horizon_days=config.date_horizon_days)
        hit = suggestions[0].source if suggestions else None

    refs = DwingsRefs(
        invoice_id=hit.invoice_id if hit else None,
        bgpmt=bgpmt_token or (hit.bgpmt if hit else None),
        guarantee_id=guarantee_token or (hit.guarantee_ref if hit else None),
    )
    logger.debug("resolve_dwings_refs %s -> %s", record.id, refs)
    return refs

def pivot_payment_reference(record: ReconciliationRecord,
                            refs: DwingsRefs,
                            guarantees: Sequence[DwingsGuarantee] = ()) -> Optional[str]:
    if record.reconciliation_num and record.reconciliation_num.strip():
        return record.reconciliation_num.strip()
    if refs.guarantee_id:
        key = norm_key(refs.guarantee_id)
        g = next((x for x in guarantees if norm_key(x.guarantee_id) == key), None)
        if g is not None and normalize_guarantee_type(g.guarantee_type) == "REISSUANCE":
            return refs.guarantee_id
    return refs.invoice_id
