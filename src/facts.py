from dataclasses import dataclass
from datetime import date
from typing import Optional, Sequence

from models import AccountSide, Country, DwingsGuarantee, DwingsInvoice, ReconciliationRecord
from referential import determine_transaction_type
from utils import coerce_date, days_between, norm_key

@dataclass
class RuleFacts:
    """Derived attributes of one record, as seen by the truth rules. None means unknown."""

    account_side: Optional[str] = None
    booking: Optional[str] = None
    guarantee_type: Optional[str] = None
    transaction_type: Optional[str] = None
    sign: Optional[str] = None
    has_dwings_link: Optional[bool] = None
    is_grouped: Optional[bool] = None
    is_amount_match: Optional[bool] = None
    mt_status_acked: Optional[bool] = None
    comm_id_email: Optional[bool] = None
    bgi_status_initiated: Optional[bool] = None
    trigger_date_is_null: Optional[bool] = None
    days_since_trigger: Optional[int] = None
    is_transitory: Optional[bool] = None
    operation_days_ago: Optional[int] = None
    is_matched: Optional[bool] = None
    has_manual_match: Optional[bool] = None
    is_first_request: Optional[bool] = None
    days_since_reminder: Optional[int] = None
    current_action_id: Optional[int] = None

def normalize_sign(value) -> Optional[str]:
    key = norm_key(value)
    if not key:
        return None
    if key[0] in ("C", "D"):
        return key[0]
    return None

def normalize_guarantee_type(value) -> Optional[str]:
    key = norm_key(value)
    if not key:
        return None
    if key.startswith("REISSU"):
        return "REISSUANCE"
    if key.startswith("ISSU"):
        return "ISSUANCE"
    if key.startswith("NOTIF") or key.startswith("ADVISING"):
        return "ADVISING"
    return key

def normalize_transaction_type(value) -> Optional[str]:
    key = norm_key(value)
    if not key:
        return None
    return key.replace(" ", "_")

def _find(items: Sequence, attr: str, key: Optional[str]):
    if not key:
        return None
    return next((x for x in items if norm_key(getattr(x, attr)) == key), None)

def build_facts(record: ReconciliationRecord,
                country: Optional[Country] = None,
                invoices: Sequence[DwingsInvoice] = (),
                guarantees: Sequence[DwingsGuarantee] = (),
                today: Optional[date] = None) -> RuleFacts:
    today = today or date.today()
    side = record.resolve_side(country)
    is_pivot = side == AccountSide.PIVOT

    invoice = _find(invoices, "invoice_id", norm_key(record.dwings_invoice_id))
    guarantee = _find(guarantees, "guarantee_id", norm_key(record.dwings_guarantee_id))

    guarantee_type = None
    if side == AccountSide.RECEIVABLE and guarantee is not None:
        guarantee_type = normalize_guarantee_type(guarantee.guarantee_type)

    tx = determine_transaction_type(
        record.raw_label,
        is_pivot,
        category=record.category if is_pivot else None,
        payment_method=invoice.payment_method if invoice is not None else None,
    )

    mt_acked = None
    comm_email = None
    bgi_initiated = None
    if invoice is not None:
        if norm_key(invoice.mt_status):
            mt_acked = norm_key(invoice.mt_status) == "ACKED"
        comm_email = invoice.comm_id_email
        if norm_key(invoice.invoice_status):
            bgi_initiated = norm_key(invoice.invoice_status) == "INITIATED"

    linked = record.has_dwings_data
    grouped = bool(record.is_matched_across_accounts)
    missing = record.missing_amount
    trigger = coerce_date(record.trigger_date)

    return RuleFacts(
        account_side=side.value if side else None,
        booking=norm_key(country.country_id) if country else None,
        guarantee_type=guarantee_type,
        transaction_type=normalize_transaction_type(tx.value if tx else None),
        sign=normalize_sign(record.sign),
        has_dwings_link=linked,
        is_grouped=grouped,
        is_amount_match=grouped and missing is not None and abs(missing) < 0.005,
        mt_status_acked=mt_acked,
        comm_id_email=comm_email,
        bgi_status_initiated=bgi_initiated,
        trigger_date_is_null=trigger is None,
        days_since_trigger=days_between(today, trigger),
        is_transitory=record.is_transitory,
        operation_days_ago=days_between(today, record.operation_date),
        is_matched=linked,
        has_manual_match=record.has_manual_match,
        is_first_request=record.first_claim_date is None,
        days_since_reminder=days_between(today, record.last_claim_date),
        current_action_id=record.action,
    )

