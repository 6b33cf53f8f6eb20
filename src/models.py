from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import FrozenSet, Optional

from utils import norm_key

class AccountSide(str, Enum):
    PIVOT = "P"
    RECEIVABLE = "R"

class CandidateType(str, Enum):
    INVOICE = "Invoice"
    GUARANTEE = "Guarantee"
    PEER_LINE = "PeerLine"

@dataclass(frozen=True)
class Country:
    country_id: str
    pivot_account_id: Optional[str] = None
    receivable_account_id: Optional[str] = None

    def side_of(self, account_id: Optional[str]) -> Optional[AccountSide]:
        key = norm_key(account_id)
        if key is None:
            return None
        if key == norm_key(self.pivot_account_id):
            return AccountSide.PIVOT
        if key == norm_key(self.receivable_account_id):
            return AccountSide.RECEIVABLE
        return None

@dataclass
class ReconciliationRecord:
    """One AMBRE bank line together with its reconciliation workflow state."""

    id: str
    account_id: Optional[str] = None
    account_side: Optional[AccountSide] = None

    signed_amount: Optional[float] = None
    currency: Optional[str] = None
    operation_date: Optional[date] = None
    value_date: Optional[date] = None

    raw_label: Optional[str] = None
    reconciliation_num: Optional[str] = None
    reconciliation_origin_num: Optional[str] = None
    event_num: Optional[str] = None
    receivable_invoice_ref: Optional[str] = None
    receivable_dw_ref: Optional[str] = None
    category: Optional[int] = None

    dwings_invoice_id: Optional[str] = None
    dwings_guarantee_id: Optional[str] = None
    dwings_bgpmt: Optional[str] = None
    payment_reference: Optional[str] = None

    action: Optional[int] = None
    kpi: Optional[int] = None
    incident_type: Optional[int] = None
    risky_item: Optional[bool] = None
    reason_non_risky: Optional[int] = None
    to_remind: bool = False
    to_remind_date: Optional[date] = None
    action_status: Optional[bool] = None
    action_date: Optional[date] = None
    trigger_date: Optional[date] = None
    first_claim_date: Optional[date] = None
    last_claim_date: Optional[date] = None
    comments: Optional[str] = None

    is_matched_across_accounts: bool = False
    missing_amount: Optional[float] = None
    counterpart_total_amount: Optional[float] = None
    counterpart_count: Optional[int] = None

    is_transitory: Optional[bool] = None
    has_manual_match: Optional[bool] = None

    @property
    def sign(self) -> Optional[str]:
        if self.signed_amount is None:
            return None
        return "C" if self.signed_amount >= 0 else "D"

    @property
    def has_dwings_data(self) -> bool:
        return any(norm_key(v) for v in (self.dwings_invoice_id, self.dwings_guarantee_id, self.dwings_bgpmt))

    def resolve_side(self, country: Optional[Country] = None) -> Optional[AccountSide]:
        if self.account_side is not None:
            return AccountSide(self.account_side)
        if country is None:
            return None
        return country.side_of(self.account_id)

@dataclass(frozen=True)
class DwingsInvoice:
    invoice_id: str
    billing_amount: Optional[float] = None
    billing_currency: Optional[str] = None
    business_case_reference: Optional[str] = None
    business_case_id: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    payment_method: Optional[str] = None
    payment_request_status: Optional[str] = None
    invoice_status: Optional[str] = None
    mt_status: Optional[str] = None
    comm_id_email: Optional[bool] = None
    sender_reference: Optional[str] = None
    receiver_reference: Optional[str] = None
    sender_name: Optional[str] = None
    receiver_name: Optional[str] = None
    bgpmt: Optional[str] = None

    @property
    def guarantee_ref(self) -> Optional[str]:
        return self.business_case_reference or self.business_case_id

@dataclass(frozen=True)
class DwingsGuarantee:
    guarantee_id: str
    guarantee_status: Optional[str] = None
    guarantee_type: Optional[str] = None
    nature: Optional[str] = None
    name: Optional[str] = None
    official_ref: Optional[str] = None
    currency: Optional[str] = None
    outstanding_amount: Optional[float] = None

@dataclass(frozen=True)
class MatchCandidate:
    type: CandidateType
    id: str
    score: float
    matched_on: FrozenSet[str] = frozenset()
    source: object = field(default=None, compare=False, repr=False)
