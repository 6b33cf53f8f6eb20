import re
from enum import Enum, IntEnum
from typing import Dict, Iterable, Mapping, Optional, Tuple

class ActionType(IntEnum):
    NA = 0
    MATCH = 1
    INVESTIGATE = 2
    DO_PRICING = 3
    TO_CLAIM = 4
    ADJUST = 5
    REQUEST = 6
    TRIGGER = 7
    EXECUTE = 8
    TO_DO_SDD = 9

class KPIType(IntEnum):
    CORRESPONDENT_CHARGES_PENDING_TRIGGER = 15
    CLAIMED_BUT_NOT_PAID = 16
    NOT_CLAIMED = 17
    PAID_BUT_NOT_RECONCILED = 18
    IT_ISSUES = 19
    CORRESPONDENT_CHARGES_TO_BE_INVOICED = 21
    UNDER_INVESTIGATION = 22
    NOT_TFSC = 23

class IncidentType(IntEnum):
    DUPLICATED_LINES = 24
    INCORRECT_CALCULATIONS = 25
    CONCORDE_OR_ACCRUALS_GAPS = 26
    WRONG_TRIGGERS = 27
    MISSING_INVOICES = 28
    OTHERS = 31

class RiskReason(IntEnum):
    COLLECTED_COMMISSIONS_CREDIT_67P = 32
    FEES_NOT_YET_INVOICED = 33
    NO_OBSERVED_RISK_EXPECTED_DELAY = 35

class TransactionType(str, Enum):
    COLLECTION = "COLLECTION"
    PAYMENT = "PAYMENT"
    ADJUSTMENT = "ADJUSTMENT"
    XCL_LOADER = "XCL_LOADER"
    TRIGGER = "TRIGGER"
    MANUAL_OUTGOING = "MANUAL_OUTGOING"
    INCOMING_PAYMENT = "INCOMING_PAYMENT"
    DIRECT_DEBIT = "DIRECT_DEBIT"
    OUTGOING_PAYMENT = "OUTGOING_PAYMENT"
    EXTERNAL_DEBIT_PAYMENT = "EXTERNAL_DEBIT_PAYMENT"
    TO_CATEGORIZE = "TO_CATEGORIZE"

# Pivot category codes as stored on AMBRE lines.
PIVOT_CATEGORY_CODES: Dict[int, TransactionType] = {
    0: TransactionType.COLLECTION,
    1: TransactionType.PAYMENT,
    2: TransactionType.ADJUSTMENT,
    3: TransactionType.XCL_LOADER,
    4: TransactionType.TRIGGER,
    5: TransactionType.MANUAL_OUTGOING,
    6: TransactionType.TO_CATEGORIZE,
}

_DISPLAY_LABELS: Dict[str, Dict[int, str]] = {
    "Action": {
        ActionType.NA: "N/A",
        ActionType.MATCH: "Match",
        ActionType.INVESTIGATE: "Investigate",
        ActionType.DO_PRICING: "Do Pricing",
        ActionType.TO_CLAIM: "To Claim",
        ActionType.ADJUST: "Adjust",
        ActionType.REQUEST: "Request",
        ActionType.TRIGGER: "Trigger",
        ActionType.EXECUTE: "Execute",
        ActionType.TO_DO_SDD: "To Do SDD",
    },
    "KPI": {
        KPIType.IT_ISSUES: "IT Issues",
        KPIType.PAID_BUT_NOT_RECONCILED: "Paid But Not Reconciled",
        KPIType.CORRESPONDENT_CHARGES_TO_BE_INVOICED: "Correspondent Charges To Be Invoiced",
        KPIType.UNDER_INVESTIGATION: "Under Investigation",
        KPIType.NOT_CLAIMED: "Not Claimed",
        KPIType.CLAIMED_BUT_NOT_PAID: "Claimed But Not Paid",
        KPIType.CORRESPONDENT_CHARGES_PENDING_TRIGGER: "Correspondent Charges Pending Trigger",
        KPIType.NOT_TFSC: "Not TFSC",
    },
    "INC": {
        IncidentType.DUPLICATED_LINES: "Duplicated lines",
        IncidentType.INCORRECT_CALCULATIONS: "Incorrect calculations",
        IncidentType.CONCORDE_OR_ACCRUALS_GAPS: "Concorde/Accruals gaps",
        IncidentType.WRONG_TRIGGERS: "Wrong triggers",
        IncidentType.MISSING_INVOICES: "Missing invoices",
        IncidentType.OTHERS: "Others",
    },
    "RISKY": {
        RiskReason.COLLECTED_COMMISSIONS_CREDIT_67P: "Commissions already collected and credit in account 67P",
        RiskReason.FEES_NOT_YET_INVOICED: "Fees not yet invoiced",
        RiskReason.NO_OBSERVED_RISK_EXPECTED_DELAY: "We do not observe risk of non payment for this client; expected payment delay",
    },
}

CATEGORY_ALIASES = {
    "ACTION": "Action",
    "KPI": "KPI",
    "INC": "INC",
    "INCIDENT TYPE": "INC",
    "INCIDENTTYPE": "INC",
    "RISKY": "RISKY",
    "REASONNONRISKY": "RISKY",
}

def _norm_label(s: str) -> str:
    return re.sub(r"[\s\-_:/]", "", str(s or "")).upper()

def _canonical_category(category: str) -> str:
    key = str(category or "").strip().upper()
    if key not in CATEGORY_ALIASES:
        raise KeyError(f"Unknown referential category '{category}'")
    return CATEGORY_ALIASES[key]

def _build_label_index(labels: Mapping[str, Mapping[int, str]]) -> Dict[Tuple[str, str], int]:
    index: Dict[Tuple[str, str], int] = {}
    for category, by_id in labels.items():
        for enum_id, label in by_id.items():
            index[(category, _norm_label(label))] = int(enum_id)
    # enum member names resolve too ("DO_PRICING" -> 3)
    for category, enum_cls in (("Action", ActionType), ("KPI", KPIType), ("INC", IncidentType), ("RISKY", RiskReason)):
        for member in enum_cls:
            index.setdefault((category, _norm_label(member.name)), int(member))
    return index

LABEL_TO_ID: Dict[Tuple[str, str], int] = _build_label_index(_DISPLAY_LABELS)

def resolve_label(category: str, label: str, user_fields: Optional[Iterable[Mapping]] = None) -> Optional[int]:
    """Map a free-text label to its referential id, or None when unknown.

    ``user_fields`` rows (``USR_ID``, ``USR_Category``, ``USR_FieldName``) take
    precedence over the built-in labels.
    """
    cat = _canonical_category(category)
    key = _norm_label(label)
    if not key:
        return None
    for row in user_fields or ():
        if CATEGORY_ALIASES.get(str(row.get("USR_Category", "")).strip().upper()) != cat:
            continue
        if _norm_label(row.get("USR_FieldName")) == key:
            return int(row["USR_ID"])
    return LABEL_TO_ID.get((cat, key))

def label_for(category: str, enum_id: Optional[int], user_fields: Optional[Iterable[Mapping]] = None) -> Optional[str]:
    if enum_id is None:
        return None
    cat = _canonical_category(category)
    for row in user_fields or ():
        if CATEGORY_ALIASES.get(str(row.get("USR_Category", "")).strip().upper()) != cat:
            continue
        if int(row.get("USR_ID", -1)) == int(enum_id) and row.get("USR_FieldName"):
            return str(row["USR_FieldName"])
    return _DISPLAY_LABELS[cat].get(int(enum_id), f"{cat} {enum_id}")

def parse_transaction_type(value: Optional[str]) -> Optional[TransactionType]:
    if value is None:
        return None
    key = str(value).strip().upper().replace(" ", "_")
    try:
        return TransactionType(key)
    except ValueError:
        return None

def determine_transaction_type(label: Optional[str],
                               is_pivot: bool,
                               category: Optional[int] = None,
                               payment_method: Optional[str] = None) -> Optional[TransactionType]:
    upper = (label or "").upper()

    if is_pivot:
        if category is not None:
            return PIVOT_CATEGORY_CODES.get(int(category), TransactionType.TO_CATEGORIZE)
        if not upper.strip() or "TO CATEGORIZE" in upper:
            return TransactionType.TO_CATEGORIZE
        if "COLLECTION" in upper:
            return TransactionType.COLLECTION
        if "AUTOMATIC REFUND" in upper or "PAYMENT" in upper:
            return TransactionType.PAYMENT
        if "ADJUSTMENT" in upper:
            return TransactionType.ADJUSTMENT
        if "XCL LOADER" in upper:
            return TransactionType.XCL_LOADER
        if "TRIGGER" in upper:
            return TransactionType.TRIGGER
        return TransactionType.TO_CATEGORIZE

    # receivable labels are unreliable; only the DWINGS payment method counts
    return parse_transaction_type(payment_method)
