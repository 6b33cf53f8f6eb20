import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple, Union

from referential import ActionType, KPIType, resolve_label

class RuleSetError(ValueError):
    pass

class RuleScope(str, Enum):
    BOTH = "Both"
    IMPORT = "Import"
    EDIT = "Edit"

class ApplyTarget(str, Enum):
    SELF = "Self"
    COUNTERPART = "Counterpart"
    BOTH = "Both"

    @property
    def includes_self(self) -> bool:
        return self in (ApplyTarget.SELF, ApplyTarget.BOTH)

    @property
    def includes_counterpart(self) -> bool:
        return self in (ApplyTarget.COUNTERPART, ApplyTarget.BOTH)

# ---------- predicates ----------

def _norm(value) -> str:
    return str(value).strip().upper()

@dataclass(frozen=True)
class Ignore:
    def test(self, actual) -> bool:
        return True

    def describe(self) -> str:
        return "*"

@dataclass(frozen=True)
class Equals:
    value: Union[str, bool, int]

    def __post_init__(self):
        if isinstance(self.value, str):
            object.__setattr__(self, "value", _norm(self.value))

    def test(self, actual) -> bool:
        if actual is None:
            return False
        if isinstance(self.value, bool):
            return isinstance(actual, bool) and actual is self.value
        if isinstance(self.value, str):
            return _norm(actual) == self.value
        return actual == self.value

    def describe(self) -> str:
        return str(self.value)

@dataclass(frozen=True)
class OneOf:
    values: FrozenSet[str]

    def __post_init__(self):
        object.__setattr__(self, "values", frozenset(_norm(v) for v in self.values))

    def test(self, actual) -> bool:
        if actual is None or not str(actual).strip():
            return False
        return _norm(actual) in self.values

    def describe(self) -> str:
        return ";".join(sorted(self.values))

@dataclass(frozen=True)
class Range:
    min: Optional[int] = None
    max: Optional[int] = None

    def test(self, actual) -> bool:
        if actual is None:
            return False
        if self.min is not None and actual < self.min:
            return False
        if self.max is not None and actual > self.max:
            return False
        return True

    def describe(self) -> str:
        lo = "" if self.min is None else str(self.min)
        hi = "" if self.max is None else str(self.max)
        return f"[{lo}..{hi}]"

Predicate = Union[Ignore, Equals, OneOf, Range]
IGNORE = Ignore()

# (attribute, editor column) in evaluation order
PREDICATE_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("account_side", "AccountSide"),
    ("booking", "Booking"),
    ("guarantee_type", "GuaranteeType"),
    ("transaction_type", "TransactionType"),
    ("has_dwings_link", "HasDwingsLink"),
    ("is_grouped", "IsGrouped"),
    ("is_amount_match", "IsAmountMatch"),
    ("sign", "Sign"),
    ("mt_status_acked", "MTStatusAcked"),
    ("comm_id_email", "CommIdEmail"),
    ("bgi_status_initiated", "BgiStatusInitiated"),
    ("trigger_date_is_null", "TriggerDateIsNull"),
    ("days_since_trigger", "DaysSinceTrigger"),
    ("is_transitory", "IsTransitory"),
    ("operation_days_ago", "OperationDaysAgo"),
    ("is_matched", "IsMatched"),
    ("has_manual_match", "HasManualMatch"),
    ("is_first_request", "IsFirstRequest"),
    ("days_since_reminder", "DaysSinceReminder"),
    ("current_action_id", "CurrentActionId"),
)

OUTPUT_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("output_action_id", "OutputActionId"),
    ("output_kpi_id", "OutputKpiId"),
    ("output_incident_type_id", "OutputIncidentTypeId"),
    ("output_risky_item", "OutputRiskyItem"),
    ("output_reason_non_risky_id", "OutputReasonNonRiskyId"),
    ("output_to_remind", "OutputToRemind"),
    ("output_to_remind_days", "OutputToRemindDays"),
    ("output_first_claim_today", "OutputFirstClaimToday"),
)

_BOOL_FIELDS = {"has_dwings_link", "is_grouped", "is_amount_match", "mt_status_acked", "comm_id_email",
                "bgi_status_initiated", "trigger_date_is_null", "is_transitory", "is_matched",
                "has_manual_match", "is_first_request"}
_RANGE_FIELDS = {"days_since_trigger", "operation_days_ago", "days_since_reminder"}
_ENUM_VALUES = {"account_side": {"P", "R"}, "sign": {"C", "D"}}

@dataclass(frozen=True)
class TruthRule:
    rule_id: str
    enabled: bool = True
    priority: int = 100
    scope: RuleScope = RuleScope.BOTH

    account_side: Predicate = IGNORE
    booking: Predicate = IGNORE
    guarantee_type: Predicate = IGNORE
    transaction_type: Predicate = IGNORE
    has_dwings_link: Predicate = IGNORE
    is_grouped: Predicate = IGNORE
    is_amount_match: Predicate = IGNORE
    sign: Predicate = IGNORE
    mt_status_acked: Predicate = IGNORE
    comm_id_email: Predicate = IGNORE
    bgi_status_initiated: Predicate = IGNORE
    trigger_date_is_null: Predicate = IGNORE
    days_since_trigger: Predicate = IGNORE
    is_transitory: Predicate = IGNORE
    operation_days_ago: Predicate = IGNORE
    is_matched: Predicate = IGNORE
    has_manual_match: Predicate = IGNORE
    is_first_request: Predicate = IGNORE
    days_since_reminder: Predicate = IGNORE
    current_action_id: Predicate = IGNORE

    output_action_id: Optional[int] = None
    output_kpi_id: Optional[int] = None
    output_incident_type_id: Optional[int] = None
    output_risky_item: Optional[bool] = None
    output_reason_non_risky_id: Optional[int] = None
    output_to_remind: Optional[bool] = None
    output_to_remind_days: Optional[int] = None
    output_first_claim_today: Optional[bool] = None

    apply_target: ApplyTarget = ApplyTarget.SELF
    auto_apply: bool = True
    message: Optional[str] = None

    def predicates(self) -> List[Tuple[str, Predicate]]:
        return [(attr, getattr(self, attr)) for attr, _ in PREDICATE_FIELDS]

    def outputs(self) -> Dict[str, Any]:
        """Output columns the rule sets, keyed by attribute name."""
        return {attr: getattr(self, attr) for attr, _ in OUTPUT_FIELDS if getattr(self, attr) is not None}

    def applies_to(self, scope: RuleScope) -> bool:
        return self.enabled and (self.scope == RuleScope.BOTH or self.scope == RuleScope(scope))

    @property
    def sort_key(self) -> Tuple[int, str]:
        return (self.priority, self.rule_id)

# ---------- parsing ----------

def _is_wildcard(value) -> bool:
    return value is None or (isinstance(value, str) and value.strip() in ("", "*"))

def _parse_bool(value, rule_id: str, column: str) -> Optional[bool]:
    if _is_wildcard(value):
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    key = str(value).strip().lower()
    if key in ("true", "yes", "1"):
        return True
    if key in ("false", "no", "0"):
        return False
    raise RuleSetError(f"Rule '{rule_id}': {column} expects true/false/*, got {value!r}")

def _parse_int(value, rule_id: str, column: str) -> Optional[int]:
    if _is_wildcard(value):
        return None
    if isinstance(value, bool):
        raise RuleSetError(f"Rule '{rule_id}': {column} expects an integer, got {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise RuleSetError(f"Rule '{rule_id}': {column} expects an integer, got {value!r}")
    if not number.is_integer():
        raise RuleSetError(f"Rule '{rule_id}': {column} expects an integer, got {value!r}")
    return int(number)

# referential category of the id-valued columns; labels such as "Investigate" are accepted
_REFERENTIAL_CATEGORY = {
    "current_action_id": "Action",
    "output_action_id": "Action",
    "output_kpi_id": "KPI",
    "output_incident_type_id": "INC",
    "output_reason_non_risky_id": "RISKY",
}

def _parse_ref_id(attr: str, value, rule_id: str, column: str) -> Optional[int]:
    if _is_wildcard(value) or isinstance(value, (bool, int, float)):
        return _parse_int(value, rule_id, column)
    text = str(value).strip()
    if text.lstrip("-").replace(".", "", 1).isdigit():
        return _parse_int(text, rule_id, column)
    ref_id = resolve_label(_REFERENTIAL_CATEGORY[attr], text)
    if ref_id is None:
        raise RuleSetError(f"Rule '{rule_id}': unknown {column} label {value!r}")
    return ref_id

def _parse_enum(enum_cls, value, rule_id: str, column: str, default):
    if _is_wildcard(value):
        return default
    if isinstance(value, enum_cls):
        return value
    key = str(value).strip().lower()
    for member in enum_cls:
        if member.value.lower() == key or member.name.lower() == key:
            return member
    raise RuleSetError(f"Rule '{rule_id}': unknown {column} {value!r}")

def _parse_text_predicate(attr: str, value, rule_id: str, column: str) -> Predicate:
    if _is_wildcard(value):
        return IGNORE
    parts = [p.strip().upper() for p in str(value).replace(",", ";").replace("|", ";").split(";") if p.strip()]
    if not parts:
        return IGNORE
    allowed = _ENUM_VALUES.get(attr)
    if allowed is not None:
        bad = [p for p in parts if p not in allowed]
        if bad:
            raise RuleSetError(f"Rule '{rule_id}': {column} must be one of {sorted(allowed)}, got {value!r}")
    if len(parts) == 1:
        return Equals(parts[0])
    return OneOf(frozenset(parts))

def rule_from_dict(row: Mapping[str, Any]) -> TruthRule:
    """
    Build a rule from the editor's flat row shape (PascalCase columns).
    ``*`` or blank means wildcard; ``XxxMin``/``XxxMax`` pairs become ranges.
    """
    known = {"RuleId", "Enabled", "Priority", "Scope", "ApplyTo", "ApplyTarget", "AutoApply", "Message"}
    known |= {col for attr, col in PREDICATE_FIELDS if attr not in _RANGE_FIELDS}
    known |= {col + suffix for attr, col in PREDICATE_FIELDS if attr in _RANGE_FIELDS for suffix in ("Min", "Max")}
    known |= {col for _, col in OUTPUT_FIELDS}

    rule_id = str(row.get("RuleId") or "").strip()
    if not rule_id:
        raise RuleSetError("Rule without RuleId")
    unknown = sorted(set(row) - known)
    if unknown:
        raise RuleSetError(f"Rule '{rule_id}': unknown columns {unknown}")

    kwargs: Dict[str, Any] = {"rule_id": rule_id}
    enabled = _parse_bool(row.get("Enabled"), rule_id, "Enabled")
    kwargs["enabled"] = True if enabled is None else enabled
    priority = _parse_int(row.get("Priority"), rule_id, "Priority")
    kwargs["priority"] = 100 if priority is None else priority
    kwargs["scope"] = _parse_enum(RuleScope, row.get("Scope"), rule_id, "Scope", RuleScope.BOTH)
    kwargs["apply_target"] = _parse_enum(ApplyTarget, row.get("ApplyTarget", row.get("ApplyTo")),
                                         rule_id, "ApplyTarget", ApplyTarget.SELF)
    auto_apply = _parse_bool(row.get("AutoApply"), rule_id, "AutoApply")
    kwargs["auto_apply"] = True if auto_apply is None else auto_apply
    message = row.get("Message")
    kwargs["message"] = str(message) if message not in (None, "") else None

    for attr, col in PREDICATE_FIELDS:
        if attr in _RANGE_FIELDS:
            lo = _parse_int(row.get(col + "Min"), rule_id, col + "Min")
            hi = _parse_int(row.get(col + "Max"), rule_id, col + "Max")
            kwargs[attr] = IGNORE if lo is None and hi is None else Range(lo, hi)
        elif attr in _BOOL_FIELDS:
            flag = _parse_bool(row.get(col), rule_id, col)
            kwargs[attr] = IGNORE if flag is None else Equals(flag)
        elif attr == "current_action_id":
            action = _parse_ref_id(attr, row.get(col), rule_id, col)
            kwargs[attr] = IGNORE if action is None else Equals(action)
        else:
            kwargs[attr] = _parse_text_predicate(attr, row.get(col), rule_id, col)

    for attr, col in OUTPUT_FIELDS:
        if attr in ("output_risky_item", "output_to_remind", "output_first_claim_today"):
            kwargs[attr] = _parse_bool(row.get(col), rule_id, col)
        elif attr in _REFERENTIAL_CATEGORY:
            kwargs[attr] = _parse_ref_id(attr, row.get(col), rule_id, col)
        else:
            kwargs[attr] = _parse_int(row.get(col), rule_id, col)

    return TruthRule(**kwargs)

def rule_to_dict(rule: TruthRule) -> Dict[str, Any]:
    row: Dict[str, Any] = {
        "RuleId": rule.rule_id,
        "Enabled": rule.enabled,
        "Priority": rule.priority,
        "Scope": rule.scope.value,
        "ApplyTarget": rule.apply_target.value,
        "AutoApply": rule.auto_apply,
        "Message": rule.message,
    }
    for attr, col in PREDICATE_FIELDS:
        pred = getattr(rule, attr)
        if attr in _RANGE_FIELDS:
            row[col + "Min"] = pred.min if isinstance(pred, Range) else None
            row[col + "Max"] = pred.max if isinstance(pred, Range) else None
        elif isinstance(pred, Ignore):
            row[col] = None if attr in _BOOL_FIELDS or attr == "current_action_id" else "*"
        elif isinstance(pred, OneOf):
            row[col] = pred.describe()
        else:
            row[col] = pred.value
    for attr, col in OUTPUT_FIELDS:
        row[col] = getattr(rule, attr)
    return row

# ---------- validation ----------

def _check_rule(rule: TruthRule) -> None:
    if not isinstance(rule.priority, int) or isinstance(rule.priority, bool):
        raise RuleSetError(f"Rule '{rule.rule_id}': Priority must be an integer")
    for attr, col in PREDICATE_FIELDS:
        pred = getattr(rule, attr)
        if not isinstance(pred, (Ignore, Equals, OneOf, Range)):
            raise RuleSetError(f"Rule '{rule.rule_id}': {col} is not a predicate: {pred!r}")
        if isinstance(pred, Range):
            if attr not in _RANGE_FIELDS:
                raise RuleSetError(f"Rule '{rule.rule_id}': {col} does not take a range")
            if pred.min is not None and pred.max is not None and pred.min > pred.max:
                raise RuleSetError(f"Rule '{rule.rule_id}': {col}Min {pred.min} > {col}Max {pred.max}")
        allowed = _ENUM_VALUES.get(attr)
        if allowed is not None:
            values = {pred.value} if isinstance(pred, Equals) else set(pred.values) if isinstance(pred, OneOf) else set()
            if not values <= allowed:
                raise RuleSetError(f"Rule '{rule.rule_id}': {col} must be one of {sorted(allowed)}")
    days = rule.output_to_remind_days
    if days is not None and days < 0:
        raise RuleSetError(f"Rule '{rule.rule_id}': OutputToRemindDays must be >= 0")

def validate_rules(rules: Iterable[TruthRule]) -> Tuple[TruthRule, ...]:
    """Check a rule set and return it in evaluation order (priority, then rule id)."""
    seen: Dict[str, str] = {}
    checked: List[TruthRule] = []
    for rule in rules:
        rule_id = (rule.rule_id or "").strip()
        if not rule_id:
            raise RuleSetError("Rule without RuleId")
        key = rule_id.upper()
        if key in seen:
            raise RuleSetError(f"Duplicate RuleId '{rule_id}' (already defined as '{seen[key]}')")
        seen[key] = rule_id
        _check_rule(rule)
        checked.append(rule)
    return tuple(sorted(checked, key=lambda r: r.sort_key))

def load_rules(path: str = "config/truth_rules.json") -> Tuple[TruthRule, ...]:
    with open(path, "r", encoding="utf-8") as f:
        raw = json.load(f)
    if not isinstance(raw, list):
        raise RuleSetError(f"{path}: expected a JSON list of rules")
    return validate_rules(rule_from_dict(row) for row in raw)

def default_rules() -> Tuple[TruthRule, ...]:
    """Seed truth table for import, ending with an investigate catch-all."""
    imp = RuleScope.IMPORT
    R, P = Equals("R"), Equals("P")
    C, D = Equals("C"), Equals("D")
    incoming = Equals("INCOMING_PAYMENT")
    yes, no = Equals(True), Equals(False)

    rules = [
        TruthRule("Pivot - Collection Credit (Grouped)", priority=10, scope=imp, account_side=P,
                  transaction_type=Equals("COLLECTION"), is_amount_match=yes, sign=C,
                  output_action_id=ActionType.MATCH, output_kpi_id=KPIType.PAID_BUT_NOT_RECONCILED,
                  apply_target=ApplyTarget.BOTH, message="Collection grouped with receivable, amounts balance"),
        TruthRule("Pivot - Collection Credit (Not Grouped)", priority=20, scope=imp, account_side=P,
                  transaction_type=Equals("COLLECTION"), sign=C,
                  output_action_id=ActionType.TRIGGER, output_kpi_id=KPIType.PAID_BUT_NOT_RECONCILED,
                  message="Collection credit without amount match, investigation required"),
        TruthRule("Pivot - Collection Debit", priority=20, scope=imp, account_side=P,
                  transaction_type=Equals("COLLECTION"), sign=D,
                  output_action_id=ActionType.MATCH, output_kpi_id=KPIType.IT_ISSUES),
        TruthRule("Pivot - Payment Debit", priority=20, scope=imp, account_side=P,
                  transaction_type=Equals("PAYMENT"), sign=D,
                  output_action_id=ActionType.DO_PRICING, output_kpi_id=KPIType.CORRESPONDENT_CHARGES_TO_BE_INVOICED),
        TruthRule("Pivot - Payment Credit", priority=20, scope=imp, account_side=P,
                  transaction_type=Equals("PAYMENT"), sign=C,
                  output_action_id=ActionType.INVESTIGATE, output_kpi_id=KPIType.UNDER_INVESTIGATION),
        TruthRule("Pivot - Adjustment", priority=20, scope=imp, account_side=P,
                  transaction_type=Equals("ADJUSTMENT"),
                  output_action_id=ActionType.ADJUST, output_kpi_id=KPIType.PAID_BUT_NOT_RECONCILED),
        TruthRule("Pivot - XCL Loader & Trigger", priority=20, scope=imp, account_side=P,
                  transaction_type=OneOf(frozenset({"XCL_LOADER", "TRIGGER"})),
                  output_action_id=ActionType.TRIGGER, output_kpi_id=KPIType.PAID_BUT_NOT_RECONCILED),
        TruthRule("Pivot - Manual Outgoing", priority=20, scope=imp, account_side=P,
                  transaction_type=Equals("MANUAL_OUTGOING"),
                  output_action_id=ActionType.EXECUTE, output_kpi_id=KPIType.CORRESPONDENT_CHARGES_PENDING_TRIGGER),

        TruthRule("Receivable - Reissuance/Advising MT791 Acknowledged", priority=10, scope=imp, account_side=R,
                  guarantee_type=OneOf(frozenset({"REISSUANCE", "ADVISING"})), transaction_type=incoming,
                  mt_status_acked=yes, is_first_request=yes,
                  output_action_id=ActionType.REQUEST, output_kpi_id=KPIType.CLAIMED_BUT_NOT_PAID,
                  output_first_claim_today=True, message="MT791 sent automatically via DWINGS"),
        TruthRule("Receivable - Reissuance/Advising MT791 Not Acknowledged", priority=10, scope=imp, account_side=R,
                  guarantee_type=OneOf(frozenset({"REISSUANCE", "ADVISING"})), transaction_type=incoming,
                  mt_status_acked=no, is_first_request=yes,
                  output_action_id=ActionType.INVESTIGATE, output_kpi_id=KPIType.NOT_CLAIMED,
                  message="MT791 not acknowledged, manual follow-up required"),
        TruthRule("Receivable - Issuance with Email", priority=10, scope=imp, account_side=R,
                  guarantee_type=Equals("ISSUANCE"), transaction_type=incoming, comm_id_email=yes, is_first_request=yes,
                  output_action_id=ActionType.REQUEST, output_kpi_id=KPIType.CLAIMED_BUT_NOT_PAID,
                  output_first_claim_today=True, message="First claim email sent, awaiting response"),
        TruthRule("Receivable - Issuance without Email", priority=10, scope=imp, account_side=R,
                  guarantee_type=Equals("ISSUANCE"), transaction_type=incoming, comm_id_email=no, is_first_request=yes,
                  output_action_id=ActionType.TO_CLAIM, output_kpi_id=KPIType.NOT_CLAIMED,
                  message="No email communication id, manual claim required"),
        TruthRule("Receivable - Issuance Reminder (30+ days)", priority=30, scope=imp, account_side=R,
                  guarantee_type=Equals("ISSUANCE"), transaction_type=incoming, days_since_reminder=Range(30, None),
                  output_action_id=ActionType.REQUEST, output_kpi_id=KPIType.CLAIMED_BUT_NOT_PAID,
                  output_to_remind=True, output_to_remind_days=30, message="Reminder sent automatically via DWINGS"),
        TruthRule("Receivable - Reissuance Reminder Not Acknowledged", priority=30, scope=imp, account_side=R,
                  guarantee_type=Equals("REISSUANCE"), transaction_type=incoming, mt_status_acked=no,
                  days_since_reminder=Range(30, None),
                  output_action_id=ActionType.TRIGGER, output_kpi_id=KPIType.NOT_CLAIMED,
                  message="Reminder required, MT791 not acknowledged (30+ days)"),
        TruthRule("Receivable - First Incoming Payment Request", priority=50, scope=imp, account_side=R,
                  transaction_type=incoming, is_first_request=yes,
                  output_action_id=ActionType.REQUEST, output_kpi_id=KPIType.CLAIMED_BUT_NOT_PAID,
                  message="First claim request, automatic action assigned"),
        TruthRule("Receivable - Direct Debit", priority=20, scope=imp, account_side=R,
                  transaction_type=Equals("DIRECT_DEBIT"),
                  output_action_id=ActionType.TRIGGER, output_kpi_id=KPIType.IT_ISSUES),
        TruthRule("Receivable - Outgoing Payment (Initiated)", priority=20, scope=imp, account_side=R,
                  transaction_type=Equals("OUTGOING_PAYMENT"), bgi_status_initiated=yes,
                  output_action_id=ActionType.ADJUST, output_kpi_id=KPIType.CORRESPONDENT_CHARGES_PENDING_TRIGGER),
        TruthRule("Receivable - Outgoing Payment (Not Initiated)", priority=20, scope=imp, account_side=R,
                  transaction_type=Equals("OUTGOING_PAYMENT"), bgi_status_initiated=no,
                  output_action_id=ActionType.TRIGGER, output_kpi_id=KPIType.UNDER_INVESTIGATION),
        TruthRule("Receivable - External Debit Payment", priority=20, scope=imp, account_side=R,
                  transaction_type=Equals("EXTERNAL_DEBIT_PAYMENT"),
                  output_action_id=ActionType.TO_DO_SDD, output_kpi_id=KPIType.NOT_CLAIMED),

        TruthRule("Default - Investigate", priority=999, scope=imp,
                  output_action_id=ActionType.INVESTIGATE, output_kpi_id=KPIType.UNDER_INVESTIGATION,
                  message="No specific rule matched, line set to investigate"),
    ]
    return validate_rules(rules)
