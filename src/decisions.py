import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from engine import Decision
from models import Country, ReconciliationRecord
from referential import ActionType
from utils import norm_key

logger = logging.getLogger(__name__)

CounterpartResolver = Callable[[ReconciliationRecord], Sequence[ReconciliationRecord]]

FALLBACK_COMMENT = "New line set to INVESTIGATE - no matching rule found"

# rule output -> record field, for outputs copied as-is
_DIRECT_OUTPUTS = {
    "output_action_id": "action",
    "output_kpi_id": "kpi",
    "output_incident_type_id": "incident_type",
    "output_risky_item": "risky_item",
    "output_reason_non_risky_id": "reason_non_risky",
    "output_to_remind": "to_remind",
}

@dataclass
class AppliedSet:
    rule_id: str
    self_patch: Dict[str, Any] = field(default_factory=dict)
    counterpart_patches: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    persisted: bool = False
    record_id: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.self_patch and not any(self.counterpart_patches.values())

def field_patch(decision: Decision, today: date) -> Dict[str, Any]:
    """Record fields the decision sets, with day offsets resolved against ``today``."""
    patch: Dict[str, Any] = {}
    for out, attr in _DIRECT_OUTPUTS.items():
        if decision.outputs.get(out) is not None:
            patch[attr] = decision.outputs[out]
    days = decision.outputs.get("output_to_remind_days")
    if days is not None:
        patch["to_remind_date"] = today + timedelta(days=int(days))
    if decision.outputs.get("output_first_claim_today") is True:
        patch["first_claim_date"] = today
    return patch

def rule_comment(decision: Decision, author: str, now: datetime) -> Optional[str]:
    if not decision.message or not decision.message.strip():
        return None
    return f"[{now:%Y-%m-%d %H:%M}] {author}: [Rule {decision.rule_id}] {decision.message.strip()}"

def _with_comment(existing: Optional[str], comment: str) -> Optional[str]:
    if not existing or not existing.strip():
        return comment
    if comment in existing:
        return None
    return comment + "\n" + existing

def _apply(record: ReconciliationRecord, patch: Dict[str, Any]) -> None:
    for attr, value in patch.items():
        setattr(record, attr, value)

def apply_decision(decision: Decision,
                   record: ReconciliationRecord,
                   counterpart_resolver: Optional[CounterpartResolver] = None,
                   today: Optional[date] = None,
                   author: str = "system",
                   now: Optional[datetime] = None,
                   apply_counterparts: bool = True) -> AppliedSet:
    """
    Write a winning decision onto the record and/or its counterparts.
    Only fields the rule sets are touched. When the rule is not auto-applied the
    patches are returned as a proposal and nothing is mutated.
    With ``apply_counterparts=False`` counterpart patches are only collected; a batch
    realizes them later with ``apply_counterpart_patches``.
    """
    now = now or datetime.now()
    today = today or now.date()

    patch = field_patch(decision, today)
    result = AppliedSet(rule_id=decision.rule_id, persisted=bool(decision.auto_apply), record_id=str(record.id))

    if decision.apply_target.includes_self:
        self_patch = dict(patch)
        comment = rule_comment(decision, author, now)
        if comment is not None:
            merged = _with_comment(record.comments, comment)
            if merged is not None:
                self_patch["comments"] = merged
        result.self_patch = self_patch

    if decision.apply_target.includes_counterpart and patch:
        counterparts = list(counterpart_resolver(record)) if counterpart_resolver is not None else []
        if not counterparts:
            logger.debug("rule %s: no counterpart for %s", decision.rule_id, record.id)
        for other in counterparts:
            result.counterpart_patches[str(other.id)] = dict(patch)
        if decision.auto_apply and apply_counterparts:
            for other in counterparts:
                _apply(other, patch)

    if decision.auto_apply:
        _apply(record, result.self_patch)
        if result.self_patch or result.counterpart_patches:
            logger.info("rule applied: record=%s rule=%s outputs=%s counterparts=%s message=%s",
                        record.id, decision.rule_id, patch, sorted(result.counterpart_patches), decision.message)
    else:
        logger.debug("rule %s proposed for %s (not auto-applied)", decision.rule_id, record.id)

    return result

def apply_counterpart_patches(applied: AppliedSet, by_id: Mapping[str, ReconciliationRecord]) -> List[str]:
    """Write the collected counterpart patches of a persisted decision. Returns the ids written."""
    if not applied.persisted:
        return []
    written = []
    for rec_id, patch in sorted(applied.counterpart_patches.items()):
        other = by_id.get(rec_id)
        if other is None or not patch:
            continue
        _apply(other, patch)
        written.append(rec_id)
        logger.info("rule applied to counterpart: record=%s rule=%s outputs=%s", rec_id, applied.rule_id, patch)
    return written

def mark_investigate(record: ReconciliationRecord, author: str = "system", now: Optional[datetime] = None) -> None:
    """Fallback for a new line no rule matched: INVESTIGATE plus a one-time comment."""
    now = now or datetime.now()
    record.action = int(ActionType.INVESTIGATE)
    comment = f"[{now:%Y-%m-%d %H:%M}] {author}: {FALLBACK_COMMENT}"
    if not record.comments or not record.comments.strip():
        record.comments = comment
    elif "no matching rule found" not in record.comments:
        record.comments = comment + "\n" + record.comments

def finalize_action_status(record: ReconciliationRecord, today: date) -> None:
    # no action or N/A counts as done; any other action is pending unless already set
    if record.action is None or int(record.action) == ActionType.NA:
        record.action_status = True
    elif record.action_status is None:
        record.action_status = False
    record.action_date = today

def pool_counterpart_resolver(pool: Sequence[ReconciliationRecord],
                              country: Optional[Country] = None) -> CounterpartResolver:
    """Opposite-side lines sharing the DWINGS invoice id, else the guarantee id."""

    def resolve(record: ReconciliationRecord) -> List[ReconciliationRecord]:
        side = record.resolve_side(country)
        if side is None:
            return []
        others = [r for r in pool if r is not record and str(r.id) != str(record.id)
                  and r.resolve_side(country) not in (None, side)]

        for attr in ("dwings_invoice_id", "dwings_guarantee_id"):
            key = norm_key(getattr(record, attr))
            if not key:
                continue
            hits = [r for r in others if norm_key(getattr(r, attr)) == key]
            if hits:
                return sorted(hits, key=lambda r: str(r.id))
        return []

    return resolve
