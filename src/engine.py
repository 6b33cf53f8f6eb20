import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import pandas as pd

from facts import RuleFacts
from rules import PREDICATE_FIELDS, ApplyTarget, Ignore, RuleScope, TruthRule

logger = logging.getLogger(__name__)

FactSource = Union[RuleFacts, Mapping[str, Any]]

_COLUMNS = dict(PREDICATE_FIELDS)

class Outcome(str, Enum):
    MATCHED = "MATCHED"
    NO_MATCH = "NO_MATCH"
    FAILED = "FAILED"

@dataclass(frozen=True)
class Decision:
    rule_id: str
    outputs: Dict[str, Any] = field(default_factory=dict)
    apply_target: ApplyTarget = ApplyTarget.SELF
    auto_apply: bool = True
    message: Optional[str] = None

@dataclass(frozen=True)
class Evaluation:
    outcome: Outcome
    decision: Optional[Decision] = None
    error: Optional[str] = None

    @property
    def matched(self) -> bool:
        return self.outcome == Outcome.MATCHED

@dataclass(frozen=True)
class ConditionTrace:
    field: str
    expected: str
    actual: Any
    met: bool

@dataclass(frozen=True)
class RuleTrace:
    rule_id: str
    priority: int
    in_scope: bool
    matched: bool
    conditions: Tuple[ConditionTrace, ...] = ()
    outputs: Dict[str, Any] = field(default_factory=dict)

def _fact(facts: FactSource, name: str):
    if isinstance(facts, Mapping):
        return facts.get(name)
    return getattr(facts, name, None)

def _plain(value):
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, int):
        return int(value)
    return value

def decision_for(rule: TruthRule) -> Decision:
    return Decision(
        rule_id=rule.rule_id,
        outputs={k: _plain(v) for k, v in rule.outputs().items()},
        apply_target=rule.apply_target,
        auto_apply=rule.auto_apply,
        message=rule.message,
    )

def rule_matches(rule: TruthRule, facts: FactSource) -> bool:
    return all(pred.test(_fact(facts, attr)) for attr, pred in rule.predicates())

def ordered(rules: Iterable[TruthRule], scope: RuleScope) -> List[TruthRule]:
    return sorted((r for r in rules if r.applies_to(scope)), key=lambda r: r.sort_key)

def evaluate(facts: FactSource, rules: Iterable[TruthRule], scope: Union[RuleScope, str]) -> Evaluation:
    """
    First enabled in-scope rule, by (priority, rule id), whose predicates all pass.
    Rules never combine: the winner's outputs are the whole decision.
    """
    try:
        scope = RuleScope(scope)
        winner = next((r for r in ordered(rules, scope) if rule_matches(r, facts)), None)
    except (TypeError, ValueError, AttributeError) as ex:
        logger.warning("rule evaluation failed: %s", ex)
        return Evaluation(Outcome.FAILED, error=f"{type(ex).__name__}: {ex}")

    if winner is None:
        return Evaluation(Outcome.NO_MATCH)

    logger.debug("rule %s matched (%s)", winner.rule_id, scope.value)
    return Evaluation(Outcome.MATCHED, decision=decision_for(winner))

def _condition(attr: str, pred, facts: FactSource) -> ConditionTrace:
    actual = _fact(facts, attr)
    try:
        met = pred.test(actual)
    except (TypeError, ValueError):
        met = False
    return ConditionTrace(field=_COLUMNS[attr], expected=pred.describe(), actual=actual, met=met)

def trace(facts: FactSource, rules: Iterable[TruthRule], scope: Union[RuleScope, str]) -> List[RuleTrace]:
    """
    Per-rule, per-condition diagnostics in evaluation order. Selects no winner.
    An unknown scope puts every rule out of scope, mirroring the FAILED outcome of ``evaluate``.
    """
    try:
        scope = RuleScope(scope)
    except ValueError as ex:
        logger.warning("trace: %s", ex)
        scope = None
    out = []
    for rule in sorted(rules, key=lambda r: r.sort_key):
        in_scope = scope is not None and rule.applies_to(scope)
        conditions = tuple(_condition(attr, pred, facts) for attr, pred in rule.predicates()
                           if not isinstance(pred, Ignore))
        out.append(RuleTrace(
            rule_id=rule.rule_id,
            priority=rule.priority,
            in_scope=in_scope,
            matched=in_scope and all(c.met for c in conditions),
            conditions=conditions,
            outputs=rule.outputs(),
        ))
    return out

def trace_frame(traces: Iterable[RuleTrace]) -> pd.DataFrame:
    rows = []
    for t in traces:
        base = {"rule_id": t.rule_id, "priority": t.priority, "in_scope": t.in_scope, "rule_matched": t.matched}
        if not t.conditions:
            rows.append({**base, "field": "*", "expected": "*", "actual": None, "met": True})
        for c in t.conditions:
            rows.append({**base, "field": c.field, "expected": c.expected, "actual": c.actual, "met": c.met})
    cols = ["rule_id", "priority", "in_scope", "rule_matched", "field", "expected", "actual", "met"]
    return pd.DataFrame(rows, columns=cols)
