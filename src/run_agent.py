import argparse
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Collection, Dict, List, Optional, Sequence, Tuple

import pandas as pd

from config import ReconConfig, load_config
from decisions import (AppliedSet, apply_counterpart_patches, apply_decision, finalize_action_status, mark_investigate,
                       pool_counterpart_resolver)
from engine import Outcome, evaluate
from facts import build_facts
from ingest import (apply_mapping, guarantees_from_frame, invoices_from_frame, load_column_map, load_csv,
                    records_from_frame)
from link import recompute_matched_flags
from models import AccountSide, Country, DwingsGuarantee, DwingsInvoice, ReconciliationRecord
from report import write_outputs
from resolve import pivot_payment_reference, resolve_dwings_refs
from rules import RuleScope, TruthRule, default_rules, load_rules, validate_rules
from standardize import standardize_records

logger = logging.getLogger(__name__)

@dataclass
class BatchResult:
    evaluated: int = 0
    applied: int = 0
    proposed: int = 0
    no_match: int = 0
    cancelled: bool = False
    decision_rows: List[Dict] = field(default_factory=list)
    failures: List[Dict] = field(default_factory=list)
    applied_sets: List[AppliedSet] = field(default_factory=list)
    exceptions: pd.DataFrame = field(default_factory=pd.DataFrame)

def _fail(result: BatchResult, record: ReconciliationRecord, stage: str, error: str) -> None:
    result.failures.append({"record_id": record.id, "stage": stage, "error": error})

def resolve_references(records: Sequence[ReconciliationRecord],
                       invoices: Sequence[DwingsInvoice],
                       guarantees: Sequence[DwingsGuarantee],
                       country: Optional[Country],
                       config: ReconConfig,
                       result: BatchResult) -> int:
    """Fill missing DWINGS references on unlinked lines. Returns how many lines got one."""
    resolved = 0
    for record in records:
        if record.has_dwings_data:
            continue
        try:
            is_pivot = record.resolve_side(country) == AccountSide.PIVOT
            refs = resolve_dwings_refs(record, is_pivot, invoices, config)
            record.dwings_invoice_id = record.dwings_invoice_id or refs.invoice_id
            record.dwings_bgpmt = record.dwings_bgpmt or refs.bgpmt
            record.dwings_guarantee_id = record.dwings_guarantee_id or refs.guarantee_id
            if is_pivot and not record.payment_reference:
                record.payment_reference = pivot_payment_reference(record, refs, guarantees)
            if record.has_dwings_data:
                resolved += 1
        except Exception as ex:
            logger.warning("reference resolution failed for %s", record.id, exc_info=True)
            _fail(result, record, "resolve", str(ex))
    return resolved

def run_batch(records: Sequence[ReconciliationRecord],
              invoices: Sequence[DwingsInvoice] = (),
              guarantees: Sequence[DwingsGuarantee] = (),
              rules: Optional[Sequence[TruthRule]] = None,
              country: Optional[Country] = None,
              scope: RuleScope = RuleScope.IMPORT,
              today: Optional[date] = None,
              resolve_refs: bool = True,
              new_line_ids: Optional[Collection[str]] = None,
              investigate_fallback: bool = True,
              should_cancel: Optional[Callable[[], bool]] = None,
              author: str = "system",
              config: ReconConfig = ReconConfig()) -> BatchResult:
    """
    Evaluate and apply the truth rules over a country dataset.

    Every record is evaluated against the state left by import and recompute, and
    writes only its own fields. Counterpart patches are collected and realized in a
    second pass, then the investigate fallback and the action status defaults run.
    A failing record is logged and counted; the batch carries on.
    """
    now = datetime.now()
    today = today or now.date()
    rules = validate_rules(rules) if rules is not None else default_rules()
    result = BatchResult()

    if resolve_refs:
        n = resolve_references(records, invoices, guarantees, country, config, result)
        logger.info("resolved DWINGS references on %d lines", n)

    recompute_matched_flags(records, country)
    counterparts = pool_counterpart_resolver(records, country)

    processed: List[ReconciliationRecord] = []
    unmatched: List[Tuple[ReconciliationRecord, Dict]] = []
    for record in records:
        if should_cancel is not None and should_cancel():
            result.cancelled = True
            logger.info("batch cancelled after %d records", result.evaluated)
            break

        result.evaluated += 1
        processed.append(record)
        try:
            facts = build_facts(record, country, invoices, guarantees, today)
            ev = evaluate(facts, rules, scope)

            if ev.outcome == Outcome.FAILED:
                _fail(result, record, "evaluate", ev.error)
                continue

            if ev.outcome == Outcome.NO_MATCH:
                result.no_match += 1
                row = {"record_id": record.id, "outcome": ev.outcome.value, "outputs": {}}
                result.decision_rows.append(row)
                is_new = new_line_ids is None or record.id in new_line_ids
                if investigate_fallback and is_new:
                    unmatched.append((record, row))
                continue

            decision = ev.decision
            applied = apply_decision(decision, record, counterparts, today=today, author=author, now=now,
                                     apply_counterparts=False)
            result.applied_sets.append(applied)
            if applied.persisted:
                result.applied += 1
            else:
                result.proposed += 1
            result.decision_rows.append({
                "record_id": record.id,
                "outcome": ev.outcome.value,
                "rule_id": decision.rule_id,
                "apply_target": decision.apply_target.value,
                "auto_apply": decision.auto_apply,
                "persisted": applied.persisted,
                "outputs": applied.self_patch,
                "counterparts": ";".join(sorted(applied.counterpart_patches)),
                "message": decision.message,
            })
        except Exception as ex:
            logger.warning("record %s failed", record.id, exc_info=True)
            _fail(result, record, "apply", str(ex))

    # counterpart patches land only after every self decision is made
    by_id = {str(r.id): r for r in records}
    touched: Dict[str, ReconciliationRecord] = {}
    for applied in result.applied_sets:
        try:
            for rec_id in apply_counterpart_patches(applied, by_id):
                touched[rec_id] = by_id[rec_id]
        except Exception as ex:
            logger.warning("counterpart application of %s from %s failed", applied.rule_id, applied.record_id,
                           exc_info=True)
            result.failures.append({"record_id": applied.record_id, "stage": "counterpart", "error": str(ex)})

    fallbacks = 0
    for record, row in unmatched:
        if record.action is None:
            mark_investigate(record, author, now)
            row["outputs"] = {"action": record.action}
            fallbacks += 1
    if fallbacks:
        logger.info("set %d new line(s) to INVESTIGATE (no matching rule)", fallbacks)

    if scope == RuleScope.IMPORT:
        finals = {str(r.id): r for r in processed}
        finals.update(touched)
        for record in finals.values():
            try:
                finalize_action_status(record, today)
            except (TypeError, ValueError) as ex:
                logger.warning("action status of %s not finalized: %s", record.id, ex)
                _fail(result, record, "finalize", str(ex))

    logger.info("batch done: evaluated=%d applied=%d proposed=%d no_match=%d failed=%d",
                result.evaluated, result.applied, result.proposed, result.no_match, len(result.failures))
    return result

def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Apply truth rules to an AMBRE extract")
    parser.add_argument("--config", default="config/recon_config.json", help="JSON overrides for ReconConfig")
    parser.add_argument("--outputs", help="Output directory (defaults to outputs_dir from config)")
    parser.add_argument("--scope", default=RuleScope.IMPORT.value, choices=[s.value for s in RuleScope])
    parser.add_argument("--no-resolve", action="store_true", help="Skip automatic DWINGS reference resolution")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    cfg = load_config(args.config)
    outputs_dir = args.outputs or cfg.outputs_dir
    column_map = load_column_map(cfg.column_map_path)
    country = Country(cfg.country_id, cfg.pivot_account_id, cfg.receivable_account_id)

    ambre = apply_mapping(load_csv(cfg.ambre_path), "ambre", column_map)
    clean, exceptions = standardize_records(ambre)
    records = records_from_frame(clean)
    invoices = invoices_from_frame(apply_mapping(load_csv(cfg.invoices_path), "dwings_invoices", column_map))
    guarantees = guarantees_from_frame(apply_mapping(load_csv(cfg.guarantees_path), "dwings_guarantees", column_map))

    rules = load_rules(cfg.rules_path)

    result = run_batch(records, invoices, guarantees, rules, country,
                       scope=RuleScope(args.scope), resolve_refs=not args.no_resolve, config=cfg)
    result.exceptions = exceptions

    write_outputs(outputs_dir, result, records)

    print(f"Wrote outputs to {outputs_dir}/")
    print(f"Records: {len(records)} | Applied: {result.applied} | Proposed: {result.proposed} | "
          f"No match: {result.no_match} | Failed: {len(result.failures)} | Exceptions: {len(exceptions)}")

if __name__ == "__main__":
    main()
