from pathlib import Path

import pytest

from rules import (IGNORE, ApplyTarget, Equals, OneOf, Range, RuleScope, RuleSetError, TruthRule,
                   default_rules, load_rules, rule_from_dict, rule_to_dict, validate_rules)

RULES_JSON = Path(__file__).resolve().parents[1] / "config" / "truth_rules.json"

def test_rule_from_editor_row():
    rule = rule_from_dict({
        "RuleId": "R-1",
        "Priority": "5",
        "Scope": "import",
        "AccountSide": "*",
        "Sign": "c",
        "TransactionType": "XCL_LOADER; trigger",
        "HasDwingsLink": "false",
        "IsGrouped": "",
        "DaysSinceTriggerMin": 10,
        "DaysSinceTriggerMax": None,
        "CurrentActionId": 2,
        "OutputActionId": 7,
        "OutputFirstClaimToday": True,
        "ApplyTo": "Both",
        "AutoApply": False,
    })

    assert rule.priority == 5
    assert rule.scope == RuleScope.IMPORT
    assert rule.account_side is IGNORE
    assert rule.sign == Equals("C")
    assert rule.transaction_type == OneOf(frozenset({"XCL_LOADER", "TRIGGER"}))
    assert rule.has_dwings_link == Equals(False)
    assert rule.is_grouped is IGNORE
    assert rule.days_since_trigger == Range(10, None)
    assert rule.current_action_id == Equals(2)
    assert rule.apply_target == ApplyTarget.BOTH
    assert rule.auto_apply is False
    assert rule.outputs() == {"output_action_id": 7, "output_first_claim_today": True}

def test_rule_row_round_trips_through_editor_shape():
    original = default_rules()[0]
    assert rule_from_dict(rule_to_dict(original)) == original

def test_predicates():
    assert Range(30, None).test(30)
    assert not Range(30, None).test(29)
    assert Range(None, 5).test(-3)
    assert Range(1, 1).test(1)
    assert not Range(None, None).test(None)
    assert not Equals("R").test(None)
    assert Equals("R").test(" r ")
    assert not Equals(True).test(1)
    assert not Equals(False).test(None)
    assert OneOf(frozenset({"ISSUANCE", "ADVISING"})).test("advising")
    assert not OneOf(frozenset({"ISSUANCE"})).test("")
    assert IGNORE.test(None)

def test_text_predicates_built_in_code_are_normalised():
    assert Equals(" Issuance").test("ISSUANCE")
    assert Equals("issuance") == Equals("ISSUANCE")
    assert OneOf(frozenset({"reissuance", "Advising "})).test("ADVISING")
    assert TruthRule("x", guarantee_type=Equals("Issuance")).guarantee_type.describe() == "ISSUANCE"

@pytest.mark.parametrize("row, fragment", [
    ({"RuleId": ""}, "without RuleId"),
    ({"RuleId": "X", "Scope": "Nightly"}, "Scope"),
    ({"RuleId": "X", "ApplyTarget": "Sideways"}, "ApplyTarget"),
    ({"RuleId": "X", "AccountSide": "Q"}, "AccountSide"),
    ({"RuleId": "X", "Sign": "C;X"}, "Sign"),
    ({"RuleId": "X", "Priority": "high"}, "Priority"),
    ({"RuleId": "X", "OutputActionId": 1.5}, "OutputActionId"),
    ({"RuleId": "X", "IsGrouped": "maybe"}, "IsGrouped"),
    ({"RuleId": "X", "Colour": "red"}, "unknown columns"),
])
def test_rule_row_errors(row, fragment):
    with pytest.raises(RuleSetError, match=fragment):
        rule_from_dict(row)

def test_inverted_range_rejected_at_load_time():
    with pytest.raises(RuleSetError, match="OperationDaysAgoMin 9 > OperationDaysAgoMax 3"):
        validate_rules([rule_from_dict({"RuleId": "X", "OperationDaysAgoMin": 9, "OperationDaysAgoMax": 3})])

def test_duplicate_rule_id_rejected():
    with pytest.raises(RuleSetError, match="Duplicate RuleId"):
        validate_rules([TruthRule("A"), TruthRule("B"), TruthRule("a ")])

def test_validate_orders_by_priority_then_rule_id():
    rules = validate_rules([TruthRule("b", priority=1), TruthRule("z", priority=0), TruthRule("a", priority=1)])
    assert [r.rule_id for r in rules] == ["z", "a", "b"]

def test_rule_set_error_is_a_value_error():
    assert issubclass(RuleSetError, ValueError)

def test_bundled_rule_file_loads():
    rules = load_rules(str(RULES_JSON))
    ids = [r.rule_id for r in rules]
    assert ids[-1] == "Default - Investigate"
    assert len(ids) == len(set(ids))
    assert any(r.scope == RuleScope.EDIT and not r.auto_apply for r in rules)

def test_load_rules_rejects_non_list(tmp_path):
    path = tmp_path / "rules.json"
    path.write_text('{"RuleId": "x"}')
    with pytest.raises(RuleSetError):
        load_rules(str(path))

def test_default_rules_end_with_catch_all():
    rules = default_rules()
    last = rules[-1]
    assert last.rule_id == "Default - Investigate"
    assert all(pred is IGNORE for _, pred in last.predicates())
    assert last.scope == RuleScope.IMPORT
    assert [r.sort_key for r in rules] == sorted(r.sort_key for r in rules)

def test_output_ids_accept_referential_labels():
    rule = rule_from_dict({"RuleId": "labels", "OutputActionId": "Do Pricing", "OutputKpiId": "IT_ISSUES",
                           "CurrentActionId": "investigate", "OutputIncidentTypeId": "31"})

    assert rule.output_action_id == 3
    assert rule.output_kpi_id == 19
    assert rule.output_incident_type_id == 31
    assert rule.current_action_id == Equals(2)

def test_unknown_output_label_rejected():
    with pytest.raises(RuleSetError, match="unknown OutputKpiId label"):
        rule_from_dict({"RuleId": "X", "OutputKpiId": "Someday"})
