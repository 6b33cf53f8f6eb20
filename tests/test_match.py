from datetime import date

from config import ReconConfig
from conftest import make_record, pivot, receivable
from match import find_peer_matches, is_opposite_amount, peer_score
from models import CandidateType

def test_opposite_amounts_within_a_week_match_both_ways():
    a = pivot("P1", signed_amount=100.0, operation_date=date(2024, 1, 1))
    b = receivable("R1", signed_amount=-100.0, operation_date=date(2024, 1, 5))
    pool = [a, b]

    from_a = find_peer_matches(a, pool)
    from_b = find_peer_matches(b, pool)

    assert [c.id for c in from_a] == ["R1"]
    assert [c.id for c in from_b] == ["P1"]
    assert from_a[0].score >= 3
    assert from_a[0].type == CandidateType.PEER_LINE
    assert from_a[0].matched_on == frozenset({"opposite_amount", "operation_date"})
    assert from_a[0].source is b

def test_source_and_same_side_lines_are_excluded():
    a = pivot("P1", signed_amount=100.0)
    same_side = pivot("P2", signed_amount=-100.0)
    other = receivable("R1", signed_amount=-100.0)

    out = find_peer_matches(a, [a, same_side, other])

    assert [c.id for c in out] == ["R1"]

def test_side_resolved_from_country_mapping(country):
    a = make_record("L1", account_id="pivot001", signed_amount=50.0)
    b = make_record("L2", account_id="RECV001", signed_amount=-50.0)
    c = make_record("L3", account_id="PIVOT001", signed_amount=-50.0)

    assert [m.id for m in find_peer_matches(a, [a, b, c], country=country)] == ["L2"]

def test_reconciliation_number_is_a_hard_prefilter():
    a = pivot("P1", reconciliation_num="X1", signed_amount=100.0)
    wrong_num = receivable("R1", reconciliation_num="X2", signed_amount=-100.0)
    via_origin = receivable("R2", reconciliation_origin_num="X1", signed_amount=-100.0)
    same_num = receivable("R3", reconciliation_num="X1", signed_amount=5.0, event_num="E1")

    out = find_peer_matches(a, [a, wrong_num, via_origin, same_num])

    assert [c.id for c in out] == ["R2"]

def test_event_and_reference_overlap_points():
    a = pivot("P1", event_num="ev7", dwings_invoice_id="BGI2024030000001")
    b = receivable("R1", event_num="EV7", receivable_dw_ref="bgi2024030000001")

    score, criteria = peer_score(a, b)

    assert score == 6
    assert criteria == {"event_num", "dwings_ref"}
    assert find_peer_matches(a, [a, b])[0].score == 6

def test_ordering_by_score_then_id():
    a = pivot("P1", signed_amount=100.0, operation_date=date(2024, 1, 1), event_num="E1")
    r_b = receivable("R_B", signed_amount=-100.0)
    r_a = receivable("R_A", signed_amount=-100.0)
    r_top = receivable("R_Z", event_num="E1", signed_amount=-100.0)

    out = find_peer_matches(a, [a, r_b, r_a, r_top])

    assert [c.id for c in out] == ["R_Z", "R_A", "R_B"]

def test_zero_scores_dropped_and_results_capped():
    a = pivot("P1", signed_amount=100.0)
    pool = [a, receivable("R0", signed_amount=3.0)]
    pool += [receivable(f"R{i:03d}", signed_amount=-100.0) for i in range(1, 121)]

    out = find_peer_matches(a, pool)

    assert len(out) == 100
    assert "R0" not in {c.id for c in out}
    assert out[0].id == "R001"

def test_amount_criterion_is_symmetric():
    a = pivot("P1", signed_amount=1234.56)
    b = receivable("R1", signed_amount=-1234.56)
    assert ("opposite_amount" in peer_score(a, b)[1]) == ("opposite_amount" in peer_score(b, a)[1])
    assert is_opposite_amount(0.5, -0.505)
    assert not is_opposite_amount(1000.0, -1011.0)
    assert not is_opposite_amount(None, 10.0)

def test_date_window_is_inclusive():
    a = pivot("P1", operation_date=date(2024, 1, 1))
    assert peer_score(a, receivable("R1", operation_date=date(2024, 1, 8)))[0] == 1
    assert peer_score(a, receivable("R2", operation_date=date(2024, 1, 9)))[0] == 0

def test_missing_optional_fields_do_not_raise():
    a = pivot("P1")
    assert find_peer_matches(a, [a, receivable("R1")]) == []
    assert find_peer_matches(a, []) == []
    assert find_peer_matches(make_record("U1"), [receivable("R1", signed_amount=1.0)]) == []

def test_peer_tunables_come_from_config():
    a = pivot("P1", signed_amount=100.0, operation_date=date(2024, 1, 1))
    near = receivable("R1", signed_amount=-101.5, operation_date=date(2024, 1, 4))
    far = receivable("R2", signed_amount=-100.0, operation_date=date(2024, 1, 12))
    pool = [a, near, far]

    assert [c.id for c in find_peer_matches(a, pool)] == ["R2", "R1"]

    loose = ReconConfig(peer_amount_tolerance=0.02, peer_date_window_days=14, peer_max_results=1)
    out = find_peer_matches(a, pool, loose)

    assert len(out) == 1
    assert out[0].id == "R1"
    assert out[0].matched_on == frozenset({"opposite_amount", "operation_date"})
