from datetime import date

from conftest import make_guarantee, make_invoice, pivot, receivable
from models import CandidateType
from suggest import record_bgi, suggest_guarantees, suggest_invoices

def test_invoice_id_in_label_ranks_first_and_unrelated_is_dropped():
    rec = pivot("A1", raw_label="COLLECTION ACME BGI2024030000001", signed_amount=1500.0)
    catalog = [
        make_invoice("BGI2024030000009", billing_amount=77.0),
        make_invoice("BGI2024030000001", billing_amount=1500.0),
    ]

    out = suggest_invoices(rec, catalog, take=5)

    assert [c.id for c in out] == ["BGI2024030000001"]
    assert out[0].type == CandidateType.INVOICE
    assert {"bgi", "invoice_in_text", "amount_exact"} <= out[0].matched_on
    assert out[0].source is catalog[1]

def test_opposite_sign_amount_refines_identifier_hit():
    rec = receivable("A2", receivable_invoice_ref="BGI2024030000001", signed_amount=-1500.0)
    out = suggest_invoices(rec, [make_invoice(billing_amount=1500.0)])

    assert "amount_opposite" in out[0].matched_on
    assert "amount_exact" not in out[0].matched_on

def test_amount_alone_does_not_make_a_candidate():
    rec = pivot("A1", raw_label="SOMETHING", signed_amount=1500.0, value_date=date(2024, 3, 1))
    catalog = [make_invoice(billing_amount=1500.0, start_date=date(2024, 3, 1))]
    assert suggest_invoices(rec, catalog) == []

def test_ties_broken_by_invoice_id():
    rec = receivable("A4", dwings_guarantee_id="G2024AB000000001")
    catalog = [
        make_invoice("BGI2024030000002", business_case_reference="G2024AB000000001"),
        make_invoice("BGI2024030000001", business_case_id="G2024AB000000001"),
        make_invoice("BGI2024030000003", business_case_reference="G9999ZZ000000001"),
    ]

    out = suggest_invoices(rec, catalog)

    assert [c.id for c in out] == ["BGI2024030000001", "BGI2024030000002"]
    assert out[0].score == out[1].score

def test_take_limits_results():
    rec = receivable("A4", dwings_guarantee_id="G2024AB000000001")
    catalog = [make_invoice(f"BGI202403000000{i}", business_case_reference="G2024AB000000001") for i in range(1, 6)]
    assert len(suggest_invoices(rec, catalog, take=2)) == 2

def test_bgpmt_and_official_reference_signals():
    rec = pivot("A3", raw_label="PAYMENT FEES BGPMT12345678AB", reconciliation_num="REF10002")
    catalog = [make_invoice("BGI2024030000002", bgpmt="BGPMT12345678AB", sender_reference="REF10002")]

    out = suggest_invoices(rec, catalog)

    assert out[0].matched_on >= {"bgpmt", "official_ref"}

def test_value_date_proximity_adds_score():
    near = make_invoice("BGI2024030000001", start_date=date(2024, 3, 2))
    far = make_invoice("BGI2024030000002", start_date=date(2024, 6, 1))
    rec = pivot("A1", raw_label="BGI2024030000001 BGI2024030000002", value_date=date(2024, 3, 1))

    out = suggest_invoices(rec, [far, near])

    assert [c.id for c in out] == ["BGI2024030000001", "BGI2024030000002"]
    assert "value_date" in out[0].matched_on
    assert "value_date" not in out[1].matched_on

def test_missing_fields_and_empty_catalog():
    assert suggest_invoices(pivot("X"), []) == []
    assert suggest_invoices(pivot("X"), [make_invoice()]) == []

def test_receivable_bgi_chain_prefers_explicit_reference():
    rec = receivable("A2", receivable_invoice_ref=" bgi2024030000005 ",
                     reconciliation_num="BGI2024030000001", raw_label="BGI2024030000002")
    assert record_bgi(rec) == "BGI2024030000005"
    rec.receivable_invoice_ref = None
    assert record_bgi(rec) == "BGI2024030000001"

def test_suggest_guarantees_by_extracted_id_and_official_ref():
    rec = receivable("A4", raw_label="INCOMING G1234AB123456789 OFF-ACME-01", signed_amount=98000.0, currency="EUR")
    guarantees = [
        make_guarantee("G1234AB123456789", outstanding_amount=98000.0, currency="EUR"),
        make_guarantee("G2024AB000000001", official_ref="OFF-ACME-01", currency="EUR"),
        make_guarantee("G2024AB000000002", currency="EUR"),
    ]

    out = suggest_guarantees(rec, guarantees)

    assert [c.id for c in out] == ["G1234AB123456789", "G2024AB000000001"]
    assert out[0].matched_on == frozenset({"guarantee", "amount_exact", "currency"})
    assert out[1].matched_on == frozenset({"official_ref", "currency"})
