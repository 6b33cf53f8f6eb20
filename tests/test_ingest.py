from datetime import date

import pandas as pd
import pytest

from ingest import apply_mapping, invoices_from_frame, records_from_frame
from models import AccountSide
from standardize import standardize_records

COLUMN_MAP = {
    "ambre": {
        "id": ["ID"],
        "account_id": ["Account_ID"],
        "account_side": ["Account_Side"],
        "signed_amount": ["SignedAmount", "Amount"],
        "operation_date": ["Operation_Date"],
        "raw_label": ["RawLabel"],
        "category": ["Category"],
    },
    "dwings_invoices": {
        "invoice_id": ["INVOICE_ID"],
        "billing_amount": ["BILLING_AMOUNT"],
        "comm_id_email": ["COMM_ID_EMAIL"],
        "start_date": ["START_DATE"],
    },
}

def test_mapping_is_case_insensitive_and_keeps_optional_fields():
    df = pd.DataFrame({"id": ["A1"], "ACCOUNT_ID": ["PIVOT001"], "amount": ["10.5"], "RawLabel": ["X"]})
    out = apply_mapping(df, "ambre", COLUMN_MAP)
    assert list(out.columns) == ["id", "account_id", "signed_amount", "raw_label"]

def test_mapping_names_missing_required_fields():
    df = pd.DataFrame({"ID": ["A1"], "RawLabel": ["X"]})
    with pytest.raises(ValueError, match=r"\['account_id', 'signed_amount'\]"):
        apply_mapping(df, "ambre", COLUMN_MAP)

def test_mapping_unknown_source():
    with pytest.raises(ValueError, match="source='bank'"):
        apply_mapping(pd.DataFrame(), "bank", COLUMN_MAP)

def test_standardize_flags_bad_rows():
    df = pd.DataFrame({
        "id": ["A1", "", "A3", "A1", "A5"],
        "account_id": [" pivot001", "PIVOT001", "", "RECV001", "RECV001"],
        "signed_amount": ["10.5", "1", "2", "3", "abc"],
        "operation_date": ["2024-03-01", "", "2024-03-02", "2024-03-03", "2024-03-04"],
    })

    clean, exceptions = standardize_records(df)

    assert clean["id"].tolist() == ["A1"]
    assert clean["account_id"].tolist() == ["PIVOT001"]
    assert exceptions["exception_reason"].tolist() == ["bad_id;", "bad_account;", "bad_id;", "bad_amount;"]

def test_records_from_frame_converts_types():
    df = pd.DataFrame({
        "id": ["A1"], "account_id": ["PIVOT001"], "account_side": ["p"], "signed_amount": [-12.5],
        "operation_date": ["2024-03-01"], "raw_label": [" FEES "], "category": ["1"],
    })

    rec = records_from_frame(df)[0]

    assert rec.account_side == AccountSide.PIVOT
    assert rec.signed_amount == -12.5
    assert rec.operation_date == date(2024, 3, 1)
    assert rec.raw_label == "FEES"
    assert rec.category == 1
    assert rec.dwings_invoice_id is None

def test_invoices_from_frame_blank_cells_become_none():
    df = pd.DataFrame({"invoice_id": ["BGI1", "BGI2"], "billing_amount": ["1500.00", ""],
                       "comm_id_email": ["true", ""], "start_date": ["2024-02-28", ""]})

    inv1, inv2 = invoices_from_frame(df)

    assert (inv1.billing_amount, inv1.comm_id_email, inv1.start_date) == (1500.0, True, date(2024, 2, 28))
    assert (inv2.billing_amount, inv2.comm_id_email, inv2.start_date) == (None, None, None)
