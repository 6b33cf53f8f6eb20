from datetime import date

import pytest

from models import AccountSide, Country, DwingsGuarantee, DwingsInvoice, ReconciliationRecord

TODAY = date(2024, 3, 15)

def make_record(id="R1", **kw) -> ReconciliationRecord:
    return ReconciliationRecord(id=id, **kw)

def pivot(id, **kw) -> ReconciliationRecord:
    return ReconciliationRecord(id=id, account_id="PIVOT001", account_side=AccountSide.PIVOT, **kw)

def receivable(id, **kw) -> ReconciliationRecord:
    return ReconciliationRecord(id=id, account_id="RECV001", account_side=AccountSide.RECEIVABLE, **kw)

def make_invoice(invoice_id="BGI2024030000001", **kw) -> DwingsInvoice:
    return DwingsInvoice(invoice_id=invoice_id, **kw)

def make_guarantee(guarantee_id="G2024AB000000001", **kw) -> DwingsGuarantee:
    return DwingsGuarantee(guarantee_id=guarantee_id, **kw)

@pytest.fixture
def country() -> Country:
    return Country("FR", pivot_account_id="PIVOT001", receivable_account_id="RECV001")

@pytest.fixture
def today() -> date:
    return TODAY
