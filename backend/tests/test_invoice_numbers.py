# Overview: Pytest coverage for daily invoice numbering.

from datetime import datetime

import pytest

from kasir.extensions import db
from kasir.models import Invoice, InvoiceStatus
from kasir.services.invoice_number_service import (
    DailySequenceExhausted,
    allocate_invoice_number,
    date_prefix,
    last_invoice_number,
    next_invoice_number,
)

from conftest import SALE_TIME


class TestNextInvoiceNumber:
    def test_first_of_the_day(self):
        assert next_invoice_number("20260113", None) == "INV-20260113-001"

    def test_increments_last_three_digits(self):
        assert next_invoice_number("20260113", "INV-20260113-041") == "INV-20260113-042"

    def test_non_numeric_tail_counts_as_zero(self):
        assert next_invoice_number("20260113", "INV-20260113-ABC") == "INV-20260113-001"

    def test_999_is_the_last_sequence(self):
        assert next_invoice_number("20260113", "INV-20260113-998") == "INV-20260113-999"
        with pytest.raises(DailySequenceExhausted) as exc:
            next_invoice_number("20260113", "INV-20260113-999")
        assert exc.value.date_prefix == "20260113"


class TestAllocation:
    def _invoice(self, customer, number, when=SALE_TIME):
        inv = Invoice(
            invoice_number=number,
            customer_id=customer.id,
            total_amount=0,
            date=when,
            status=InvoiceStatus.PENDING,
            notes="",
        )
        db.session.add(inv)
        db.session.commit()
        return inv

    def test_date_prefix_uses_business_timezone(self, app, db_session):
        late_utc = datetime(2026, 1, 13, 20, 0, 0)
        assert date_prefix(late_utc) == "20260113"

        app.config["BUSINESS_TIMEZONE"] = "Asia/Jakarta"
        try:
            assert date_prefix(late_utc) == "20260114"
        finally:
            app.config["BUSINESS_TIMEZONE"] = "UTC"

    def test_allocate_without_prior_invoice(self, db_session):
        assert allocate_invoice_number(SALE_TIME) == "INV-20260113-001"

    def test_allocate_follows_highest_number_of_the_day(self, db_session, customer_jane):
        self._invoice(customer_jane, "INV-20260113-001")
        self._invoice(customer_jane, "INV-20260113-007")
        self._invoice(customer_jane, "INV-20260112-050", when=datetime(2026, 1, 12, 9, 0))

        assert last_invoice_number("20260113") == "INV-20260113-007"
        assert allocate_invoice_number(SALE_TIME) == "INV-20260113-008"

    def test_other_days_do_not_count(self, db_session, customer_jane):
        self._invoice(customer_jane, "INV-20260112-050", when=datetime(2026, 1, 12, 9, 0))
        assert allocate_invoice_number(SALE_TIME) == "INV-20260113-001"
