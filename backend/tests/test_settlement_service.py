# Overview: Pytest coverage for single and bulk settlement.

import threading
from datetime import datetime

import pytest
from sqlalchemy.exc import OperationalError

from kasir.extensions import db
from kasir.models import Invoice, InvoiceStatus
from kasir.services import change_feed, settlement_service
from kasir.services.batch_jobs import BatchProgress
from kasir.services.checkout_service import Cart, checkout
from kasir.services.settlement_service import (
    InvalidStatusTransition,
    InvoiceNotFound,
    change_status,
    selectable_invoices,
    selected_total,
    settle_bulk,
    settle_single,
)

from conftest import SALE_TIME, make_customer

PAID_AT = datetime(2026, 1, 20, 9, 30)


def _sell(customer, product, quantity=1, when=SALE_TIME):
    cart = Cart()
    cart.select_customer(customer)
    cart.add_to_cart(product)
    cart.update_quantity(product.id, quantity)
    return checkout(cart, now=when)


def _status(invoice_id):
    db.session.expire_all()
    return db.session.get(Invoice, invoice_id).status


class TestSettleSingle:
    def test_pending_becomes_paid(self, product_x, customer_jane):
        inv = _sell(customer_jane, product_x)
        settled = settle_single(inv.id, now=PAID_AT)
        assert settled.status == InvoiceStatus.PAID
        assert settled.paid_at == PAID_AT

    def test_already_paid_is_noop(self, product_x, customer_jane):
        inv = _sell(customer_jane, product_x)
        settle_single(inv.id, now=PAID_AT)
        version = db.session.get(Invoice, inv.id).version_id

        again = settle_single(inv.id, now=datetime(2026, 2, 1))
        assert again.status == InvoiceStatus.PAID
        assert again.paid_at == PAID_AT
        assert again.version_id == version

    def test_cancelled_is_rejected(self, product_x, customer_jane):
        inv = _sell(customer_jane, product_x)
        change_status(inv.id, InvoiceStatus.CANCELLED)
        with pytest.raises(InvalidStatusTransition):
            settle_single(inv.id)
        assert _status(inv.id) == InvoiceStatus.CANCELLED

    def test_unknown_invoice(self, db_session):
        with pytest.raises(InvoiceNotFound):
            settle_single(424242)


class TestChangeStatus:
    def test_paid_back_to_pending_clears_paid_at(self, product_x, customer_jane):
        inv = _sell(customer_jane, product_x)
        settle_single(inv.id, now=PAID_AT)
        reverted = change_status(inv.id, InvoiceStatus.PENDING)
        assert reverted.status == InvoiceStatus.PENDING
        assert reverted.paid_at is None

    def test_cancelled_is_terminal(self, product_x, customer_jane):
        inv = _sell(customer_jane, product_x)
        change_status(inv.id, InvoiceStatus.CANCELLED)
        for target in (InvoiceStatus.PENDING, InvoiceStatus.PAID):
            with pytest.raises(InvalidStatusTransition):
                change_status(inv.id, target)

    def test_paid_cannot_be_cancelled_directly(self, product_x, customer_jane):
        inv = _sell(customer_jane, product_x)
        settle_single(inv.id)
        with pytest.raises(InvalidStatusTransition):
            change_status(inv.id, InvoiceStatus.CANCELLED)

    def test_publishes_status_change(self, product_x, customer_jane):
        inv = _sell(customer_jane, product_x)
        payloads = []
        unsubscribe = change_feed.subscribe(
            change_feed.INVOICE_STATUS_CHANGED, lambda topic, payload: payloads.append(payload)
        )
        try:
            settle_single(inv.id)
            settle_single(inv.id)
        finally:
            unsubscribe()
        assert payloads == [{"invoice_ids": [inv.id], "status": InvoiceStatus.PAID}]


class TestSettleBulk:
    def test_missing_id_is_reported_and_others_settle(self, product_x, customer_jane):
        i1 = _sell(customer_jane, product_x)
        i3 = _sell(customer_jane, product_x)
        missing = i3.id + 100

        result = settle_bulk({i1.id, missing, i3.id}, now=PAID_AT)

        assert result.success_count == 2
        assert [(e.invoice_id, "not found" in e.reason) for e in result.errors] == [(missing, True)]
        assert not result.cancelled
        assert _status(i1.id) == InvoiceStatus.PAID
        assert _status(i3.id) == InvoiceStatus.PAID

    def test_cancelled_invoice_fails_alone(self, product_x, customer_jane):
        ok = _sell(customer_jane, product_x)
        cancelled = _sell(customer_jane, product_x)
        change_status(cancelled.id, InvoiceStatus.CANCELLED)

        result = settle_bulk([cancelled.id, ok.id])

        assert result.success_count == 1
        assert result.errors[0].invoice_id == cancelled.id
        assert _status(ok.id) == InvoiceStatus.PAID
        assert _status(cancelled.id) == InvoiceStatus.CANCELLED

    def test_reports_progress(self, product_x, customer_jane):
        ids = [_sell(customer_jane, product_x).id for _ in range(3)]
        snapshots = []

        settle_bulk(ids + [999999], progress=snapshots.append)

        assert snapshots[-1] == BatchProgress(total=4, processed=4, succeeded=3, failed=1)
        assert [s.processed for s in snapshots] == [1, 2, 3, 4]

    def test_cancel_keeps_committed_rows(self, product_x, customer_jane):
        ids = sorted(_sell(customer_jane, product_x).id for _ in range(3))
        cancel = threading.Event()

        def _stop_after_first(progress):
            if progress.processed == 1:
                cancel.set()

        result = settle_bulk(ids, progress=_stop_after_first, cancel_event=cancel)

        assert result.cancelled
        assert result.success_count == 1
        assert _status(ids[0]) == InvoiceStatus.PAID
        assert _status(ids[1]) == InvoiceStatus.PENDING
        assert _status(ids[2]) == InvoiceStatus.PENDING

    def test_non_integer_ids_are_reported(self, product_x, customer_jane):
        inv = _sell(customer_jane, product_x)

        result = settle_bulk([inv.id, "abc", None], now=PAID_AT)

        assert result.success_count == 1
        assert sorted(str(e.invoice_id) for e in result.errors) == ["None", "abc"]
        assert all(e.reason.startswith("Invalid invoice id") for e in result.errors)
        assert _status(inv.id) == InvoiceStatus.PAID

    def test_locked_database_is_retried(self, product_x, customer_jane, monkeypatch):
        inv = _sell(customer_jane, product_x)
        mark_paid = settlement_service._mark_paid
        calls = []

        def _locked_once(invoice_id, now):
            calls.append(invoice_id)
            if len(calls) == 1:
                raise OperationalError("UPDATE invoices", {}, Exception("database is locked"))
            return mark_paid(invoice_id, now)

        monkeypatch.setattr(settlement_service, "_mark_paid", _locked_once)
        result = settle_bulk([inv.id], now=PAID_AT)

        assert result.success_count == 1
        assert result.errors == []
        assert calls == [inv.id, inv.id]
        assert _status(inv.id) == InvoiceStatus.PAID


class TestSelection:
    def test_selectable_and_total(self, product_x, product_y, customer_jane):
        bob = make_customer("Bob")
        a = _sell(customer_jane, product_x, 2)
        b = _sell(bob, product_y, 1)
        paid = _sell(customer_jane, product_x, 1)
        settle_single(paid.id)

        assert {i.id for i in selectable_invoices()} == {a.id, b.id}
        assert [i.id for i in selectable_invoices(customer_id=bob.id)] == [b.id]
        assert selected_total([a.id, b.id, paid.id]) == 20000 + 2500
        assert selected_total([]) == 0
