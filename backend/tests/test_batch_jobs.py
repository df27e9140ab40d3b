# Overview: Pytest coverage for background batch execution.

import threading

from kasir.extensions import db
from kasir.models import Customer, Invoice, InvoiceStatus, Product
from kasir.services import import_service, settlement_service
from kasir.services.batch_jobs import BatchProgress, ProgressTracker, submit_batch
from kasir.services.checkout_service import Cart, checkout

from conftest import SALE_TIME


def _seed_invoices(app, count):
    with app.app_context():
        customer = Customer(name="Jane")
        product = Product(name="Product X", sku="X-001", price=1000, stock=100)
        db.session.add_all([customer, product])
        db.session.commit()
        ids = []
        for _ in range(count):
            cart = Cart()
            cart.select_customer(customer)
            cart.add_to_cart(product)
            ids.append(checkout(cart, now=SALE_TIME).id)
        return ids


class TestProgressTracker:
    def test_snapshots(self):
        seen = []
        tracker = ProgressTracker(3, seen.append)
        tracker.row_done(True)
        tracker.row_done(False)
        assert seen == [
            BatchProgress(total=3, processed=1, succeeded=1, failed=0),
            BatchProgress(total=3, processed=2, succeeded=1, failed=1),
        ]
        assert tracker.progress.remaining == 1


class TestSubmitBatch:
    def test_bulk_settlement_in_background(self, file_app):
        ids = _seed_invoices(file_app, 4)
        updates = []

        job = submit_batch(file_app, settlement_service.settle_bulk, ids, on_progress=updates.append)
        result = job.result(timeout=30)

        assert job.done()
        assert result.success_count == 4
        assert job.progress == BatchProgress(total=4, processed=4, succeeded=4, failed=0)
        assert len(updates) == 4
        with file_app.app_context():
            statuses = {inv.status for inv in db.session.query(Invoice).all()}
        assert statuses == {InvoiceStatus.PAID}

    def test_cancel_stops_before_next_row(self, file_app):
        ids = _seed_invoices(file_app, 5)
        first_row_done = threading.Event()
        release = threading.Event()

        def _pause_after_first(progress):
            if progress.processed == 1:
                first_row_done.set()
                release.wait(timeout=10)

        job = submit_batch(file_app, settlement_service.settle_bulk, ids, on_progress=_pause_after_first)
        assert first_row_done.wait(timeout=10)
        job.cancel()
        release.set()
        result = job.result(timeout=30)

        assert job.cancel_requested
        assert result.cancelled
        assert result.success_count == 1
        with file_app.app_context():
            paid = db.session.query(Invoice).filter_by(status=InvoiceStatus.PAID).count()
        assert paid == 1

    def test_import_in_background(self, file_app):
        rows = [["Kopi", "K1", "12.000", "5"], ["Teh", "T1", "3000", "9"]]
        with file_app.app_context():
            reconciliation = import_service.reconcile(rows)

        job = submit_batch(file_app, import_service.confirm_import, reconciliation, update_duplicate_stock=False)
        result = job.result(timeout=30)

        assert result.imported_count == 2
        with file_app.app_context():
            assert db.session.query(Product).count() == 2
