"""
Settlement Service - marking invoices paid, one or many at a time

Status transitions:
    PENDING   -> PAID | CANCELLED
    PAID      -> PENDING        (undo a settlement)
    CANCELLED -> (terminal)

Settling an invoice that is already PAID is a no-op. Bulk settlement is
best-effort: every invoice is settled in its own savepoint and committed
on its own, so one bad id never blocks the rest.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from functools import partial
from typing import Any

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Invoice, InvoiceStatus
from ..validation import ValidationError
from kasir.time_utils import utcnow
from . import change_feed
from .batch_jobs import ProgressCallback, ProgressTracker, is_cancelled
from .concurrency import commit_or_raise, run_in_savepoint, run_with_retry


ALLOWED_TRANSITIONS = {
    InvoiceStatus.PENDING: {InvoiceStatus.PAID, InvoiceStatus.CANCELLED},
    InvoiceStatus.PAID: {InvoiceStatus.PENDING},
    InvoiceStatus.CANCELLED: set(),
}


class InvoiceNotFound(LookupError):
    def __init__(self, invoice_id: int):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice {invoice_id} not found")


class InvalidStatusTransition(ValueError):
    def __init__(self, invoice_number: str, current: str, target: str):
        self.invoice_number = invoice_number
        self.current = current
        self.target = target
        super().__init__(f"Invoice {invoice_number} cannot change from {current} to {target}")


@dataclass(frozen=True)
class SettlementFailure:
    invoice_id: Any  # the id as given when it was not a valid integer
    reason: str


@dataclass
class SettlementResult:
    success_count: int = 0
    errors: list[SettlementFailure] = field(default_factory=list)
    cancelled: bool = False

    @property
    def error_count(self) -> int:
        return len(self.errors)


def _get_invoice(invoice_id: int) -> Invoice:
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None:
        raise InvoiceNotFound(invoice_id)
    return invoice


def _apply_status(invoice: Invoice, target: str, now: datetime) -> bool:
    """Move the invoice to `target`; returns False when nothing changed."""
    if target not in InvoiceStatus.ALL:
        raise ValidationError(f"Unknown invoice status: {target}")
    if invoice.status == target:
        return False
    if target not in ALLOWED_TRANSITIONS.get(invoice.status, set()):
        raise InvalidStatusTransition(invoice.invoice_number, invoice.status, target)

    invoice.status = target
    invoice.paid_at = now if target == InvoiceStatus.PAID else None
    return True


def change_status(invoice_id: int, status: str, *, now: datetime | None = None) -> Invoice:
    """
    Manually change an invoice's status.

    Raises:
        InvoiceNotFound: unknown id
        InvalidStatusTransition: transition not allowed (e.g. out of CANCELLED)
        ValidationError: unknown status value
    """
    now = now or utcnow()

    def _op():
        invoice = _get_invoice(invoice_id)
        previous = invoice.status
        changed = _apply_status(invoice, status, now)
        if changed:
            commit_or_raise("change invoice status")
        return invoice, previous, changed

    invoice, previous, changed = run_with_retry(_op)
    if changed:
        current_app.logger.info(
            "Invoice %s status %s -> %s", invoice.invoice_number, previous, invoice.status
        )
        change_feed.publish(
            change_feed.INVOICE_STATUS_CHANGED,
            {"invoice_ids": [invoice.id], "status": invoice.status},
        )
    return invoice


def settle_single(invoice_id: int, *, now: datetime | None = None) -> Invoice:
    """Mark one invoice PAID. Already PAID is a no-op; CANCELLED is rejected."""
    return change_status(invoice_id, InvoiceStatus.PAID, now=now)


def _coerce_ids(invoice_ids) -> tuple[list[int], list[Any]]:
    """Distinct integer ids in ascending order, plus whatever could not be read as one."""
    ids: set[int] = set()
    invalid: list[Any] = []
    for raw in invoice_ids:
        if isinstance(raw, bool):
            invalid.append(raw)
            continue
        try:
            ids.add(int(raw))
        except (TypeError, ValueError):
            invalid.append(raw)
    return sorted(ids), invalid


def _mark_paid(invoice_id: int, now: datetime) -> bool:
    return _apply_status(_get_invoice(invoice_id), InvoiceStatus.PAID, now)


def settle_bulk(
    invoice_ids,
    *,
    now: datetime | None = None,
    progress: ProgressCallback | None = None,
    cancel_event: threading.Event | None = None,
) -> SettlementResult:
    """
    Settle every id independently and report per-id outcomes.

    Ids are processed in ascending order. Each one runs inside a savepoint
    and is committed before the next starts, so cancelling (or a crash)
    leaves the already-settled invoices PAID. A locked database is retried
    per id. Never raises for a bad id, including values that are not
    integers; the reason lands in `errors`.
    """
    now = now or utcnow()
    ids, invalid = _coerce_ids(invoice_ids)
    result = SettlementResult()
    tracker = ProgressTracker(len(ids) + len(invalid), progress)
    settled: list[int] = []

    for raw in invalid:
        result.errors.append(SettlementFailure(invoice_id=raw, reason=f"Invalid invoice id: {raw!r}"))
        current_app.logger.warning("Skipping invalid invoice id %r", raw)
        tracker.row_done(False)

    for invoice_id in ids:
        if is_cancelled(cancel_event):
            result.cancelled = True
            break

        try:
            changed = run_in_savepoint(partial(_mark_paid, invoice_id, now), "settle invoice")
        except Exception as exc:  # noqa: BLE001
            db.session.rollback()
            result.errors.append(SettlementFailure(invoice_id=invoice_id, reason=str(exc)))
            current_app.logger.warning("Settlement of invoice %s failed: %s", invoice_id, exc)
            tracker.row_done(False)
            continue

        if changed:
            settled.append(invoice_id)
        result.success_count += 1
        tracker.row_done(True)

    current_app.logger.info(
        "Bulk settlement: %s settled, %s failed%s",
        result.success_count, result.error_count, " (cancelled)" if result.cancelled else "",
    )
    if settled:
        change_feed.publish(
            change_feed.INVOICE_STATUS_CHANGED,
            {"invoice_ids": settled, "status": InvoiceStatus.PAID},
        )
    return result


def selectable_invoices(customer_id: int | None = None) -> list[Invoice]:
    """Pending invoices that can be picked for settlement, newest first."""
    query = db.session.query(Invoice).filter(Invoice.status == InvoiceStatus.PENDING)
    if customer_id is not None:
        query = query.filter(Invoice.customer_id == customer_id)
    return query.order_by(Invoice.date.desc(), Invoice.id.desc()).all()


def selected_total(invoice_ids) -> int:
    """Amount the selection would settle; non-pending ids contribute nothing."""
    ids, _ = _coerce_ids(invoice_ids)
    if not ids:
        return 0
    total = (
        db.session.query(func.coalesce(func.sum(Invoice.total_amount), 0))
        .filter(Invoice.id.in_(ids), Invoice.status == InvoiceStatus.PENDING)
        .scalar()
    )
    return int(total or 0)
