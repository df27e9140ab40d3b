# Overview: Service-layer invoice reads and the admin delete.

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy.orm import selectinload

from ..extensions import db
from ..models import Invoice, InvoiceStatus
from ..validation import ValidationError
from . import change_feed
from .concurrency import commit_or_raise
from .settlement_service import InvoiceNotFound


def get_invoice(invoice_id: int) -> Invoice:
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None:
        raise InvoiceNotFound(invoice_id)
    return invoice


def get_invoice_with_items(invoice_id: int) -> Invoice:
    invoice = (
        db.session.query(Invoice)
        .options(selectinload(Invoice.items), selectinload(Invoice.customer))
        .filter(Invoice.id == invoice_id)
        .one_or_none()
    )
    if invoice is None:
        raise InvoiceNotFound(invoice_id)
    return invoice


def get_invoice_by_number(invoice_number: str) -> Invoice | None:
    return db.session.query(Invoice).filter_by(invoice_number=invoice_number).one_or_none()


def _check_status(status: str | None) -> None:
    if status is not None and status not in InvoiceStatus.ALL:
        raise ValidationError(f"Unknown invoice status: {status}")


def list_invoices(*, status: str | None = None, customer_id: int | None = None) -> list[Invoice]:
    """Invoices newest first, optionally for one status and/or customer."""
    _check_status(status)
    query = db.session.query(Invoice)
    if status is not None:
        query = query.filter(Invoice.status == status)
    if customer_id is not None:
        query = query.filter(Invoice.customer_id == customer_id)
    return query.order_by(Invoice.date.desc(), Invoice.id.desc()).all()


def list_invoices_by_date_range(
    start: datetime | None = None,
    end: datetime | None = None,
    *,
    status: str | None = None,
    with_items: bool = False,
) -> list[Invoice]:
    """Invoices whose date falls in [start, end] (both inclusive), newest first."""
    _check_status(status)
    if start is not None and end is not None and start > end:
        raise ValidationError("start must not be after end")

    query = db.session.query(Invoice).options(selectinload(Invoice.customer))
    if with_items:
        query = query.options(selectinload(Invoice.items))
    if start is not None:
        query = query.filter(Invoice.date >= start)
    if end is not None:
        query = query.filter(Invoice.date <= end)
    if status is not None:
        query = query.filter(Invoice.status == status)
    return query.order_by(Invoice.date.desc(), Invoice.id.desc()).all()


def delete_invoice(invoice_id: int) -> None:
    """
    Remove an invoice and its items.

    Administrative correction only: stock taken at checkout is not given
    back, matching how the sale was recorded.
    """
    invoice = get_invoice(invoice_id)
    invoice_number = invoice.invoice_number
    db.session.delete(invoice)
    commit_or_raise("delete invoice")

    current_app.logger.info("Deleted invoice %s", invoice_number)
    change_feed.publish(
        change_feed.INVOICE_DELETED,
        {"invoice_id": invoice_id, "invoice_number": invoice_number},
    )
