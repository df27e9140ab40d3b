"""
Export Service

Read-only reporting over invoices and products:
- summarize(): pure aggregation over an already filtered invoice list
- CSV writers for the inventory sheet and the transaction report

Filtering (date range, status) happens in the query, never in summarize().
"""

from __future__ import annotations

import csv
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, TextIO

from flask import current_app

from ..models import Invoice, InvoiceStatus, Product
from kasir.time_utils import (
    end_of_day,
    from_business_time,
    start_of_day,
    start_of_month,
    to_business_time,
    utcnow,
)
from .import_service import INVENTORY_HEADER
from .invoice_service import list_invoices_by_date_range


INVOICE_HEADER = ["No Invoice", "Tanggal", "Customer", "Total", "Status", "Notes"]
INVOICE_ITEMS_HEADER = ["No Invoice", "Nama Produk", "Qty", "Harga Satuan", "Subtotal"]
ITEMS_MARKER = "=== DETAIL ITEMS ==="
EXPORT_DATE_FORMAT = "%d/%m/%Y %H:%M"


@dataclass(frozen=True)
class ExportSummary:
    invoice_count: int = 0
    total_amount: int = 0
    total_items: int = 0
    counts_by_status: dict[str, int] = field(default_factory=dict)

    @property
    def paid_count(self) -> int:
        return self.counts_by_status.get(InvoiceStatus.PAID, 0)

    @property
    def pending_count(self) -> int:
        return self.counts_by_status.get(InvoiceStatus.PENDING, 0)

    @property
    def cancelled_count(self) -> int:
        return self.counts_by_status.get(InvoiceStatus.CANCELLED, 0)


def summarize(invoices: Iterable[Invoice]) -> ExportSummary:
    """Totals for a list of invoices; total_items counts line items, not units."""
    invoices = list(invoices)
    counts = {status: 0 for status in InvoiceStatus.ALL}
    for invoice in invoices:
        counts[invoice.status] = counts.get(invoice.status, 0) + 1

    return ExportSummary(
        invoice_count=len(invoices),
        total_amount=sum(int(inv.total_amount or 0) for inv in invoices),
        total_items=sum(len(inv.items) for inv in invoices),
        counts_by_status=counts,
    )


def _business_timezone() -> str:
    return current_app.config.get("BUSINESS_TIMEZONE", "UTC")


def default_range(now: datetime | None = None) -> tuple[datetime, datetime]:
    """First day of the current business month through today (business calendar days)."""
    today = to_business_time(now or utcnow(), _business_timezone())
    return start_of_month(today), start_of_day(today)


def query_invoices(
    start: datetime | None = None,
    end: datetime | None = None,
    status: str | None = None,
) -> list[Invoice]:
    """
    Invoices to export, items loaded.

    `start` and `end` are calendar days in the business timezone, both
    inclusive; their time of day is ignored. This is the same day an
    invoice's number and Tanggal column carry.
    """
    tz_name = _business_timezone()
    if start is not None:
        start = from_business_time(start_of_day(start), tz_name)
    if end is not None:
        end = from_business_time(end_of_day(end), tz_name)
    return list_invoices_by_date_range(start, end, status=status, with_items=True)


def write_inventory_csv(products: Iterable[Product], stream: TextIO) -> int:
    writer = csv.writer(stream)
    writer.writerow(INVENTORY_HEADER)
    count = 0
    for p in products:
        writer.writerow([
            p.name,
            p.sku or "",
            str(p.price),
            str(p.stock),
            str(p.min_stock),
            p.category or "",
            p.description or "",
        ])
        count += 1
    return count


def _format_date(dt: datetime | None) -> str:
    if dt is None:
        return ""
    return to_business_time(dt, _business_timezone()).strftime(EXPORT_DATE_FORMAT)


def write_transactions_csv(
    invoices: Iterable[Invoice], stream: TextIO, *, include_items: bool = True
) -> int:
    """
    Transaction report: one row per invoice, then optionally a detail section.

    The detail section (blank row, marker row, item header, one row per line
    item) is written only when at least one invoice has items.
    """
    invoices = list(invoices)
    writer = csv.writer(stream)
    writer.writerow(INVOICE_HEADER)
    for inv in invoices:
        writer.writerow([
            inv.invoice_number,
            _format_date(inv.date),
            inv.customer_name,
            str(inv.total_amount),
            inv.status,
            inv.notes or "",
        ])

    if include_items and any(inv.items for inv in invoices):
        writer.writerow([""])
        writer.writerow([ITEMS_MARKER])
        writer.writerow(INVOICE_ITEMS_HEADER)
        for inv in invoices:
            for item in inv.items:
                writer.writerow([
                    inv.invoice_number,
                    item.product_name,
                    str(item.quantity),
                    str(item.unit_price),
                    str(item.subtotal),
                ])
    return len(invoices)


def export_filename(kind: str, now: datetime | None = None) -> str:
    prefixes = {"inventory": "inventory_export", "transactions": "transaksi_export"}
    if kind not in prefixes:
        raise ValueError(f"Unknown export kind: {kind}")
    now = now or utcnow()
    return f"{prefixes[kind]}_{now.strftime('%Y%m%d_%H%M%S')}.csv"
