# Overview: Service-layer invoice numbering; daily INV-YYYYMMDD-NNN sequence.

from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..extensions import db
from ..models import Invoice
from kasir.time_utils import utcnow, to_business_time


INVOICE_PREFIX = "INV"
SEQUENCE_WIDTH = 3
MAX_DAILY_SEQUENCE = 10 ** SEQUENCE_WIDTH - 1


class InvoiceNumberError(Exception):
    """Base class for invoice numbering failures."""


class DailySequenceExhausted(InvoiceNumberError):
    """Raised when a business day already used every 3-digit sequence."""

    def __init__(self, date_prefix: str):
        self.date_prefix = date_prefix
        super().__init__(f"Invoice sequence for {date_prefix} is exhausted ({MAX_DAILY_SEQUENCE} per day)")


class ConcurrentInvoiceNumberConflict(InvoiceNumberError):
    """Raised when every retry collided with a number issued concurrently."""

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Could not allocate a unique invoice number after {attempts} attempts")


def date_prefix(now: datetime | None = None) -> str:
    """YYYYMMDD of the business day that `now` (UTC-naive) falls on."""
    now = now or utcnow()
    tz_name = current_app.config.get("BUSINESS_TIMEZONE", "UTC")
    return to_business_time(now, tz_name).strftime("%Y%m%d")


def next_invoice_number(date_prefix: str, last_number: str | None) -> str:
    """
    Derive the number that follows `last_number` on the day `date_prefix`.

    The sequence is the numeric value of the last three characters of the
    previous number plus one (a non-numeric tail counts as 0). There is no
    rollover: past 999 the day is exhausted, because a wider suffix would
    break both this parse and the lexical ordering used to find the last
    number.
    """
    if last_number:
        tail = last_number[-SEQUENCE_WIDTH:]
        sequence = (int(tail) if tail.isdigit() else 0) + 1
    else:
        sequence = 1

    if sequence > MAX_DAILY_SEQUENCE:
        raise DailySequenceExhausted(date_prefix)

    return f"{INVOICE_PREFIX}-{date_prefix}-{sequence:0{SEQUENCE_WIDTH}d}"


def last_invoice_number(prefix: str) -> str | None:
    """Highest invoice number already issued for the day `prefix`."""
    return (
        db.session.query(Invoice.invoice_number)
        .filter(Invoice.invoice_number.like(f"{INVOICE_PREFIX}-{prefix}-%"))
        .order_by(Invoice.invoice_number.desc())
        .limit(1)
        .scalar()
    )


def allocate_invoice_number(now: datetime | None = None) -> str:
    """
    Read the day's last number and generate the next one.

    This is a read followed by a later insert, so two checkouts can derive
    the same number. The unique constraint on invoices.invoice_number
    rejects the second insert and the checkout retries.
    """
    prefix = date_prefix(now)
    return next_invoice_number(prefix, last_invoice_number(prefix))
