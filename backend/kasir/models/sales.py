from __future__ import annotations

from ..extensions import db
from kasir.time_utils import to_utc_z


class InvoiceStatus:
    PENDING = "PENDING"
    PAID = "PAID"
    CANCELLED = "CANCELLED"

    ALL = (PENDING, PAID, CANCELLED)


class Invoice(db.Model):
    """
    Invoice document created atomically with its items at checkout.

    INVARIANTS:
    - invoice_number is unique (INV-YYYYMMDD-NNN); the constraint is what
      makes concurrent checkouts safe, the generator alone is not
    - total_amount is the sum of item subtotals at creation and is never
      recomputed
    - status (and paid_at) are the only fields that change after creation
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("invoice_number", name="uq_invoices_invoice_number"),
        db.Index("ix_invoices_status_date", "status", "date"),
        db.Index("ix_invoices_customer_date", "customer_id", "date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    invoice_number = db.Column(db.String(32), nullable=False)

    customer_id = db.Column(
        db.Integer,
        db.ForeignKey("customers.id", ondelete="RESTRICT"),
        nullable=False,
    )

    total_amount = db.Column(db.Integer, nullable=False, default=0)

    # Business timestamp of the sale (UTC-naive)
    date = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=InvoiceStatus.PENDING, index=True)
    notes = db.Column(db.Text, nullable=False, default="")

    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship(
        "Customer",
        backref=db.backref("invoices", lazy=True, passive_deletes="all"),
    )
    items = db.relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItem.id",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def customer_name(self) -> str:
        return self.customer.name if self.customer else ""

    def __repr__(self) -> str:
        return f"<Invoice id={self.id} number={self.invoice_number!r} status={self.status}>"

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "total_amount": self.total_amount,
            "date": to_utc_z(self.date),
            "status": self.status,
            "notes": self.notes,
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class InvoiceItem(db.Model):
    """
    Line item frozen at sale time.

    product_name and unit_price are copies so later product edits never
    change a past invoice. product_id is RESTRICT: a product that has been
    sold cannot be deleted.
    """
    __tablename__ = "invoice_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_invoice_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(
        db.Integer,
        db.ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id = db.Column(
        db.Integer,
        db.ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    product_name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Integer, nullable=False)
    subtotal = db.Column(db.Integer, nullable=False)

    invoice = db.relationship("Invoice", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "subtotal": self.subtotal,
        }
