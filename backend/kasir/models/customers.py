from __future__ import annotations

from ..extensions import db
from kasir.time_utils import to_utc_z


class Customer(db.Model):
    """
    Customer master data.

    Customers own invoices. Deleting a customer that still has invoices is
    refused (FK RESTRICT + service check) because invoices are financial
    history; such customers are archived instead (is_archived=True).
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_name", "name"),
        db.Index("ix_customers_archived", "is_archived"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=False, default="")
    email = db.Column(db.String(255), nullable=False, default="")
    address = db.Column(db.Text, nullable=False, default="")
    photo_path = db.Column(db.String(512), nullable=True)

    is_archived = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Customer id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "address": self.address,
            "photo_path": self.photo_path,
            "is_archived": self.is_archived,
            "created_at": to_utc_z(self.created_at),
        }
