from __future__ import annotations

from ..extensions import db
from kasir.time_utils import to_utc_z

DEFAULT_MIN_STOCK = 5


class Product(db.Model):
    """
    Product master data with its on-hand stock.

    STOCK DESIGN DECISION:
    Product.stock is a stored counter, not a ledger sum. It is only changed
    through the stock service's conditional UPDATE statements (sale decrement,
    restock increment) or an explicit edit.
    - CHECK (stock >= 0) is the last line of defence against oversell
    - version_id is bumped by every stock UPDATE so a stale edit fails with
      StaleDataError instead of silently overwriting a concurrent sale

    SKU:
    - Optional. Blank SKUs are stored as NULL.
    - Unique among non-NULL values (NULLs never collide in a UNIQUE index).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        db.CheckConstraint("price >= 0", name="ck_products_price_non_negative"),
        db.CheckConstraint("min_stock >= 0", name="ck_products_min_stock_non_negative"),
        db.Index("ix_products_name", "name"),
        db.Index("ix_products_category", "category"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=True)

    # Whole currency units (the shop prices in Rupiah without fractions)
    price = db.Column(db.Integer, nullable=False, default=0)

    stock = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=False, default=DEFAULT_MIN_STOCK)

    category = db.Column(db.String(128), nullable=False, default="")
    description = db.Column(db.Text, nullable=False, default="")

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_low_stock(self) -> bool:
        return self.stock <= self.min_stock

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r} stock={self.stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "sku": self.sku or "",
            "price": self.price,
            "stock": self.stock,
            "min_stock": self.min_stock,
            "category": self.category,
            "description": self.description,
            "is_low_stock": self.is_low_stock,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
