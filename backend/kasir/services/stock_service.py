# Overview: Service-layer stock counter operations; conditional UPDATEs, no read-then-write.

from __future__ import annotations

from sqlalchemy import update

from ..extensions import db
from ..models import Product
from ..validation import ValidationError
"""
Stock invariants (authoritative)

- products.stock is never negative (CHECK constraint + conditional UPDATE).
- A decrement is a single compare-and-decrement statement:
      UPDATE products SET stock = stock - :q WHERE id = :id AND stock >= :q
  rowcount 1 means the units were taken; rowcount 0 means they were not
  (unknown product or not enough stock). Two checkouts racing for the last
  units can never both succeed.
- Every stock UPDATE bumps version_id, so an ORM edit loaded before the
  change fails with StaleDataError instead of overwriting it.
- Functions here never commit unless asked; callers own the transaction.
"""


class InsufficientStockError(Exception):
    """Raised when a product cannot cover the requested quantity."""

    def __init__(self, product_id: int, product_name: str, requested: int, available: int | None = None):
        self.product_id = product_id
        self.product_name = product_name
        self.requested = requested
        self.available = available
        super().__init__(f"Insufficient stock for {product_name}")

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "requested_quantity": self.requested,
            "available": self.available,
        }


def _require_quantity(quantity: int, *, allow_zero: bool) -> None:
    if not isinstance(quantity, int) or isinstance(quantity, bool):
        raise ValidationError("quantity must be an integer")
    if quantity < 0 or (quantity == 0 and not allow_zero):
        raise ValidationError("quantity must be > 0" if not allow_zero else "quantity must be >= 0")


def reduce_stock(product_id: int, quantity: int, *, commit: bool = False) -> bool:
    """
    Atomically take `quantity` units from a product.

    Returns True when the decrement happened, False when the product does not
    have enough stock (or does not exist). Nothing is changed on False.
    """
    _require_quantity(quantity, allow_zero=False)

    stmt = (
        update(Product)
        .where(Product.id == product_id, Product.stock >= quantity)
        .values(stock=Product.stock - quantity, version_id=Product.version_id + 1)
        .execution_options(synchronize_session="fetch")
    )
    result = db.session.execute(stmt)
    if commit:
        db.session.commit()
    return result.rowcount == 1


def increase_stock(product_id: int, quantity: int, *, commit: bool = False) -> None:
    """Atomically add `quantity` units (restock or import merge)."""
    _require_quantity(quantity, allow_zero=True)

    stmt = (
        update(Product)
        .where(Product.id == product_id)
        .values(stock=Product.stock + quantity, version_id=Product.version_id + 1)
        .execution_options(synchronize_session="fetch")
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        raise ValidationError(f"Product {product_id} not found")
    if commit:
        db.session.commit()


def require_stock(product_id: int, quantity: int, product_name: str | None = None) -> None:
    """reduce_stock, raising InsufficientStockError instead of returning False."""
    if reduce_stock(product_id, quantity):
        return

    product = db.session.get(Product, product_id)
    if product is None:
        raise ValidationError(f"Product {product_id} not found")
    raise InsufficientStockError(
        product_id=product_id,
        product_name=product_name or product.name,
        requested=quantity,
        available=product.stock,
    )
