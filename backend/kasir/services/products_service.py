# backend/kasir/services/products_service.py
"""
Products Service

Product CRUD and the lookups the inventory, checkout and import flows need.
Stock is edited here only through an explicit product update; sales and
restocks go through stock_service.
"""
from __future__ import annotations

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Product, InvoiceItem
from ..validation import (
    ConflictError,
    ValidationError,
    PRODUCT_POLICY,
    validate_payload,
    enforce_rules_product,
)
from . import change_feed
from .concurrency import commit_or_raise, run_with_retry


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_POLICY.writable:
            continue
        setattr(p, k, v)


def _require_unique_sku(sku: str | None, *, exclude_id: int | None = None) -> None:
    if not sku:
        return
    query = db.session.query(Product.id).filter(Product.sku == sku)
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    if query.first() is not None:
        raise ConflictError(f"SKU {sku} already exists")


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise ValidationError(f"Product {product_id} not found")
    return product


def get_products_by_skus(skus) -> list[Product]:
    """Batch lookup by SKU; blank values are ignored."""
    wanted = {str(s).strip() for s in skus if s and str(s).strip()}
    if not wanted:
        return []
    return db.session.query(Product).filter(Product.sku.in_(sorted(wanted))).all()


def list_products(
    *,
    search: str | None = None,
    category: str | None = None,
    low_stock_only: bool = False,
    in_stock_only: bool = False,
) -> list[Product]:
    """
    Product listing ordered by name.

    search matches name or SKU (substring); in_stock_only hides products
    that cannot be added to a cart.
    """
    query = db.session.query(Product)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(Product.name.ilike(pattern), Product.sku.ilike(pattern)))
    if category:
        query = query.filter(Product.category == category)
    if low_stock_only:
        query = query.filter(Product.stock <= Product.min_stock)
    if in_stock_only:
        query = query.filter(Product.stock > 0)
    return query.order_by(Product.name.asc(), Product.id.asc()).all()


def list_low_stock() -> list[Product]:
    return list_products(low_stock_only=True)


def list_categories() -> list[str]:
    rows = (
        db.session.query(Product.category)
        .filter(Product.category != "")
        .distinct()
        .order_by(Product.category.asc())
        .all()
    )
    return [r[0] for r in rows]


def build_product(data: dict) -> Product:
    """Validate create data and return an unsaved Product."""
    patch = validate_payload(model=Product, payload=data, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_product(patch)
    product = Product()
    apply_product_patch(product, patch)
    return product


def create_product(data: dict, *, commit: bool = True) -> Product:
    """
    Create a product.

    Raises:
        ValidationError: missing name/price, malformed numbers, negatives
        ConflictError: SKU already used by another product
    """
    product = build_product(data)
    _require_unique_sku(product.sku)

    db.session.add(product)
    try:
        db.session.flush()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError(f"SKU {product.sku} already exists") from exc

    if commit:
        commit_or_raise("create product")
        change_feed.publish(change_feed.PRODUCT_CREATED, {"product_id": product.id})
    return product


def update_product(product_id: int, data: dict) -> Product:
    """Edit product fields; a concurrent stock change makes this retry on fresh data."""
    patch = validate_payload(model=Product, payload=data, policy=PRODUCT_POLICY, partial=True)
    enforce_rules_product(patch)

    def _op() -> Product:
        product = get_product(product_id)
        if "sku" in patch:
            _require_unique_sku(patch["sku"], exclude_id=product.id)
        apply_product_patch(product, patch)
        commit_or_raise("update product")
        return product

    product = run_with_retry(_op)
    change_feed.publish(change_feed.PRODUCT_UPDATED, {"product_id": product.id})
    return product


def delete_product(product_id: int) -> None:
    """
    Delete a product that has never been sold.

    Invoice items keep a RESTRICT reference to the product, so a sold
    product stays in the catalog.
    """
    product = get_product(product_id)
    referenced = db.session.query(InvoiceItem.id).filter_by(product_id=product.id).first()
    if referenced is not None:
        raise ConflictError(f"Product {product.name} is referenced by invoices and cannot be deleted")

    db.session.delete(product)
    commit_or_raise("delete product")
    change_feed.publish(change_feed.PRODUCT_DELETED, {"product_id": product_id})
