"""
Checkout Service - cart assembly and atomic invoice creation

The cart is caller-owned, in-memory state (one per checkout session). Nothing
touches the database until checkout(), which creates the invoice, its items
and the stock decrements in a single transaction: either all of it is
committed or none of it is.

Cart states:
    EMPTY -> BUILDING -> CHECKOUT_IN_PROGRESS -> COMPLETED | FAILED

FAILED keeps the cart lines and the selected customer so the same cart can
be corrected and checked out again; the next edit moves it back to BUILDING.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models import Customer, Invoice, InvoiceItem, InvoiceStatus, Product
from ..validation import ValidationError
from kasir.time_utils import utcnow
from . import change_feed
from .concurrency import PersistenceError, commit_or_raise, run_with_retry
from .invoice_number_service import (
    ConcurrentInvoiceNumberConflict,
    InvoiceNumberError,
    allocate_invoice_number,
)
from .stock_service import InsufficientStockError, reduce_stock


class CheckoutState:
    EMPTY = "EMPTY"
    BUILDING = "BUILDING"
    CHECKOUT_IN_PROGRESS = "CHECKOUT_IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class NoCustomerSelected(ValidationError):
    """Checkout attempted without a customer."""

    def __init__(self):
        super().__init__("Select a customer before checkout")


class EmptyCart(ValidationError):
    """Checkout attempted with no cart lines."""

    def __init__(self):
        super().__init__("Cart is empty")


@dataclass(frozen=True)
class CartProduct:
    """Product as it looked when it was put in the cart."""

    id: int
    name: str
    price: int
    stock: int

    @classmethod
    def from_product(cls, product) -> "CartProduct":
        if isinstance(product, cls):
            return product
        return cls(id=product.id, name=product.name, price=product.price, stock=product.stock)


@dataclass(frozen=True)
class CartCustomer:
    id: int
    name: str

    @classmethod
    def from_customer(cls, customer) -> "CartCustomer":
        if isinstance(customer, cls):
            return customer
        return cls(id=customer.id, name=customer.name)


@dataclass
class CartItem:
    product: CartProduct
    quantity: int = 1

    @property
    def subtotal(self) -> int:
        return self.product.price * self.quantity


@dataclass
class Cart:
    customer: CartCustomer | None = None
    items: list[CartItem] = field(default_factory=list)
    notes: str = ""
    state: str = CheckoutState.EMPTY
    created_invoice_id: int | None = None
    last_error: Exception | None = None

    # -- derived -------------------------------------------------------------

    @property
    def total_amount(self) -> int:
        return sum(item.subtotal for item in self.items)

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    @property
    def can_checkout(self) -> bool:
        return (
            self.customer is not None
            and bool(self.items)
            and self.state in (CheckoutState.BUILDING, CheckoutState.FAILED)
        )

    def find(self, product_id: int) -> CartItem | None:
        for item in self.items:
            if item.product.id == product_id:
                return item
        return None

    # -- edits ---------------------------------------------------------------

    def _ensure_editable(self) -> None:
        if self.state == CheckoutState.CHECKOUT_IN_PROGRESS:
            raise ValidationError("Checkout in progress")
        if self.state == CheckoutState.COMPLETED:
            raise ValidationError("Cart already checked out; reset it to start a new sale")

    def _touch(self) -> None:
        self.state = CheckoutState.BUILDING if self.items else CheckoutState.EMPTY
        self.last_error = None

    def select_customer(self, customer) -> None:
        self._ensure_editable()
        self.customer = CartCustomer.from_customer(customer)
        self._touch()

    def clear_customer(self) -> None:
        self._ensure_editable()
        self.customer = None
        self._touch()

    def set_notes(self, notes: str) -> None:
        self._ensure_editable()
        self.notes = notes or ""

    def add_to_cart(self, product) -> None:
        """Add one unit; a product already in the cart is bumped if stock allows."""
        self._ensure_editable()
        snapshot = CartProduct.from_product(product)
        existing = self.find(snapshot.id)
        if existing is not None:
            existing.product = snapshot
            existing.quantity = min(existing.quantity + 1, snapshot.stock)
            if existing.quantity <= 0:
                self.items.remove(existing)
        elif snapshot.stock > 0:
            self.items.append(CartItem(product=snapshot, quantity=1))
        self._touch()

    def remove_from_cart(self, product_id: int) -> None:
        self._ensure_editable()
        self.items = [item for item in self.items if item.product.id != product_id]
        self._touch()

    def update_quantity(self, product_id: int, quantity: int) -> None:
        """Set a line's quantity, clamped to [0, stock]; 0 removes the line."""
        self._ensure_editable()
        item = self.find(product_id)
        if item is None:
            return
        quantity = min(quantity, item.product.stock)
        if quantity <= 0:
            self.remove_from_cart(product_id)
            return
        item.quantity = quantity
        self._touch()

    def increase_quantity(self, product_id: int) -> None:
        item = self.find(product_id)
        if item is None:
            return
        self.update_quantity(product_id, item.quantity + 1)

    def decrease_quantity(self, product_id: int) -> None:
        item = self.find(product_id)
        if item is None:
            return
        self.update_quantity(product_id, item.quantity - 1)

    def reset(self) -> None:
        self.customer = None
        self.items = []
        self.notes = ""
        self.state = CheckoutState.EMPTY
        self.created_invoice_id = None
        self.last_error = None


def _is_invoice_number_collision(exc: IntegrityError) -> bool:
    message = str(getattr(exc, "orig", exc))
    return "invoice_number" in message or "uq_invoices_invoice_number" in message


def _validate_cart(cart: Cart) -> Customer:
    if cart.state == CheckoutState.COMPLETED:
        raise ValidationError("Cart already checked out")
    if cart.state == CheckoutState.CHECKOUT_IN_PROGRESS:
        raise ValidationError("Checkout in progress")
    if cart.customer is None:
        raise NoCustomerSelected()
    if not cart.items:
        raise EmptyCart()

    customer = db.session.get(Customer, cart.customer.id)
    if customer is None:
        raise ValidationError(f"Customer {cart.customer.id} not found")
    if customer.is_archived:
        raise ValidationError(f"Customer {customer.name} is archived")
    return customer


def _insert_invoice(cart: Cart, customer_id: int, now: datetime) -> Invoice:
    """
    Insert the invoice and its items under a freshly allocated number.

    A unique-constraint hit on invoice_number means another checkout took the
    number between our read and our insert: roll back, re-read, try again.
    """
    max_attempts = int(current_app.config.get("INVOICE_NUMBER_MAX_ATTEMPTS", 5))

    for attempt in range(1, max_attempts + 1):
        invoice_number = allocate_invoice_number(now)
        invoice = Invoice(
            invoice_number=invoice_number,
            customer_id=customer_id,
            total_amount=cart.total_amount,
            date=now,
            status=InvoiceStatus.PENDING,
            notes=cart.notes,
        )
        invoice.items = [
            InvoiceItem(
                product_id=item.product.id,
                product_name=item.product.name,
                quantity=item.quantity,
                unit_price=item.product.price,
                subtotal=item.subtotal,
            )
            for item in cart.items
        ]
        db.session.add(invoice)
        try:
            db.session.flush()
            return invoice
        except IntegrityError as exc:
            db.session.rollback()
            if not _is_invoice_number_collision(exc):
                raise PersistenceError("Failed to save invoice", original=exc) from exc
            current_app.logger.warning(
                "Invoice number %s already taken (attempt %s/%s)",
                invoice_number, attempt, max_attempts,
            )

    raise ConcurrentInvoiceNumberConflict(max_attempts)


def _take_stock(cart: Cart) -> None:
    for item in cart.items:
        if reduce_stock(item.product.id, item.quantity):
            continue
        db.session.rollback()
        product = db.session.get(Product, item.product.id)
        raise InsufficientStockError(
            product_id=item.product.id,
            product_name=item.product.name,
            requested=item.quantity,
            available=product.stock if product is not None else 0,
        )


def checkout(cart: Cart, *, now: datetime | None = None) -> Invoice:
    """
    Turn the cart into a PENDING invoice and take its stock.

    Atomic: the invoice, its items and every stock decrement commit together.
    If any product no longer has the quantity in the cart, nothing is
    written and InsufficientStockError names that product.

    Raises:
        NoCustomerSelected / EmptyCart / ValidationError: nothing attempted
        InsufficientStockError: stock changed since the cart was built
        ConcurrentInvoiceNumberConflict: number retries exhausted
        DailySequenceExhausted: 999 invoices already issued today
        PersistenceError: the database rejected the transaction
    """
    customer_id = _validate_cart(cart).id
    now = now or utcnow()

    def _op() -> Invoice:
        invoice = _insert_invoice(cart, customer_id, now)
        _take_stock(cart)
        commit_or_raise("create invoice")
        return invoice

    cart.state = CheckoutState.CHECKOUT_IN_PROGRESS
    try:
        invoice = run_with_retry(_op)
    except (InsufficientStockError, InvoiceNumberError, PersistenceError, ValidationError) as exc:
        cart.state = CheckoutState.FAILED
        cart.last_error = exc
        current_app.logger.warning("Checkout failed: %s", exc)
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Checkout failed")
        error = PersistenceError("Failed to create invoice", original=exc)
        cart.state = CheckoutState.FAILED
        cart.last_error = error
        raise error from exc

    cart.state = CheckoutState.COMPLETED
    cart.created_invoice_id = invoice.id
    cart.last_error = None

    current_app.logger.info(
        "Created invoice %s for customer %s (total=%s, lines=%s)",
        invoice.invoice_number, customer_id, invoice.total_amount, len(cart.items),
    )
    change_feed.publish(
        change_feed.INVOICE_CREATED,
        {"invoice_id": invoice.id, "invoice_number": invoice.invoice_number},
    )
    change_feed.publish(
        change_feed.PRODUCT_STOCK_CHANGED,
        {"product_ids": [item.product.id for item in cart.items]},
    )
    return invoice
