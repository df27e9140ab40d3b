# Overview: Service-layer operations for customers; encapsulates business logic and database work.

from __future__ import annotations

from sqlalchemy import or_

from ..extensions import db
from ..models import Customer, Invoice
from ..validation import ConflictError, ValidationError, CUSTOMER_POLICY, validate_payload
from . import change_feed
from .concurrency import commit_or_raise


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise ValidationError(f"Customer {customer_id} not found")
    return customer


def list_customers(*, search: str | None = None, include_archived: bool = False) -> list[Customer]:
    query = db.session.query(Customer)
    if not include_archived:
        query = query.filter(Customer.is_archived.is_(False))
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(Customer.name.ilike(pattern), Customer.phone.ilike(pattern)))
    return query.order_by(Customer.name.asc(), Customer.id.asc()).all()


def create_customer(data: dict) -> Customer:
    patch = validate_payload(model=Customer, payload=data, policy=CUSTOMER_POLICY, partial=False)
    customer = Customer(**patch)
    db.session.add(customer)
    commit_or_raise("create customer")
    change_feed.publish(change_feed.CUSTOMER_CHANGED, {"customer_id": customer.id})
    return customer


def update_customer(customer_id: int, data: dict) -> Customer:
    patch = validate_payload(model=Customer, payload=data, policy=CUSTOMER_POLICY, partial=True)
    customer = get_customer(customer_id)
    for k, v in patch.items():
        setattr(customer, k, v)
    commit_or_raise("update customer")
    change_feed.publish(change_feed.CUSTOMER_CHANGED, {"customer_id": customer.id})
    return customer


def archive_customer(customer_id: int) -> Customer:
    """Hide a customer from listings and new checkouts, keeping their invoices."""
    customer = get_customer(customer_id)
    customer.is_archived = True
    commit_or_raise("archive customer")
    change_feed.publish(change_feed.CUSTOMER_CHANGED, {"customer_id": customer.id})
    return customer


def delete_customer(customer_id: int) -> None:
    """
    Delete a customer without invoices.

    Invoices are financial history and are never removed as a side effect;
    a customer who has bought something must be archived instead.
    """
    customer = get_customer(customer_id)
    has_invoices = db.session.query(Invoice.id).filter_by(customer_id=customer.id).first()
    if has_invoices is not None:
        raise ConflictError(f"Customer {customer.name} has invoices; archive the customer instead")

    db.session.delete(customer)
    commit_or_raise("delete customer")
    change_feed.publish(change_feed.CUSTOMER_CHANGED, {"customer_id": customer_id, "deleted": True})
