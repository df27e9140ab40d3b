# Overview: Pytest coverage for product, customer and invoice catalog operations.

import pytest

from kasir.extensions import db
from kasir.models import Invoice, InvoiceItem, Product
from kasir.services import change_feed
from kasir.services import customer_service, invoice_service, products_service
from kasir.services.checkout_service import Cart, checkout
from kasir.services.settlement_service import InvoiceNotFound
from kasir.validation import ConflictError, ValidationError

from conftest import SALE_TIME, make_product


def _sell(customer, product):
    cart = Cart()
    cart.select_customer(customer)
    cart.add_to_cart(product)
    return checkout(cart, now=SALE_TIME)


class TestProducts:
    def test_create_applies_defaults(self, db_session):
        p = products_service.create_product({"name": "Roti", "price": "8000", "sku": ""})
        assert p.id is not None
        assert p.sku is None
        assert p.stock == 0
        assert p.min_stock == 5
        assert p.is_low_stock

    def test_create_requires_name_and_price(self, db_session):
        with pytest.raises(ValidationError):
            products_service.create_product({"name": "Roti"})
        with pytest.raises(ValidationError):
            products_service.create_product({"name": "", "price": 100})

    def test_rejects_negative_and_decimal(self, db_session):
        with pytest.raises(ValidationError):
            products_service.create_product({"name": "Roti", "price": -1})
        with pytest.raises(ValidationError):
            products_service.create_product({"name": "Roti", "price": "10.5"})

    def test_duplicate_sku_conflicts(self, product_x):
        with pytest.raises(ConflictError):
            products_service.create_product({"name": "Other", "price": 1, "sku": "X-001"})

    def test_blank_skus_never_collide(self, db_session):
        products_service.create_product({"name": "A", "price": 1})
        products_service.create_product({"name": "B", "price": 1, "sku": ""})
        assert db.session.query(Product).count() == 2

    def test_update(self, product_x, product_y):
        updated = products_service.update_product(product_x.id, {"price": 12000, "category": "Snack"})
        assert updated.price == 12000
        with pytest.raises(ConflictError):
            products_service.update_product(product_x.id, {"sku": "Y-001"})

    def test_listing_filters(self, db_session):
        make_product(name="Air Mineral", sku="AM", stock=2, min_stock=5, category="Minuman")
        make_product(name="Biskuit", sku="BS", stock=0, min_stock=5, category="Snack")
        make_product(name="Cokelat", sku="CK", stock=50, min_stock=5, category="Snack")

        assert [p.name for p in products_service.list_products(search="bis")] == ["Biskuit"]
        assert [p.name for p in products_service.list_products(search="CK")] == ["Cokelat"]
        assert [p.name for p in products_service.list_products(category="Snack")] == ["Biskuit", "Cokelat"]
        assert [p.name for p in products_service.list_low_stock()] == ["Air Mineral", "Biskuit"]
        assert [p.name for p in products_service.list_products(in_stock_only=True)] == ["Air Mineral", "Cokelat"]
        assert products_service.list_categories() == ["Minuman", "Snack"]
        assert {p.sku for p in products_service.get_products_by_skus(["AM", "", "ZZ"])} == {"AM"}

    def test_sold_product_cannot_be_deleted(self, product_x, product_y, customer_jane):
        _sell(customer_jane, product_x)
        with pytest.raises(ConflictError):
            products_service.delete_product(product_x.id)

        products_service.delete_product(product_y.id)
        assert db.session.get(Product, product_y.id) is None

    def test_publishes_product_events(self, db_session):
        topics = []
        unsubscribe = change_feed.subscribe(change_feed.ALL_TOPICS, lambda t, p: topics.append(t))
        try:
            p = products_service.create_product({"name": "Roti", "price": 1})
            products_service.update_product(p.id, {"stock": 3})
            products_service.delete_product(p.id)
        finally:
            unsubscribe()
        assert topics == [change_feed.PRODUCT_CREATED, change_feed.PRODUCT_UPDATED, change_feed.PRODUCT_DELETED]


class TestCustomers:
    def test_create_update_search(self, db_session):
        c = customer_service.create_customer({"name": "Budi", "phone": "0813"})
        customer_service.update_customer(c.id, {"address": "Jl. Melati 3"})
        assert customer_service.get_customer(c.id).address == "Jl. Melati 3"
        assert [x.name for x in customer_service.list_customers(search="081")] == ["Budi"]

    def test_name_required(self, db_session):
        with pytest.raises(ValidationError):
            customer_service.create_customer({"phone": "0813"})

    def test_delete_blocked_while_invoices_exist(self, product_x, customer_jane):
        inv = _sell(customer_jane, product_x)
        with pytest.raises(ConflictError):
            customer_service.delete_customer(customer_jane.id)
        assert db.session.get(Invoice, inv.id) is not None

    def test_archive_hides_from_listing(self, product_x, customer_jane):
        _sell(customer_jane, product_x)
        customer_service.archive_customer(customer_jane.id)
        assert customer_service.list_customers() == []
        assert [c.name for c in customer_service.list_customers(include_archived=True)] == ["Jane"]

    def test_delete_without_invoices(self, customer_jane):
        customer_service.delete_customer(customer_jane.id)
        with pytest.raises(ValidationError):
            customer_service.get_customer(customer_jane.id)


class TestInvoices:
    def test_get_and_list(self, product_x, customer_jane):
        inv = _sell(customer_jane, product_x)
        loaded = invoice_service.get_invoice_with_items(inv.id)
        assert loaded.to_dict(include_items=True)["items"][0]["product_name"] == "Product X"
        assert invoice_service.get_invoice_by_number(inv.invoice_number).id == inv.id
        assert [i.id for i in invoice_service.list_invoices(status="PENDING")] == [inv.id]
        assert invoice_service.list_invoices(status="PAID") == []
        with pytest.raises(ValidationError):
            invoice_service.list_invoices(status="REFUNDED")

    def test_item_snapshot_survives_product_rename(self, product_x, customer_jane):
        inv = _sell(customer_jane, product_x)
        products_service.update_product(product_x.id, {"name": "Renamed", "price": 1})
        item = invoice_service.get_invoice_with_items(inv.id).items[0]
        assert (item.product_name, item.unit_price) == ("Product X", 10000)

    def test_delete_cascades_items_and_keeps_stock(self, product_x, customer_jane):
        inv = _sell(customer_jane, product_x)
        invoice_service.delete_invoice(inv.id)

        assert db.session.query(Invoice).count() == 0
        assert db.session.query(InvoiceItem).count() == 0
        db.session.expire_all()
        assert db.session.get(Product, product_x.id).stock == 9
        with pytest.raises(InvoiceNotFound):
            invoice_service.get_invoice(inv.id)
