from .inventory import Product
from .customers import Customer
from .sales import Invoice, InvoiceItem, InvoiceStatus

__all__ = [
    'Product',
    'Customer',
    'Invoice', 'InvoiceItem', 'InvoiceStatus',
]
