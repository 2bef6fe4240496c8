"""Core domain models."""

from core.models.customer import Customer, CustomerCreate, CustomerUpdate
from core.models.line_item import LineItem, LineItemCreate, LineItemUpdate
from core.models.invoice import (
    Invoice, InvoiceCreate, InvoiceUpdate, InvoiceStatus, DeliveryStatus,
)

__all__ = [
    # Customer
    "Customer", "CustomerCreate", "CustomerUpdate",
    # LineItem
    "LineItem", "LineItemCreate", "LineItemUpdate",
    # Invoice
    "Invoice", "InvoiceCreate", "InvoiceUpdate", "InvoiceStatus", "DeliveryStatus",
]
