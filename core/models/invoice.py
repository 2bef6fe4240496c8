"""Invoice domain models.

All amounts are stored in cents (integer) to avoid floating point issues.
$10.00 = 1000 cents. Tax is a percentage (Decimal, 0-100) as entered by the user.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class InvoiceStatus(str, Enum):
    """Invoice lifecycle status."""

    DRAFT = "draft"
    SENT = "sent"
    VIEWED = "viewed"
    PAID = "paid"
    OVERDUE = "overdue"
    VOID = "void"


class DeliveryStatus(str, Enum):
    """Outcome of the last attempt to email the invoice to the customer."""

    NOT_SENT = "not_sent"
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"


class InvoiceCreate(BaseModel):
    """Data required to create an invoice. Totals always start at zero."""

    customer_id: UUID
    due_date: date | None = None
    tax_percent: Decimal | None = None
    notes: str | None = Field(None, max_length=2000)


class InvoiceUpdate(BaseModel):
    """Editable invoice details. All fields optional."""

    due_date: date | None = None
    tax_percent: Decimal | None = None
    notes: str | None = Field(None, max_length=2000)
    pdf_url: str | None = Field(None, max_length=2000)


class Invoice(BaseModel):
    """Full invoice entity as stored."""

    id: UUID
    tenant_id: UUID
    customer_id: UUID
    invoice_number: str
    status: InvoiceStatus
    subtotal_cents: int
    tax_percent: Decimal
    tax_cents: int
    total_cents: int
    due_date: date
    notes: str | None = None
    pdf_url: str | None = None
    checkout_session_id: str | None = None
    checkout_url: str | None = None
    sent_at: datetime | None = None
    viewed_at: datetime | None = None
    paid_at: datetime | None = None
    delivery_status: DeliveryStatus = DeliveryStatus.NOT_SENT
    delivery_error: str | None = None
    version: int = 1
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @property
    def total_dollars(self) -> float:
        """Total amount in dollars for display."""
        return self.total_cents / 100

    @property
    def is_paid(self) -> bool:
        """Whether invoice is paid."""
        return self.status == InvoiceStatus.PAID

    @property
    def is_closed(self) -> bool:
        """Paid and void invoices accept no further transitions."""
        return self.status in (InvoiceStatus.PAID, InvoiceStatus.VOID)
