"""
Domain events for invoicing.

Immutable event objects that represent state changes in the invoicing
domain. A service publishes what happened; handlers (email delivery,
receipts) react without the publisher knowing who's listening.

Event Categories:
- InvoiceEvent: Invoice lifecycle (create, send, view, pay, void)
- CustomerEvent: Customer lifecycle (create)

Events carry the full domain object so handlers don't need to re-fetch state.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4

from utils.timezone import now_utc


@dataclass(frozen=True, kw_only=True)
class InvoicingEvent:
    """Base class for all invoicing domain events."""
    event_id: str = field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime = field(default_factory=now_utc)


# =============================================================================
# INVOICE EVENTS
# =============================================================================


@dataclass(frozen=True)
class InvoiceEvent(InvoicingEvent):
    """Events related to invoice lifecycle."""
    invoice: Any = None  # Invoice; Any avoids a circular import

    @classmethod
    def create(cls, invoice: Any) -> "InvoiceEvent":
        return cls(invoice=invoice)


@dataclass(frozen=True)
class InvoiceCreated(InvoiceEvent):
    """A new invoice was created in DRAFT status."""


@dataclass(frozen=True)
class InvoiceSent(InvoiceEvent):
    """Invoice moved to SENT. Delivery to the customer happens afterwards."""


@dataclass(frozen=True)
class InvoiceDeliveryRequested(InvoiceEvent):
    """Re-delivery of an already sent invoice was requested."""


@dataclass(frozen=True)
class InvoiceViewed(InvoiceEvent):
    """Customer opened the invoice."""


@dataclass(frozen=True)
class InvoicePaid(InvoiceEvent):
    """Invoice was paid."""


@dataclass(frozen=True)
class InvoiceMarkedOverdue(InvoiceEvent):
    """Invoice was explicitly marked overdue."""


@dataclass(frozen=True)
class InvoiceVoided(InvoiceEvent):
    """Invoice was voided (archived)."""


# =============================================================================
# CUSTOMER EVENTS
# =============================================================================


@dataclass(frozen=True)
class CustomerEvent(InvoicingEvent):
    """Events related to customer lifecycle."""
    pass


@dataclass(frozen=True)
class CustomerCreated(CustomerEvent):
    """A new customer was created."""
    customer: Any = None

    @classmethod
    def create(cls, customer: Any) -> "CustomerCreated":
        return cls(customer=customer)
