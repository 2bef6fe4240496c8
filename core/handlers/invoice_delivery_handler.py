"""
Handler for InvoiceSent and InvoiceDeliveryRequested events.

Second phase of sending: the SENT status is already persisted when this
runs. Emails the invoice to the customer and records the outcome in
delivery_status. A failed delivery never changes the invoice status.
"""

import logging
from typing import Callable

from clients.email_client import EmailGatewayError
from core.config import InvoicingConfig
from core.events import InvoiceEvent
from core.models import DeliveryStatus

logger = logging.getLogger(__name__)


def invoice_link(invoice, config: InvoicingConfig) -> str:
    """Where the customer pays or views the invoice."""
    if invoice.checkout_url:
        return invoice.checkout_url
    return f"{config.app_base_url.rstrip('/')}/invoices/{invoice.id}"


def handle_invoice_delivery(
    invoice_service,
    customer_service,
    email_client,
    config: InvoicingConfig | None = None
) -> Callable:
    """
    Factory that returns an invoice delivery handler.

    Args:
        invoice_service: InvoiceService instance (records the outcome)
        customer_service: CustomerService instance (recipient lookup)
        email_client: EmailGatewayClient instance
        config: Invoicing configuration for invoice links

    Returns:
        Handler callable that emails the invoice
    """
    config = config or InvoicingConfig()

    def handler(event: InvoiceEvent):
        invoice = event.invoice

        customer = customer_service.get_by_id(invoice.customer_id)
        if customer is None:
            invoice_service.record_delivery(
                invoice.id, DeliveryStatus.FAILED, f"Customer {invoice.customer_id} not found"
            )
            return

        try:
            email_client.send_invoice(
                to=customer.email,
                invoice_number=invoice.invoice_number,
                total_cents=invoice.total_cents,
                due_date=invoice.due_date.isoformat(),
                invoice_url=invoice_link(invoice, config),
                pdf_url=invoice.pdf_url,
            )
        except EmailGatewayError as e:
            invoice_service.record_delivery(invoice.id, DeliveryStatus.FAILED, str(e))
            return

        invoice_service.record_delivery(invoice.id, DeliveryStatus.DELIVERED)

    return handler
