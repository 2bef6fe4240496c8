"""
Handler for InvoicePaid events.

On invoice payment, emails a receipt/thank-you message to the customer.
"""

import logging
from typing import Callable

from core.events import InvoicePaid

logger = logging.getLogger(__name__)


def handle_invoice_paid(customer_service, email_client) -> Callable:
    """
    Factory that returns an InvoicePaid handler.

    Args:
        customer_service: CustomerService instance
        email_client: EmailGatewayClient instance

    Returns:
        Handler callable that emails a receipt
    """

    def handler(event: InvoicePaid):
        invoice = event.invoice

        customer = customer_service.get_by_id(invoice.customer_id)
        if customer is None:
            logger.warning(f"No customer for paid invoice {invoice.invoice_number}, receipt skipped")
            return

        email_client.send_email(
            to=customer.email,
            subject=f"Payment received for {invoice.invoice_number}",
            body=(
                f"Thank you! Payment of ${invoice.total_dollars:,.2f} received "
                f"for invoice {invoice.invoice_number}."
            ),
        )

    return handler
