"""Tests for invoice payment handler.

On InvoicePaid: email a receipt to the customer.
"""

from unittest.mock import Mock

import pytest

from core.handlers.invoice_payment_handler import handle_invoice_paid
from core.models import LineItemCreate


@pytest.fixture
def email_client():
    return Mock()


@pytest.fixture
def wired(customer_service, email_client, event_bus):
    event_bus.subscribe("InvoicePaid", handle_invoice_paid(customer_service, email_client))


class TestReceipt:

    def test_paid_invoice_emails_receipt(self, wired, invoice_service, draft_invoice, test_customer, email_client):
        invoice_service.add_item(draft_invoice.id, LineItemCreate(
            description="Consulting", quantity=3, unit_price_cents=10000
        ))
        invoice_service.send(draft_invoice.id)

        invoice_service.mark_paid(draft_invoice.id)

        email_client.send_email.assert_called_once()
        kwargs = email_client.send_email.call_args.kwargs
        assert kwargs["to"] == test_customer.email
        assert "INV-0001" in kwargs["subject"]
        assert "$330.00" in kwargs["body"]

    def test_no_receipt_until_paid(self, wired, invoice_service, draft_invoice, email_client):
        invoice_service.send(draft_invoice.id)
        email_client.send_email.assert_not_called()

    def test_receipt_failure_does_not_undo_payment(self, wired, invoice_service, draft_invoice, email_client):
        email_client.send_email.side_effect = RuntimeError("gateway down")
        invoice_service.send(draft_invoice.id)

        paid = invoice_service.mark_paid(draft_invoice.id)

        assert paid.is_paid
