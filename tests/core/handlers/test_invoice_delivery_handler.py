"""Tests for the invoice delivery handler.

Real services against MemoryRecordStore; only the email gateway is mocked.
"""

from unittest.mock import Mock

import pytest

from clients.email_client import EmailGatewayError
from core.handlers.invoice_delivery_handler import handle_invoice_delivery, invoice_link
from core.models import DeliveryStatus, InvoiceStatus, LineItemCreate


@pytest.fixture
def email_client():
    return Mock()


@pytest.fixture
def wired(invoice_service, customer_service, email_client, event_bus, config):
    handler = handle_invoice_delivery(invoice_service, customer_service, email_client, config)
    event_bus.subscribe("InvoiceSent", handler)
    event_bus.subscribe("InvoiceDeliveryRequested", handler)
    return handler


class TestDelivery:

    def test_send_emails_customer_and_records_delivered(
        self, wired, invoice_service, draft_invoice, test_customer, email_client
    ):
        invoice_service.add_item(draft_invoice.id, LineItemCreate(description="Work", unit_price_cents=1000))

        sent = invoice_service.send(draft_invoice.id)

        email_client.send_invoice.assert_called_once()
        kwargs = email_client.send_invoice.call_args.kwargs
        assert kwargs["to"] == test_customer.email
        assert kwargs["invoice_number"] == "INV-0001"
        assert kwargs["total_cents"] == 1100
        assert kwargs["due_date"] == draft_invoice.due_date.isoformat()
        assert kwargs["invoice_url"] == f"https://billing.example.com/invoices/{draft_invoice.id}"
        assert sent.delivery_status == DeliveryStatus.DELIVERED

    def test_gateway_failure_keeps_sent_status(self, wired, invoice_service, draft_invoice, email_client):
        email_client.send_invoice.side_effect = EmailGatewayError("Gateway error: mailbox full")

        sent = invoice_service.send(draft_invoice.id)

        assert sent.status == InvoiceStatus.SENT
        assert sent.delivery_status == DeliveryStatus.FAILED
        assert "mailbox full" in sent.delivery_error

    def test_retry_after_failure_delivers(self, wired, invoice_service, draft_invoice, email_client):
        email_client.send_invoice.side_effect = EmailGatewayError("down")
        invoice_service.send(draft_invoice.id)

        email_client.send_invoice.side_effect = None
        retried = invoice_service.retry_delivery(draft_invoice.id)

        assert email_client.send_invoice.call_count == 2
        assert retried.delivery_status == DeliveryStatus.DELIVERED
        assert retried.delivery_error is None

    def test_missing_customer_records_failure(
        self, wired, invoice_service, store, draft_invoice, test_customer, email_client
    ):
        store.delete("customers", test_customer.id)

        sent = invoice_service.send(draft_invoice.id)

        email_client.send_invoice.assert_not_called()
        assert sent.delivery_status == DeliveryStatus.FAILED
        assert "not found" in sent.delivery_error


class TestInvoiceLink:

    def test_prefers_checkout_url(self, draft_invoice, config):
        invoice = draft_invoice.model_copy(update={"checkout_url": "https://pay.test/cs_1"})
        assert invoice_link(invoice, config) == "https://pay.test/cs_1"

    def test_falls_back_to_app_url(self, draft_invoice, config):
        assert invoice_link(draft_invoice, config).startswith("https://billing.example.com/invoices/")
