"""Tests for InvoiceService against MemoryRecordStore.

Covers numbering, line item mutations with totals recompute, the status
lifecycle with persistence, two-phase send, cascade delete and payments.
"""

from datetime import date, timedelta
from decimal import Decimal
from unittest.mock import Mock
from uuid import uuid4

import pytest

from core.errors import ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from core.lifecycle import is_overdue
from core.models import (
    CustomerCreate, DeliveryStatus, InvoiceCreate, InvoiceStatus, InvoiceUpdate,
    LineItemCreate, LineItemUpdate,
)
from core.services.invoice_service import InvoiceService
from utils.tenant_context import tenant_context

DUE = date(2026, 3, 31)


def totals(invoice):
    return invoice.subtotal_cents, invoice.tax_cents, invoice.total_cents


# =============================================================================
# CREATE
# =============================================================================


class TestCreate:

    def test_first_invoice_is_numbered_one(self, draft_invoice):
        assert draft_invoice.invoice_number == "INV-0001"
        assert draft_invoice.status == InvoiceStatus.DRAFT
        assert totals(draft_invoice) == (0, 0, 0)
        assert draft_invoice.delivery_status == DeliveryStatus.NOT_SENT
        assert draft_invoice.version == 1

    def test_numbers_follow_tenant_invoice_count(self, as_test_tenant, invoice_service, test_customer):
        numbers = [
            invoice_service.create(InvoiceCreate(customer_id=test_customer.id, due_date=DUE, tax_percent=0))
            .invoice_number
            for _ in range(3)
        ]
        assert numbers == ["INV-0001", "INV-0002", "INV-0003"]

    def test_numbering_is_per_tenant(self, invoice_service, customer_service, test_tenant_id, test_tenant_b_id):
        for tenant_id in (test_tenant_id, test_tenant_b_id):
            with tenant_context(tenant_id):
                customer = customer_service.create(CustomerCreate(name="C", email="c@example.com"))
                invoice = invoice_service.create(InvoiceCreate(customer_id=customer.id, due_date=DUE))
                assert invoice.invoice_number == "INV-0001"

    def test_number_skips_taken_after_delete(self, as_test_tenant, invoice_service, test_customer):
        created = [
            invoice_service.create(InvoiceCreate(customer_id=test_customer.id, due_date=DUE))
            for _ in range(3)
        ]
        invoice_service.delete(created[0].id)

        # count + 1 is INV-0003, which is still in use
        nxt = invoice_service.create(InvoiceCreate(customer_id=test_customer.id, due_date=DUE))
        assert nxt.invoice_number == "INV-0004"

    @pytest.mark.parametrize("tax", [Decimal("-1"), Decimal("100.5")])
    def test_rejects_tax_out_of_range(self, as_test_tenant, invoice_service, test_customer, tax):
        with pytest.raises(ValidationError):
            invoice_service.create(InvoiceCreate(customer_id=test_customer.id, due_date=DUE, tax_percent=tax))

    def test_rejects_missing_due_date(self, as_test_tenant, invoice_service, test_customer):
        with pytest.raises(ValidationError, match="Due date"):
            invoice_service.create(InvoiceCreate(customer_id=test_customer.id))

    def test_tax_defaults_from_config(self, as_test_tenant, store, audit, event_bus, test_customer):
        from core.config import InvoicingConfig
        service = InvoiceService(store, audit, event_bus, InvoicingConfig(default_tax_percent=Decimal("8.25")))

        invoice = service.create(InvoiceCreate(customer_id=test_customer.id, due_date=DUE))

        assert invoice.tax_percent == Decimal("8.25")

    def test_unknown_customer(self, as_test_tenant, invoice_service):
        with pytest.raises(NotFoundError, match="Customer"):
            invoice_service.create(InvoiceCreate(customer_id=uuid4(), due_date=DUE))

    def test_publishes_created_event_and_audits(self, as_test_tenant, invoice_service, event_bus, audit, test_customer):
        received = []
        event_bus.subscribe("InvoiceCreated", received.append)

        invoice = invoice_service.create(InvoiceCreate(customer_id=test_customer.id, due_date=DUE))

        assert received[0].invoice == invoice
        assert audit.get_entity_history("invoice", invoice.id)[0]["action"] == "create"


# =============================================================================
# LINE ITEMS
# =============================================================================


class TestLineItems:

    def test_add_recomputes_and_persists_totals(self, invoice_service, draft_invoice):
        change = invoice_service.add_item(draft_invoice.id, LineItemCreate(
            description="Consulting", quantity=3, unit_price_cents=10000
        ))

        assert change.line_item.total_cents == 30000
        assert totals(change.invoice) == (30000, 3000, 33000)
        assert totals(invoice_service.require(draft_invoice.id)) == (30000, 3000, 33000)
        assert change.invoice.version == 2

    def test_update_recomputes(self, invoice_service, draft_invoice):
        item = invoice_service.add_item(draft_invoice.id, LineItemCreate(
            description="Consulting", quantity=3, unit_price_cents=10000
        )).line_item

        change = invoice_service.update_item(item.id, LineItemUpdate(quantity=1))

        assert change.line_item.total_cents == 10000
        assert totals(change.invoice) == (10000, 1000, 11000)

    def test_remove_recomputes(self, invoice_service, draft_invoice):
        keep = invoice_service.add_item(draft_invoice.id, LineItemCreate(
            description="Consulting", quantity=3, unit_price_cents=10000
        )).line_item
        drop = invoice_service.add_item(draft_invoice.id, LineItemCreate(
            description="Travel", quantity=1, unit_price_cents=5000
        )).line_item

        change = invoice_service.remove_item(drop.id)

        assert change.line_item.id == drop.id
        assert totals(change.invoice) == (30000, 3000, 33000)
        assert [i.id for i in invoice_service.list_items(draft_invoice.id)] == [keep.id]

    def test_rounding_half_up(self, as_test_tenant, invoice_service, test_customer):
        invoice = invoice_service.create(InvoiceCreate(
            customer_id=test_customer.id, due_date=DUE, tax_percent=Decimal("7.5")
        ))

        change = invoice_service.add_item(invoice.id, LineItemCreate(
            description="Widget", quantity=1, unit_price_cents=333
        ))

        assert totals(change.invoice) == (333, 25, 358)

    def test_invalid_item_changes_nothing(self, invoice_service, draft_invoice):
        with pytest.raises(ValidationError):
            invoice_service.add_item(draft_invoice.id, LineItemCreate(
                description="Bad", quantity=0, unit_price_cents=100
            ))

        assert invoice_service.list_items(draft_invoice.id) == []
        assert invoice_service.require(draft_invoice.id).version == 1

    def test_missing_item_and_invoice(self, invoice_service, draft_invoice):
        with pytest.raises(NotFoundError, match="Line item"):
            invoice_service.update_item(uuid4(), LineItemUpdate(quantity=2))
        with pytest.raises(NotFoundError, match="Line item"):
            invoice_service.remove_item(uuid4())
        with pytest.raises(NotFoundError, match="Invoice"):
            invoice_service.add_item(uuid4(), LineItemCreate(description="X"))

    def test_paid_invoice_is_not_editable(self, invoice_service, draft_invoice):
        invoice_service.send(draft_invoice.id)
        invoice_service.mark_paid(draft_invoice.id)

        with pytest.raises(ValidationError, match="paid"):
            invoice_service.add_item(draft_invoice.id, LineItemCreate(description="Late", unit_price_cents=1))

    def test_stale_totals_write_reverts_item(self, invoice_service, draft_invoice, monkeypatch):
        stale = invoice_service.require(draft_invoice.id)
        invoice_service.update_details(draft_invoice.id, InvoiceUpdate(notes="edited elsewhere"))
        monkeypatch.setattr(invoice_service, "require", lambda _id: stale)

        with pytest.raises(ConflictError):
            invoice_service.add_item(draft_invoice.id, LineItemCreate(
                description="Consulting", quantity=1, unit_price_cents=100
            ))

        assert invoice_service.list_items(draft_invoice.id) == []
        monkeypatch.undo()
        assert totals(invoice_service.require(draft_invoice.id)) == (0, 0, 0)


class TestUpdateDetails:

    def test_tax_change_recomputes(self, invoice_service, draft_invoice):
        invoice_service.add_item(draft_invoice.id, LineItemCreate(
            description="Consulting", quantity=1, unit_price_cents=10000
        ))

        updated = invoice_service.update_details(draft_invoice.id, InvoiceUpdate(tax_percent=Decimal("20")))

        assert totals(updated) == (10000, 2000, 12000)

    def test_rejects_bad_tax(self, invoice_service, draft_invoice):
        with pytest.raises(ValidationError):
            invoice_service.update_details(draft_invoice.id, InvoiceUpdate(tax_percent=Decimal("101")))

    def test_rejects_tax_with_more_than_three_places(self, invoice_service, draft_invoice):
        with pytest.raises(ValidationError, match="three decimal places"):
            invoice_service.update_details(draft_invoice.id, InvoiceUpdate(tax_percent=Decimal("7.12345")))

        assert invoice_service.require(draft_invoice.id).tax_percent == Decimal("10")

    def test_due_date_and_notes(self, invoice_service, draft_invoice):
        updated = invoice_service.update_details(
            draft_invoice.id, InvoiceUpdate(due_date=DUE + timedelta(days=10), notes="Net 40")
        )

        assert updated.due_date == DUE + timedelta(days=10)
        assert updated.notes == "Net 40"

    def test_empty_update_is_noop(self, invoice_service, draft_invoice):
        assert invoice_service.update_details(draft_invoice.id, InvoiceUpdate()) == draft_invoice


# =============================================================================
# LIFECYCLE
# =============================================================================


class TestLifecycle:

    def test_send_persists_status_and_pending_delivery(self, invoice_service, draft_invoice, event_bus):
        received = []
        event_bus.subscribe("InvoiceSent", received.append)

        sent = invoice_service.send(draft_invoice.id)

        assert sent.status == InvoiceStatus.SENT
        assert sent.sent_at is not None
        assert sent.delivery_status == DeliveryStatus.PENDING
        assert received[0].invoice.status == InvoiceStatus.SENT

    def test_transition_to_sent_goes_through_send(self, invoice_service, draft_invoice):
        sent = invoice_service.transition(draft_invoice.id, InvoiceStatus.SENT)
        assert sent.delivery_status == DeliveryStatus.PENDING

    def test_reapplying_status_is_noop(self, invoice_service, draft_invoice, event_bus):
        received = []
        event_bus.subscribe("InvoiceSent", received.append)
        first = invoice_service.send(draft_invoice.id)

        again = invoice_service.send(draft_invoice.id)

        assert again.sent_at == first.sent_at
        assert again.version == first.version
        assert len(received) == 1

    def test_timestamps_set_once(self, invoice_service, draft_invoice):
        sent = invoice_service.send(draft_invoice.id)
        viewed = invoice_service.mark_viewed(draft_invoice.id)
        paid = invoice_service.mark_paid(draft_invoice.id)

        assert paid.sent_at == sent.sent_at
        assert paid.viewed_at == viewed.viewed_at
        assert paid.paid_at is not None

    def test_invalid_transition_leaves_invoice_unchanged(self, invoice_service, draft_invoice):
        with pytest.raises(InvalidTransitionError):
            invoice_service.mark_paid(draft_invoice.id)

        assert invoice_service.require(draft_invoice.id).status == InvoiceStatus.DRAFT

    def test_void_is_terminal(self, invoice_service, draft_invoice, event_bus):
        received = []
        event_bus.subscribe("InvoiceVoided", received.append)

        invoice_service.void(draft_invoice.id)

        assert len(received) == 1
        with pytest.raises(InvalidTransitionError):
            invoice_service.send(draft_invoice.id)

    def test_manual_overdue_then_paid(self, invoice_service, draft_invoice):
        invoice_service.send(draft_invoice.id)
        overdue = invoice_service.mark_overdue(draft_invoice.id)
        paid = invoice_service.mark_paid(draft_invoice.id)

        assert overdue.status == InvoiceStatus.OVERDUE
        assert paid.status == InvoiceStatus.PAID

    def test_transitions_are_audited(self, invoice_service, draft_invoice, audit):
        invoice_service.send(draft_invoice.id)

        latest = audit.get_entity_history("invoice", draft_invoice.id)[0]
        assert latest["changes"]["status"] == {"old": "draft", "new": "sent"}


class TestDelivery:

    def test_record_delivery_keeps_status(self, invoice_service, draft_invoice):
        invoice_service.send(draft_invoice.id)

        failed = invoice_service.record_delivery(draft_invoice.id, DeliveryStatus.FAILED, "bounced")

        assert failed.status == InvoiceStatus.SENT
        assert failed.delivery_status == DeliveryStatus.FAILED
        assert failed.delivery_error == "bounced"

    def test_retry_delivery_publishes_request(self, invoice_service, draft_invoice, event_bus):
        received = []
        event_bus.subscribe("InvoiceDeliveryRequested", received.append)
        invoice_service.send(draft_invoice.id)
        invoice_service.record_delivery(draft_invoice.id, DeliveryStatus.FAILED, "bounced")

        retried = invoice_service.retry_delivery(draft_invoice.id)

        assert retried.delivery_status == DeliveryStatus.PENDING
        assert retried.delivery_error is None
        assert len(received) == 1

    def test_retry_refused_for_draft(self, invoice_service, draft_invoice):
        with pytest.raises(ValidationError, match="cannot be delivered"):
            invoice_service.retry_delivery(draft_invoice.id)


# =============================================================================
# DELETE AND LIST
# =============================================================================


class TestDelete:

    def test_cascades_to_line_items(self, invoice_service, store, draft_invoice):
        for n in range(3):
            invoice_service.add_item(draft_invoice.id, LineItemCreate(description=f"Item {n}", unit_price_cents=100))

        assert invoice_service.delete(draft_invoice.id) is True

        assert invoice_service.get_by_id(draft_invoice.id) is None
        assert store.query("line_items", {"invoice_id": draft_invoice.id}) == []

    def test_missing_returns_false(self, as_test_tenant, invoice_service):
        assert invoice_service.delete(uuid4()) is False


class TestListInvoices:

    @pytest.fixture
    def three_invoices(self, as_test_tenant, invoice_service, customer_service, test_customer):
        globex = customer_service.create(CustomerCreate(name="Globex", email="ap@globex.example.com"))
        a = invoice_service.create(InvoiceCreate(customer_id=test_customer.id, due_date=DUE))
        b = invoice_service.create(InvoiceCreate(customer_id=globex.id, due_date=DUE + timedelta(days=30)))
        c = invoice_service.create(InvoiceCreate(customer_id=test_customer.id, due_date=DUE))
        invoice_service.add_item(b.id, LineItemCreate(description="Big", unit_price_cents=9000))
        invoice_service.send(a.id)
        return a, b, c, globex

    def test_derived_overdue_filter(self, invoice_service, three_invoices):
        a, b, c, _ = three_invoices

        overdue = invoice_service.list_invoices(status=InvoiceStatus.OVERDUE, as_of=DUE + timedelta(days=1))
        sent = invoice_service.list_invoices(status=InvoiceStatus.SENT, as_of=DUE + timedelta(days=1))

        assert [i.id for i in overdue] == [a.id]
        assert sent == []

    def test_customer_filter_and_search(self, invoice_service, three_invoices):
        a, b, c, globex = three_invoices

        assert [i.id for i in invoice_service.list_invoices(customer_id=globex.id)] == [b.id]
        assert [i.id for i in invoice_service.list_invoices(search="globex")] == [b.id]
        assert [i.id for i in invoice_service.list_invoices(search="INV-0003")] == [c.id]

    def test_sort_and_paging(self, invoice_service, three_invoices):
        a, b, c, _ = three_invoices

        by_total = invoice_service.list_invoices(sort_by="total_cents")
        by_due = invoice_service.list_invoices(sort_by="due_date", limit=1)

        assert by_total[0].id == b.id
        assert [i.id for i in by_due] == [b.id]
        assert len(invoice_service.list_invoices(offset=2)) == 1


# =============================================================================
# PAYMENTS
# =============================================================================


class TestPayments:

    @pytest.fixture
    def checkout(self):
        client = Mock()
        client.create_checkout_session.return_value = {
            "session_id": "cs_test_123",
            "checkout_url": "https://checkout.stripe.test/cs_test_123",
        }
        return client

    @pytest.fixture
    def paying_service(self, store, audit, event_bus, config, checkout):
        return InvoiceService(store, audit, event_bus, config, checkout=checkout)

    def test_payment_link_stores_session(self, paying_service, checkout, draft_invoice, test_customer):
        paying_service.add_item(draft_invoice.id, LineItemCreate(description="Work", unit_price_cents=1000))

        invoice = paying_service.create_payment_link(draft_invoice.id)

        assert invoice.checkout_session_id == "cs_test_123"
        assert invoice.checkout_url.endswith("cs_test_123")
        kwargs = checkout.create_checkout_session.call_args.kwargs
        assert kwargs["amount_cents"] == 1100
        assert kwargs["customer_email"] == test_customer.email
        assert kwargs["metadata"]["invoice_id"] == str(draft_invoice.id)

    def test_payment_link_needs_amount(self, paying_service, draft_invoice):
        with pytest.raises(ValidationError, match="no amount"):
            paying_service.create_payment_link(draft_invoice.id)

    def test_payment_link_needs_checkout_client(self, invoice_service, draft_invoice):
        with pytest.raises(RuntimeError, match="not configured"):
            invoice_service.create_payment_link(draft_invoice.id)

    def test_checkout_completion_marks_paid(self, paying_service, draft_invoice):
        paying_service.add_item(draft_invoice.id, LineItemCreate(description="Work", unit_price_cents=1000))
        paying_service.create_payment_link(draft_invoice.id)
        paying_service.send(draft_invoice.id)

        paid = paying_service.mark_paid_from_checkout(draft_invoice.id, "cs_test_123")

        assert paid.status == InvoiceStatus.PAID
        assert paid.paid_at is not None

    def test_checkout_completion_rejects_foreign_session(self, paying_service, draft_invoice):
        with pytest.raises(ValidationError, match="does not belong"):
            paying_service.mark_paid_from_checkout(draft_invoice.id, "cs_other")

    def test_checkout_completion_checks_amount(self, paying_service, draft_invoice):
        paying_service.add_item(draft_invoice.id, LineItemCreate(description="Work", unit_price_cents=1000))
        paying_service.create_payment_link(draft_invoice.id)
        paying_service.send(draft_invoice.id)

        with pytest.raises(ValidationError, match="collected 1000 cents"):
            paying_service.mark_paid_from_checkout(draft_invoice.id, "cs_test_123", amount_cents=1000)

        paid = paying_service.mark_paid_from_checkout(draft_invoice.id, "cs_test_123", amount_cents=1100)
        assert paid.status == InvoiceStatus.PAID

    def test_adding_item_drops_link_for_old_total(self, paying_service, draft_invoice):
        paying_service.add_item(draft_invoice.id, LineItemCreate(description="Work", unit_price_cents=1000))
        paying_service.create_payment_link(draft_invoice.id)

        change = paying_service.add_item(
            draft_invoice.id, LineItemCreate(description="More work", unit_price_cents=50000)
        )

        assert change.invoice.total_cents == 56100
        assert change.invoice.checkout_session_id is None
        assert change.invoice.checkout_url is None
        paying_service.send(draft_invoice.id)
        with pytest.raises(ValidationError, match="does not belong"):
            paying_service.mark_paid_from_checkout(draft_invoice.id, "cs_test_123", amount_cents=1100)

    def test_tax_change_drops_link(self, paying_service, draft_invoice):
        paying_service.add_item(draft_invoice.id, LineItemCreate(description="Work", unit_price_cents=1000))
        paying_service.create_payment_link(draft_invoice.id)

        updated = paying_service.update_details(draft_invoice.id, InvoiceUpdate(tax_percent=Decimal("20")))

        assert updated.total_cents == 1200
        assert updated.checkout_session_id is None

    def test_unchanged_total_keeps_link(self, paying_service, draft_invoice):
        paying_service.add_item(draft_invoice.id, LineItemCreate(description="Work", unit_price_cents=1000))
        paying_service.create_payment_link(draft_invoice.id)

        updated = paying_service.update_details(draft_invoice.id, InvoiceUpdate(tax_percent=Decimal("10")))

        assert updated.checkout_session_id == "cs_test_123"


# =============================================================================
# END TO END
# =============================================================================


class TestInvoiceWalkthrough:

    def test_consulting_and_travel_then_send_and_pay(self, invoice_service, draft_invoice):
        change = invoice_service.add_item(draft_invoice.id, LineItemCreate(
            description="Consulting", quantity=3, unit_price_cents=10000
        ))
        assert totals(change.invoice) == (30000, 3000, 33000)

        change = invoice_service.add_item(draft_invoice.id, LineItemCreate(
            description="Travel", quantity=1, unit_price_cents=5000
        ))
        assert totals(change.invoice) == (35000, 3500, 38500)

        sent = invoice_service.send(draft_invoice.id)
        assert is_overdue(sent, sent.due_date + timedelta(days=1))

        paid = invoice_service.mark_paid(draft_invoice.id)
        assert not is_overdue(paid, paid.due_date + timedelta(days=1))
        assert totals(paid) == (35000, 3500, 38500)
