"""
Invoice service for billing and payments.

Orchestrates the ledger and lifecycle with persistence, audit and events.
Every line item mutation persists the item and then the invoice's
recomputed totals, using the invoice version read at the start of the
operation. If the totals write fails, the line item change is reverted so
the stored items and totals never disagree.

Sending is two-phase: the SENT status is persisted first, then the
InvoiceSent event triggers delivery. The delivery outcome is recorded in
delivery_status and never rolls back the status.
"""

import logging
from datetime import date
from typing import Callable, NamedTuple
from uuid import UUID, uuid4

from core import lifecycle
from core.audit import AuditLogger, AuditAction, compute_changes
from core.config import InvoicingConfig
from core.dashboard import filter_invoices, sort_invoices
from core.errors import NotFoundError, PersistenceError, ValidationError
from core.event_bus import EventBus
from core.events import (
    InvoiceCreated, InvoiceSent, InvoiceDeliveryRequested, InvoiceViewed,
    InvoicePaid, InvoiceMarkedOverdue, InvoiceVoided,
)
from core.ledger import LineItemLedger
from core.models import (
    Customer, Invoice, InvoiceCreate, InvoiceUpdate, InvoiceStatus, DeliveryStatus,
    LineItem, LineItemCreate, LineItemUpdate,
)
from core.store import RecordStore
from utils.timezone import now_utc, today_utc

logger = logging.getLogger(__name__)

TABLE = "invoices"
ITEMS_TABLE = "line_items"

_STATUS_EVENTS = {
    InvoiceStatus.SENT: InvoiceSent,
    InvoiceStatus.VIEWED: InvoiceViewed,
    InvoiceStatus.PAID: InvoicePaid,
    InvoiceStatus.OVERDUE: InvoiceMarkedOverdue,
    InvoiceStatus.VOID: InvoiceVoided,
}

# Statuses from which the invoice has been delivered at least once
_DELIVERABLE = {InvoiceStatus.SENT, InvoiceStatus.VIEWED, InvoiceStatus.OVERDUE}


class LineItemChange(NamedTuple):
    """Result of a line item mutation: the item and the invoice's new totals."""

    line_item: LineItem
    invoice: Invoice


class InvoiceService:
    """Service for invoice and line item operations."""

    def __init__(
        self,
        store: RecordStore,
        audit: AuditLogger,
        event_bus: EventBus,
        config: InvoicingConfig | None = None,
        checkout=None
    ):
        self.store = store
        self.audit = audit
        self.event_bus = event_bus
        self.config = config or InvoicingConfig()
        self.checkout = checkout

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_by_id(self, invoice_id: UUID) -> Invoice | None:
        """
        Get invoice by ID.

        Returns:
            Invoice if found, None otherwise.
        """
        row = self.store.get(TABLE, invoice_id)
        if row is None:
            return None
        return Invoice.model_validate(row)

    def require(self, invoice_id: UUID) -> Invoice:
        """
        Get invoice by ID or fail.

        Raises:
            NotFoundError: If invoice does not exist
        """
        invoice = self.get_by_id(invoice_id)
        if invoice is None:
            raise NotFoundError("invoice", invoice_id)
        return invoice

    def list_items(self, invoice_id: UUID) -> list[LineItem]:
        """Line items of an invoice, oldest first."""
        rows = self.store.query(
            ITEMS_TABLE, {"invoice_id": invoice_id}, order_by="created_at"
        )
        return [LineItem.model_validate(row) for row in rows]

    def load_ledger(self, invoice: Invoice) -> LineItemLedger:
        """Build the ledger of an invoice from its stored line items."""
        return LineItemLedger(invoice.id, invoice.tenant_id, self.list_items(invoice.id))

    def get_with_items(self, invoice_id: UUID) -> tuple[Invoice, list[LineItem]]:
        """
        Get an invoice together with its line items.

        Raises:
            NotFoundError: If invoice does not exist
        """
        invoice = self.require(invoice_id)
        return invoice, self.list_items(invoice_id)

    def list_invoices(
        self,
        status: InvoiceStatus | None = None,
        customer_id: UUID | None = None,
        search: str | None = None,
        sort_by: str = "created_at",
        as_of: date | None = None,
        limit: int | None = None,
        offset: int = 0
    ) -> list[Invoice]:
        """
        List invoices with optional filters.

        Status filtering uses the effective status, so filtering by
        OVERDUE includes sent or viewed invoices past their due date.

        Args:
            status: Effective status to match
            customer_id: Only invoices of this customer
            search: Case-insensitive match on invoice number, customer name or email
            sort_by: "created_at", "due_date" or "total_cents" (all descending)
            as_of: Date used for overdue derivation (defaults to today, UTC)
            limit: Maximum results (defaults to config.default_list_limit)
            offset: Offset for pagination

        Returns:
            Matching invoices
        """
        as_of = as_of or today_utc()
        limit = limit or self.config.default_list_limit

        filters = {"customer_id": customer_id} if customer_id else None
        invoices = [Invoice.model_validate(r) for r in self.store.query(TABLE, filters)]

        if status is not None:
            target = InvoiceStatus(status)
            invoices = [i for i in invoices if lifecycle.effective_status(i, as_of) == target]

        if search:
            customers = self._customers_by_id({i.customer_id for i in invoices})
            invoices = filter_invoices(invoices, customers, search)

        invoices = sort_invoices(invoices, sort_by)
        return invoices[offset:offset + limit]

    def _customers_by_id(self, customer_ids: set[UUID]) -> dict[UUID, Customer]:
        if not customer_ids:
            return {}
        rows = self.store.query("customers", {"id": list(customer_ids)})
        return {c.id: c for c in (Customer.model_validate(r) for r in rows)}

    # -------------------------------------------------------------------------
    # Create / edit / delete
    # -------------------------------------------------------------------------

    def _next_invoice_number(self) -> str:
        """
        Next sequential number for the current tenant: count + 1.

        After deletions count + 1 may already be taken; the sequence then
        advances to the next free number.
        """
        sequence = self.store.count(TABLE) + 1
        while True:
            number = lifecycle.format_invoice_number(
                sequence,
                prefix=self.config.invoice_number_prefix,
                width=self.config.invoice_number_width,
            )
            if not self.store.count(TABLE, {"invoice_number": number}):
                return number
            sequence += 1

    def create(self, data: InvoiceCreate) -> Invoice:
        """
        Create a draft invoice with zero totals.

        Args:
            data: Customer, due date, tax percent (config default if omitted), notes

        Returns:
            Created invoice in DRAFT status

        Raises:
            ValidationError: If due date is missing or tax percent is outside [0, 100]
            NotFoundError: If the customer does not exist
        """
        tax_percent = data.tax_percent
        if tax_percent is None:
            tax_percent = self.config.default_tax_percent
        tax_percent = lifecycle.validate_new_invoice(data.due_date, tax_percent)

        if self.store.get("customers", data.customer_id) is None:
            raise NotFoundError("customer", data.customer_id)

        now = now_utc()
        row = self.store.insert(TABLE, {
            "id": uuid4(),
            "customer_id": data.customer_id,
            "invoice_number": self._next_invoice_number(),
            "status": InvoiceStatus.DRAFT,
            "subtotal_cents": 0,
            "tax_percent": tax_percent,
            "tax_cents": 0,
            "total_cents": 0,
            "due_date": data.due_date,
            "notes": data.notes,
            "delivery_status": DeliveryStatus.NOT_SENT,
            "created_at": now,
            "updated_at": now,
        })

        invoice = Invoice.model_validate(row)

        self.audit.log_change(
            entity_type="invoice",
            entity_id=invoice.id,
            action=AuditAction.CREATE,
            changes={"created": invoice.model_dump(mode="json")}
        )

        self.event_bus.publish(InvoiceCreated.create(invoice=invoice))
        logger.info(f"Created invoice {invoice.invoice_number} ({invoice.id})")

        return invoice

    def _ensure_editable(self, invoice: Invoice) -> None:
        if invoice.is_closed:
            raise ValidationError(
                f"Invoice {invoice.invoice_number} is {invoice.status.value} and cannot be edited"
            )

    def _write(self, current: Invoice, changes: dict) -> Invoice:
        """Persist invoice changes against the version that was read, and audit them."""
        row = self.store.update(
            TABLE, current.id, {**changes, "updated_at": now_utc()},
            expected_version=current.version
        )
        if row is None:
            raise NotFoundError("invoice", current.id)

        updated = Invoice.model_validate(row)

        diff = compute_changes(
            current.model_dump(mode="json"),
            updated.model_dump(mode="json")
        )
        if diff:
            self.audit.log_change(
                entity_type="invoice",
                entity_id=current.id,
                action=AuditAction.UPDATE,
                changes=diff
            )

        return updated

    @staticmethod
    def _totals_changes(current: Invoice, totals: lifecycle.InvoiceTotals) -> dict:
        """Totals columns to write; a checkout link for a different amount is dropped."""
        changes = totals._asdict()
        if current.checkout_session_id and totals.total_cents != current.total_cents:
            logger.info(f"Invoice {current.invoice_number} total changed, dropping checkout link")
            changes.update(checkout_session_id=None, checkout_url=None)
        return changes

    def _persist_totals(self, invoice: Invoice, ledger: LineItemLedger, undo: Callable[[], None]) -> Invoice:
        """Recompute and persist totals; revert the line item change if that fails."""
        totals = lifecycle.recompute_totals(invoice, ledger)
        try:
            return self._write(invoice, self._totals_changes(invoice, totals))
        except (PersistenceError, NotFoundError):
            logger.warning(f"Totals update failed for invoice {invoice.id}, reverting line item change")
            undo()
            raise

    def update_details(self, invoice_id: UUID, data: InvoiceUpdate) -> Invoice:
        """
        Update due date, tax percent, notes or PDF link.

        Changing the tax percent recomputes tax and total.

        Raises:
            NotFoundError: If invoice not found
            ValidationError: If tax percent is out of range or invoice is paid/void
        """
        current = self.require(invoice_id)
        self._ensure_editable(current)

        updates = data.model_dump(exclude_none=True)
        if not updates:
            return current

        if "tax_percent" in updates:
            updates["tax_percent"] = lifecycle.validate_tax_percent(updates["tax_percent"])
            totals = lifecycle.compute_totals(current.subtotal_cents, updates["tax_percent"])
            updates.update(self._totals_changes(current, totals))

        return self._write(current, updates)

    def delete(self, invoice_id: UUID) -> bool:
        """
        Delete an invoice and all of its line items.

        Line items are deleted first so a failure can never leave orphans.

        Returns:
            True if deleted, False if not found
        """
        current = self.get_by_id(invoice_id)
        if current is None:
            return False

        ledger = self.load_ledger(current)
        for item in ledger.remove_all():
            self.store.delete(ITEMS_TABLE, item.id)

        self.store.delete(TABLE, invoice_id)

        self.audit.log_change(
            entity_type="invoice",
            entity_id=invoice_id,
            action=AuditAction.DELETE,
            changes={"deleted": current.model_dump(mode="json")}
        )
        logger.info(f"Deleted invoice {current.invoice_number} and its line items")

        return True

    # -------------------------------------------------------------------------
    # Line items
    # -------------------------------------------------------------------------

    def _require_item_row(self, line_item_id: UUID) -> dict:
        row = self.store.get(ITEMS_TABLE, line_item_id)
        if row is None:
            raise NotFoundError("line_item", line_item_id)
        return row

    def add_item(self, invoice_id: UUID, data: LineItemCreate) -> LineItemChange:
        """
        Add a line item to an invoice and recompute the invoice totals.

        Raises:
            NotFoundError: If invoice not found
            ValidationError: If the item is invalid or the invoice is paid/void
        """
        invoice = self.require(invoice_id)
        self._ensure_editable(invoice)

        ledger = self.load_ledger(invoice)
        item = ledger.add_item(data.description, data.quantity, data.unit_price_cents)

        stored = LineItem.model_validate(self.store.insert(ITEMS_TABLE, item.model_dump()))
        updated = self._persist_totals(
            invoice, ledger, undo=lambda: self.store.delete(ITEMS_TABLE, item.id)
        )

        self.audit.log_change(
            entity_type="line_item",
            entity_id=stored.id,
            action=AuditAction.CREATE,
            changes={"created": stored.model_dump(mode="json")}
        )

        return LineItemChange(stored, updated)

    def update_item(self, line_item_id: UUID, data: LineItemUpdate) -> LineItemChange:
        """
        Update a line item and recompute the invoice totals.

        Raises:
            NotFoundError: If line item not found
            ValidationError: If a value is invalid or the invoice is paid/void
        """
        row = self._require_item_row(line_item_id)
        invoice = self.require(row["invoice_id"])
        self._ensure_editable(invoice)

        ledger = self.load_ledger(invoice)
        previous = ledger.get(line_item_id)
        item = ledger.update_item(line_item_id, data)

        changed = {
            "description": item.description,
            "quantity": item.quantity,
            "unit_price_cents": item.unit_price_cents,
            "total_cents": item.total_cents,
            "updated_at": item.updated_at,
        }
        stored = LineItem.model_validate(self.store.update(ITEMS_TABLE, line_item_id, changed))

        restore = {k: getattr(previous, k) for k in changed}
        updated = self._persist_totals(
            invoice, ledger, undo=lambda: self.store.update(ITEMS_TABLE, line_item_id, restore)
        )

        changes = compute_changes(
            previous.model_dump(mode="json"),
            stored.model_dump(mode="json")
        )
        if changes:
            self.audit.log_change(
                entity_type="line_item",
                entity_id=line_item_id,
                action=AuditAction.UPDATE,
                changes=changes
            )

        return LineItemChange(stored, updated)

    def remove_item(self, line_item_id: UUID) -> LineItemChange:
        """
        Remove a line item and recompute the invoice totals.

        Returns:
            The removed item and the updated invoice

        Raises:
            NotFoundError: If line item not found
            ValidationError: If the invoice is paid/void
        """
        row = self._require_item_row(line_item_id)
        invoice = self.require(row["invoice_id"])
        self._ensure_editable(invoice)

        ledger = self.load_ledger(invoice)
        removed = ledger.remove_item(line_item_id)

        self.store.delete(ITEMS_TABLE, line_item_id)
        updated = self._persist_totals(
            invoice, ledger, undo=lambda: self.store.insert(ITEMS_TABLE, removed.model_dump())
        )

        self.audit.log_change(
            entity_type="line_item",
            entity_id=line_item_id,
            action=AuditAction.DELETE,
            changes={"deleted": removed.model_dump(mode="json")}
        )

        return LineItemChange(removed, updated)

    # -------------------------------------------------------------------------
    # Status lifecycle
    # -------------------------------------------------------------------------

    def _apply_transition(
        self,
        current: Invoice,
        target: InvoiceStatus,
        extra: dict | None = None
    ) -> Invoice:
        moved = lifecycle.transition(current, target)
        if moved is current:
            return current

        changes = {
            field: getattr(moved, field)
            for field in ("status", *lifecycle.TIMESTAMP_FIELDS.values())
            if getattr(moved, field) != getattr(current, field)
        }
        changes.update(extra or {})

        updated = self._write(current, changes)
        logger.info(
            f"Invoice {updated.invoice_number}: {current.status.value} -> {updated.status.value}"
        )

        self.event_bus.publish(_STATUS_EVENTS[updated.status].create(invoice=updated))

        # Handlers may have recorded delivery outcomes since the write
        return self.get_by_id(updated.id) or updated

    def transition(self, invoice_id: UUID, target: InvoiceStatus) -> Invoice:
        """
        Move an invoice to another status.

        Re-applying the current status is a no-op. SENT goes through send()
        so delivery is always triggered.

        Raises:
            NotFoundError: If invoice not found
            InvalidTransitionError: If the transition is not permitted
        """
        target = InvoiceStatus(target)
        if target == InvoiceStatus.SENT:
            return self.send(invoice_id)
        return self._apply_transition(self.require(invoice_id), target)

    def send(self, invoice_id: UUID) -> Invoice:
        """
        Mark an invoice sent and trigger delivery.

        The status change is persisted first with delivery_status PENDING;
        the delivery handler records the outcome afterwards.

        Raises:
            NotFoundError: If invoice not found
            InvalidTransitionError: If the invoice is not a draft
        """
        current = self.require(invoice_id)
        return self._apply_transition(
            current, InvoiceStatus.SENT, {"delivery_status": DeliveryStatus.PENDING}
        )

    def mark_viewed(self, invoice_id: UUID) -> Invoice:
        """Record that the customer viewed the invoice."""
        return self.transition(invoice_id, InvoiceStatus.VIEWED)

    def mark_paid(self, invoice_id: UUID) -> Invoice:
        """Record full payment of the invoice."""
        return self.transition(invoice_id, InvoiceStatus.PAID)

    def mark_overdue(self, invoice_id: UUID) -> Invoice:
        """Manually mark the invoice overdue."""
        return self.transition(invoice_id, InvoiceStatus.OVERDUE)

    def void(self, invoice_id: UUID) -> Invoice:
        """Void (archive) the invoice."""
        return self.transition(invoice_id, InvoiceStatus.VOID)

    # -------------------------------------------------------------------------
    # Delivery and payment
    # -------------------------------------------------------------------------

    def record_delivery(
        self,
        invoice_id: UUID,
        status: DeliveryStatus,
        error: str | None = None
    ) -> Invoice:
        """
        Record the outcome of an email delivery attempt.

        Only delivery fields change; the invoice status is left alone.
        """
        current = self.require(invoice_id)
        row = self.store.update(TABLE, invoice_id, {
            "delivery_status": status,
            "delivery_error": error,
            "updated_at": now_utc(),
        })
        if row is None:
            raise NotFoundError("invoice", invoice_id)

        updated = Invoice.model_validate(row)
        self.audit.log_change(
            entity_type="invoice",
            entity_id=invoice_id,
            action=AuditAction.UPDATE,
            changes={"delivery_status": {"old": current.delivery_status.value, "new": status.value}}
        )

        if status == DeliveryStatus.FAILED:
            logger.warning(f"Delivery of invoice {updated.invoice_number} failed: {error}")

        return updated

    def retry_delivery(self, invoice_id: UUID) -> Invoice:
        """
        Deliver an already sent invoice again.

        Raises:
            ValidationError: If the invoice has not been sent or is paid/void
        """
        current = self.require(invoice_id)
        if current.status not in _DELIVERABLE:
            raise ValidationError(
                f"Invoice {current.invoice_number} is {current.status.value} and cannot be delivered"
            )

        pending = self.record_delivery(invoice_id, DeliveryStatus.PENDING)
        self.event_bus.publish(InvoiceDeliveryRequested.create(invoice=pending))
        return self.require(invoice_id)

    def create_payment_link(self, invoice_id: UUID) -> Invoice:
        """
        Create a checkout session for the invoice total and store its link.

        Raises:
            RuntimeError: If no checkout client is configured
            ValidationError: If the invoice is paid/void or has nothing to pay
            CheckoutError: If the payment provider fails
        """
        if self.checkout is None:
            raise RuntimeError("Payment checkout is not configured")

        current = self.require(invoice_id)
        self._ensure_editable(current)
        if current.total_cents <= 0:
            raise ValidationError(f"Invoice {current.invoice_number} has no amount to pay")

        customer_row = self.store.get("customers", current.customer_id)
        session = self.checkout.create_checkout_session(
            invoice_number=current.invoice_number,
            amount_cents=current.total_cents,
            customer_email=customer_row["email"] if customer_row else None,
            metadata={"invoice_id": str(current.id), "tenant_id": str(current.tenant_id)},
        )

        return self._write(current, {
            "checkout_session_id": session["session_id"],
            "checkout_url": session["checkout_url"],
        })

    def mark_paid_from_checkout(
        self,
        invoice_id: UUID,
        session_id: str,
        amount_cents: int | None = None
    ) -> Invoice:
        """
        Mark an invoice paid after a completed checkout session.

        Args:
            invoice_id: Invoice the session was created for
            session_id: Completed checkout session
            amount_cents: Amount the session collected, checked against the invoice total

        Raises:
            NotFoundError: If invoice not found
            ValidationError: If the session does not belong to the invoice or
                collected a different amount
            InvalidTransitionError: If the invoice cannot be paid
        """
        current = self.require(invoice_id)
        if current.checkout_session_id != session_id:
            raise ValidationError(
                f"Checkout session {session_id} does not belong to invoice {current.invoice_number}"
            )
        if amount_cents is not None and amount_cents != current.total_cents:
            raise ValidationError(
                f"Checkout session {session_id} collected {amount_cents} cents, "
                f"invoice {current.invoice_number} is due {current.total_cents}"
            )
        return self._apply_transition(current, InvoiceStatus.PAID)
