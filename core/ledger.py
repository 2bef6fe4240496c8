"""
Line item ledger for a single invoice.

The ledger owns the line items of exactly one invoice and guarantees that
every item's total_cents equals quantity * unit_price_cents. It holds no
persistence handle: InvoiceService loads a ledger, mutates it, and persists
the affected item together with the recomputed invoice totals.

All arithmetic is integer cents. Floats never touch money here.
"""

from typing import Iterable, Iterator
from uuid import UUID, uuid4

from core.errors import NotFoundError, ValidationError
from core.models import LineItem, LineItemUpdate
from utils.timezone import now_utc


def _validate_description(description) -> str:
    if not isinstance(description, str) or not description.strip():
        raise ValidationError("Line item description must not be empty")
    return description


def _validate_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError(f"Quantity must be an integer, got {quantity!r}")
    if quantity <= 0:
        raise ValidationError(f"Quantity must be positive, got {quantity}")
    return quantity


def _validate_unit_price(unit_price_cents) -> int:
    if isinstance(unit_price_cents, bool) or not isinstance(unit_price_cents, int):
        raise ValidationError(
            f"Unit price must be an integer number of cents, got {unit_price_cents!r}"
        )
    if unit_price_cents < 0:
        raise ValidationError(f"Unit price must not be negative, got {unit_price_cents}")
    return unit_price_cents


class LineItemLedger:
    """
    Collection of line items belonging to one invoice.

    Usage:
        ledger = LineItemLedger(invoice.id, invoice.tenant_id)
        ledger.add_item("Consulting", 3, 10000)
        ledger.subtotal()  # 30000

    A ledger must never be shared between invoices; items whose invoice_id
    does not match are rejected on load.
    """

    def __init__(self, invoice_id: UUID, tenant_id: UUID, items: Iterable[LineItem] = ()):
        self.invoice_id = invoice_id
        self.tenant_id = tenant_id
        self._items: dict[UUID, LineItem] = {}

        for item in items:
            if item.invoice_id != invoice_id:
                raise ValueError(
                    f"Line item {item.id} belongs to invoice {item.invoice_id}, "
                    f"not {invoice_id}"
                )
            self._items[item.id] = item

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[LineItem]:
        return iter(self._items.values())

    def __contains__(self, item_id: UUID) -> bool:
        return item_id in self._items

    @property
    def items(self) -> list[LineItem]:
        """Line items in insertion order."""
        return list(self._items.values())

    def get(self, item_id: UUID) -> LineItem:
        """
        Get a line item by ID.

        Raises:
            NotFoundError: If the item is not part of this ledger
        """
        item = self._items.get(item_id)
        if item is None:
            raise NotFoundError("line_item", item_id)
        return item

    def add_item(self, description: str, quantity: int, unit_price_cents: int) -> LineItem:
        """
        Add a line item and compute its extended total.

        Args:
            description: Non-empty description
            quantity: Positive integer quantity
            unit_price_cents: Non-negative unit price in cents

        Returns:
            The created line item, including total_cents

        Raises:
            ValidationError: If any input is out of domain
        """
        description = _validate_description(description)
        quantity = _validate_quantity(quantity)
        unit_price_cents = _validate_unit_price(unit_price_cents)

        now = now_utc()
        item = LineItem(
            id=uuid4(),
            tenant_id=self.tenant_id,
            invoice_id=self.invoice_id,
            description=description,
            quantity=quantity,
            unit_price_cents=unit_price_cents,
            total_cents=quantity * unit_price_cents,
            created_at=now,
            updated_at=now,
        )
        self._items[item.id] = item
        return item

    def update_item(self, item_id: UUID, changes: LineItemUpdate) -> LineItem:
        """
        Apply partial changes to a line item and recompute its total.

        Fields not supplied keep their prior values, so changing only the
        quantity still recomputes the total from the existing price.

        Raises:
            NotFoundError: If the item is not part of this ledger
            ValidationError: If a supplied value is out of domain
        """
        current = self.get(item_id)
        updates = changes.model_dump(exclude_none=True)

        if "description" in updates:
            _validate_description(updates["description"])
        if "quantity" in updates:
            _validate_quantity(updates["quantity"])
        if "unit_price_cents" in updates:
            _validate_unit_price(updates["unit_price_cents"])

        quantity = updates.get("quantity", current.quantity)
        unit_price_cents = updates.get("unit_price_cents", current.unit_price_cents)

        updated = current.model_copy(update={
            **updates,
            "total_cents": quantity * unit_price_cents,
            "updated_at": now_utc(),
        })
        self._items[item_id] = updated
        return updated

    def remove_item(self, item_id: UUID) -> LineItem:
        """
        Remove a line item. Other items are untouched.

        Raises:
            NotFoundError: If the item is not part of this ledger
        """
        item = self.get(item_id)
        del self._items[item_id]
        return item

    def remove_all(self) -> list[LineItem]:
        """Remove every line item. Used before deleting the owning invoice."""
        removed = list(self._items.values())
        self._items.clear()
        return removed

    def subtotal(self) -> int:
        """Sum of all line item totals in cents. 0 for an empty ledger."""
        return sum(item.total_cents for item in self._items.values())
