"""
Invoice lifecycle: derived totals, numbering and the status state machine.

Everything here is a pure function over already-loaded data. Persistence,
audit and events live in InvoiceService; this module only decides what the
new values are.

Totals:
    subtotal = sum of line item totals
    tax      = subtotal * tax_percent / 100, rounded half-up to whole cents
    total    = subtotal + tax

Statuses and transitions:
    draft -> sent -> viewed -> paid
                 \\-> overdue -> paid
    draft|sent|viewed|overdue -> void
    paid and void are terminal. Re-applying the current status is a no-op.

Overdue is derived at read time (effective_status) for lists and dashboards.
The explicit overdue transition exists for manually marking an invoice.
"void" archives an invoice; nothing here deletes one.
"""

from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import NamedTuple

from core.errors import InvalidTransitionError, ValidationError
from core.ledger import LineItemLedger
from core.models import Invoice, InvoiceStatus
from utils.timezone import now_utc

MAX_TAX_PERCENT = Decimal("100")
# Matches the NUMERIC(6, 3) tax_percent column
TAX_PERCENT_STEP = Decimal("0.001")

# Allowed target statuses per current status. Every InvoiceStatus must have
# an entry; terminal statuses map to an empty set.
TRANSITIONS: dict[InvoiceStatus, frozenset[InvoiceStatus]] = {
    InvoiceStatus.DRAFT: frozenset({InvoiceStatus.SENT, InvoiceStatus.VOID}),
    InvoiceStatus.SENT: frozenset({
        InvoiceStatus.VIEWED, InvoiceStatus.PAID,
        InvoiceStatus.OVERDUE, InvoiceStatus.VOID,
    }),
    InvoiceStatus.VIEWED: frozenset({
        InvoiceStatus.PAID, InvoiceStatus.OVERDUE, InvoiceStatus.VOID,
    }),
    InvoiceStatus.OVERDUE: frozenset({InvoiceStatus.PAID, InvoiceStatus.VOID}),
    InvoiceStatus.PAID: frozenset(),
    InvoiceStatus.VOID: frozenset(),
}

# Timestamp set the first time an invoice enters a status
TIMESTAMP_FIELDS: dict[InvoiceStatus, str] = {
    InvoiceStatus.SENT: "sent_at",
    InvoiceStatus.VIEWED: "viewed_at",
    InvoiceStatus.PAID: "paid_at",
}

# Statuses that can become overdue once the due date passes
_OVERDUE_CANDIDATES = frozenset({InvoiceStatus.SENT, InvoiceStatus.VIEWED})


class InvoiceTotals(NamedTuple):
    """Derived monetary fields of an invoice, all in cents."""

    subtotal_cents: int
    tax_cents: int
    total_cents: int


def validate_tax_percent(tax_percent) -> Decimal:
    """
    Normalise and validate a tax percentage.

    Floats are converted through str() so 7.5 becomes Decimal("7.5") rather
    than its binary approximation.

    Raises:
        ValidationError: If the value is not a number in [0, 100] or has
            more than three decimal places
    """
    if tax_percent is None or isinstance(tax_percent, bool):
        raise ValidationError("Tax percent is required")
    try:
        percent = tax_percent if isinstance(tax_percent, Decimal) else Decimal(str(tax_percent))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Tax percent must be a number, got {tax_percent!r}")

    if not percent.is_finite() or percent < 0 or percent > MAX_TAX_PERCENT:
        raise ValidationError(f"Tax percent must be between 0 and 100, got {tax_percent}")
    if percent != percent.quantize(TAX_PERCENT_STEP):
        raise ValidationError(f"Tax percent allows at most three decimal places, got {tax_percent}")
    return percent


def validate_new_invoice(due_date: date | None, tax_percent) -> Decimal:
    """
    Validate the inputs of a new invoice.

    Returns:
        The normalised tax percent

    Raises:
        ValidationError: If due date is missing or tax percent is out of range
    """
    if due_date is None:
        raise ValidationError("Due date is required")
    if isinstance(due_date, datetime) or not isinstance(due_date, date):
        raise ValidationError(f"Due date must be a calendar date, got {due_date!r}")
    return validate_tax_percent(tax_percent)


def format_invoice_number(sequence: int, prefix: str = "INV-", width: int = 4) -> str:
    """Format a sequence number as an invoice number, e.g. 1 -> INV-0001."""
    if sequence < 1:
        raise ValueError(f"Invoice sequence must start at 1, got {sequence}")
    return f"{prefix}{sequence:0{width}d}"


def compute_tax_cents(subtotal_cents: int, tax_percent: Decimal) -> int:
    """
    Tax on a subtotal, rounded half-up to whole cents.

    333 cents at 7.5% is 24.975 cents, which rounds to 25.
    """
    raw = Decimal(subtotal_cents) * Decimal(tax_percent) / Decimal(100)
    return int(raw.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_totals(subtotal_cents: int, tax_percent: Decimal) -> InvoiceTotals:
    """Derive tax and total from a subtotal."""
    tax_cents = compute_tax_cents(subtotal_cents, tax_percent)
    return InvoiceTotals(subtotal_cents, tax_cents, subtotal_cents + tax_cents)


def recompute_totals(invoice: Invoice, ledger: LineItemLedger) -> InvoiceTotals:
    """
    Recompute an invoice's totals from its ledger.

    Must be called after every line item mutation. Pure: the caller decides
    whether and how to persist the result.
    """
    if ledger.invoice_id != invoice.id:
        raise ValueError(f"Ledger for invoice {ledger.invoice_id} passed for invoice {invoice.id}")
    return compute_totals(ledger.subtotal(), invoice.tax_percent)


def apply_totals(invoice: Invoice, totals: InvoiceTotals) -> Invoice:
    """Copy of the invoice carrying the given totals."""
    return invoice.model_copy(update=totals._asdict())


def can_transition(current: InvoiceStatus, target: InvoiceStatus) -> bool:
    """Whether current -> target is allowed. Same-status is always allowed."""
    return current == target or target in TRANSITIONS[current]


def transition(invoice: Invoice, target: InvoiceStatus, now: datetime | None = None) -> Invoice:
    """
    Apply a status transition.

    Sets the matching lifecycle timestamp the first time a status is
    entered and never clears or moves an existing one. Money fields are
    not touched.

    Args:
        invoice: Current invoice state
        target: Requested status
        now: Timestamp to record (defaults to current UTC time)

    Returns:
        Updated copy of the invoice. Same object if target == current status.

    Raises:
        InvalidTransitionError: If the transition is not permitted
    """
    target = InvoiceStatus(target)

    if target == invoice.status:
        return invoice

    if target not in TRANSITIONS[invoice.status]:
        raise InvalidTransitionError(invoice.status, target)

    updates: dict = {"status": target}
    timestamp_field = TIMESTAMP_FIELDS.get(target)
    if timestamp_field is not None and getattr(invoice, timestamp_field) is None:
        updates[timestamp_field] = now or now_utc()

    return invoice.model_copy(update=updates)


def is_overdue(invoice: Invoice, as_of: date) -> bool:
    """
    Whether a sent or viewed invoice is past its due date as of a date.

    The due date itself is not overdue; as_of must be strictly later.
    Paid, void and draft invoices are never overdue.
    """
    return invoice.status in _OVERDUE_CANDIDATES and invoice.due_date < as_of


def effective_status(invoice: Invoice, as_of: date) -> InvoiceStatus:
    """
    Status to present: overdue when is_overdue, else the stored status.

    Invoices explicitly marked overdue keep their stored status, so both
    paths report overdue.
    """
    if is_overdue(invoice, as_of):
        return InvoiceStatus.OVERDUE
    return invoice.status
