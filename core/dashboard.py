"""
Read-side aggregation for the dashboard and the invoice list.

Pure functions over already-loaded invoices. Overdue is always derived
from the due date as of a given day, so a sent invoice past its due date
counts as overdue here even though its stored status is still "sent".
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Iterable
from uuid import UUID

from core.lifecycle import effective_status
from core.models import Customer, Invoice, InvoiceStatus
from utils.timezone import month_key

UNPAID_STATUSES = frozenset({InvoiceStatus.SENT, InvoiceStatus.VIEWED, InvoiceStatus.OVERDUE})

SORT_FIELDS = ("created_at", "due_date", "total_cents")


@dataclass(frozen=True)
class DashboardStats:
    """Headline numbers for the dashboard. Amounts in cents."""

    paid_this_month_cents: int = 0
    unpaid_total_cents: int = 0
    total_invoices: int = 0
    overdue_count: int = 0
    count_by_status: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "paid_this_month_cents": self.paid_this_month_cents,
            "unpaid_total_cents": self.unpaid_total_cents,
            "total_invoices": self.total_invoices,
            "overdue_count": self.overdue_count,
            "count_by_status": dict(self.count_by_status),
        }


def compute_stats(invoices: Iterable[Invoice], as_of: date) -> DashboardStats:
    """
    Aggregate dashboard statistics.

    - paid this month: paid invoices whose paid_at falls in the month of as_of
    - unpaid total: invoices whose effective status is sent, viewed or overdue
    - overdue count: invoices that are overdue, derived or explicitly marked
    """
    current_month = month_key(as_of)
    paid_this_month = 0
    unpaid_total = 0
    overdue_count = 0
    total = 0
    by_status = {status.value: 0 for status in InvoiceStatus}

    for invoice in invoices:
        total += 1
        status = effective_status(invoice, as_of)
        by_status[status.value] += 1

        if (
            invoice.status == InvoiceStatus.PAID
            and invoice.paid_at is not None
            and month_key(invoice.paid_at) == current_month
        ):
            paid_this_month += invoice.total_cents

        if status in UNPAID_STATUSES:
            unpaid_total += invoice.total_cents

        if status == InvoiceStatus.OVERDUE:
            overdue_count += 1

    return DashboardStats(
        paid_this_month_cents=paid_this_month,
        unpaid_total_cents=unpaid_total,
        total_invoices=total,
        overdue_count=overdue_count,
        count_by_status=by_status,
    )


def _month_keys(months: int, as_of: date) -> list[str]:
    """The last `months` month keys ending with the month of as_of, oldest first."""
    year, month = as_of.year, as_of.month
    keys = []
    for _ in range(months):
        keys.append(f"{year:04d}-{month:02d}")
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(keys))


def revenue_by_month(invoices: Iterable[Invoice], months: int, as_of: date) -> list[tuple[str, int]]:
    """
    Paid revenue per calendar month (by paid_at), oldest first.

    Months with no payments are included with zero.

    Raises:
        ValueError: If months is not positive
    """
    if months < 1:
        raise ValueError(f"months must be positive, got {months}")

    buckets = dict.fromkeys(_month_keys(months, as_of), 0)
    for invoice in invoices:
        if invoice.status != InvoiceStatus.PAID or invoice.paid_at is None:
            continue
        key = month_key(invoice.paid_at)
        if key in buckets:
            buckets[key] += invoice.total_cents

    return list(buckets.items())


def filter_invoices(
    invoices: Iterable[Invoice],
    customers: dict[UUID, Customer],
    search: str
) -> list[Invoice]:
    """Case-insensitive search over invoice number and customer name or email."""
    needle = search.strip().lower()
    if not needle:
        return list(invoices)

    matches = []
    for invoice in invoices:
        customer = customers.get(invoice.customer_id)
        haystack = [invoice.invoice_number]
        if customer is not None:
            haystack += [customer.name, customer.email]
        if any(needle in value.lower() for value in haystack if value):
            matches.append(invoice)
    return matches


def sort_invoices(invoices: Iterable[Invoice], sort_by: str = "created_at") -> list[Invoice]:
    """
    Sort invoices descending by created_at, due_date or total_cents.

    Raises:
        ValueError: If sort_by is not a supported field
    """
    if sort_by not in SORT_FIELDS:
        raise ValueError(f"Cannot sort invoices by {sort_by!r}; use one of {', '.join(SORT_FIELDS)}")
    return sorted(invoices, key=lambda invoice: getattr(invoice, sort_by), reverse=True)
