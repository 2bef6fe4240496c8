"""Dashboard service: tenant-wide invoice statistics."""

import logging
from datetime import date

from core.dashboard import DashboardStats, compute_stats, revenue_by_month
from core.models import Invoice
from core.store import RecordStore
from utils.timezone import today_utc

logger = logging.getLogger(__name__)


class DashboardService:
    """Read-only aggregation over the current tenant's invoices."""

    def __init__(self, store: RecordStore):
        self.store = store

    def _invoices(self) -> list[Invoice]:
        return [Invoice.model_validate(row) for row in self.store.query("invoices")]

    def get_stats(self, as_of: date | None = None) -> DashboardStats:
        """
        Headline statistics as of a date (defaults to today, UTC).

        Overdue is derived from due dates, so no invoice needs to have been
        explicitly marked overdue to be counted.
        """
        return compute_stats(self._invoices(), as_of or today_utc())

    def revenue_by_month(self, months: int = 6, as_of: date | None = None) -> list[tuple[str, int]]:
        """Paid revenue per month for the last `months` months, oldest first."""
        return revenue_by_month(self._invoices(), months, as_of or today_utc())
