"""Utility modules for cross-cutting concerns."""

from utils.timezone import now_utc, today_utc, to_utc, to_local, parse_iso, month_key
from utils.tenant_context import (
    get_current_tenant_id,
    set_current_tenant_id,
    clear_current_tenant_id,
    tenant_context,
)
