"""GET /api/data — unified read endpoint."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Query, Request

from api.base import success_response
from core.lifecycle import effective_status
from core.models import InvoiceStatus
from utils.timezone import today_utc


VALID_TYPES = {"customers", "invoices", "dashboard"}


def create_data_router(services: dict) -> APIRouter:
    router = APIRouter()

    customer_svc = services["customer"]
    invoice_svc = services["invoice"]
    dashboard_svc = services["dashboard"]

    @router.get("/data")
    async def get_data(
        request: Request,
        type: str | None = Query(None),
        id: str | None = Query(None),
        search: str | None = Query(None),
        status: str | None = Query(None),
        customer_id: str | None = Query(None),
        sort: str = Query("created_at"),
        include: str | None = Query(None),
        as_of: date | None = Query(None),
        months: int = Query(6, ge=1, le=36),
        limit: int = Query(50, ge=1, le=500),
        offset: int = Query(0, ge=0),
    ):
        if type is None:
            raise ValueError("'type' query parameter is required")

        if type not in VALID_TYPES:
            raise ValueError(f"Unknown type '{type}'. Valid types: {', '.join(sorted(VALID_TYPES))}")

        includes = set(include.split(",")) if include else set()
        as_of = as_of or today_utc()

        if type == "customers":
            return _handle_customers(customer_svc, id, search, limit, offset)

        if type == "invoices":
            return _handle_invoices(
                invoice_svc, id, search, status, customer_id, sort, includes, as_of, limit, offset
            )

        if type == "dashboard":
            return _handle_dashboard(dashboard_svc, as_of, months)

    return router


def _handle_customers(customer_svc, id, search, limit, offset):
    if id:
        customer = customer_svc.require(UUID(id))
        return success_response(customer.model_dump(mode="json")).model_dump(mode="json")

    if search:
        customers = customer_svc.search(search, limit)
    else:
        customers = customer_svc.list_all(limit, offset)

    return success_response(
        [c.model_dump(mode="json") for c in customers]
    ).model_dump(mode="json")


def _invoice_data(invoice, as_of) -> dict:
    data = invoice.model_dump(mode="json")
    data["effective_status"] = effective_status(invoice, as_of).value
    return data


def _handle_invoices(invoice_svc, id, search, status, customer_id, sort, includes, as_of, limit, offset):
    if id:
        invoice, items = invoice_svc.get_with_items(UUID(id))
        data = _invoice_data(invoice, as_of)
        if "line_items" in includes:
            data["line_items"] = [li.model_dump(mode="json") for li in items]
        return success_response(data).model_dump(mode="json")

    invoices = invoice_svc.list_invoices(
        status=InvoiceStatus(status) if status else None,
        customer_id=UUID(customer_id) if customer_id else None,
        search=search,
        sort_by=sort,
        as_of=as_of,
        limit=limit,
        offset=offset,
    )
    return success_response(
        [_invoice_data(i, as_of) for i in invoices]
    ).model_dump(mode="json")


def _handle_dashboard(dashboard_svc, as_of, months):
    stats = dashboard_svc.get_stats(as_of)
    data = stats.to_dict()
    data["revenue_by_month"] = [
        {"month": month, "total_cents": cents}
        for month, cents in dashboard_svc.revenue_by_month(months, as_of)
    ]
    data["as_of"] = as_of.isoformat()
    return success_response(data).model_dump(mode="json")
