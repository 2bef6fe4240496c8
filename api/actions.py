"""POST /api/actions — unified mutation endpoint."""

from uuid import UUID

from fastapi import APIRouter, Request
from pydantic import BaseModel

from api.base import success_response
from core.models import (
    CustomerCreate, CustomerUpdate,
    InvoiceCreate, InvoiceUpdate, InvoiceStatus,
    LineItemCreate, LineItemUpdate,
)


class ActionRequest(BaseModel):
    domain: str
    action: str
    data: dict


def create_actions_router(services: dict) -> APIRouter:
    router = APIRouter()

    handlers = {
        "customer": CustomerHandler(services["customer"]),
        "invoice": InvoiceHandler(services["invoice"]),
        "line_item": LineItemHandler(services["invoice"]),
    }

    @router.post("/actions")
    async def perform_action(request: Request, body: ActionRequest):
        handler = handlers.get(body.domain)
        if handler is None:
            raise ValueError(
                f"Unknown domain '{body.domain}'. "
                f"Valid domains: {', '.join(sorted(handlers.keys()))}"
            )

        if body.action not in handler.ALLOWED_ACTIONS:
            raise ValueError(
                f"Action '{body.action}' not allowed on '{body.domain}'. "
                f"Allowed: {', '.join(sorted(handler.ALLOWED_ACTIONS))}"
            )

        method = getattr(handler, f"_handle_{body.action}")
        result = method(dict(body.data))
        return success_response(result).model_dump(mode="json")

    return router


# =============================================================================
# HANDLER CLASSES
# =============================================================================


class CustomerHandler:
    ALLOWED_ACTIONS = {"create", "update", "delete"}

    def __init__(self, service):
        self.service = service

    def _handle_create(self, data: dict):
        customer = self.service.create(CustomerCreate(**data))
        return customer.model_dump(mode="json")

    def _handle_update(self, data: dict):
        customer_id = UUID(data.pop("id"))
        customer = self.service.update(customer_id, CustomerUpdate(**data))
        return customer.model_dump(mode="json")

    def _handle_delete(self, data: dict):
        customer_id = UUID(data["id"])
        deleted = self.service.delete(customer_id)
        if not deleted:
            raise ValueError(f"Customer {customer_id} not found")
        return {"deleted": True}


class InvoiceHandler:
    ALLOWED_ACTIONS = {
        "create", "update", "delete",
        "send", "mark_viewed", "mark_paid", "mark_overdue", "void", "transition",
        "payment_link", "retry_delivery",
    }

    def __init__(self, service):
        self.service = service

    def _handle_create(self, data: dict):
        invoice = self.service.create(InvoiceCreate(**data))
        return invoice.model_dump(mode="json")

    def _handle_update(self, data: dict):
        invoice_id = UUID(data.pop("id"))
        invoice = self.service.update_details(invoice_id, InvoiceUpdate(**data))
        return invoice.model_dump(mode="json")

    def _handle_delete(self, data: dict):
        invoice_id = UUID(data["id"])
        deleted = self.service.delete(invoice_id)
        if not deleted:
            raise ValueError(f"Invoice {invoice_id} not found")
        return {"deleted": True}

    def _handle_send(self, data: dict):
        invoice = self.service.send(UUID(data["id"]))
        return invoice.model_dump(mode="json")

    def _handle_mark_viewed(self, data: dict):
        invoice = self.service.mark_viewed(UUID(data["id"]))
        return invoice.model_dump(mode="json")

    def _handle_mark_paid(self, data: dict):
        invoice = self.service.mark_paid(UUID(data["id"]))
        return invoice.model_dump(mode="json")

    def _handle_mark_overdue(self, data: dict):
        invoice = self.service.mark_overdue(UUID(data["id"]))
        return invoice.model_dump(mode="json")

    def _handle_void(self, data: dict):
        invoice = self.service.void(UUID(data["id"]))
        return invoice.model_dump(mode="json")

    def _handle_transition(self, data: dict):
        target = InvoiceStatus(data["status"])
        invoice = self.service.transition(UUID(data["id"]), target)
        return invoice.model_dump(mode="json")

    def _handle_payment_link(self, data: dict):
        invoice = self.service.create_payment_link(UUID(data["id"]))
        return invoice.model_dump(mode="json")

    def _handle_retry_delivery(self, data: dict):
        invoice = self.service.retry_delivery(UUID(data["id"]))
        return invoice.model_dump(mode="json")


class LineItemHandler:
    ALLOWED_ACTIONS = {"create", "update", "delete"}

    def __init__(self, service):
        self.service = service

    @staticmethod
    def _result(change) -> dict:
        return {
            "line_item": change.line_item.model_dump(mode="json"),
            "invoice": change.invoice.model_dump(mode="json"),
        }

    def _handle_create(self, data: dict):
        invoice_id = UUID(data.pop("invoice_id"))
        change = self.service.add_item(invoice_id, LineItemCreate(**data))
        return self._result(change)

    def _handle_update(self, data: dict):
        line_item_id = UUID(data.pop("id"))
        change = self.service.update_item(line_item_id, LineItemUpdate(**data))
        return self._result(change)

    def _handle_delete(self, data: dict):
        change = self.service.remove_item(UUID(data["id"]))
        return self._result(change)
