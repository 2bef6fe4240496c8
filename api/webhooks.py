"""POST /webhooks/stripe — payment provider callbacks."""

import logging
from uuid import UUID

from fastapi import APIRouter, Request
from starlette.responses import JSONResponse

from api.base import success_response, error_response, ErrorCodes
from core.errors import InvalidTransitionError, NotFoundError, ValidationError
from utils.tenant_context import tenant_context

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"


def _field(obj, key: str):
    try:
        return obj[key]
    except (KeyError, TypeError):
        return None


def _ignored(reason: str) -> dict:
    return success_response({"handled": False, "reason": reason}).model_dump(mode="json")


def create_webhooks_router(invoice_service, checkout_client) -> APIRouter:
    """
    Router for Stripe webhooks.

    A completed checkout session marks its invoice paid. The tenant comes
    from the session metadata since webhooks carry no tenant header.

    Events that can never be applied (no invoice metadata, unknown invoice,
    foreign session, wrong amount, invoice already void) are logged and
    acknowledged with 200 so Stripe stops redelivering them. Storage
    failures still return an error so the event is retried.
    """
    router = APIRouter()

    @router.post("/stripe")
    async def stripe_webhook(request: Request):
        payload = await request.body()
        signature = request.headers.get("Stripe-Signature", "")

        try:
            event = checkout_client.verify_webhook(payload, signature)
        except ValueError as e:
            return JSONResponse(
                status_code=400,
                content=error_response(ErrorCodes.INVALID_WEBHOOK, str(e)).model_dump(mode="json"),
            )

        if event["type"] != CHECKOUT_COMPLETED:
            logger.debug(f"Ignoring Stripe event {event['type']}")
            return success_response({"handled": False}).model_dump(mode="json")

        session = event["data"]["object"]
        if _field(session, "payment_status") != "paid":
            logger.info(f"Checkout session {session['id']} completed without payment")
            return success_response({"handled": False}).model_dump(mode="json")

        metadata = _field(session, "metadata") or {}
        invoice_id = _field(metadata, "invoice_id")
        tenant_id = _field(metadata, "tenant_id")
        if not invoice_id or not tenant_id:
            logger.error(f"Checkout session {session['id']} has no invoice metadata")
            return _ignored("Checkout session has no invoice metadata")

        try:
            with tenant_context(UUID(tenant_id)):
                invoice = invoice_service.mark_paid_from_checkout(
                    UUID(invoice_id), session["id"], _field(session, "amount_total")
                )
        except (ValidationError, NotFoundError, InvalidTransitionError) as e:
            logger.error(f"Checkout session {session['id']} not applied to invoice {invoice_id}: {e}")
            return _ignored(str(e))

        logger.info(f"Invoice {invoice.invoice_number} paid via checkout session {session['id']}")
        return success_response({
            "handled": True,
            "invoice_id": str(invoice.id),
            "status": invoice.status.value,
        }).model_dump(mode="json")

    return router
