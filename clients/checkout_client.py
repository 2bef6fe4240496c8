"""
Stripe checkout client for invoice payment links.

Creates one-off Checkout sessions for an invoice's total and verifies
webhook signatures. Invoice and tenant IDs travel in session metadata so
the webhook can find the invoice again without a lookup table.
"""

import logging
from typing import Any, Dict

import stripe

logger = logging.getLogger(__name__)


class CheckoutError(Exception):
    """Raised when the payment provider rejects or fails a request."""


class StripeCheckoutClient:
    """Stripe implementation of the payment checkout collaborator."""

    def __init__(self, secret_key: str, webhook_secret: str, app_base_url: str, currency: str = "usd"):
        """
        Initialize with Stripe credentials.

        Raises:
            ValueError: If secret_key or webhook_secret is empty
        """
        if not secret_key:
            raise ValueError("secret_key is required")
        if not webhook_secret:
            raise ValueError("webhook_secret is required")

        stripe.api_key = secret_key
        self.stripe = stripe
        self.webhook_secret = webhook_secret
        self.app_base_url = app_base_url.rstrip("/")
        self.currency = currency
        logger.info("Initialized Stripe checkout client")

    def create_checkout_session(
        self,
        invoice_number: str,
        amount_cents: int,
        customer_email: str | None,
        metadata: Dict[str, str],
    ) -> Dict[str, Any]:
        """
        Create a Checkout session that collects the invoice total.

        Args:
            invoice_number: Shown to the customer as the product name
            amount_cents: Amount to collect in cents
            customer_email: Prefills the checkout form if given
            metadata: Attached to the session (invoice_id, tenant_id)

        Returns:
            Dict with keys: session_id, checkout_url

        Raises:
            CheckoutError: If Stripe rejects the request
        """
        params: Dict[str, Any] = {
            "mode": "payment",
            "line_items": [{
                "price_data": {
                    "currency": self.currency,
                    "product_data": {"name": f"Invoice {invoice_number}"},
                    "unit_amount": amount_cents,
                },
                "quantity": 1,
            }],
            "success_url": f"{self.app_base_url}/invoices/paid?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{self.app_base_url}/invoices/cancelled",
            "metadata": metadata,
            "payment_method_types": ["card"],
        }
        if customer_email:
            params["customer_email"] = customer_email

        try:
            session = self.stripe.checkout.Session.create(**params)
        except stripe.StripeError as e:
            logger.error(f"Stripe checkout session failed for {invoice_number}: {e}")
            raise CheckoutError(str(e)) from e

        logger.info(
            f"Created Stripe checkout session {session.id} for {invoice_number}",
            extra={"session_id": session.id, "metadata": metadata},
        )
        return {"session_id": session.id, "checkout_url": session.url}

    def verify_webhook(self, payload: bytes, signature: str) -> Dict[str, Any]:
        """
        Verify Stripe webhook signature and parse event.

        Raises:
            ValueError: Invalid payload or signature
        """
        try:
            event = self.stripe.Webhook.construct_event(
                payload, signature, self.webhook_secret
            )
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Invalid Stripe webhook signature: {e}")
            raise ValueError("Invalid webhook signature") from e
        except ValueError as e:
            logger.warning(f"Invalid Stripe webhook payload: {e}")
            raise ValueError("Invalid webhook payload") from e

        logger.debug(f"Verified Stripe webhook: {event['type']}")
        return event
