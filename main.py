"""
Application entrypoint.

Secrets come from Vault (VAULT_ADDR, VAULT_ROLE_ID, VAULT_SECRET_ID, loaded
from .env when present). Run with:

    uvicorn main:build_app --factory
"""

import logging
import os

from dotenv import load_dotenv

from api.app import create_app
from clients import (
    EmailGatewayClient,
    PostgresClient,
    PostgresRecordStore,
    StripeCheckoutClient,
    get_database_url,
    get_email_config,
    get_stripe_config,
)
from core.audit import AuditLogger
from core.config import InvoicingConfig
from core.event_bus import EventBus
from core.handlers.invoice_delivery_handler import handle_invoice_delivery
from core.handlers.invoice_payment_handler import handle_invoice_paid
from core.services.customer_service import CustomerService
from core.services.dashboard_service import DashboardService
from core.services.invoice_service import InvoiceService

logger = logging.getLogger(__name__)


def build_services(store, email_client, checkout_client, config: InvoicingConfig) -> dict:
    """Wire services, the event bus and its handlers around one store."""
    audit = AuditLogger(store)
    event_bus = EventBus()

    customer_service = CustomerService(store, audit, event_bus)
    invoice_service = InvoiceService(store, audit, event_bus, config, checkout=checkout_client)

    delivery = handle_invoice_delivery(invoice_service, customer_service, email_client, config)
    event_bus.subscribe("InvoiceSent", delivery)
    event_bus.subscribe("InvoiceDeliveryRequested", delivery)
    event_bus.subscribe("InvoicePaid", handle_invoice_paid(customer_service, email_client))

    return {
        "customer": customer_service,
        "invoice": invoice_service,
        "dashboard": DashboardService(store),
    }


def build_app():
    load_dotenv()
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = InvoicingConfig(
        app_base_url=os.getenv("APP_BASE_URL", "http://localhost:8000"),
        currency=os.getenv("INVOICE_CURRENCY", "usd"),
    )

    store = PostgresRecordStore(PostgresClient(get_database_url()))
    email_client = EmailGatewayClient(**get_email_config())

    stripe_config = get_stripe_config()
    checkout_client = StripeCheckoutClient(
        secret_key=stripe_config["secret_key"],
        webhook_secret=stripe_config["webhook_secret"],
        app_base_url=config.app_base_url,
        currency=config.currency,
    )

    services = build_services(store, email_client, checkout_client, config)
    logger.info("Invoicing app initialised")
    return create_app(services, checkout_client, title=config.app_name)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(build_app(), host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
