"""FastAPI application factory."""

from fastapi import FastAPI

from api.actions import create_actions_router
from api.base import success_response
from api.data import create_data_router
from api.errors import register_error_handlers
from api.middleware import RequestIDMiddleware, TenantContextMiddleware
from api.webhooks import create_webhooks_router


def create_app(services: dict, checkout_client=None, title: str = "Invoicing") -> FastAPI:
    """
    Build the HTTP app.

    Args:
        services: {"customer": CustomerService, "invoice": InvoiceService,
                   "dashboard": DashboardService}
        checkout_client: StripeCheckoutClient; webhooks are only mounted when given
        title: OpenAPI title
    """
    app = FastAPI(title=title)
    app.add_middleware(TenantContextMiddleware)
    app.add_middleware(RequestIDMiddleware)
    register_error_handlers(app)

    @app.get("/health")
    async def health():
        return success_response({"status": "ok"}).model_dump(mode="json")

    app.include_router(create_data_router(services), prefix="/api")
    app.include_router(create_actions_router(services), prefix="/api")

    if checkout_client is not None:
        app.include_router(
            create_webhooks_router(services["invoice"], checkout_client), prefix="/webhooks"
        )

    return app
