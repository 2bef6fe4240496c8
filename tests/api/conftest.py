"""API test fixtures — tenant-scoped TestClient over in-memory services."""

from unittest.mock import Mock

import pytest
from starlette.testclient import TestClient

from api.app import create_app
from clients.checkout_client import StripeCheckoutClient


# =============================================================================
# SERVICES DICT
# =============================================================================


@pytest.fixture
def services(customer_service, invoice_service, dashboard_service):
    return {
        "customer": customer_service,
        "invoice": invoice_service,
        "dashboard": dashboard_service,
    }


@pytest.fixture
def checkout_client():
    """Checkout client whose verify_webhook returns whatever the test sets."""
    return Mock(spec=StripeCheckoutClient)


# =============================================================================
# APP & CLIENT FIXTURES
# =============================================================================


@pytest.fixture
def app(services, checkout_client):
    """Full app: tenant middleware, error handlers, data/actions/webhook routes."""
    return create_app(services, checkout_client=checkout_client)


@pytest.fixture
def client(app, test_tenant_id):
    """Client scoped to the primary test tenant."""
    c = TestClient(app, raise_server_exceptions=False)
    c.headers.update({"X-Tenant-ID": str(test_tenant_id)})
    return c


@pytest.fixture
def tenant_b_client(app, test_tenant_b_id):
    """Client scoped to the secondary test tenant."""
    c = TestClient(app, raise_server_exceptions=False)
    c.headers.update({"X-Tenant-ID": str(test_tenant_b_id)})
    return c


@pytest.fixture
def unscoped_client(app):
    """Client without a tenant header."""
    return TestClient(app, raise_server_exceptions=False)
