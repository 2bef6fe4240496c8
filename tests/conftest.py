"""Shared test fixtures for the invoicing test suite.

Services run against MemoryRecordStore, so no database or Vault is needed.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

import pytest

from core.audit import AuditLogger
from core.config import InvoicingConfig
from core.event_bus import EventBus
from core.models import CustomerCreate, InvoiceCreate
from core.store import MemoryRecordStore
from utils.tenant_context import tenant_context, clear_current_tenant_id


# =============================================================================
# TEST TENANT CONSTANTS
# =============================================================================

# Primary test tenant - use for single-tenant tests
TEST_TENANT_ID = UUID("00000000-0000-0000-0000-000000000001")

# Secondary test tenant - use for isolation tests
TEST_TENANT_B_ID = UUID("00000000-0000-0000-0000-000000000002")

DUE_DATE = date(2026, 3, 31)


# =============================================================================
# TENANT CONTEXT FIXTURES
# =============================================================================


@pytest.fixture(autouse=True)
def reset_tenant_context():
    """Ensure clean tenant context before and after each test."""
    clear_current_tenant_id()
    yield
    clear_current_tenant_id()


@pytest.fixture
def test_tenant_id() -> UUID:
    return TEST_TENANT_ID


@pytest.fixture
def test_tenant_b_id() -> UUID:
    return TEST_TENANT_B_ID


@pytest.fixture
def as_test_tenant(test_tenant_id):
    """Run the test inside the primary tenant's context."""
    with tenant_context(test_tenant_id):
        yield test_tenant_id


# =============================================================================
# SERVICE FIXTURES
# =============================================================================


@pytest.fixture
def store():
    return MemoryRecordStore()


@pytest.fixture
def audit(store):
    return AuditLogger(store)


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def config():
    return InvoicingConfig(app_base_url="https://billing.example.com")


@pytest.fixture
def customer_service(store, audit, event_bus):
    from core.services.customer_service import CustomerService
    return CustomerService(store, audit, event_bus)


@pytest.fixture
def invoice_service(store, audit, event_bus, config):
    from core.services.invoice_service import InvoiceService
    return InvoiceService(store, audit, event_bus, config)


@pytest.fixture
def dashboard_service(store):
    from core.services.dashboard_service import DashboardService
    return DashboardService(store)


# =============================================================================
# DATA FIXTURES
# =============================================================================


@pytest.fixture
def test_customer(as_test_tenant, customer_service):
    return customer_service.create(CustomerCreate(
        name="Acme Corp", email="billing@acme.example.com", phone="555-0100"
    ))


@pytest.fixture
def draft_invoice(as_test_tenant, invoice_service, test_customer):
    """Draft invoice with 10% tax and no line items."""
    return invoice_service.create(InvoiceCreate(
        customer_id=test_customer.id,
        due_date=DUE_DATE,
        tax_percent=Decimal("10"),
    ))
