"""
Customer service for CRUD operations.

Handles customer lifecycle: create, read, update, delete.
All operations are scoped to the current tenant by the store.
"""

import logging
from uuid import UUID, uuid4

from core.audit import AuditLogger, AuditAction, compute_changes
from core.errors import NotFoundError, ValidationError
from core.event_bus import EventBus
from core.events import CustomerCreated
from core.models import Customer, CustomerCreate, CustomerUpdate
from core.store import RecordStore
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

TABLE = "customers"
SEARCH_COLUMNS = ["name", "email", "phone"]

# Valid columns that can be updated
_UPDATABLE_COLUMNS = {"name", "email", "phone", "address"}


class CustomerService:
    """Service for customer operations."""

    def __init__(self, store: RecordStore, audit: AuditLogger, event_bus: EventBus | None = None):
        self.store = store
        self.audit = audit
        self.event_bus = event_bus

    def create(self, data: CustomerCreate) -> Customer:
        """
        Create a new customer.

        Args:
            data: Customer creation data

        Returns:
            Created customer
        """
        now = now_utc()

        row = self.store.insert(TABLE, {
            "id": uuid4(),
            **data.model_dump(),
            "created_at": now,
            "updated_at": now,
        })

        customer = Customer.model_validate(row)

        self.audit.log_change(
            entity_type="customer",
            entity_id=customer.id,
            action=AuditAction.CREATE,
            changes={"created": data.model_dump(mode="json", exclude_none=True)}
        )

        if self.event_bus is not None:
            self.event_bus.publish(CustomerCreated.create(customer=customer))

        return customer

    def get_by_id(self, customer_id: UUID) -> Customer | None:
        """
        Get customer by ID.

        Returns:
            Customer if found, None otherwise.
        """
        row = self.store.get(TABLE, customer_id)
        if row is None:
            return None
        return Customer.model_validate(row)

    def require(self, customer_id: UUID) -> Customer:
        """
        Get customer by ID or fail.

        Raises:
            NotFoundError: If customer does not exist
        """
        customer = self.get_by_id(customer_id)
        if customer is None:
            raise NotFoundError("customer", customer_id)
        return customer

    def update(self, customer_id: UUID, data: CustomerUpdate) -> Customer:
        """
        Update customer fields.

        Args:
            customer_id: Customer UUID
            data: Fields to update (only non-None fields are changed)

        Returns:
            Updated customer

        Raises:
            NotFoundError: If customer not found
        """
        current = self.require(customer_id)

        updates = data.model_dump(exclude_none=True)
        valid_updates = {k: v for k, v in updates.items() if k in _UPDATABLE_COLUMNS}
        if not valid_updates:
            return current

        row = self.store.update(TABLE, customer_id, {**valid_updates, "updated_at": now_utc()})
        if row is None:
            raise NotFoundError("customer", customer_id)

        updated = Customer.model_validate(row)

        changes = compute_changes(
            current.model_dump(mode="json"),
            updated.model_dump(mode="json")
        )
        if changes:
            self.audit.log_change(
                entity_type="customer",
                entity_id=customer_id,
                action=AuditAction.UPDATE,
                changes=changes
            )

        return updated

    def delete(self, customer_id: UUID) -> bool:
        """
        Delete a customer.

        Customers that still have invoices cannot be deleted; void or
        delete the invoices first.

        Returns:
            True if deleted, False if not found

        Raises:
            ValidationError: If the customer still has invoices
        """
        current = self.get_by_id(customer_id)
        if current is None:
            return False

        invoice_count = self.store.count("invoices", {"customer_id": customer_id})
        if invoice_count:
            raise ValidationError(
                f"Customer {customer_id} has {invoice_count} invoice(s) and cannot be deleted"
            )

        self.store.delete(TABLE, customer_id)

        self.audit.log_change(
            entity_type="customer",
            entity_id=customer_id,
            action=AuditAction.DELETE,
            changes={"deleted": current.model_dump(mode="json")}
        )

        return True

    def list_all(self, limit: int = 50, offset: int = 0) -> list[Customer]:
        """
        List customers with pagination.

        Returns:
            Customers ordered by created_at DESC
        """
        rows = self.store.query(
            TABLE, order_by="created_at", descending=True, limit=limit, offset=offset
        )
        return [Customer.model_validate(row) for row in rows]

    def search(self, query: str, limit: int = 20) -> list[Customer]:
        """
        Search customers by name, email, or phone.

        Case-insensitive partial matching.

        Returns:
            Matching customers, newest first
        """
        rows = self.store.search(
            TABLE, SEARCH_COLUMNS, query, order_by="created_at", descending=True, limit=limit
        )
        return [Customer.model_validate(row) for row in rows]
