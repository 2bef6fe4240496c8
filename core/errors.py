"""Typed exceptions for invoicing failures."""


class InvoicingError(Exception):
    """Base class for all invoicing domain errors."""


class ValidationError(InvoicingError):
    """
    Caller supplied an out-of-domain value.

    Empty description, non-positive quantity, negative price, tax percent
    outside [0, 100], missing due date. Recoverable by correcting the input.
    """


class NotFoundError(InvoicingError):
    """Referenced invoice, line item or customer does not exist."""

    def __init__(self, entity_type: str, entity_id):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type.replace('_', ' ').capitalize()} {entity_id} not found")


class InvalidTransitionError(InvoicingError):
    """Requested status transition is not permitted from the current status."""

    def __init__(self, current_status, target_status):
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(
            f"Cannot transition invoice from '{_value(current_status)}' "
            f"to '{_value(target_status)}'"
        )


class PersistenceError(InvoicingError):
    """Opaque failure from the persistence collaborator."""


class ConflictError(PersistenceError):
    """
    Write rejected because the record changed since it was read.

    Caller should re-read the record and reapply its change.
    """

    def __init__(self, table: str, record_id, expected_version: int):
        self.table = table
        self.record_id = record_id
        self.expected_version = expected_version
        super().__init__(
            f"Stale write to {table} {record_id}: expected version {expected_version}"
        )


def _value(status) -> str:
    return getattr(status, "value", status)
