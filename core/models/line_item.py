"""Line item domain models.

All prices are stored in cents (integer) to avoid floating point issues.
$10.00 = 1000 cents.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class LineItemCreate(BaseModel):
    """Data required to add a line item to an invoice."""

    description: str = Field(..., max_length=500)
    quantity: int = 1
    unit_price_cents: int = 0


class LineItemUpdate(BaseModel):
    """Data that can be updated on a line item. All fields optional."""

    description: str | None = Field(None, max_length=500)
    quantity: int | None = None
    unit_price_cents: int | None = None


class LineItem(BaseModel):
    """Full line item entity as stored."""

    id: UUID
    tenant_id: UUID
    invoice_id: UUID
    description: str
    quantity: int
    unit_price_cents: int
    total_cents: int
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @property
    def total_dollars(self) -> float:
        """Total price in dollars for display."""
        return self.total_cents / 100
