"""Invoicing configuration."""

from decimal import Decimal

from pydantic import BaseModel, Field


class InvoicingConfig(BaseModel):
    """
    Invoicing configuration.

    Secrets (database URL, email gateway, Stripe keys) are not configured
    here; they come from Vault via clients.vault_client.
    """

    # Invoice numbering
    invoice_number_prefix: str = Field(
        default="INV-",
        description="Prefix of generated invoice numbers",
        min_length=1,
        max_length=10,
    )
    invoice_number_width: int = Field(
        default=4,
        description="Zero-padded width of the sequence part (INV-0001)",
        ge=1,
        le=10,
    )

    # Defaults for new invoices
    default_tax_percent: Decimal = Field(
        default=Decimal("0"),
        description="Tax percent applied when a new invoice does not specify one",
        ge=0,
        le=100,
    )
    currency: str = Field(
        default="usd",
        description="ISO currency code used for checkout sessions",
        pattern="^[a-z]{3}$",
    )

    # Listing
    default_list_limit: int = Field(
        default=50,
        description="Page size when a list request gives no limit",
        ge=1,
        le=500,
    )

    # Application
    app_base_url: str = Field(
        default="http://localhost:8000",
        description="Base URL for invoice links in emails and checkout redirects",
    )
    app_name: str = Field(
        default="Invoicing",
        description="Application name for emails",
    )
