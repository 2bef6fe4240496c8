# Infrastructure clients
from clients.vault_client import (
    VaultClient,
    get_database_url,
    get_email_config,
    get_stripe_config,
)
from clients.postgres_client import PostgresClient
from clients.postgres_store import PostgresRecordStore
from clients.email_client import EmailGatewayClient, EmailGatewayError
from clients.checkout_client import StripeCheckoutClient, CheckoutError
