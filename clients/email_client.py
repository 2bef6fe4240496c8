"""
Email gateway client for sending invoice emails via HTTP gateway.

Uses HMAC-SHA256 signature for request authentication.
"""

import hashlib
import hmac
import json
import logging

import requests

logger = logging.getLogger(__name__)


class EmailGatewayError(Exception):
    """Raised when email gateway request fails."""


class EmailGatewayClient:
    """Send emails via HTTP gateway with HMAC signature verification."""

    def __init__(self, gateway_url: str, api_key: str, hmac_secret: str, timeout: int = 10):
        """
        Initialize with gateway credentials.

        Args:
            gateway_url: Full URL to the email gateway endpoint
            api_key: API key for X-API-Key header
            hmac_secret: Secret for HMAC-SHA256 signature
            timeout: Request timeout in seconds

        Raises:
            ValueError: If any credential is empty
        """
        if not gateway_url:
            raise ValueError("gateway_url is required")
        if not api_key:
            raise ValueError("api_key is required")
        if not hmac_secret:
            raise ValueError("hmac_secret is required")

        self.gateway_url = gateway_url
        self.api_key = api_key
        self.hmac_secret = hmac_secret
        self.timeout = timeout

    def _sign_and_send(self, payload: dict) -> None:
        """
        Sign payload with HMAC and send to gateway.

        Raises:
            EmailGatewayError: On any failure
        """
        payload_json = json.dumps(payload, separators=(",", ":"))

        signature = hmac.new(
            self.hmac_secret.encode("utf-8"),
            payload_json.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

        headers = {
            "Content-Type": "application/json",
            "X-API-Key": self.api_key,
            "X-Signature": signature,
        }

        try:
            response = requests.post(
                self.gateway_url,
                data=payload_json,
                headers=headers,
                timeout=self.timeout,
            )
        except (requests.exceptions.RequestException, ConnectionError) as e:
            logger.error(f"Email gateway connection failed: {e}")
            raise EmailGatewayError(f"Connection failed: {e}")

        try:
            response_data = response.json()
        except (json.JSONDecodeError, ValueError):
            logger.error(f"Email gateway returned invalid JSON: {response.text}")
            raise EmailGatewayError("Invalid response from gateway")

        if response.status_code != 200 or not response_data.get("success"):
            error_msg = response_data.get("message", "Unknown error")
            logger.error(f"Email gateway error: {error_msg}")
            raise EmailGatewayError(f"Gateway error: {error_msg}")

    def send_email(self, to: str, subject: str, body: str) -> None:
        """
        Send an arbitrary plain text email via gateway.

        Raises:
            EmailGatewayError: On gateway failure
        """
        payload = {
            "type": "custom",
            "email": to,
            "subject": subject,
            "body": body,
        }
        self._sign_and_send(payload)
        logger.info(f"Email sent to {to}: {subject}")

    def send_invoice(
        self,
        to: str,
        invoice_number: str,
        total_cents: int,
        due_date: str,
        invoice_url: str,
        pdf_url: str | None = None,
    ) -> None:
        """
        Send an invoice notification email via gateway.

        Args:
            to: Recipient email address
            invoice_number: Human-readable invoice number (INV-0001)
            total_cents: Amount due in cents
            due_date: ISO due date
            invoice_url: Link where the customer can view the invoice
            pdf_url: Optional link to a rendered PDF

        Raises:
            EmailGatewayError: On gateway failure
        """
        payload = {
            "type": "invoice",
            "email": to,
            "invoice_number": invoice_number,
            "total_cents": total_cents,
            "due_date": due_date,
            "invoice_url": invoice_url,
        }
        if pdf_url:
            payload["pdf_url"] = pdf_url

        self._sign_and_send(payload)
        logger.info(f"Invoice {invoice_number} emailed to {to}")
