"""
Document gateway client for rendering client-facing invoice documents.

The gateway renders and stores the document and answers with its location.
Requests are authenticated with an HMAC-SHA256 signature over the JSON body.
Regenerating the same invoice overwrites the previous document, so calls are
safe to repeat.
"""

import hashlib
import hmac
import json
import logging
from uuid import UUID

import requests

logger = logging.getLogger(__name__)


class DocumentGenerationError(Exception):
    """Raised when the document gateway cannot produce a document."""


class DocumentGatewayClient:
    """Request invoice documents from an HTTP gateway with HMAC signature verification."""

    def __init__(self, gateway_url: str, api_key: str, hmac_secret: str, timeout: int = 30):
        """
        Initialize with gateway credentials.

        Args:
            gateway_url: Full URL to the document gateway endpoint
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

    def sign(self, payload_json: str) -> str:
        return hmac.new(
            self.hmac_secret.encode("utf-8"),
            payload_json.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def generate_document(self, invoice_id: UUID) -> str:
        """
        Render the document for an invoice.

        Args:
            invoice_id: Invoice to render

        Returns:
            Location of the stored document (URL or storage key)

        Raises:
            DocumentGenerationError: On any failure
        """
        payload_json = json.dumps({"invoice_id": str(invoice_id)}, separators=(",", ":"))

        headers = {
            "Content-Type": "application/json",
            "X-API-Key": self.api_key,
            "X-Signature": self.sign(payload_json),
        }

        try:
            response = requests.post(
                self.gateway_url,
                data=payload_json,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Document gateway connection failed: {e}")
            raise DocumentGenerationError(f"Connection failed: {e}")

        try:
            response_data = response.json()
        except ValueError:
            logger.error(f"Document gateway returned invalid JSON: {response.text}")
            raise DocumentGenerationError("Invalid response from gateway")

        if response.status_code != 200 or not response_data.get("success"):
            error_msg = response_data.get("message", "Unknown error")
            logger.error(f"Document gateway error for invoice {invoice_id}: {error_msg}")
            raise DocumentGenerationError(f"Gateway error: {error_msg}")

        location = response_data.get("location")
        if not location:
            raise DocumentGenerationError("Gateway response has no document location")

        logger.info(f"Document generated for invoice {invoice_id}: {location}")
        return location
