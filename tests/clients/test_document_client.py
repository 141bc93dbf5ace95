"""
Tests for DocumentGatewayClient.

HTTP is mocked with the responses library; assertions cover what callers
see (the document location or a DocumentGenerationError).
"""

import hashlib
import hmac
import json
from uuid import UUID

import pytest
import requests
import responses

from clients.document_client import DocumentGatewayClient, DocumentGenerationError

GATEWAY_URL = "https://gateway.example.com/documents"
INVOICE_ID = UUID("3f1c2b9e-0000-4000-8000-000000000042")


@pytest.fixture
def client():
    return DocumentGatewayClient(
        gateway_url=GATEWAY_URL,
        api_key="test-api-key",
        hmac_secret="test-hmac-secret",
    )


class TestInit:
    """Fail-fast on invalid config."""

    @pytest.mark.parametrize("field", ["gateway_url", "api_key", "hmac_secret"])
    def test_rejects_empty_credential(self, field):
        kwargs = {"gateway_url": GATEWAY_URL, "api_key": "key", "hmac_secret": "secret", field: ""}

        with pytest.raises(ValueError, match=field):
            DocumentGatewayClient(**kwargs)


class TestGenerateDocument:
    @responses.activate
    def test_returns_location(self, client):
        responses.add(
            responses.POST, GATEWAY_URL,
            json={"success": True, "location": "s3://invoices/INV-2503-001.pdf"}, status=200,
        )

        assert client.generate_document(INVOICE_ID) == "s3://invoices/INV-2503-001.pdf"

    @responses.activate
    def test_signs_request_body(self, client):
        """X-Signature is HMAC-SHA256 of the exact body sent."""
        responses.add(responses.POST, GATEWAY_URL, json={"success": True, "location": "x"}, status=200)

        client.generate_document(INVOICE_ID)

        request = responses.calls[0].request
        body = request.body.decode("utf-8") if isinstance(request.body, bytes) else request.body
        expected = hmac.new(b"test-hmac-secret", body.encode("utf-8"), hashlib.sha256).hexdigest()
        assert json.loads(body) == {"invoice_id": str(INVOICE_ID)}
        assert request.headers["X-Signature"] == expected
        assert request.headers["X-API-Key"] == "test-api-key"

    @responses.activate
    def test_gateway_error_message(self, client):
        responses.add(
            responses.POST, GATEWAY_URL,
            json={"success": False, "message": "template missing"}, status=422,
        )

        with pytest.raises(DocumentGenerationError, match="Gateway error: template missing"):
            client.generate_document(INVOICE_ID)

    @responses.activate
    def test_success_false_with_200(self, client):
        responses.add(responses.POST, GATEWAY_URL, json={"success": False}, status=200)

        with pytest.raises(DocumentGenerationError, match="Unknown error"):
            client.generate_document(INVOICE_ID)

    @responses.activate
    def test_invalid_json(self, client):
        responses.add(responses.POST, GATEWAY_URL, body="<html>502</html>", status=502)

        with pytest.raises(DocumentGenerationError, match="Invalid response"):
            client.generate_document(INVOICE_ID)

    @responses.activate
    def test_missing_location(self, client):
        responses.add(responses.POST, GATEWAY_URL, json={"success": True}, status=200)

        with pytest.raises(DocumentGenerationError, match="no document location"):
            client.generate_document(INVOICE_ID)

    @responses.activate
    def test_connection_failure(self, client):
        responses.add(responses.POST, GATEWAY_URL, body=requests.exceptions.ConnectionError("refused"))

        with pytest.raises(DocumentGenerationError, match="Connection failed"):
            client.generate_document(INVOICE_ID)
