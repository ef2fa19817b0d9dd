# tests/test_x402_middleware.py
"""
Tests for the x402 middleware and the full pay -> verify -> unlock flow.

All tests use a mocked chain node to avoid real transactions.
"""
import base64
import json

import pytest
from unittest.mock import patch, MagicMock

from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from app.api.endpoints import generate, x402
from app.core.config import get_x402_config
from app.x402.gate import ResourceGate
from app.x402.middleware import (
    X402Middleware,
    X_PAYMENT_HEADER,
    X_PAYMENT_RESPONSE_HEADER,
    create_default_gate,
    encode_payment_response,
    get_client_ip,
    is_protected_endpoint,
)
from app.x402.receipts import sign_receipt
from app.x402.replay import ConsumedReceiptStore
from conftest import PAYER, RECIPIENT, SECRET, TX_HASH, build_config

OTHER = "0x1111111111111111111111111111111111111111"


def create_test_app(config=None, replay=True) -> FastAPI:
    """Create a test app with the real routers behind the x402 middleware."""
    config = config or build_config()
    store = ConsumedReceiptStore(retention_seconds=3600) if replay else None

    app = FastAPI()
    app.include_router(x402.router, prefix="/api/v1/x402")
    app.include_router(generate.router, prefix="/api/v1/generate")

    @app.get("/api/v1/health")
    async def health():
        return {"status": "healthy"}

    app.dependency_overrides[get_x402_config] = lambda: config
    app.add_middleware(X402Middleware, gate=ResourceGate(config, replay_store=store))
    return app


class TestIsProtectedEndpoint:
    """Test endpoint protection logic."""

    def test_post_generate_protected(self):
        assert is_protected_endpoint("POST", "/api/v1/generate") is True

    def test_trailing_slash(self):
        assert is_protected_endpoint("POST", "/api/v1/generate/") is True

    def test_get_generate_not_protected(self):
        assert is_protected_endpoint("GET", "/api/v1/generate") is False

    def test_verify_not_protected(self):
        assert is_protected_endpoint("POST", "/api/v1/x402/verify") is False

    def test_root_not_protected(self):
        assert is_protected_endpoint("GET", "/") is False


class TestGetClientIP:
    """Test client IP extraction."""

    def test_forwarded_for_header(self):
        request = MagicMock(spec=Request)
        request.headers = {"X-Forwarded-For": "203.0.113.50, 70.41.3.18"}
        request.client = None

        assert get_client_ip(request) == "203.0.113.50"

    def test_real_ip_header(self):
        request = MagicMock(spec=Request)
        request.headers = {"X-Real-IP": "203.0.113.50"}
        request.client = None

        assert get_client_ip(request) == "203.0.113.50"

    def test_no_client_info(self):
        request = MagicMock(spec=Request)
        request.headers = {}
        request.client = None

        assert get_client_ip(request) == "unknown"


class TestEncodePaymentResponse:
    def test_header_payload(self, make_receipt):
        receipt = make_receipt()
        encoded = encode_payment_response(receipt)
        decoded = json.loads(base64.urlsafe_b64decode(encoded + "=" * (-len(encoded) % 4)))

        assert decoded == {"success": True, "txHash": TX_HASH, "payer": PAYER.lower(), "chain": "base-sepolia"}


class TestDefaultGate:
    @patch("app.x402.middleware.get_x402_config")
    def test_replay_store_follows_config(self, mock_config):
        mock_config.return_value = build_config(replay_protection=True, replay_retention_seconds=900)
        gate = create_default_gate()
        assert gate.replay_store is not None
        assert gate.replay_store.retention_seconds == 900

        mock_config.return_value = build_config(replay_protection=False)
        assert create_default_gate().replay_store is None


class TestProtectedEndpoint:
    """Gate behaviour on the protected resource."""

    def setup_method(self):
        self.client = TestClient(create_test_app())

    def test_unprotected_passes_through(self):
        response = self.client.get("/api/v1/health")
        assert response.status_code == 200

    def test_no_token_returns_402_with_requirements(self):
        response = self.client.post("/api/v1/generate", json={"prompt": "a card"})

        assert response.status_code == 402
        body = response.json()
        assert body["version"] == "1"
        assert "error" not in body
        requirements = body["requirements"]
        assert requirements["amount"] == "1000000"
        assert requirements["recipient"] == RECIPIENT
        assert requirements["chain"] == "base-sepolia"
        assert requirements["facilitator"] == "http://testserver/api/v1/x402/verify"
        assert requirements["nonce"]
        assert requirements["expiresAt"] > 0

    def test_invalid_token_returns_402_with_error(self):
        response = self.client.post(
            "/api/v1/generate",
            json={"prompt": "a card"},
            headers={X_PAYMENT_HEADER: "garbage"},
        )

        assert response.status_code == 402
        body = response.json()
        assert body["error"] == "Invalid payment receipt."
        assert body["requirements"]["amount"] == "1000000"

    def test_deeply_nested_token_returns_402(self):
        token = base64.urlsafe_b64encode(b"[" * 3000).decode().rstrip("=")

        response = self.client.post(
            "/api/v1/generate",
            json={"prompt": "a card"},
            headers={X_PAYMENT_HEADER: token},
        )

        assert response.status_code == 402
        assert response.json()["error"] == "Invalid payment receipt."

    def test_amount_below_required_rejected(self, make_receipt):
        token = sign_receipt(make_receipt(amount="500000"), SECRET)

        with patch("app.api.endpoints.generate.fulfill_request") as mock_fulfill:
            response = self.client.post(
                "/api/v1/generate",
                json={"prompt": "a card"},
                headers={X_PAYMENT_HEADER: token},
            )

        assert response.status_code == 402
        body = response.json()
        assert body["reason"] == "AmountBelowRequired"
        assert body["error"] == "Amount below required"
        assert body["requirements"]["amount"] == "1000000"
        mock_fulfill.assert_not_called()

    @pytest.mark.parametrize("overrides,reason", [
        ({"chain": "base"}, "ChainMismatch"),
        ({"recipient": OTHER}, "RecipientMismatch"),
        ({"assetAddress": OTHER}, "AssetMismatch"),
    ])
    def test_mismatch_reasons(self, make_receipt, overrides, reason):
        token = sign_receipt(make_receipt(**overrides), SECRET)

        response = self.client.post(
            "/api/v1/generate",
            json={"prompt": "a card"},
            headers={X_PAYMENT_HEADER: token},
        )

        assert response.status_code == 402
        assert response.json()["reason"] == reason

    def test_valid_token_runs_action(self, make_receipt):
        token = sign_receipt(make_receipt(), SECRET)

        response = self.client.post(
            "/api/v1/generate",
            json={"prompt": "a card"},
            headers={X_PAYMENT_HEADER: token},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["prompt"] == "a card"
        assert body["payer"] == PAYER.lower()
        assert body["txHash"] == TX_HASH
        assert body["sku"] == "test:sku"
        assert X_PAYMENT_RESPONSE_HEADER in response.headers

    def test_replayed_token_rejected(self, make_receipt):
        token = sign_receipt(make_receipt(), SECRET)
        headers = {X_PAYMENT_HEADER: token}

        first = self.client.post("/api/v1/generate", json={"prompt": "a card"}, headers=headers)
        second = self.client.post("/api/v1/generate", json={"prompt": "a card"}, headers=headers)

        assert first.status_code == 200
        assert second.status_code == 402
        assert second.json()["reason"] == "ReceiptReplayed"

    def test_failed_action_does_not_burn_receipt(self, make_receipt):
        """A 400 from the route releases the receipt for a corrected retry."""
        token = sign_receipt(make_receipt(), SECRET)
        headers = {X_PAYMENT_HEADER: token}

        bad = self.client.post("/api/v1/generate", json={"wrong": "field"}, headers=headers)
        good = self.client.post("/api/v1/generate", json={"prompt": "a card"}, headers=headers)

        assert bad.status_code == 400
        assert bad.json()["error"] == "Missing or invalid prompt."
        assert good.status_code == 200

    def test_replay_allowed_when_disabled(self, make_receipt):
        client = TestClient(create_test_app(replay=False))
        headers = {X_PAYMENT_HEADER: sign_receipt(make_receipt(), SECRET)}

        assert client.post("/api/v1/generate", json={"prompt": "a"}, headers=headers).status_code == 200
        assert client.post("/api/v1/generate", json={"prompt": "a"}, headers=headers).status_code == 200


class TestEndToEnd:
    """Pay, exchange the transaction for a receipt, unlock the resource."""

    def setup_method(self):
        self.client = TestClient(create_test_app())

    @patch("app.x402.chain.get_transaction_receipt")
    def test_full_flow(self, mock_get_receipt, make_tx_receipt):
        mock_get_receipt.return_value = make_tx_receipt(amount=2000000)

        offer = self.client.post("/api/v1/generate", json={"prompt": "a card"})
        assert offer.status_code == 402

        verified = self.client.post(
            "/api/v1/x402/verify",
            json={"txHash": TX_HASH, "chain": offer.json()["requirements"]["chain"]},
        )
        assert verified.status_code == 200
        token = verified.json()["token"]

        paid = self.client.post(
            "/api/v1/generate",
            json={"prompt": "a card"},
            headers={X_PAYMENT_HEADER: token},
        )
        assert paid.status_code == 200
        assert paid.json()["payer"] == PAYER.lower()

    @patch("app.x402.chain.get_transaction_receipt")
    def test_recipient_mismatch_mints_no_token(self, mock_get_receipt, make_tx_receipt):
        mock_get_receipt.return_value = make_tx_receipt(to_address=OTHER)

        with patch("app.api.endpoints.x402.sign_receipt") as mock_sign:
            verified = self.client.post(
                "/api/v1/x402/verify",
                json={"txHash": TX_HASH, "chain": "base-sepolia"},
            )

        assert verified.status_code == 400
        assert verified.json() == {"ok": False, "error": "Recipient mismatch"}
        mock_sign.assert_not_called()
