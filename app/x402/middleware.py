# app/x402/middleware.py
"""
FastAPI middleware for x402 receipt verification.

This module provides HTTP middleware that:
1. Intercepts requests to protected endpoints
2. Returns 402 Payment Required with a fresh offer when no receipt is sent
3. Verifies the signed receipt in the X-PAYMENT header
4. Rejects receipts that do not satisfy the current offer, by named reason
5. Passes paid requests through and releases the receipt if they fail
"""
import base64
import json
import logging
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from app.core.config import get_x402_config
from app.x402 import audit
from app.x402.gate import GateDecision, GateFailure, ResourceGate
from app.x402.replay import ConsumedReceiptStore
from app.x402.types import X402Receipt, X402_VERSION

logger = logging.getLogger(__name__)

X_PAYMENT_HEADER = "X-PAYMENT"
X_PAYMENT_RESPONSE_HEADER = "X-PAYMENT-RESPONSE"

# Protected endpoints configuration
PROTECTED_ENDPOINTS = [
    ("POST", "/api/v1/generate"),
]


def is_protected_endpoint(method: str, path: str) -> bool:
    """Check if the request matches a protected endpoint."""
    for protected_method, protected_path in PROTECTED_ENDPOINTS:
        if method == protected_method and path.rstrip("/").startswith(protected_path.rstrip("/")):
            return True
    return False


def get_client_ip(request: Request) -> str:
    """Extract client IP from request, handling proxies."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    if request.client:
        return request.client.host

    return "unknown"


def create_default_gate() -> ResourceGate:
    """Build the gate from process configuration."""
    config = get_x402_config()
    replay_store = None
    if config.replay_protection:
        replay_store = ConsumedReceiptStore(retention_seconds=config.replay_retention_seconds)
    return ResourceGate(config, replay_store=replay_store)


def create_402_response(decision: GateDecision) -> JSONResponse:
    """
    Create an HTTP 402 Payment Required response for a denied request.

    No receipt gets the bare offer; anything else also carries the error
    text, and content mismatches add the machine-readable reason.
    """
    requirements = decision.requirements.model_dump()

    if decision.failure is GateFailure.PAYMENT_REQUIRED:
        content = {"version": X402_VERSION, "requirements": requirements}
    elif decision.failure is GateFailure.INVALID_RECEIPT:
        content = {"error": decision.error, "requirements": requirements}
    else:
        content = {
            "error": decision.error,
            "reason": decision.failure.value,
            "requirements": requirements,
        }

    return JSONResponse(status_code=402, content=content)


def encode_payment_response(receipt: X402Receipt) -> str:
    """
    Encode the accepted payment for the X-PAYMENT-RESPONSE header.

    Returns:
        URL-safe base64 JSON with the transaction, payer and chain
    """
    body = {
        "success": True,
        "txHash": receipt.txHash,
        "payer": receipt.payer,
        "chain": receipt.chain,
    }
    raw = json.dumps(body, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


class X402Middleware(BaseHTTPMiddleware):
    """
    x402 receipt verification middleware for FastAPI.

    Protected requests reach the route only with a valid, unused receipt
    that satisfies the current offer. The verified receipt is exposed to
    the route as request.state.x402_receipt.
    """

    def __init__(self, app, gate: Optional[ResourceGate] = None):
        super().__init__(app)
        self._gate = gate

    @property
    def gate(self) -> ResourceGate:
        """Lazy initialization of the resource gate."""
        if self._gate is None:
            self._gate = create_default_gate()
        return self._gate

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Response]
    ) -> Response:
        if not is_protected_endpoint(request.method, request.url.path):
            return await call_next(request)

        client_ip = get_client_ip(request)
        logger.info(f"x402: Processing protected request from {client_ip}: {request.method} {request.url.path}")

        token = request.headers.get(X_PAYMENT_HEADER)

        try:
            decision = self.gate.evaluate(token)
        except Exception as e:
            logger.error(f"x402: Receipt evaluation failed: {e}", exc_info=True)
            audit.log_error(client_ip, "gate_error", str(e), {"path": request.url.path})
            return JSONResponse(
                status_code=500,
                content={"error": "Unexpected server error occurred."}
            )

        if not decision.granted:
            receipt = decision.receipt
            if decision.failure is not GateFailure.PAYMENT_REQUIRED:
                audit.log_receipt_rejected(
                    client_ip,
                    reason=decision.failure.value,
                    tx_hash=receipt.txHash if receipt else None,
                    wallet_address=receipt.payer if receipt else None,
                )
            audit.log_payment_required_sent(
                client_ip,
                reason=decision.failure.value,
                amount=decision.requirements.amount,
                chain=decision.requirements.chain,
                recipient=decision.requirements.recipient,
                resource=request.url.path,
            )
            logger.info(f"x402: Returning 402 ({decision.failure.value}) to {client_ip}")
            return create_402_response(decision)

        receipt = decision.receipt
        request.state.x402_receipt = receipt

        try:
            response = await call_next(request)
        except Exception:
            self.gate.release(receipt)
            raise

        if not 200 <= response.status_code < 300:
            logger.warning(
                f"x402: Protected action returned {response.status_code}, "
                f"releasing receipt {receipt.txHash}"
            )
            self.gate.release(receipt)
            return response

        audit.log_payment_accepted(
            client_ip,
            payer=receipt.payer,
            tx_hash=receipt.txHash,
            amount=receipt.amount,
            resource=request.url.path,
        )
        response.headers[X_PAYMENT_RESPONSE_HEADER] = encode_payment_response(receipt)
        return response
