# app/api/endpoints/x402.py
from fastapi import APIRouter, Depends, Request, status
from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError
from starlette.responses import JSONResponse
import logging

from app.core.config import X402Config, get_x402_config
from app.api.models.x402 import VerifyRequest, VerifyResponse
from app.x402 import audit
from app.x402.chain import verify_payment
from app.x402.middleware import get_client_ip
from app.x402.receipts import sign_receipt

logger = logging.getLogger(__name__)

router = APIRouter()


def _error(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=VerifyResponse(ok=False, error=message).model_dump(exclude_none=True)
    )


@router.post(
    "/verify",
    response_model=VerifyResponse,
    response_model_exclude_none=True,
    summary="Exchange a USDC payment for a signed receipt"
)
async def verify(request: Request, config: X402Config = Depends(get_x402_config)):
    """
    Verify an on-chain USDC payment and issue a signed receipt.

    The caller submits the hash of its transfer transaction. The node is
    queried for the transaction receipt; if it holds a Transfer of at least
    the configured amount to the configured recipient, a signed token is
    returned for use in the X-PAYMENT header.

    Returns:
        VerifyResponse: ok=True with token and receipt

    Raises:
        400 with ok=False and an error message for malformed input or any
        verification failure
    """
    client_ip = get_client_ip(request)

    try:
        body = await request.json()
    except (ValueError, RecursionError):
        return _error("Invalid JSON")

    if not isinstance(body, dict) or not body.get("txHash") or not body.get("chain"):
        return _error("Missing txHash/chain")

    try:
        verify_request = VerifyRequest.model_validate(body)
    except ValidationError as e:
        logger.info(f"x402: Rejected malformed verify request from {client_ip}: {e.error_count()} errors")
        return _error("Invalid txHash/chain")

    # Blocking RPC call, keep it off the event loop
    result = await run_in_threadpool(
        verify_payment, verify_request.txHash, verify_request.chain, config
    )

    if not result.is_valid:
        audit.log_verification_failed(
            client_ip,
            tx_hash=verify_request.txHash,
            chain=verify_request.chain,
            reason=result.failure.value,
        )
        return _error(result.reason)

    receipt = result.receipt
    token = sign_receipt(receipt, config.secret)
    audit.log_receipt_issued(
        client_ip,
        payer=receipt.payer,
        tx_hash=receipt.txHash,
        amount=receipt.amount,
        chain=receipt.chain,
    )
    logger.info(f"x402: Issued receipt for {receipt.txHash} to {client_ip}")
    return VerifyResponse(ok=True, token=token, receipt=receipt)
