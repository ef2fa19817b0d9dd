# app/api/endpoints/generate.py
from fastapi import APIRouter, Depends, Request, status
from pydantic import ValidationError
from starlette.responses import JSONResponse
import logging

from app.core.config import X402Config, get_x402_config
from app.api.models.generate import GenerateRequest, GenerateResponse
from app.services.fulfillment import fulfill_request

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "",
    response_model=GenerateResponse,
    summary="Paid generation request (x402)"
)
async def generate(request: Request, config: X402Config = Depends(get_x402_config)):
    """
    Run the priced action for a paid request.

    Payment is enforced by X402Middleware before this route runs; the
    verified receipt arrives as request.state.x402_receipt.

    Returns:
        GenerateResponse describing the accepted job

    Raises:
        400 if the prompt is missing or invalid
        402 if reached without a verified receipt
    """
    receipt = getattr(request.state, "x402_receipt", None)
    if receipt is None:
        logger.error("Generate endpoint reached without a verified receipt")
        return JSONResponse(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            content={"error": "Payment required"}
        )

    try:
        body = await request.json()
        generate_request = GenerateRequest.model_validate(body)
    except (ValueError, ValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Missing or invalid prompt."}
        )

    result = fulfill_request(generate_request.prompt, receipt, sku=config.sku)
    return GenerateResponse(**result)
