# app/api/models/x402.py
from pydantic import BaseModel, Field
from typing import Optional

from app.x402.types import Chain, X402Receipt


class VerifyRequest(BaseModel):
    """Request model for exchanging a payment transaction for a signed receipt."""
    txHash: str = Field(
        ...,
        pattern=r"^0x[0-9a-fA-F]{64}$",
        description="Hash of the USDC transfer transaction",
        examples=["0x" + "ab" * 32]
    )
    chain: Chain = Field(..., description="Network the transaction was sent on", examples=["base-sepolia"])


class VerifyResponse(BaseModel):
    """
    Response model for the verification endpoint.

    On success, `token` goes into the X-PAYMENT header of the paid request.
    """
    ok: bool
    token: Optional[str] = Field(None, description="Signed receipt token")
    receipt: Optional[X402Receipt] = Field(None, description="The receipt the token carries")
    error: Optional[str] = Field(None, description="Why verification failed")
