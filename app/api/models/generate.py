# app/api/models/generate.py
from pydantic import BaseModel, Field
from typing import Optional


class GenerateRequest(BaseModel):
    """Request model for the paid generation endpoint."""
    prompt: str = Field(..., min_length=1, description="What to generate", examples=["a holographic dragon card"])


class GenerateResponse(BaseModel):
    """Response model for a fulfilled paid request."""
    fulfillmentId: str = Field(..., description="Identifier of this fulfilment")
    prompt: str
    sku: Optional[str] = Field(None, description="Product that was paid for")
    payer: str = Field(..., description="Wallet that paid")
    txHash: str = Field(..., description="Payment transaction")
    status: str = Field(default="accepted")
