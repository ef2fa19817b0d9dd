# app/x402/types.py
"""
Wire models for the x402 payment protocol.

Field names follow the camelCase JSON used by browser clients. Amounts are
decimal strings in token base units and are only ever compared as Python ints.
"""
import re
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

Chain = Literal["base", "base-sepolia"]
SUPPORTED_CHAINS = ("base", "base-sepolia")

X402_VERSION = "1"

BASE_UNITS_PATTERN = re.compile(r"[0-9]+")


def check_base_units(v: str) -> str:
    """Reject anything that is not a plain decimal integer string."""
    if not BASE_UNITS_PATTERN.fullmatch(v):
        raise ValueError("amount must be a decimal integer string in base units")
    return v


class X402Asset(BaseModel):
    """The token a payment must be made in."""
    type: Literal["erc20", "native"]
    symbol: Optional[str] = None
    decimals: Optional[int] = None
    address: Optional[str] = None


class PaymentRequirements(BaseModel):
    """A stateless payment offer returned with HTTP 402."""
    version: Literal["1"] = X402_VERSION
    chain: Chain
    asset: X402Asset
    amount: str = Field(..., description="Required amount in base units")
    recipient: str
    facilitator: str = Field(..., description="URL of the verification endpoint")
    expiresAt: int = Field(..., description="Offer expiry, epoch milliseconds")
    nonce: str
    sku: Optional[str] = None

    @field_validator("amount")
    @classmethod
    def amount_is_base_units(cls, v: str) -> str:
        return check_base_units(v)


class X402Receipt(BaseModel):
    """
    Claim that a verified on-chain transfer satisfies a payment.

    Field order is part of the signed serialization and must not change.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    nonce: str
    txHash: str
    payer: str
    amount: str
    recipient: str
    assetAddress: Optional[str] = None
    chain: Chain
    issuedAt: int

    @field_validator("amount")
    @classmethod
    def amount_is_base_units(cls, v: str) -> str:
        return check_base_units(v)

