# app/x402/requirements.py
"""
Payment requirements (the offer returned with HTTP 402).

Offers are stateless: a new one is built for every unpaid or rejected request
and thrown away once the response is sent. Everything except nonce, expiresAt
and facilitator comes straight from configuration, so two offers built moments
apart compare equal on chain, asset, amount and recipient.
"""
import time
import uuid
from typing import Optional

from app.core.config import X402Config
from app.x402.types import PaymentRequirements, X402Asset, X402_VERSION

USDC_SYMBOL = "USDC"
USDC_DECIMALS = 6


def build_requirements(config: X402Config, now: Optional[float] = None) -> PaymentRequirements:
    """
    Build a fresh payment offer.

    Args:
        config: Immutable payment configuration
        now: Current time in seconds (defaults to time.time())

    Returns:
        PaymentRequirements with a new random nonce, expiring
        config.offer_ttl_seconds from now
    """
    if now is None:
        now = time.time()

    return PaymentRequirements(
        version=X402_VERSION,
        chain=config.chain,
        asset=X402Asset(
            type="erc20",
            symbol=USDC_SYMBOL,
            decimals=USDC_DECIMALS,
            address=config.token_address(config.chain),
        ),
        amount=config.amount,
        recipient=config.recipient,
        facilitator=config.facilitator_url,
        expiresAt=int((now + config.offer_ttl_seconds) * 1000),
        nonce=str(uuid.uuid4()),
        sku=config.sku,
    )
