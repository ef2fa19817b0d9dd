# app/services/fulfillment.py
import logging
import uuid
from typing import Any, Dict, Optional

from app.x402.types import X402Receipt

logger = logging.getLogger(__name__)


def fulfill_request(prompt: str, receipt: X402Receipt, sku: Optional[str] = None) -> Dict[str, Any]:
    """
    Run the priced action for a paid request.

    Only called after the receipt has passed the x402 gate. Content
    generation lives downstream; this records what was paid for and by whom.

    Args:
        prompt: The caller's request payload
        receipt: Verified payment receipt
        sku: Product identifier from the offer

    Returns:
        Dict describing the accepted job
    """
    fulfillment_id = str(uuid.uuid4())
    logger.info(f"Fulfilling {fulfillment_id} for payer {receipt.payer} (tx {receipt.txHash})")
    return {
        "fulfillmentId": fulfillment_id,
        "prompt": prompt,
        "sku": sku,
        "payer": receipt.payer,
        "txHash": receipt.txHash,
        "status": "accepted",
    }
