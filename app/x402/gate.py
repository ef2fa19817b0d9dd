# app/x402/gate.py
"""
Resource gate: decides, per request, whether a paid action may run.

Every request is judged only on the receipt token it carries:

- no token          -> PaymentRequired, with a fresh offer
- invalid token     -> InvalidReceipt, with a fresh offer
- valid token       -> compared to a fresh offer; any mismatch is reported by
                       name, otherwise the action runs

Nothing carries over between requests except the optional consumed-receipt
store.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from app.core.config import X402Config
from app.x402.receipts import verify_receipt
from app.x402.replay import ConsumedReceiptStore
from app.x402.requirements import build_requirements
from app.x402.types import PaymentRequirements, X402Receipt

logger = logging.getLogger(__name__)


class GateFailure(Enum):
    """Why a request was not granted. Values double as the wire reason."""
    PAYMENT_REQUIRED = "PaymentRequired"
    INVALID_RECEIPT = "InvalidReceipt"
    CHAIN_MISMATCH = "ChainMismatch"
    RECIPIENT_MISMATCH = "RecipientMismatch"
    ASSET_MISMATCH = "AssetMismatch"
    AMOUNT_BELOW_REQUIRED = "AmountBelowRequired"
    RECEIPT_REPLAYED = "ReceiptReplayed"


FAILURE_MESSAGES = {
    GateFailure.PAYMENT_REQUIRED: "Payment required",
    GateFailure.INVALID_RECEIPT: "Invalid payment receipt.",
    GateFailure.CHAIN_MISMATCH: "Chain mismatch",
    GateFailure.RECIPIENT_MISMATCH: "Recipient mismatch",
    GateFailure.ASSET_MISMATCH: "Asset mismatch",
    GateFailure.AMOUNT_BELOW_REQUIRED: "Amount below required",
    GateFailure.RECEIPT_REPLAYED: "Payment receipt already used",
}


@dataclass
class GateDecision:
    """Verdict on a single request."""
    granted: bool
    receipt: Optional[X402Receipt] = None
    failure: Optional[GateFailure] = None
    requirements: Optional[PaymentRequirements] = None

    @property
    def error(self) -> Optional[str]:
        return FAILURE_MESSAGES[self.failure] if self.failure else None


@dataclass
class GateOutcome:
    """A decision plus the protected action's result when it ran."""
    decision: GateDecision
    result: Any = None

    @property
    def granted(self) -> bool:
        return self.decision.granted


def _same_address(a: Optional[str], b: Optional[str]) -> bool:
    return bool(a) and bool(b) and a.lower() == b.lower()


def match_receipt(receipt: X402Receipt, requirements: PaymentRequirements) -> Optional[GateFailure]:
    """
    Compare a verified receipt with an offer.

    Returns:
        The first mismatch found, or None if the receipt satisfies the offer.
    """
    if receipt.chain != requirements.chain:
        return GateFailure.CHAIN_MISMATCH
    if not _same_address(receipt.recipient, requirements.recipient):
        return GateFailure.RECIPIENT_MISMATCH
    if not _same_address(receipt.assetAddress, requirements.asset.address):
        return GateFailure.ASSET_MISMATCH
    if int(receipt.amount) < int(requirements.amount):
        return GateFailure.AMOUNT_BELOW_REQUIRED
    return None


class ResourceGate:
    """
    Orchestrates receipt verification and offer matching for one resource.
    """

    def __init__(self, config: X402Config, replay_store: Optional[ConsumedReceiptStore] = None):
        """
        Args:
            config: Immutable payment configuration
            replay_store: Consumed-receipt store; None disables replay checks
        """
        self._config = config
        self._replay_store = replay_store

    @property
    def config(self) -> X402Config:
        return self._config

    @property
    def replay_store(self) -> Optional[ConsumedReceiptStore]:
        return self._replay_store

    def _deny(self, failure: GateFailure, receipt: Optional[X402Receipt] = None) -> GateDecision:
        return GateDecision(
            granted=False,
            receipt=receipt,
            failure=failure,
            requirements=build_requirements(self._config),
        )

    def evaluate(self, token: Optional[str]) -> GateDecision:
        """
        Judge a request by its receipt token.

        A granted decision has already claimed the receipt in the replay
        store; call release() if the action then fails.
        """
        if not token:
            return self._deny(GateFailure.PAYMENT_REQUIRED)

        verification = verify_receipt(token, self._config.secret)
        if not verification.ok or verification.receipt is None:
            logger.warning("x402: Rejected invalid payment receipt")
            return self._deny(GateFailure.INVALID_RECEIPT)

        receipt = verification.receipt
        requirements = build_requirements(self._config)
        mismatch = match_receipt(receipt, requirements)
        if mismatch is not None:
            logger.warning(f"x402: Receipt {receipt.txHash} rejected: {mismatch.value}")
            return GateDecision(granted=False, receipt=receipt, failure=mismatch, requirements=requirements)

        if self._replay_store is not None and not self._replay_store.claim(receipt.txHash):
            return self._deny(GateFailure.RECEIPT_REPLAYED, receipt)

        logger.info(f"x402: Receipt {receipt.txHash} accepted for payer {receipt.payer}")
        return GateDecision(granted=True, receipt=receipt)

    def release(self, receipt: X402Receipt) -> None:
        """Return a claimed receipt to the unused state."""
        if self._replay_store is not None:
            self._replay_store.release(receipt.txHash)

    async def handle_request(
        self,
        token: Optional[str],
        action: Callable[[X402Receipt], Awaitable[Any]],
    ) -> GateOutcome:
        """
        Evaluate a request and run the protected action only if it is granted.

        Args:
            token: Receipt token from the request, if any
            action: Coroutine function invoked with the verified receipt

        Returns:
            GateOutcome with the action's result when granted
        """
        decision = self.evaluate(token)
        if not decision.granted:
            return GateOutcome(decision=decision)

        try:
            result = await action(decision.receipt)
        except Exception:
            self.release(decision.receipt)
            raise
        return GateOutcome(decision=decision, result=result)
