# app/x402/chain.py
"""
On-chain payment verification.

Given a transaction hash, this module asks the chain node for the transaction
receipt and decides whether it contains a USDC Transfer to the configured
recipient for at least the configured amount. Any doubt fails closed: RPC
errors, timeouts, pending or reverted transactions all yield NotConfirmed.
"""
import logging
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from requests.exceptions import RequestException

from app.core.config import X402Config
from app.services.chain_rpc import ChainRpcError, get_transaction_receipt
from app.x402.types import SUPPORTED_CHAINS, X402Receipt

logger = logging.getLogger(__name__)

# keccak256("Transfer(address,address,uint256)")
ERC20_TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"

TX_HASH_PATTERN = re.compile(r"0x[0-9a-fA-F]{64}")
STATUS_SUCCESS = "0x1"


class VerificationFailure(Enum):
    """Reasons a transaction does not qualify as payment."""
    MALFORMED_INPUT = "MalformedInput"
    NOT_CONFIRMED = "NotConfirmed"
    NO_TRANSFER_FOUND = "NoTransferFound"
    RECIPIENT_MISMATCH = "RecipientMismatch"
    AMOUNT_TOO_LOW = "AmountTooLow"


@dataclass
class VerificationResult:
    """Result of payment verification."""
    is_valid: bool
    receipt: Optional[X402Receipt] = None
    failure: Optional[VerificationFailure] = None
    reason: Optional[str] = None


def _fail(failure: VerificationFailure, reason: str) -> VerificationResult:
    return VerificationResult(is_valid=False, failure=failure, reason=reason)


def topic_to_address(topic: str) -> str:
    """Lower 20 bytes of a 32-byte indexed topic, as a lowercase address."""
    return "0x" + topic[-40:].lower()


def find_transfer_log(logs: List[Dict[str, Any]], token_address: str) -> Optional[Dict[str, Any]]:
    """
    Return the first Transfer log emitted by token_address.

    First match wins; later matching logs in the same transaction are ignored.
    """
    token = token_address.lower()
    for log in logs:
        if not isinstance(log, dict):
            continue
        address = str(log.get("address") or "").lower()
        topics = log.get("topics") or []
        if address == token and topics and str(topics[0]).lower() == ERC20_TRANSFER_TOPIC:
            return log
    return None


def verify_payment(tx_hash: str, chain: str, config: X402Config) -> VerificationResult:
    """
    Decide whether tx_hash on chain is a qualifying USDC payment.

    Args:
        tx_hash: 0x-prefixed 32-byte transaction hash
        chain: One of SUPPORTED_CHAINS
        config: Immutable payment configuration

    Returns:
        VerificationResult carrying an X402Receipt on success, or the
        failure reason otherwise.
    """
    if not isinstance(tx_hash, str) or not TX_HASH_PATTERN.fullmatch(tx_hash):
        return _fail(VerificationFailure.MALFORMED_INPUT, "Malformed txHash")
    if chain not in SUPPORTED_CHAINS:
        return _fail(VerificationFailure.MALFORMED_INPUT, f"Unsupported chain: {chain}")

    token_address = config.token_address(chain)
    rpc_url = config.rpc_url(chain)
    if not token_address or not rpc_url:
        logger.error(f"x402: No token address or RPC URL configured for {chain}")
        return _fail(VerificationFailure.NOT_CONFIRMED, "TX not confirmed")

    # 1-2. Transaction must be mined and successful
    try:
        tx_receipt = get_transaction_receipt(rpc_url, tx_hash, timeout=config.rpc_timeout_seconds)
    except (RequestException, ChainRpcError) as e:
        logger.warning(f"x402: Could not fetch receipt for {tx_hash} on {chain}: {e}")
        return _fail(VerificationFailure.NOT_CONFIRMED, "TX not confirmed")

    if tx_receipt is None or str(tx_receipt.get("status", "")).lower() != STATUS_SUCCESS:
        logger.info(f"x402: Transaction {tx_hash} not confirmed on {chain}")
        return _fail(VerificationFailure.NOT_CONFIRMED, "TX not confirmed")

    # 3-4. Locate the USDC Transfer event
    logs = tx_receipt.get("logs")
    transfer_log = find_transfer_log(logs, token_address) if isinstance(logs, list) else None
    if transfer_log is None:
        logger.info(f"x402: No USDC Transfer in {tx_hash}")
        return _fail(VerificationFailure.NO_TRANSFER_FOUND, "No USDC Transfer found")

    # 5. Decode from/to/amount
    topics = transfer_log.get("topics") or []
    if len(topics) < 3:
        logger.warning(f"x402: Transfer log in {tx_hash} has {len(topics)} topics")
        return _fail(VerificationFailure.NO_TRANSFER_FOUND, "No USDC Transfer found")

    payer = topic_to_address(str(topics[1]))
    to = topic_to_address(str(topics[2]))
    try:
        amount = int(str(transfer_log.get("data") or "0x0"), 16)
    except ValueError:
        logger.warning(f"x402: Undecodable Transfer amount in {tx_hash}")
        return _fail(VerificationFailure.NO_TRANSFER_FOUND, "No USDC Transfer found")

    # 6. Recipient
    if to != config.recipient.lower():
        logger.info(f"x402: Recipient mismatch in {tx_hash}: {to}")
        return _fail(VerificationFailure.RECIPIENT_MISMATCH, "Recipient mismatch")

    # 7. Amount, compared as arbitrary-precision ints
    if amount < int(config.amount):
        logger.info(f"x402: Amount {amount} below minimum {config.amount} in {tx_hash}")
        return _fail(VerificationFailure.AMOUNT_TOO_LOW, "Amount below minimum")

    # 8. Receipt built only from verified chain data
    receipt = X402Receipt(
        nonce=tx_hash,
        txHash=tx_hash,
        payer=payer,
        amount=str(amount),
        recipient=to,
        assetAddress=str(transfer_log["address"]),
        chain=chain,
        issuedAt=int(time.time() * 1000),
    )
    logger.info(f"x402: Verified payment of {amount} from {payer} in {tx_hash}")
    return VerificationResult(is_valid=True, receipt=receipt)
