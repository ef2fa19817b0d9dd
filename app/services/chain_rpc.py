# app/services/chain_rpc.py
import requests
from requests.exceptions import RequestException
import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class ChainRpcError(Exception):
    """The node answered, but with a JSON-RPC error or an unusable body."""


def _rpc_call(rpc_url: str, method: str, params: list, timeout: float) -> Any:
    """
    Perform a single JSON-RPC 2.0 call.

    Raises:
        RequestException: If the HTTP request fails or times out
        ChainRpcError: If the node returns an error or a malformed response
    """
    response = requests.post(
        rpc_url,
        json={
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": 1
        },
        timeout=timeout
    )
    response.raise_for_status()

    try:
        result = response.json()
    except ValueError as e:
        raise ChainRpcError(f"Invalid RPC response: {e}") from e

    if not isinstance(result, dict):
        raise ChainRpcError(f"Invalid RPC response: expected object, got {type(result).__name__}")

    if "error" in result:
        raise ChainRpcError(f"RPC error: {result['error']}")

    if "result" not in result:
        raise ChainRpcError("Invalid RPC response: missing 'result' field")

    return result["result"]


def get_transaction_receipt(rpc_url: str, tx_hash: str, timeout: float = 10) -> Optional[Dict[str, Any]]:
    """
    Fetch a transaction receipt from an EVM node.

    Args:
        rpc_url: JSON-RPC endpoint of the chain
        tx_hash: 0x-prefixed transaction hash
        timeout: Request timeout in seconds

    Returns:
        The receipt object, or None if the transaction is unknown or still pending.

    Raises:
        RequestException: If the HTTP request to the node fails.
        ChainRpcError: If the node returns an error or a malformed receipt.
    """
    try:
        receipt = _rpc_call(rpc_url, "eth_getTransactionReceipt", [tx_hash], timeout)
    except RequestException as e:
        logger.error(f"Error fetching receipt for {tx_hash} from {rpc_url}: {e}")
        raise

    if receipt is None:
        return None

    if not isinstance(receipt, dict):
        raise ChainRpcError(f"Unexpected receipt type: {type(receipt).__name__}")

    return receipt
