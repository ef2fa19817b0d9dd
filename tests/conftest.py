# tests/conftest.py
"""
Shared fixtures for x402 gateway tests.

No test touches the network: RPC calls are patched at
app.x402.chain.get_transaction_receipt or requests.post.
"""
import time

import pytest

from app.core.config import X402Config
from app.x402.chain import ERC20_TRANSFER_TOPIC
from app.x402.types import X402Receipt

RECIPIENT = "0xD0D2e2206E44f818006ebC19F2fDB16a80a0d1fB"
USDC_BASE = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
USDC_BASE_SEPOLIA = "0x036CbD53842c5426634e7929541eC2318f3dCF7e"
PAYER = "0xAAAAaaaaAAAAaaaaAAAAaaaaAAAAaaaaAAAAaaaa"
TX_HASH = "0x" + "ab" * 32
SECRET = "test-secret"


def build_config(**overrides) -> X402Config:
    values = dict(
        recipient=RECIPIENT,
        secret=SECRET,
        chain="base-sepolia",
        token_addresses={"base": USDC_BASE, "base-sepolia": USDC_BASE_SEPOLIA},
        rpc_urls={"base": "https://base.rpc.test", "base-sepolia": "https://sepolia.rpc.test"},
        amount="1000000",
        facilitator_url="http://testserver/api/v1/x402/verify",
        offer_ttl_seconds=300,
        rpc_timeout_seconds=5,
        sku="test:sku",
        replay_protection=True,
        replay_retention_seconds=3600,
    )
    values.update(overrides)
    return X402Config(**values)


def address_topic(address: str) -> str:
    """Left-pad an address into a 32-byte indexed topic."""
    return "0x" + "0" * 24 + address[2:].lower()


@pytest.fixture
def x402_config() -> X402Config:
    return build_config()


@pytest.fixture
def make_config():
    return build_config


@pytest.fixture
def make_receipt():
    """Factory for receipts that satisfy the default config."""
    def _make(**overrides) -> X402Receipt:
        values = dict(
            nonce=TX_HASH,
            txHash=TX_HASH,
            payer=PAYER.lower(),
            amount="2000000",
            recipient=RECIPIENT.lower(),
            assetAddress=USDC_BASE_SEPOLIA,
            chain="base-sepolia",
            issuedAt=int(time.time() * 1000),
        )
        values.update(overrides)
        return X402Receipt(**values)
    return _make


@pytest.fixture
def make_tx_receipt():
    """Factory for eth_getTransactionReceipt results with one USDC Transfer log."""
    def _make(
        from_address: str = PAYER,
        to_address: str = RECIPIENT,
        amount: int = 2000000,
        token: str = USDC_BASE_SEPOLIA,
        status: str = "0x1",
        extra_logs=None,
    ) -> dict:
        logs = list(extra_logs or [])
        logs.append({
            "address": token.lower(),
            "topics": [
                ERC20_TRANSFER_TOPIC,
                address_topic(from_address),
                address_topic(to_address),
            ],
            "data": "0x" + format(amount, "064x"),
        })
        return {"transactionHash": TX_HASH, "status": status, "logs": logs}
    return _make
