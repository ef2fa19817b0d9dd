# app/core/config.py
import logging
import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Optional

from pydantic_settings import BaseSettings
from pydantic import AnyHttpUrl, field_validator
from functools import lru_cache
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_APP_SECRET = "dev-secret"


class Settings(BaseSettings):
    PROJECT_NAME: str = "x402 Payment Gateway"
    API_V1_STR: str = "/api/v1"
    PUBLIC_URL: AnyHttpUrl = "http://localhost:8000"

    # Payment destination and receipt signing
    RECEIVING_WALLET_ADDRESS: str = "0xD0D2e2206E44f818006ebC19F2fDB16a80a0d1fB"
    X402_APP_SECRET: str = DEFAULT_APP_SECRET

    # Network and asset
    X402_CHAIN: str = "base-sepolia"
    USDC_ADDRESS_BASE: str = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
    USDC_ADDRESS_BASE_SEPOLIA: str = "0x036CbD53842c5426634e7929541eC2318f3dCF7e"
    BASE_RPC_URL: str = "https://mainnet.base.org"
    BASE_SEPOLIA_RPC_URL: str = "https://sepolia.base.org"
    X402_RPC_TIMEOUT_SECONDS: float = 10.0

    # Offer
    X402_AMOUNT: str = "1000000"  # 1 USDC (6 decimals)
    X402_FACILITATOR_URL: Optional[str] = None
    X402_OFFER_TTL_SECONDS: int = 300  # 5 minutes
    X402_SKU: str = "cardify:image:forge-v1"

    # Replay protection (one payment buys one call)
    X402_REPLAY_PROTECTION: bool = True
    X402_REPLAY_RETENTION_SECONDS: int = 86400

    # Audit log
    X402_AUDIT_ENABLED: bool = False
    X402_AUDIT_LOG_PATH: str = "logs/x402_audit.jsonl"

    @field_validator("X402_AMOUNT")
    @classmethod
    def amount_is_base_units(cls, v: str) -> str:
        v = v.strip()
        if not re.fullmatch(r"[0-9]+", v):
            raise ValueError("X402_AMOUNT must be a non-negative integer in base units")
        return v

    @field_validator("X402_CHAIN")
    @classmethod
    def chain_is_supported(cls, v: str) -> str:
        if v not in ("base", "base-sepolia"):
            raise ValueError("X402_CHAIN must be 'base' or 'base-sepolia'")
        return v

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields from .env

@lru_cache() # Cache the settings object for performance
def get_settings() -> Settings:
    return Settings()

settings = get_settings()


@dataclass(frozen=True)
class X402Config:
    """
    Immutable payment configuration handed to the x402 core.

    Built once per process from Settings; the verification code never reads
    environment or module-level settings itself.
    """
    recipient: str
    secret: str
    chain: str
    token_addresses: Mapping[str, str]
    rpc_urls: Mapping[str, str]
    amount: str
    facilitator_url: str
    offer_ttl_seconds: int = 300
    rpc_timeout_seconds: float = 10.0
    sku: Optional[str] = None
    replay_protection: bool = True
    replay_retention_seconds: int = 86400

    def __post_init__(self):
        # Read-only views so the cached instance cannot be mutated in place
        object.__setattr__(self, "token_addresses", MappingProxyType(dict(self.token_addresses)))
        object.__setattr__(self, "rpc_urls", MappingProxyType(dict(self.rpc_urls)))

    def token_address(self, chain: str) -> Optional[str]:
        """Expected USDC contract for a chain, or None if unsupported."""
        return self.token_addresses.get(chain)

    def rpc_url(self, chain: str) -> Optional[str]:
        return self.rpc_urls.get(chain)


def build_x402_config(s: Settings) -> X402Config:
    """Convert Settings into the immutable X402Config."""
    if s.X402_APP_SECRET == DEFAULT_APP_SECRET:
        logger.warning("X402_APP_SECRET not configured, using insecure development secret")

    facilitator_url = s.X402_FACILITATOR_URL or (
        f"{str(s.PUBLIC_URL).rstrip('/')}{s.API_V1_STR}/x402/verify"
    )

    # Consumed receipts must outlive any offer they could answer
    retention = max(s.X402_REPLAY_RETENTION_SECONDS, s.X402_OFFER_TTL_SECONDS)

    return X402Config(
        recipient=s.RECEIVING_WALLET_ADDRESS,
        secret=s.X402_APP_SECRET,
        chain=s.X402_CHAIN,
        token_addresses={
            "base": s.USDC_ADDRESS_BASE,
            "base-sepolia": s.USDC_ADDRESS_BASE_SEPOLIA,
        },
        rpc_urls={
            "base": s.BASE_RPC_URL,
            "base-sepolia": s.BASE_SEPOLIA_RPC_URL,
        },
        amount=s.X402_AMOUNT,
        facilitator_url=facilitator_url,
        offer_ttl_seconds=s.X402_OFFER_TTL_SECONDS,
        rpc_timeout_seconds=s.X402_RPC_TIMEOUT_SECONDS,
        sku=s.X402_SKU or None,
        replay_protection=s.X402_REPLAY_PROTECTION,
        replay_retention_seconds=retention,
    )


@lru_cache()
def get_x402_config() -> X402Config:
    return build_x402_config(settings)
