# app/x402/receipts.py
"""
Signed payment receipts.

A receipt is HMAC-signed and carried in the X-PAYMENT header as URL-safe,
unpadded base64 of {"r": receipt, "s": signature, "alg": "sha256"}. Tokens give
integrity and authenticity only: anyone holding one can read it, and nothing
here stops it being presented twice (see app.x402.replay).
"""
import base64
import binascii
import hashlib
import hmac
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from pydantic import ValidationError

from app.x402.types import X402Receipt

logger = logging.getLogger(__name__)

ALGORITHM = "sha256"

_TOKEN_PATTERN = re.compile(r"[A-Za-z0-9_-]+")


@dataclass
class ReceiptVerification:
    """Outcome of verifying a receipt token."""
    ok: bool
    receipt: Optional[X402Receipt] = None


INVALID = ReceiptVerification(ok=False)


def serialize_receipt(receipt: Dict[str, Any]) -> bytes:
    """Compact JSON in the dict's own key order. These are the signed bytes."""
    return json.dumps(receipt, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def _hmac_hex(payload: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64url_decode(token: str) -> bytes:
    padding = "=" * (-len(token) % 4)
    return base64.urlsafe_b64decode(token + padding)


def sign_receipt(receipt: X402Receipt, secret: str) -> str:
    """
    Sign a receipt and encode it as a transport-safe token.

    Args:
        receipt: Receipt built from verified chain data
        secret: Shared HMAC secret

    Returns:
        URL-safe, padding-free base64 token
    """
    body = receipt.model_dump()
    signature = _hmac_hex(serialize_receipt(body), secret)
    envelope = {"r": body, "s": signature, "alg": ALGORITHM}
    return _b64url_encode(json.dumps(envelope, separators=(",", ":")).encode("utf-8"))


def decode_envelope(token: Any) -> Optional[Dict[str, Any]]:
    """
    Decode a token into its envelope, validating shape before anything is trusted.

    Returns:
        The envelope dict with "r" (dict), "s" (str) and "alg" (str), or None
        if the token is not one.
    """
    if not isinstance(token, str) or not _TOKEN_PATTERN.fullmatch(token):
        return None

    try:
        envelope = json.loads(_b64url_decode(token).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError, RecursionError):
        return None

    if not isinstance(envelope, dict):
        return None
    if not isinstance(envelope.get("r"), dict):
        return None
    if not isinstance(envelope.get("s"), str) or not isinstance(envelope.get("alg"), str):
        return None
    return envelope


def verify_receipt(token: str, secret: str) -> ReceiptVerification:
    """
    Verify a receipt token.

    Every failure (undecodable token, unknown algorithm, bad signature, bad
    receipt shape) collapses into the same invalid result.
    """
    envelope = decode_envelope(token)
    if envelope is None:
        logger.debug("x402: Receipt token could not be decoded")
        return INVALID

    if envelope["alg"] != ALGORITHM:
        logger.debug(f"x402: Unsupported receipt algorithm {envelope['alg']!r}")
        return INVALID

    expected = _hmac_hex(serialize_receipt(envelope["r"]), secret)
    if not hmac.compare_digest(expected.encode("ascii"), envelope["s"].encode("utf-8")):
        logger.debug("x402: Receipt signature mismatch")
        return INVALID

    try:
        receipt = X402Receipt.model_validate(envelope["r"])
    except ValidationError as e:
        logger.warning(f"x402: Signed receipt failed validation: {e}")
        return INVALID

    return ReceiptVerification(ok=True, receipt=receipt)
