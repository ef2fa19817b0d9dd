# app/x402/__init__.py
"""
x402 Payment Protocol Module.

Gates paid endpoints behind an on-chain USDC payment, proven by a signed
receipt carried in the X-PAYMENT header.

Key components:
- requirements: Payment offers returned with HTTP 402
- chain: On-chain verification of USDC Transfer events
- receipts: HMAC-signed receipt tokens
- gate: Per-request decision (offer, reject, or grant)
- replay: Consumed-receipt tracking (one payment, one call)
- middleware: FastAPI middleware mounting the gate on protected endpoints
- audit: Payment event audit log

Configuration is loaded from environment variables via app.core.config.
"""

__version__ = "0.1.0"
