# app/x402/audit.py
"""
Audit logging for x402 payments.

Every payment decision is recorded for dispute resolution and reconciliation:
offers sent, receipts issued, verification failures, receipts rejected at the
gate, and payments accepted.

Log format: JSON lines (one event per line)
Log location: X402_AUDIT_LOG_PATH, written only when X402_AUDIT_ENABLED.
"""
import json
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Any, Optional
from enum import Enum

from app.core.config import settings

logger = logging.getLogger(__name__)


class AuditEventType(Enum):
    """Types of audit events that can be logged."""
    PAYMENT_REQUIRED_SENT = "payment_required_sent"
    RECEIPT_ISSUED = "receipt_issued"
    VERIFICATION_FAILED = "verification_failed"
    RECEIPT_REJECTED = "receipt_rejected"
    PAYMENT_ACCEPTED = "payment_accepted"
    ERROR = "error"


def generate_request_id() -> str:
    """Generate a unique request ID for tracking."""
    return str(uuid.uuid4())[:8]


def get_audit_log_path() -> Path:
    """Get the path to the audit log file."""
    return Path(settings.X402_AUDIT_LOG_PATH)


def create_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    client_ip: Optional[str] = None,
    wallet_address: Optional[str] = None,
    request_id: Optional[str] = None
) -> Dict[str, Any]:
    """
    Create an audit event dictionary.

    Args:
        event_type: Type of event to log
        data: Event-specific data
        client_ip: Client IP address (if available)
        wallet_address: Payer wallet address (if available)
        request_id: Unique request identifier (if available)
    """
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type.value,
        "request_id": request_id or generate_request_id(),
        "client_ip": client_ip,
        "wallet_address": wallet_address,
        "data": data
    }


def log_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    client_ip: Optional[str] = None,
    wallet_address: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """
    Append an event to the audit log.

    Returns:
        The request_id used for this event, or None if auditing is disabled
        or the write failed
    """
    if not settings.X402_AUDIT_ENABLED:
        return None

    event = create_audit_event(
        event_type=event_type,
        data=data,
        client_ip=client_ip,
        wallet_address=wallet_address,
        request_id=request_id
    )

    try:
        log_path = get_audit_log_path()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(log_path, "a") as f:
            f.write(json.dumps(event) + "\n")

        logger.debug(f"Audit event logged: {event_type.value} [{event['request_id']}]")
        return event["request_id"]

    except OSError as e:
        logger.error(f"Failed to write audit event: {e}")
        return None


def log_payment_required_sent(
    client_ip: str,
    reason: str,
    amount: str,
    chain: str,
    recipient: str,
    resource: str,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a 402 Payment Required response event."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_REQUIRED_SENT,
        data={
            "reason": reason,
            "amount": amount,
            "chain": chain,
            "recipient": recipient,
            "resource": resource,
        },
        client_ip=client_ip,
        request_id=request_id
    )


def log_receipt_issued(
    client_ip: str,
    payer: str,
    tx_hash: str,
    amount: str,
    chain: str,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a receipt minted by the verification endpoint."""
    return log_audit_event(
        event_type=AuditEventType.RECEIPT_ISSUED,
        data={
            "tx_hash": tx_hash,
            "amount": amount,
            "chain": chain,
        },
        client_ip=client_ip,
        wallet_address=payer,
        request_id=request_id
    )


def log_verification_failed(
    client_ip: str,
    tx_hash: Optional[str],
    chain: Optional[str],
    reason: str,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log an on-chain verification failure."""
    return log_audit_event(
        event_type=AuditEventType.VERIFICATION_FAILED,
        data={
            "tx_hash": tx_hash,
            "chain": chain,
            "reason": reason,
        },
        client_ip=client_ip,
        request_id=request_id
    )


def log_receipt_rejected(
    client_ip: str,
    reason: str,
    tx_hash: Optional[str] = None,
    wallet_address: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a receipt turned away at the gate."""
    return log_audit_event(
        event_type=AuditEventType.RECEIPT_REJECTED,
        data={
            "reason": reason,
            "tx_hash": tx_hash,
        },
        client_ip=client_ip,
        wallet_address=wallet_address,
        request_id=request_id
    )


def log_payment_accepted(
    client_ip: str,
    payer: str,
    tx_hash: str,
    amount: str,
    resource: str,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a receipt that unlocked the protected resource."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_ACCEPTED,
        data={
            "tx_hash": tx_hash,
            "amount": amount,
            "resource": resource,
        },
        client_ip=client_ip,
        wallet_address=payer,
        request_id=request_id
    )


def log_error(
    client_ip: str,
    error_type: str,
    error_message: str,
    context: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log an error event."""
    return log_audit_event(
        event_type=AuditEventType.ERROR,
        data={
            "error_type": error_type,
            "error_message": error_message,
            "context": context or {},
        },
        client_ip=client_ip,
        request_id=request_id
    )


def read_audit_log(
    max_entries: int = 100,
    event_type: Optional[AuditEventType] = None,
    client_ip: Optional[str] = None
) -> list:
    """
    Read entries from the audit log.

    Args:
        max_entries: Maximum number of entries to return
        event_type: Filter by event type (optional)
        client_ip: Filter by client IP (optional)

    Returns:
        List of audit events (most recent first)
    """
    log_path = get_audit_log_path()
    if not log_path.exists():
        return []

    events = []
    try:
        with open(log_path, "r") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    event = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if event_type and event.get("event_type") != event_type.value:
                    continue
                if client_ip and event.get("client_ip") != client_ip:
                    continue
                events.append(event)
    except OSError as e:
        logger.error(f"Failed to read audit log: {e}")
        return []

    return list(reversed(events))[:max_entries]
