# app/x402/audit.py
"""
Audit logging for x402 payments.

This module logs every payment decision the facilitator makes for:
- Dispute resolution
- Financial reconciliation
- Debugging failed settlements

Log format: JSON lines (one event per line)
Log location: Configured via X402_AUDIT_LOG_PATH (disable with X402_AUDIT_ENABLED=false)

Events logged:
- 402 returned (resource, price, recipient)
- Payment received (network, declared payer)
- Payment verified (valid/invalid, reason, amount)
- Payment settled (signature, network)
- Payment failed (stage, reason, signature if known)
- Receipt stored (signature, expiry)
- Backend relayed (status, settled or not)
- Error (type, context)

Writing never raises: a broken audit log must not fail a payment.
"""
import json
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from app.core.config import settings

logger = logging.getLogger(__name__)


class AuditEventType(Enum):
    """Types of audit events that can be logged."""
    PAYMENT_REQUIRED_SENT = "payment_required_sent"
    PAYMENT_RECEIVED = "payment_received"
    PAYMENT_VERIFIED = "payment_verified"
    PAYMENT_SETTLED = "payment_settled"
    PAYMENT_FAILED = "payment_failed"
    RECEIPT_STORED = "receipt_stored"
    BACKEND_RELAYED = "backend_relayed"
    ERROR = "error"


def generate_request_id() -> str:
    """Generate a unique request ID for tracking."""
    return str(uuid.uuid4())[:8]


def get_audit_log_path() -> Path:
    """Get the path to the audit log file."""
    return Path(settings.X402_AUDIT_LOG_PATH)


def ensure_audit_log_directory() -> bool:
    """
    Ensure the audit log directory exists.

    Returns:
        True if directory exists or was created, False on error
    """
    try:
        log_dir = get_audit_log_path().parent
        if not log_dir.exists():
            log_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created audit log directory: {log_dir}")
        return True
    except OSError as e:
        logger.error(f"Failed to create audit log directory: {e}")
        return False


def create_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    resource_path: Optional[str] = None,
    payer: Optional[str] = None,
    request_id: Optional[str] = None
) -> Dict[str, Any]:
    """
    Create an audit event dictionary.

    Args:
        event_type: Type of event to log
        data: Event-specific data
        resource_path: Requested resource path (if available)
        payer: Paying wallet address (if known)
        request_id: Unique request identifier (if available)

    Returns:
        A structured event ready to be written to the audit log
    """
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type.value,
        "request_id": request_id or generate_request_id(),
        "resource_path": resource_path,
        "payer": payer,
        "data": data
    }


def log_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    resource_path: Optional[str] = None,
    payer: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """
    Append an audit event to the x402 audit log.

    Returns:
        The request_id used for this event, or None if auditing is disabled
        or the write failed
    """
    if not settings.X402_AUDIT_ENABLED:
        return None

    event = create_audit_event(
        event_type=event_type,
        data=data,
        resource_path=resource_path,
        payer=payer,
        request_id=request_id
    )

    try:
        ensure_audit_log_directory()
        with open(get_audit_log_path(), "a") as f:
            f.write(json.dumps(event) + "\n")

        logger.debug(f"Audit event logged: {event_type.value} [{event['request_id']}]")
        return event["request_id"]

    except (OSError, TypeError, ValueError) as e:
        logger.error(f"Failed to write audit event: {e}")
        return None


# Convenience functions for specific event types

def log_payment_required_sent(
    resource_path: str,
    resource_url: str,
    price: int,
    network: str,
    pay_to: str,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a 402 Payment Required response event."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_REQUIRED_SENT,
        data={
            "resource": resource_url,
            "price_lamports": price,
            "network": network,
            "pay_to": pay_to,
        },
        resource_path=resource_path,
        request_id=request_id
    )


def log_payment_received(
    resource_path: str,
    network: str,
    required_amount: int,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a payment header received event."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_RECEIVED,
        data={
            "network": network,
            "required_lamports": required_amount,
        },
        resource_path=resource_path,
        request_id=request_id
    )


def log_payment_verified(
    resource_path: str,
    payer: Optional[str],
    is_valid: bool,
    amount: Optional[int] = None,
    invalid_reason: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a payment verification event."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_VERIFIED,
        data={
            "is_valid": is_valid,
            "amount_lamports": amount,
            "invalid_reason": invalid_reason,
        },
        resource_path=resource_path,
        payer=payer,
        request_id=request_id
    )


def log_payment_settled(
    resource_path: str,
    payer: str,
    signature: str,
    network: str,
    amount: int,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a payment settlement event."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_SETTLED,
        data={
            "signature": signature,
            "network": network,
            "amount_lamports": amount,
        },
        resource_path=resource_path,
        payer=payer,
        request_id=request_id
    )


def log_payment_failed(
    resource_path: str,
    reason: str,
    stage: str,
    payer: Optional[str] = None,
    signature: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a payment failure event."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_FAILED,
        data={
            "reason": reason,
            "stage": stage,
            "signature": signature,
        },
        resource_path=resource_path,
        payer=payer,
        request_id=request_id
    )


def log_receipt_stored(
    resource_path: str,
    payer: str,
    signature: str,
    expires_at: float,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a receipt stored event."""
    return log_audit_event(
        event_type=AuditEventType.RECEIPT_STORED,
        data={
            "signature": signature,
            "expires_at": datetime.fromtimestamp(expires_at, timezone.utc).isoformat(),
        },
        resource_path=resource_path,
        payer=payer,
        request_id=request_id
    )


def log_backend_relayed(
    resource_path: str,
    method: str,
    status_code: int,
    settled: bool,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a backend relay event."""
    return log_audit_event(
        event_type=AuditEventType.BACKEND_RELAYED,
        data={
            "method": method,
            "status_code": status_code,
            "settled": settled,
        },
        resource_path=resource_path,
        request_id=request_id
    )


def log_error(
    resource_path: str,
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
        resource_path=resource_path,
        request_id=request_id
    )


def read_audit_log(
    max_entries: int = 100,
    event_type: Optional[AuditEventType] = None,
    payer: Optional[str] = None
) -> List[Dict[str, Any]]:
    """
    Read entries from the audit log.

    Args:
        max_entries: Maximum number of entries to return
        event_type: Filter by event type (optional)
        payer: Filter by payer address (optional)

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
                if payer and event.get("payer") != payer:
                    continue
                events.append(event)
    except OSError as e:
        logger.error(f"Failed to read audit log: {e}")
        return []

    # Most recent first
    return list(reversed(events))[:max_entries]


def get_audit_stats() -> Dict[str, Any]:
    """
    Get statistics from the audit log.

    Returns:
        Dict with event counts and date range
    """
    log_path = get_audit_log_path()
    stats: Dict[str, Any] = {
        "total_events": 0,
        "events_by_type": {},
        "first_event": None,
        "last_event": None,
        "log_path": str(log_path),
        "log_exists": log_path.exists(),
    }
    if not stats["log_exists"]:
        return stats

    events_by_type: Dict[str, int] = {}
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
                stats["total_events"] += 1
                kind = event.get("event_type", "unknown")
                events_by_type[kind] = events_by_type.get(kind, 0) + 1

                timestamp = event.get("timestamp")
                if timestamp:
                    if stats["first_event"] is None:
                        stats["first_event"] = timestamp
                    stats["last_event"] = timestamp
    except OSError as e:
        logger.error(f"Failed to get audit stats: {e}")
        stats["error"] = str(e)

    stats["events_by_type"] = events_by_type
    return stats
