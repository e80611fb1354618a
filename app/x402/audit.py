# app/x402/audit.py
"""
Audit logging for x402 payments and entitlements.

This module logs payment lifecycle events for:
- Financial reconciliation
- Dispute resolution
- Debugging facilitator failures

Log format: JSON lines (one event per line)
Log location: Configured via AUDIT_LOG_PATH

Events logged:
- Payment requirements issued (mode, amount, network, deadline)
- Settlement retry (attempt, delay, reason)
- Payment settled (transaction hash, mode, attempts)
- Payment failed (stage, reason)
- Entitlement granted (entitlement id, dataset id, valid until)
- Reconciliation required (settled payment with no entitlement)
- Error (type, context)
"""
import json
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from app.core.config import settings

logger = logging.getLogger(__name__)


class AuditEventType(Enum):
    """Types of audit events that can be logged."""
    REQUIREMENTS_ISSUED = "requirements_issued"
    SETTLEMENT_RETRY = "settlement_retry"
    PAYMENT_SETTLED = "payment_settled"
    PAYMENT_FAILED = "payment_failed"
    ENTITLEMENT_GRANTED = "entitlement_granted"
    RECONCILIATION_REQUIRED = "reconciliation_required"
    ERROR = "error"


def generate_request_id() -> str:
    """Generate a unique request ID for tracking."""
    return str(uuid.uuid4())[:8]


def get_audit_log_path() -> Path:
    """Get the path to the audit log file."""
    return Path(settings.AUDIT_LOG_PATH)


def create_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    wallet_address: Optional[str] = None,
    request_id: Optional[str] = None
) -> Dict[str, Any]:
    """
    Create an audit event dictionary.

    Args:
        event_type: Type of event to log
        data: Event-specific data
        wallet_address: Payer wallet address (if available)
        request_id: Unique request identifier (if available)
    """
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type.value,
        "request_id": request_id or generate_request_id(),
        "wallet_address": wallet_address,
        "data": data
    }


def log_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    wallet_address: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """
    Append an audit event to the audit log.

    Audit failures never interrupt the payment flow; they are reported
    through the application log instead.

    Returns:
        The request_id used for this event, or None on error
    """
    event = create_audit_event(
        event_type=event_type,
        data=data,
        wallet_address=wallet_address,
        request_id=request_id
    )

    try:
        log_path = get_audit_log_path()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(log_path, "a") as f:
            f.write(json.dumps(event, default=str) + "\n")

        logger.debug(f"Audit event logged: {event_type.value} [{event['request_id']}]")
        return event["request_id"]

    except OSError as e:
        logger.error(f"Failed to write audit event {event_type.value}: {e}")
        return None


# Convenience functions for specific event types

def log_requirements_issued(
    wallet_address: str,
    mode: str,
    amount: str,
    network: str,
    deadline: int,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log that payment terms were handed to a client."""
    return log_audit_event(
        event_type=AuditEventType.REQUIREMENTS_ISSUED,
        data={
            "mode": mode,
            "amount": amount,
            "network": network,
            "deadline": deadline,
        },
        wallet_address=wallet_address,
        request_id=request_id
    )


def log_settlement_retry(
    wallet_address: Optional[str],
    attempt: int,
    delay_seconds: float,
    reason: str,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a retryable settlement failure."""
    return log_audit_event(
        event_type=AuditEventType.SETTLEMENT_RETRY,
        data={
            "attempt": attempt,
            "delay_seconds": delay_seconds,
            "reason": reason,
        },
        wallet_address=wallet_address,
        request_id=request_id
    )


def log_payment_settled(
    wallet_address: Optional[str],
    tx_hash: str,
    mode: str,
    attempts: int,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a successful settlement."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_SETTLED,
        data={
            "tx_hash": tx_hash,
            "mode": mode,
            "attempts": attempts,
        },
        wallet_address=wallet_address,
        request_id=request_id
    )


def log_payment_failed(
    wallet_address: Optional[str],
    stage: str,
    reason: str,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a payment failure at the quote or settlement stage."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_FAILED,
        data={
            "stage": stage,
            "reason": reason,
        },
        wallet_address=wallet_address,
        request_id=request_id
    )


def log_entitlement_granted(
    wallet_address: str,
    entitlement_id: str,
    shared_dataset_id: str,
    tx_hash: str,
    valid_until: str,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a new entitlement."""
    return log_audit_event(
        event_type=AuditEventType.ENTITLEMENT_GRANTED,
        data={
            "entitlement_id": entitlement_id,
            "shared_dataset_id": shared_dataset_id,
            "tx_hash": tx_hash,
            "valid_until": valid_until,
        },
        wallet_address=wallet_address,
        request_id=request_id
    )


def log_reconciliation_required(
    wallet_address: str,
    tx_hash: str,
    shared_dataset_id: Optional[str],
    reason: str,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a confirmed payment that has no matching entitlement."""
    return log_audit_event(
        event_type=AuditEventType.RECONCILIATION_REQUIRED,
        data={
            "tx_hash": tx_hash,
            "shared_dataset_id": shared_dataset_id,
            "reason": reason,
        },
        wallet_address=wallet_address,
        request_id=request_id
    )


def log_error(
    error_type: str,
    error_message: str,
    context: Optional[Dict[str, Any]] = None,
    wallet_address: Optional[str] = None,
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
        wallet_address=wallet_address,
        request_id=request_id
    )


def read_audit_log(
    max_entries: int = 100,
    event_type: Optional[AuditEventType] = None,
    wallet_address: Optional[str] = None
) -> list:
    """
    Read entries from the audit log.

    Args:
        max_entries: Maximum number of entries to return
        event_type: Filter by event type (optional)
        wallet_address: Filter by wallet, case-insensitive (optional)

    Returns:
        List of audit events (most recent first)
    """
    log_path = get_audit_log_path()
    if not log_path.exists():
        return []

    wallet_filter = wallet_address.lower() if wallet_address else None
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
                if wallet_filter and (event.get("wallet_address") or "").lower() != wallet_filter:
                    continue
                events.append(event)
    except OSError as e:
        logger.error(f"Failed to read audit log: {e}")
        return []

    return list(reversed(events))[:max_entries]
