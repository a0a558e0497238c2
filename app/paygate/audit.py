# app/paygate/audit.py
"""
Audit trail for payment gate decisions.

Every decision on a protected route can be appended to a JSON lines file
for reconciliation and dispute handling. Unprotected requests are not
recorded.

Events logged:
- access_granted (payment mode, stream id or tx hash)
- payment_required_sent (price, currency, recipient, reason)
- stream_inactive (stream id)
- verification_failed (ledger error text)
- unauthorized (missing or wrong API key)

Writing is best effort: a failed write is logged and never changes the
response sent to the client.
"""
import json
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from app.paygate.decision import AccessDecision, Outcome

logger = logging.getLogger(__name__)


class AuditEventType(Enum):
    """Types of audit events that can be logged."""
    ACCESS_GRANTED = "access_granted"
    PAYMENT_REQUIRED_SENT = "payment_required_sent"
    STREAM_INACTIVE = "stream_inactive"
    VERIFICATION_FAILED = "verification_failed"
    UNAUTHORIZED = "unauthorized"


def generate_request_id() -> str:
    """Generate a unique request ID for tracking."""
    return str(uuid.uuid4())[:8]


def create_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    client_ip: Optional[str] = None,
    request_id: Optional[str] = None
) -> Dict[str, Any]:
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type.value,
        "request_id": request_id or generate_request_id(),
        "client_ip": client_ip,
        "data": data
    }


def event_for_decision(decision: AccessDecision, method: str, path: str) -> Optional[tuple]:
    """
    Map a gate decision to an (event type, data) pair.

    Returns:
        None for unprotected requests, which are not audited.
    """
    if decision.outcome == Outcome.UNPROTECTED:
        return None

    data: Dict[str, Any] = {
        "method": method,
        "path": path,
        "route": decision.rule.path_pattern if decision.rule else None,
    }

    if decision.outcome == Outcome.ALLOWED:
        data.update(decision.context.as_dict())
        return AuditEventType.ACCESS_GRANTED, data

    if decision.outcome == Outcome.UNAUTHORIZED:
        return AuditEventType.UNAUTHORIZED, data

    if decision.outcome == Outcome.STREAM_INACTIVE:
        data["reason"] = decision.reason
        return AuditEventType.STREAM_INACTIVE, data

    requirement = decision.requirement
    data.update({
        "reason": decision.reason,
        "price": requirement.price,
        "currency": requirement.currency,
        "mode": requirement.mode,
        "recipient": requirement.recipient_address,
    })
    if decision.ledger_error:
        data["ledger_error"] = decision.ledger_error
        return AuditEventType.VERIFICATION_FAILED, data
    return AuditEventType.PAYMENT_REQUIRED_SENT, data


class AuditLog:
    """Append-only JSON lines audit file."""

    def __init__(self, path: str):
        self.path = Path(path)

    def ensure_directory(self) -> bool:
        """
        Ensure the audit log directory exists.

        Returns:
            True if directory exists or was created, False on error
        """
        try:
            log_dir = self.path.parent
            if not log_dir.exists():
                log_dir.mkdir(parents=True, exist_ok=True)
                logger.info(f"Created audit log directory: {log_dir}")
            return True
        except OSError as e:
            logger.error(f"Failed to create audit log directory: {e}")
            return False

    def record(
        self,
        event_type: AuditEventType,
        data: Dict[str, Any],
        client_ip: Optional[str] = None,
        request_id: Optional[str] = None
    ) -> Optional[str]:
        """
        Append one event.

        Returns:
            The request_id used for this event, or None on error
        """
        event = create_audit_event(event_type, data, client_ip=client_ip, request_id=request_id)
        try:
            self.ensure_directory()
            with open(self.path, "a") as f:
                f.write(json.dumps(event) + "\n")
            logger.debug(f"Audit event logged: {event_type.value} [{event['request_id']}]")
            return event["request_id"]
        except OSError as e:
            logger.error(f"Failed to write audit event: {e}")
            return None

    def record_decision(
        self,
        decision: AccessDecision,
        method: str,
        path: str,
        client_ip: Optional[str] = None
    ) -> Optional[str]:
        mapped = event_for_decision(decision, method, path)
        if mapped is None:
            return None
        event_type, data = mapped
        return self.record(event_type, data, client_ip=client_ip)

    def _events(self) -> List[Dict[str, Any]]:
        events = []
        with open(self.path, "r") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    events.append(json.loads(line))
                except json.JSONDecodeError:
                    continue
        return events

    def read(self, max_entries: int = 100, event_type: Optional[AuditEventType] = None) -> list:
        """
        Read entries from the audit log.

        Returns:
            List of audit events (most recent first)
        """
        if not self.path.exists():
            return []
        try:
            events = self._events()
        except OSError as e:
            logger.error(f"Failed to read audit log: {e}")
            return []
        if event_type:
            events = [e for e in events if e.get("event_type") == event_type.value]
        return list(reversed(events))[:max_entries]

    def stats(self) -> Dict[str, Any]:
        """Event counts by type plus the first and last timestamps."""
        if not self.path.exists():
            return {
                "total_events": 0,
                "events_by_type": {},
                "log_path": str(self.path),
                "log_exists": False,
            }

        try:
            events = self._events()
        except OSError as e:
            logger.error(f"Failed to read audit log: {e}")
            return {
                "total_events": 0,
                "events_by_type": {},
                "log_path": str(self.path),
                "log_exists": True,
                "error": str(e),
            }

        events_by_type: Dict[str, int] = {}
        for event in events:
            kind = event.get("event_type", "unknown")
            events_by_type[kind] = events_by_type.get(kind, 0) + 1

        timestamps = [e["timestamp"] for e in events if e.get("timestamp")]
        return {
            "total_events": len(events),
            "events_by_type": events_by_type,
            "first_event": timestamps[0] if timestamps else None,
            "last_event": timestamps[-1] if timestamps else None,
            "log_path": str(self.path),
            "log_exists": True,
        }
