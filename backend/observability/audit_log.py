"""Audit trail for session, login and device events.

Each event is written to the audit_events collection and echoed to the log.
Callers treat a failed write as non-fatal; this module just raises.
"""
import logging
from typing import Any, Dict, Optional

from config.settings import get_settings
from core.database import get_db
from observability.redaction import redact_dict
from schemas.audit import AuditEvent, AuditEventType

logger = logging.getLogger(__name__)

AUDIT_COLLECTION = "audit_events"


async def log_audit_event(
    event_type: AuditEventType,
    conn_id: Optional[str] = None,
    user_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> str:
    """Persist one event. Returns its event_id."""
    event = AuditEvent(
        event_type=event_type,
        conn_id=conn_id,
        user_id=user_id,
        details=redact_dict(details or {}),
        env=get_settings().ENV,
    )
    await get_db()[AUDIT_COLLECTION].insert_one(event.to_doc())
    logger.info("AUDIT %s: conn=%s user=%s %s", event_type.value, conn_id, user_id, event.details)
    return event.event_id
