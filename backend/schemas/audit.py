"""Audit event schemas."""
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from schemas.device import utc_now


class AuditEventType(str, Enum):
    SESSION_STARTED = "session_started"
    SESSION_TERMINATED = "session_terminated"
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILURE = "login_failure"
    DEVICE_REGISTERED = "device_registered"
    DEVICE_UPDATED = "device_updated"


class AuditEvent(BaseModel):
    event_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    event_type: AuditEventType
    conn_id: Optional[str] = None
    user_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)
    details: Dict[str, Any] = Field(default_factory=dict)
    env: str = "dev"

    def to_doc(self) -> dict:
        # Enum stored by value so audit queries filter on plain strings
        return self.model_dump(mode="python") | {"event_type": self.event_type.value}
