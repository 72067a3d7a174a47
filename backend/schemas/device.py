"""Device registry record."""
from datetime import datetime, timezone

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DeviceRecord(BaseModel):
    """A registered device. Created on registerDevice, never deleted."""
    device_id: str
    device_name: str
    mac: str
    online: bool = True
    add_time: datetime = Field(default_factory=utc_now)
    update_time: datetime = Field(default_factory=utc_now)

    def to_doc(self) -> dict:
        """Convert to MongoDB document."""
        return self.model_dump()
