from datetime import datetime
from typing import Optional
from sqlmodel import Field, SQLModel
import hashlib

from ..core.clock import utcnow
from ..core.database import UTCDateTime

GENESIS_HASH = "0" * 64

class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: Optional[int] = Field(default=None, primary_key=True)
    timestamp: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    actor_id: int = Field(index=True) # 0 for anonymous callers
    action: str = Field(index=True)
    subject: str = ""  # e.g. "access_request:12"
    details: str = ""
    previous_hash: str
    current_hash: str

    def calculate_hash(self) -> str:
        """
        SHA-256 over previous_hash + timestamp + actor_id + action + subject + details.
        The timestamp is rendered naive so the hash survives the SQLite round trip.
        """
        ts_str = self.timestamp.replace(tzinfo=None).isoformat()

        data = (
            self.previous_hash +
            ts_str +
            str(self.actor_id) +
            self.action +
            self.subject +
            self.details
        )
        return hashlib.sha256(data.encode("utf-8")).hexdigest()

class AuditChainStatus(SQLModel):
    entries: int
    valid: bool
    first_broken_id: int | None = None
