from enum import Enum
from datetime import datetime
from typing import List, Optional
from sqlmodel import SQLModel, Field, Relationship

from ..core.clock import utcnow
from ..core.database import UTCDateTime
from .Account import CamelModel

class AccessRequestStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"

TERMINAL_STATUSES = frozenset({AccessRequestStatus.REJECTED, AccessRequestStatus.EXPIRED})

class AccessRequest(SQLModel, table=True):
    __tablename__ = "access_requests"

    id: Optional[int] = Field(default=None, primary_key=True)
    entity_id: int = Field(foreign_key="issuing_entities.id", index=True)
    person_id: int = Field(foreign_key="persons.id", index=True)
    purpose: str = Field(max_length=300)
    status: AccessRequestStatus = Field(default=AccessRequestStatus.PENDING)
    requested_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    decided_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    expires_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    decision_note: Optional[str] = Field(default=None, max_length=300)

    items: List["AccessRequestItem"] = Relationship(back_populates="access_request")

class AccessRequestItem(SQLModel, table=True):
    __tablename__ = "access_request_items"

    id: Optional[int] = Field(default=None, primary_key=True)
    access_request_id: int = Field(foreign_key="access_requests.id", index=True)
    person_document_id: int = Field(foreign_key="person_documents.id")

    access_request: AccessRequest = Relationship(back_populates="items")

# ==========================================
# DTOs
# ==========================================
class AccessRequestCreate(CamelModel):
    subject_id: int | None = None
    purpose: str = ""
    item_ids: list[int] = []

class AccessRequestCreated(CamelModel):
    request_id: int
    status: AccessRequestStatus

class ItemLinks(CamelModel):
    view_url: str
    download_url: str
    block_url: str
    expires_at: int

class AccessRequestItemView(CamelModel):
    item_id: int
    title: str | None = None
    links: ItemLinks | None = None

class AccessRequestView(CamelModel):
    request_id: int
    entity_id: int
    subject_id: int
    purpose: str
    status: AccessRequestStatus
    requested_at: datetime
    decided_at: datetime | None = None
    expires_at: datetime | None = None
    decision_note: str | None = None
    items: list[AccessRequestItemView] = []

class DocumentTrace(CamelModel):
    network: str
    block_reference: str
    document_title: str
    issuing_entity: str
    status: str
    created_at: str
    size_human: str
    file_name: str
