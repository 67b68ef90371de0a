from datetime import datetime
from enum import Enum
from sqlmodel import Field, SQLModel

from ..core.clock import utcnow
from ..core.database import UTCDateTime

class ReviewStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"

class Person(SQLModel, table=True):
    __tablename__ = "persons"

    id: int | None = Field(default=None, primary_key=True)
    id_type: str = Field(nullable=False) # CC, CE, PASSPORT...
    id_number: str = Field(unique=True, index=True, nullable=False)
    first_name: str = ""
    last_name: str = ""
    email: str | None = None

class IssuingEntity(SQLModel, table=True):
    __tablename__ = "issuing_entities"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(unique=True, index=True)
    is_active: bool = Field(default=True)

class PersonDocument(SQLModel, table=True):
    __tablename__ = "person_documents"

    id: int | None = Field(default=None, primary_key=True)
    person_id: int = Field(foreign_key="persons.id", index=True)
    title: str
    review_status: ReviewStatus = Field(default=ReviewStatus.PENDING)
    file_path: str | None = None  # relative to STORAGE_DIR
    file_name: str | None = None
    size_bytes: int | None = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
