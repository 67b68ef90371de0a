from datetime import datetime
from enum import Enum
from sqlmodel import Field, SQLModel
from pydantic import BaseModel, ConfigDict, EmailStr
from pydantic.alias_generators import to_camel

from ..core.clock import utcnow
from ..core.database import UTCDateTime

class AccountRole(str, Enum):
    USER = "USER"
    ISSUER = "ISSUER"
    ADMIN = "ADMIN"

# ==========================================
# SQLModel (Database Entity)
# ==========================================
class UserAccount(SQLModel, table=True):
    __tablename__ = "user_accounts"

    id: int | None = Field(default=None, primary_key=True)
    email: str = Field(unique=True, index=True, nullable=False)
    hashed_password: str = Field(nullable=False)
    full_name: str | None = Field(default=None, nullable=True)
    role: AccountRole = Field(default=AccountRole.USER)
    is_active: bool = Field(default=True)
    person_id: int | None = Field(default=None, foreign_key="persons.id", nullable=True) # USER accounts
    entity_id: int | None = Field(default=None, foreign_key="issuing_entities.id", nullable=True) # ISSUER accounts
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)

    # Second factor (TOTP); secret is only set once confirmed
    totp_enabled: bool = Field(default=False)
    totp_secret: str | None = Field(default=None, nullable=True)
    totp_confirmed_at: datetime | None = Field(default=None, nullable=True, sa_type=UTCDateTime)
    totp_last_time_step: int | None = Field(default=None, nullable=True)
    totp_drift_steps: int | None = Field(default=None, nullable=True)

# ==========================================
# Pydantic Models (DTOs)
# ==========================================
class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

# Password login (issuers and administrators)
class LoginRequest(CamelModel):
    email: str = ""
    password: str = ""

class PrincipalResponse(CamelModel):
    kind: str
    account_id: int
    display_name: str
    email: str | None = None

# Self-service registration of an end user bound to an existing person record
class RegisterRequest(CamelModel):
    id_type: str = ""
    id_number: str = ""
    email: EmailStr
    password: str = ""
    confirm_password: str = ""
    enable_totp_now: bool = False

class TotpSetupResponse(CamelModel):
    secret: str
    otpauth_uri: str

class RegisterResponse(CamelModel):
    account_id: int
    email: str
    totp: TotpSetupResponse | None = None

class TotpConfirmRequest(CamelModel):
    code: str = ""

class RegisterTotpConfirmRequest(CamelModel):
    account_id: int | None = None
    code: str = ""

class TotpStatusResponse(CamelModel):
    enabled: bool
    confirmed_at: datetime | None = None
