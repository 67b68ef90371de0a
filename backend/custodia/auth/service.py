from datetime import datetime, timedelta, timezone
import logging
import secrets

from fastapi import Depends, HTTPException, Request, status
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlmodel import Session, select

from ..core.session_store import SECURITY_CONTEXT, SessionBindingStore
from ..core.settings import settings
from ..models.Account import AccountRole, PrincipalResponse, UserAccount
from ..models.Person import IssuingEntity
from .principals import AdminPrincipal, IssuerPrincipal, Principal, UserPrincipal

log = logging.getLogger(__name__)

# Password hashing
pwd_context = CryptContext(
    schemes=["argon2"],
    deprecated="auto",
    argon2__time_cost=2,
    argon2__memory_cost=102400,
    argon2__parallelism=8
)

PRINCIPAL_KEY = "principal"

def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password + settings.PASSWORD_PEPPER, hashed_password)

def get_password_hash(password):
    return pwd_context.hash(password + settings.PASSWORD_PEPPER)


def _resolve_session_secret() -> str:
    if settings.SESSION_SECRET:
        return settings.SESSION_SECRET
    log.warning("SESSION_SECRET is not set; using a random per-process key, sessions end on restart")
    return secrets.token_urlsafe(32)

_session_secret = _resolve_session_secret()

# ==========================================
# Browser session cookie
# ==========================================
def new_session_id() -> str:
    return secrets.token_urlsafe(24)

def encode_session_cookie(session_id: str) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.SESSION_TTL_MINUTES)
    return jwt.encode({"sid": session_id, "exp": expire}, _session_secret, algorithm=settings.ALGORITHM)

def decode_session_cookie(token: str | None) -> str | None:
    """Returns the session id carried by a valid cookie, None for anything else."""
    if not token:
        return None
    try:
        payload = jwt.decode(token, _session_secret, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None
    session_id = payload.get("sid")
    if not isinstance(session_id, str) or not session_id:
        return None
    return session_id

# ==========================================
# Dependencies
# ==========================================
def get_session_id(request: Request) -> str:
    return request.state.session_id

def get_binding_store(request: Request) -> SessionBindingStore:
    return request.app.state.binding_store

def current_principal(
    session_id: str = Depends(get_session_id),
    store: SessionBindingStore = Depends(get_binding_store)
) -> Principal | None:
    return store.get(session_id, SECURITY_CONTEXT, PRINCIPAL_KEY)

def _not_authenticated() -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

async def require_principal(principal: Principal | None = Depends(current_principal)) -> Principal:
    if principal is None:
        raise _not_authenticated()
    return principal

async def require_user(principal: Principal | None = Depends(current_principal)) -> UserPrincipal:
    if principal is None:
        raise _not_authenticated()
    if not isinstance(principal, UserPrincipal):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="End-user session required")
    return principal

async def require_issuer(principal: Principal | None = Depends(current_principal)) -> IssuerPrincipal:
    if principal is None:
        raise _not_authenticated()
    if not isinstance(principal, IssuerPrincipal):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Issuer session required")
    return principal

async def require_admin(principal: Principal | None = Depends(current_principal)) -> AdminPrincipal:
    if principal is None:
        raise _not_authenticated()
    if not isinstance(principal, AdminPrincipal):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not enough privileges")
    return principal

# ==========================================
# Principal lifecycle
# ==========================================
def install_principal(store: SessionBindingStore, session_id: str, principal: Principal) -> None:
    store.put(session_id, SECURITY_CONTEXT, PRINCIPAL_KEY, principal,
              ttl_seconds=settings.SESSION_TTL_MINUTES * 60)

def principal_response(principal: Principal) -> PrincipalResponse:
    return PrincipalResponse(
        kind=principal.kind,
        account_id=principal.account_id,
        display_name=principal.display_name,
        email=principal.email,
    )

def find_account_by_email(session: Session, email: str) -> UserAccount | None:
    statement = select(UserAccount).where(UserAccount.email == email.strip().lower())
    return session.exec(statement).first()

def authenticate_account(session: Session, email: str, password: str) -> UserAccount | None:
    account = find_account_by_email(session, email)
    if not account:
        return None
    if not account.is_active:
        return None
    if not verify_password(password, account.hashed_password):
        return None
    return account

def password_principal(session: Session, account: UserAccount) -> Principal | None:
    """
    Principal for the password-only login. End users authenticate through the
    proof login instead and get None here.
    """
    if account.role == AccountRole.ADMIN:
        return AdminPrincipal(
            account_id=account.id,
            display_name=account.full_name or "Administrator",
            email=account.email,
        )
    if account.role == AccountRole.ISSUER and account.entity_id is not None:
        entity = session.get(IssuingEntity, account.entity_id)
        if entity is None or not entity.is_active:
            return None
        return IssuerPrincipal(
            account_id=account.id,
            entity_id=entity.id,
            display_name=account.full_name or entity.name,
            email=account.email,
        )
    return None
