from fastapi import APIRouter, Depends, HTTPException, status
from sqlmodel import Session
from ..core.database import get_session
from ..core.session_store import SessionBindingStore
from ..models.Account import LoginRequest, PrincipalResponse
from .principals import Principal
from .service import (
    authenticate_account, password_principal, install_principal, principal_response,
    get_session_id, get_binding_store, require_principal
)
from ..audit.service import log_event

router = APIRouter(prefix="/auth", tags=["auth"])

@router.post("/login", response_model=PrincipalResponse)
async def login(
    login_data: LoginRequest,
    session: Session = Depends(get_session),
    session_id: str = Depends(get_session_id),
    store: SessionBindingStore = Depends(get_binding_store)
):
    """
    Password login for issuing entities and administrators.
    """
    account = None
    if login_data.email.strip() and login_data.password:
        account = authenticate_account(session, login_data.email, login_data.password)
    principal = password_principal(session, account) if account else None

    if principal is None:
        log_event(session, 0, "auth.login.failed", details="Incorrect email or password")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
        )

    install_principal(store, session_id, principal)
    log_event(session, principal.account_id, "auth.login", details=f"{principal.kind} login successful")
    return principal_response(principal)


@router.post("/logout")
async def logout(
    principal: Principal = Depends(require_principal),
    session: Session = Depends(get_session),
    session_id: str = Depends(get_session_id),
    store: SessionBindingStore = Depends(get_binding_store)
):
    """
    Logout the current principal and drop every binding of the browser session.
    """
    store.clear_session(session_id)
    log_event(session, principal.account_id, "auth.logout", details="Logged out successfully")
    return {"message": "Logged out successfully"}


@router.get("/me", response_model=PrincipalResponse)
async def read_me(principal: Principal = Depends(require_principal)):
    return principal_response(principal)
