from fastapi import APIRouter, Depends
from sqlmodel import Session
from typing import List
from ..core.database import get_session
from ..auth.principals import AdminPrincipal
from ..auth.service import require_admin
from ..models.Audit import AuditLog, AuditChainStatus
from .service import list_events, verify_chain

router = APIRouter(
    prefix="/audit",
    tags=["audit"],
    responses={404: {"description": "Not found"}},
)

@router.get("/log", response_model=List[AuditLog])
def get_audit_logs(
    limit: int = 100,
    offset: int = 0,
    session: Session = Depends(get_session),
    admin: AdminPrincipal = Depends(require_admin)
):
    return list_events(session, limit=min(max(limit, 1), 500), offset=max(offset, 0))

@router.get("/verify", response_model=AuditChainStatus)
def verify_audit_chain(
    session: Session = Depends(get_session),
    admin: AdminPrincipal = Depends(require_admin)
):
    return verify_chain(session)
