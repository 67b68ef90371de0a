from fastapi import APIRouter, Depends
from sqlmodel import Session

from ..audit.service import log_event
from ..auth.principals import UserPrincipal
from ..auth.service import get_session_id, require_user
from ..core.database import get_session
from ..core.errors import Fail, error_response
from ..dependencies import get_enrollment
from ..models.Account import TotpConfirmRequest, TotpSetupResponse, TotpStatusResponse
from .service import SecondFactorEnrollment

router = APIRouter(prefix="/mfa/totp", tags=["mfa"])


@router.get("/status", response_model=TotpStatusResponse)
def totp_status(
    principal: UserPrincipal = Depends(require_user),
    session: Session = Depends(get_session),
    enrollment: SecondFactorEnrollment = Depends(get_enrollment)
):
    result = enrollment.status(session, principal.account_id)
    if isinstance(result, Fail):
        return error_response(result)
    return result.value


@router.post("/setup", response_model=TotpSetupResponse)
def totp_setup(
    principal: UserPrincipal = Depends(require_user),
    session: Session = Depends(get_session),
    session_id: str = Depends(get_session_id),
    enrollment: SecondFactorEnrollment = Depends(get_enrollment)
):
    """
    Issue a fresh secret; it only takes effect once a code for it is confirmed.
    """
    result = enrollment.begin_setup(session, session_id, principal.account_id)
    if isinstance(result, Fail):
        return error_response(result)
    return result.value


@router.post("/confirm", response_model=TotpStatusResponse)
def totp_confirm(
    data: TotpConfirmRequest,
    principal: UserPrincipal = Depends(require_user),
    session: Session = Depends(get_session),
    session_id: str = Depends(get_session_id),
    enrollment: SecondFactorEnrollment = Depends(get_enrollment)
):
    result = enrollment.confirm(session, session_id, principal.account_id, data.code)
    if isinstance(result, Fail):
        return error_response(result)
    log_event(session, principal.account_id, "mfa.totp.enabled", subject=f"account:{principal.account_id}")
    return result.value


@router.post("/disable", response_model=TotpStatusResponse)
def totp_disable(
    principal: UserPrincipal = Depends(require_user),
    session: Session = Depends(get_session),
    session_id: str = Depends(get_session_id),
    enrollment: SecondFactorEnrollment = Depends(get_enrollment)
):
    result = enrollment.disable(session, session_id, principal.account_id)
    if isinstance(result, Fail):
        return error_response(result)
    log_event(session, principal.account_id, "mfa.totp.disabled", subject=f"account:{principal.account_id}")
    return result.value
