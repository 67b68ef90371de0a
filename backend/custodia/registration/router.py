from fastapi import APIRouter, Depends, status
from sqlmodel import Session

from ..audit.service import log_event
from ..auth.service import get_session_id
from ..core.database import get_session
from ..core.errors import ErrorKind, Fail, error_response
from ..dependencies import get_enrollment
from ..mfa.service import SecondFactorEnrollment
from ..models.Account import RegisterRequest, RegisterResponse, RegisterTotpConfirmRequest, TotpStatusResponse
from .service import register_account

router = APIRouter(prefix="/register", tags=["registration"])


@router.post("", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
def register(
    data: RegisterRequest,
    session: Session = Depends(get_session),
    session_id: str = Depends(get_session_id),
    enrollment: SecondFactorEnrollment = Depends(get_enrollment)
):
    """
    Create an end-user account and, when asked, start TOTP enrollment right away.
    """
    result = register_account(session, data)
    if isinstance(result, Fail):
        return error_response(result)

    account = result.value
    log_event(session, account.id, "registration.created", subject=f"account:{account.id}")

    totp = None
    if data.enable_totp_now:
        setup = enrollment.begin_setup(session, session_id, account.id)
        if isinstance(setup, Fail):
            return error_response(setup)
        totp = setup.value
    return RegisterResponse(account_id=account.id, email=account.email, totp=totp)


@router.post("/totp/confirm", response_model=TotpStatusResponse)
def register_totp_confirm(
    data: RegisterTotpConfirmRequest,
    session: Session = Depends(get_session),
    session_id: str = Depends(get_session_id),
    enrollment: SecondFactorEnrollment = Depends(get_enrollment)
):
    if data.account_id is None:
        return error_response(Fail(ErrorKind.VALIDATION, "accountId is required"))

    result = enrollment.confirm(session, session_id, data.account_id, data.code)
    if isinstance(result, Fail):
        return error_response(result)
    log_event(session, data.account_id, "mfa.totp.enabled", subject=f"account:{data.account_id}",
              details="Enabled at registration")
    return result.value
