from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from ..audit.service import log_event
from ..auth.service import get_session_id
from ..core.database import get_session
from ..core.errors import ErrorKind, Fail, error_response
from ..dependencies import get_proof_login
from ..models.Account import CamelModel, LoginRequest
from .service import ProofLoginProtocol

router = APIRouter(prefix="/login", tags=["login"])


class OtpVerifyRequest(CamelModel):
    pres_ex_id: str = ""
    code: str = ""


@router.post("/start")
def start_login(
    login_data: LoginRequest,
    session: Session = Depends(get_session),
    session_id: str = Depends(get_session_id),
    protocol: ProofLoginProtocol = Depends(get_proof_login)
):
    """
    Check the password and start a presentation exchange for the account's identity.
    """
    result = protocol.start(session, session_id, login_data.email, login_data.password)
    if isinstance(result, Fail):
        if result.kind == ErrorKind.UNAUTHORIZED:
            log_event(session, 0, "login.start.failed", details="Invalid credentials")
        return error_response(result)
    return {"presExId": result.value}


@router.get("/poll")
def poll_login(
    pres_ex_id: str = Query(default="", alias="presExId"),
    session: Session = Depends(get_session),
    session_id: str = Depends(get_session_id),
    protocol: ProofLoginProtocol = Depends(get_proof_login)
):
    result = protocol.poll(session, session_id, pres_ex_id)
    if isinstance(result, Fail):
        if result.kind == ErrorKind.UNAUTHORIZED:
            log_event(session, 0, "login.proof.mismatch", subject=f"exchange:{pres_ex_id}", details=result.message)
        return error_response(result)

    outcome = result.value
    if outcome.authenticated:
        log_event(session, outcome.account_id, "login.proof", subject=f"exchange:{pres_ex_id}",
                  details="Proof login successful")
    return outcome.as_json()


@router.post("/otp/verify")
def verify_login_code(
    data: OtpVerifyRequest,
    session: Session = Depends(get_session),
    session_id: str = Depends(get_session_id),
    protocol: ProofLoginProtocol = Depends(get_proof_login)
):
    result = protocol.verify_second_factor(session, session_id, data.pres_ex_id, data.code)
    if isinstance(result, Fail):
        return error_response(result)

    outcome = result.value
    log_event(session, outcome.account_id, "login.proof.totp", subject=f"exchange:{data.pres_ex_id}",
              details="Second factor accepted")
    return outcome.as_json()
