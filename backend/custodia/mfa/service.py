import logging

from sqlmodel import Session

from ..core.clock import utcnow
from ..core.errors import ErrorKind, Fail, Ok, Result
from ..core.session_store import TOTP_PENDING_SECRET, SessionBindingStore
from ..core.settings import settings
from ..models.Account import TotpSetupResponse, TotpStatusResponse, UserAccount
from .totp import TotpCodec

log = logging.getLogger(__name__)


class SecondFactorEnrollment:
    """
    TOTP enrollment keyed by account id. Pending secrets live only in the browser
    session; a secret reaches the account record once a code for it is confirmed.
    """

    def __init__(self, store: SessionBindingStore, codec: TotpCodec | None = None, issuer: str | None = None):
        self.store = store
        self.codec = codec or TotpCodec()
        self.issuer = issuer or settings.TOTP_ISSUER

    def begin_setup(self, db: Session, session_id: str, owner_id: int) -> Result[TotpSetupResponse]:
        account = db.get(UserAccount, owner_id)
        if account is None:
            return Fail(ErrorKind.NOT_FOUND, "Account not found")

        secret = self.codec.new_secret()
        self.store.put(session_id, TOTP_PENDING_SECRET, owner_id, secret)
        return Ok(TotpSetupResponse(
            secret=secret,
            otpauth_uri=self.codec.provisioning_uri(secret, account.email, self.issuer),
        ))

    def confirm(self, db: Session, session_id: str, owner_id: int, code: str) -> Result[TotpStatusResponse]:
        if not (code or "").strip():
            return Fail(ErrorKind.VALIDATION, "Verification code is required")

        pending = self.store.get(session_id, TOTP_PENDING_SECRET, owner_id)
        if pending is None:
            return Fail(ErrorKind.FORBIDDEN, "No TOTP setup in progress; start again")

        step = self.codec.match(pending, code)
        if step is None:
            return Fail(ErrorKind.UNAUTHORIZED, "Invalid verification code")

        account = db.get(UserAccount, owner_id)
        if account is None:
            self.store.discard(session_id, TOTP_PENDING_SECRET, owner_id)
            return Fail(ErrorKind.NOT_FOUND, "Account not found")

        account.totp_secret = pending
        account.totp_enabled = True
        account.totp_confirmed_at = utcnow()
        account.totp_last_time_step = step
        account.totp_drift_steps = step - self.codec.current_step()
        db.add(account)
        db.commit()
        db.refresh(account)

        self.store.discard(session_id, TOTP_PENDING_SECRET, owner_id)
        log.info("TOTP enabled for account %s", owner_id)
        return Ok(self.status(db, owner_id).value)

    def disable(self, db: Session, session_id: str, owner_id: int) -> Result[TotpStatusResponse]:
        self.store.discard(session_id, TOTP_PENDING_SECRET, owner_id)

        account = db.get(UserAccount, owner_id)
        if account is None:
            return Fail(ErrorKind.NOT_FOUND, "Account not found")

        account.totp_secret = None
        account.totp_enabled = False
        account.totp_confirmed_at = None
        account.totp_last_time_step = None
        account.totp_drift_steps = None
        db.add(account)
        db.commit()
        log.info("TOTP disabled for account %s", owner_id)
        return Ok(TotpStatusResponse(enabled=False, confirmed_at=None))

    def status(self, db: Session, owner_id: int) -> Result[TotpStatusResponse]:
        account = db.get(UserAccount, owner_id)
        if account is None:
            return Fail(ErrorKind.NOT_FOUND, "Account not found")
        enabled = bool(account.totp_enabled and account.totp_secret)
        return Ok(TotpStatusResponse(enabled=enabled, confirmed_at=account.totp_confirmed_at if enabled else None))
