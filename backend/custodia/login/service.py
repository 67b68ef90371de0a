"""
Proof login: a local password check followed by a remote identity proof.

``start`` checks the password and starts a presentation exchange for the account's
identification number, remembering that expectation in the browser session.
``poll`` relays the exchange status and, once the verifier reports a verified proof,
compares the revealed identification number with the remembered one. Every terminal
outcome consumes the expectation, so an exchange id authenticates at most once.
"""
import logging
from dataclasses import dataclass, replace

from sqlmodel import Session

from ..auth.principals import UserPrincipal
from ..auth.service import authenticate_account, install_principal
from ..core.errors import ErrorKind, Fail, Ok, Result, UPSTREAM_MESSAGE
from ..core.session_store import EXPECTED_IDENTITY, LOGIN_PENDING_OTP, SessionBindingStore
from ..core.settings import settings
from ..mfa.totp import TotpCodec
from ..models.Account import AccountRole, UserAccount
from ..models.Person import Person
from ..verifier.client import ProofVerifierClient, VerifierError

log = logging.getLogger(__name__)

DASHBOARD_URL = "/user/dashboard"
INVALID_CREDENTIALS = "Invalid credentials"
IDENTITY_MISMATCH = "credential does not match requested identity"
TOO_MANY_CODES = "Too many invalid codes; start the login again"


@dataclass(frozen=True)
class ExpectedIdentity:
    id_number: str
    account_id: int


@dataclass(frozen=True)
class PendingSecondFactor:
    principal: UserPrincipal
    attempts: int = 0


@dataclass(frozen=True)
class PollOutcome:
    authenticated: bool
    state: str
    done: bool
    verified: bool | None
    redirect_url: str | None = None
    display_name: str | None = None
    otp_required: bool = False
    account_id: int | None = None

    def as_json(self) -> dict:
        body = {
            "authenticated": self.authenticated,
            "state": self.state,
            "done": self.done,
            "verified": self.verified,
        }
        if self.redirect_url:
            body["redirectUrl"] = self.redirect_url
        if self.display_name:
            body["displayName"] = self.display_name
        if self.otp_required:
            body["otpRequired"] = True
            body["otpMethod"] = "totp"
        return body


def _display_name(attributes: dict[str, str], person: Person, account: UserAccount) -> str:
    name = " ".join(p for p in (attributes.get("first_name", "").strip(),
                                attributes.get("last_name", "").strip()) if p)
    if not name:
        name = " ".join(p for p in (person.first_name.strip(), person.last_name.strip()) if p)
    return name or account.full_name or account.email


class ProofLoginProtocol:
    def __init__(
        self,
        verifier: ProofVerifierClient,
        store: SessionBindingStore,
        codec: TotpCodec | None = None,
        max_otp_attempts: int | None = None,
    ):
        self.verifier = verifier
        self.store = store
        self.codec = codec or TotpCodec()
        self.max_otp_attempts = max(1, max_otp_attempts or settings.LOGIN_OTP_MAX_ATTEMPTS)

    def start(self, db: Session, session_id: str, email: str, password: str) -> Result[str]:
        email = (email or "").strip()
        if not email or not password:
            return Fail(ErrorKind.VALIDATION, "Email and password are required")

        account = authenticate_account(db, email, password)
        if account is None or account.role != AccountRole.USER:
            log.info("Proof login refused at credential check")
            return Fail(ErrorKind.UNAUTHORIZED, INVALID_CREDENTIALS)

        person = db.get(Person, account.person_id) if account.person_id is not None else None
        id_number = (person.id_number or "").strip() if person else ""
        if not id_number:
            # Same answer as a wrong password so accounts cannot be enumerated
            log.warning("Account %s has no bound identification number", account.id)
            return Fail(ErrorKind.UNAUTHORIZED, INVALID_CREDENTIALS)

        try:
            pres_ex_id = self.verifier.start_exchange(id_number)
        except VerifierError as exc:
            log.error("Verifier could not start an exchange for account %s: %s", account.id, exc)
            return Fail(ErrorKind.UPSTREAM_ERROR, UPSTREAM_MESSAGE)
        if not pres_ex_id:
            log.error("Verifier returned no exchange id for account %s", account.id)
            return Fail(ErrorKind.UPSTREAM_ERROR, UPSTREAM_MESSAGE)

        self.store.put(session_id, EXPECTED_IDENTITY, pres_ex_id, ExpectedIdentity(id_number, account.id))
        log.info("Proof exchange %s started for account %s", pres_ex_id, account.id)
        return Ok(pres_ex_id)

    def poll(self, db: Session, session_id: str, pres_ex_id: str) -> Result[PollOutcome]:
        pres_ex_id = (pres_ex_id or "").strip()
        if not pres_ex_id:
            return Fail(ErrorKind.VALIDATION, "presExId is required")

        if self.store.get(session_id, EXPECTED_IDENTITY, pres_ex_id) is None:
            return Fail(ErrorKind.FORBIDDEN, "Login session not found or expired")

        try:
            status = self.verifier.get_status(pres_ex_id)
        except VerifierError as exc:
            log.error("Verifier status failed for %s: %s", pres_ex_id, exc)
            return Fail(ErrorKind.UPSTREAM_ERROR, UPSTREAM_MESSAGE)

        if not status.done:
            return Ok(PollOutcome(False, status.state, False, status.verified))

        if status.verified is not True:
            self.store.discard(session_id, EXPECTED_IDENTITY, pres_ex_id)
            log.info("Proof exchange %s finished unverified (state=%s)", pres_ex_id, status.state)
            return Ok(PollOutcome(False, status.state, True, status.verified))

        try:
            attributes = self.verifier.get_revealed_attributes(pres_ex_id)
        except VerifierError as exc:
            log.error("Verifier attributes failed for %s: %s", pres_ex_id, exc)
            return Fail(ErrorKind.UPSTREAM_ERROR, UPSTREAM_MESSAGE)

        expected = self.store.pop(session_id, EXPECTED_IDENTITY, pres_ex_id)
        if expected is None:
            # A concurrent poll already consumed the binding
            return Fail(ErrorKind.FORBIDDEN, "Login session not found or expired")

        if attributes.get("id_number", "").strip() != expected.id_number:
            log.warning("Proof exchange %s revealed an identity other than account %s's",
                        pres_ex_id, expected.account_id)
            return Fail(ErrorKind.UNAUTHORIZED, IDENTITY_MISMATCH)

        account = db.get(UserAccount, expected.account_id)
        person = db.get(Person, account.person_id) if account and account.person_id is not None else None
        if account is None or not account.is_active or person is None:
            return Fail(ErrorKind.UNAUTHORIZED, INVALID_CREDENTIALS)

        principal = UserPrincipal(
            account_id=account.id,
            person_id=person.id,
            id_type=person.id_type,
            id_number=person.id_number,
            display_name=_display_name(attributes, person, account),
            email=account.email,
        )

        if account.totp_enabled and account.totp_secret:
            self.store.put(session_id, LOGIN_PENDING_OTP, pres_ex_id, PendingSecondFactor(principal))
            return Ok(PollOutcome(False, status.state, True, True, otp_required=True, account_id=account.id))

        install_principal(self.store, session_id, principal)
        log.info("Proof login completed for account %s", account.id)
        return Ok(PollOutcome(True, status.state, True, True, redirect_url=DASHBOARD_URL,
                              display_name=principal.display_name, account_id=account.id))

    def verify_second_factor(self, db: Session, session_id: str, pres_ex_id: str, code: str) -> Result[PollOutcome]:
        pres_ex_id = (pres_ex_id or "").strip()
        if not pres_ex_id or self.store.get(session_id, LOGIN_PENDING_OTP, pres_ex_id) is None:
            return Fail(ErrorKind.FORBIDDEN, "No second-factor challenge pending", {"restartLogin": True})
        if not (code or "").strip():
            return Fail(ErrorKind.VALIDATION, "Verification code is required")

        # The attempt is charged before the code is checked, atomically per challenge
        pending = self.store.update(session_id, LOGIN_PENDING_OTP, pres_ex_id,
                                    lambda p: replace(p, attempts=p.attempts + 1))
        if pending is None:
            return Fail(ErrorKind.FORBIDDEN, "No second-factor challenge pending", {"restartLogin": True})
        if pending.attempts > self.max_otp_attempts:
            self.store.discard(session_id, LOGIN_PENDING_OTP, pres_ex_id)
            return Fail(ErrorKind.FORBIDDEN, TOO_MANY_CODES, {"restartLogin": True})

        account = db.get(UserAccount, pending.principal.account_id)
        if account is None or not account.totp_enabled or not account.totp_secret:
            self.store.discard(session_id, LOGIN_PENDING_OTP, pres_ex_id)
            return Fail(ErrorKind.FORBIDDEN, "Second factor is no longer available", {"restartLogin": True})

        step = self.codec.match(account.totp_secret, code, last_step=account.totp_last_time_step)
        if step is None:
            if pending.attempts >= self.max_otp_attempts:
                self.store.discard(session_id, LOGIN_PENDING_OTP, pres_ex_id)
                log.warning("Too many invalid login codes for account %s", account.id)
                return Fail(ErrorKind.FORBIDDEN, TOO_MANY_CODES, {"restartLogin": True})
            return Fail(ErrorKind.UNAUTHORIZED, "Invalid verification code",
                        {"attemptsRemaining": self.max_otp_attempts - pending.attempts})

        if self.store.pop(session_id, LOGIN_PENDING_OTP, pres_ex_id) is None:
            return Fail(ErrorKind.FORBIDDEN, "No second-factor challenge pending", {"restartLogin": True})

        account.totp_last_time_step = step
        db.add(account)
        db.commit()

        principal = pending.principal
        install_principal(self.store, session_id, principal)
        log.info("Proof login completed with second factor for account %s", account.id)
        return Ok(PollOutcome(True, "done", True, True, redirect_url=DASHBOARD_URL,
                              display_name=principal.display_name, account_id=account.id))
