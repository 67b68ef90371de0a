import logging
import re

from sqlmodel import Session, select

from ..auth.service import find_account_by_email, get_password_hash
from ..core.errors import ErrorKind, Fail, Ok, Result
from ..models.Account import AccountRole, RegisterRequest, UserAccount
from ..models.Person import Person

log = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


def password_problem(password: str) -> str | None:
    if len(password) < MIN_PASSWORD_LENGTH:
        return f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
    if not re.search(r"[A-Za-z]", password):
        return "Password must contain a letter"
    if not re.search(r"\d", password):
        return "Password must contain a digit"
    if not re.search(r"[^A-Za-z0-9]", password):
        return "Password must contain a special character"
    return None


def register_account(db: Session, data: RegisterRequest) -> Result[UserAccount]:
    """
    Creates an end-user account for a person that is already on record.
    """
    id_type = data.id_type.strip().upper()
    id_number = data.id_number.strip()
    email = str(data.email).strip().lower()

    if not id_type or not id_number:
        return Fail(ErrorKind.VALIDATION, "Identification type and number are required")
    if not data.password:
        return Fail(ErrorKind.VALIDATION, "Password is required")
    if data.password != data.confirm_password:
        return Fail(ErrorKind.VALIDATION, "Password confirmation does not match")
    problem = password_problem(data.password)
    if problem:
        return Fail(ErrorKind.VALIDATION, problem)

    person = db.exec(select(Person).where(Person.id_number == id_number)).first()
    if person is None or person.id_type.upper() != id_type:
        return Fail(ErrorKind.VALIDATION, "No person is registered with that identification")

    if db.exec(select(UserAccount).where(UserAccount.person_id == person.id)).first():
        return Fail(ErrorKind.VALIDATION, "An account already exists for this person")
    if find_account_by_email(db, email):
        return Fail(ErrorKind.VALIDATION, "Email is already in use")

    full_name = " ".join(p for p in (person.first_name.strip(), person.last_name.strip()) if p)
    account = UserAccount(
        email=email,
        hashed_password=get_password_hash(data.password),
        full_name=full_name or person.id_number,
        role=AccountRole.USER,
        is_active=True,
        person_id=person.id,
    )
    db.add(account)
    if not person.email:
        person.email = email
        db.add(person)
    db.commit()
    db.refresh(account)

    log.info("Registered account %s for person %s", account.id, person.id)
    return Ok(account)
