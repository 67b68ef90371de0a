import logging

from sqlmodel import Session, select
from .database import engine
from .settings import settings
from ..models.Account import AccountRole, UserAccount
from ..auth.service import get_password_hash

log = logging.getLogger(__name__)

def init_db():
    if not settings.ADMIN_PASSWORD:
        log.info("ADMIN_PASSWORD is not set; skipping administrator seeding")
        return

    with Session(engine) as session:
        email = settings.ADMIN_EMAIL.strip().lower()
        statement = select(UserAccount).where(UserAccount.email == email)
        admin = session.exec(statement).first()

        if not admin:
            log.info("Creating initial administrator account: %s", email)
            admin = UserAccount(
                email=email,
                hashed_password=get_password_hash(settings.ADMIN_PASSWORD),
                full_name="Administrator",
                role=AccountRole.ADMIN,
                is_active=True,
            )
            session.add(admin)
            session.commit()
            log.info("Administrator account created successfully.")
        else:
            log.info("Administrator account already exists.")
