import os
import shutil
import tempfile
import unittest
from datetime import datetime, timezone
from unittest.mock import MagicMock

from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

from custodia.access_requests.service import AccessGrantLedger
from custodia.auth.service import get_password_hash
from custodia.core.database import get_session
from custodia.documents.storage import DocumentStorage
from custodia.ledger.client import LedgerGateway
from custodia.links.service import SignedLinkAuthority
from custodia.main import create_app
from custodia.mfa.totp import TotpCodec
from custodia.models.Account import AccountRole, UserAccount
from custodia.models.Person import IssuingEntity, Person, PersonDocument, ReviewStatus
from custodia.verifier.client import ProofStatus, ProofVerifierClient

PASSWORD = "S3cret!pass"

_hash_cache = {}


class FakeClock:
    """Epoch-seconds clock that only moves when told to."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDateClock:
    def __init__(self, now: datetime = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta) -> None:
        self.now += delta


def memory_engine():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    SQLModel.metadata.create_all(engine)
    return engine


def hashed(password: str) -> str:
    # argon2 is deliberately slow; hash each test password once per run
    if password not in _hash_cache:
        _hash_cache[password] = get_password_hash(password)
    return _hash_cache[password]


def seed_person(session: Session, id_number: str = "1001", id_type: str = "CC",
                first_name: str = "Ana", last_name: str = "Gomez") -> Person:
    person = Person(id_type=id_type, id_number=id_number, first_name=first_name, last_name=last_name)
    session.add(person)
    session.commit()
    session.refresh(person)
    return person


def seed_entity(session: Session, name: str = "City Registry", is_active: bool = True) -> IssuingEntity:
    entity = IssuingEntity(name=name, is_active=is_active)
    session.add(entity)
    session.commit()
    session.refresh(entity)
    return entity


def seed_document(session: Session, person: Person, title: str = "Birth certificate",
                  review_status: ReviewStatus = ReviewStatus.APPROVED,
                  file_path: str | None = None, file_name: str | None = None) -> PersonDocument:
    document = PersonDocument(person_id=person.id, title=title, review_status=review_status,
                              file_path=file_path, file_name=file_name)
    session.add(document)
    session.commit()
    session.refresh(document)
    return document


def seed_account(session: Session, email: str, role: AccountRole = AccountRole.USER,
                 password: str = PASSWORD, person: Person | None = None,
                 entity: IssuingEntity | None = None, is_active: bool = True) -> UserAccount:
    account = UserAccount(
        email=email,
        hashed_password=hashed(password),
        full_name=email.split("@")[0],
        role=role,
        is_active=is_active,
        person_id=person.id if person else None,
        entity_id=entity.id if entity else None,
    )
    session.add(account)
    session.commit()
    session.refresh(account)
    return account


def build_app(engine, **components):
    app = create_app(**components)

    def session_override():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = session_override
    return app


def client_for(app) -> TestClient:
    # No context manager: the lifespan would touch the configured database
    return TestClient(app)


class PortalTestCase(unittest.TestCase):
    """
    A fresh application per test: in-memory database, temporary byte store,
    a mocked proof verifier and ledger, and clocks the test controls.
    """

    def setUp(self):
        self.engine = memory_engine()
        self.storage_dir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.storage_dir, True)
        self._write_file("1001/cert.pdf", b"%PDF-1.4 birth certificate")
        self._write_file("1001/diploma.pdf", b"%PDF-1.4 diploma")
        self._write_file("2002/lease.pdf", b"%PDF-1.4 lease")

        self.link_clock = FakeClock()
        self.grant_clock = FakeDateClock()
        self.totp_clock = FakeClock()
        self.authority = SignedLinkAuthority("test-link-secret", default_ttl_seconds=300, clock=self.link_clock)
        self.codec = TotpCodec(digits=6, period_seconds=30, window_steps=1, clock=self.totp_clock)

        self.verifier = MagicMock(spec=ProofVerifierClient)
        self.verifier.start_exchange.side_effect = (f"ex-{n}" for n in range(1, 100))
        self.verifier.get_status.side_effect = lambda pres_ex_id: ProofStatus(pres_ex_id, "done", True)
        self.verifier.get_revealed_attributes.return_value = {
            "id_number": "1001", "first_name": "Ana", "last_name": "Gomez",
        }
        self.gateway = MagicMock(spec=LedgerGateway)
        self.gateway.network_name = "Test Ledger"

        self.app = build_app(
            self.engine,
            verifier=self.verifier,
            ledger_gateway=self.gateway,
            storage=DocumentStorage(self.storage_dir),
            link_authority=self.authority,
            grant_ledger=AccessGrantLedger(validity_days=15, clock=self.grant_clock),
            totp_codec=self.codec,
        )

        with Session(self.engine) as db:
            ana = seed_person(db, "1001", first_name="Ana", last_name="Gomez")
            self.person_id = ana.id
            bruno = seed_person(db, "2002", first_name="Bruno", last_name="Reis")
            self.other_person_id = bruno.id
            entity = seed_entity(db, "City Registry")
            self.entity_id = entity.id
            other_entity = seed_entity(db, "Tax Office")

            self.doc_a = seed_document(db, ana, "Birth certificate", file_path="1001/cert.pdf").id
            self.doc_b = seed_document(db, ana, "Diploma", file_path="1001/diploma.pdf",
                                       file_name="Diploma 2020.pdf").id
            self.doc_missing = seed_document(db, ana, "Lost deed", file_path="1001/deed.pdf").id
            self.doc_other = seed_document(db, bruno, "Lease", file_path="2002/lease.pdf").id

            self.user_account_id = seed_account(db, "ana@example.com", person=ana).id
            seed_account(db, "clerk@example.com", role=AccountRole.ISSUER, entity=entity)
            seed_account(db, "auditor@example.com", role=AccountRole.ISSUER, entity=other_entity)
            seed_account(db, "admin@example.com", role=AccountRole.ADMIN)

    def _write_file(self, relative: str, content: bytes) -> None:
        path = os.path.join(self.storage_dir, relative)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as f:
            f.write(content)

    def password_client(self, email: str) -> TestClient:
        client = client_for(self.app)
        response = client.post("/auth/login", json={"email": email, "password": PASSWORD})
        self.assertEqual(response.status_code, 200, response.text)
        return client

    def issuer_client(self) -> TestClient:
        return self.password_client("clerk@example.com")

    def user_client(self, email: str = "ana@example.com") -> TestClient:
        client = client_for(self.app)
        started = client.post("/login/start", json={"email": email, "password": PASSWORD})
        self.assertEqual(started.status_code, 200, started.text)
        polled = client.get("/login/poll", params={"presExId": started.json()["presExId"]})
        self.assertEqual(polled.status_code, 200, polled.text)
        self.assertTrue(polled.json()["authenticated"])
        return client
