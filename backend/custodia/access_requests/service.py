"""
Access requests: an issuing entity asks a person for time-bounded access to some of
their approved documents, and the person approves or rejects the request as a whole.

Status only moves forward (PENDING -> APPROVED | REJECTED, PENDING | APPROVED ->
EXPIRED). Expiry is observed, not enforced: a stale request is flipped to EXPIRED
by whichever read notices it first, there is no background sweep. Every transition
is a conditional UPDATE on the status the caller saw, so concurrent writers cannot
both win.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable

from sqlalchemy import update
from sqlmodel import Session, select

from ..core.clock import as_utc, utcnow
from ..core.errors import ErrorKind, Fail, Ok, Result
from ..core.settings import settings
from ..documents.storage import DocumentStorage, StoredFile
from ..ledger.client import LedgerGateway
from ..ledger.service import trace_document
from ..models.AccessRequest import (
    AccessRequest, AccessRequestItem, AccessRequestItemView, AccessRequestStatus,
    AccessRequestView, DocumentTrace, ItemLinks, TERMINAL_STATUSES
)
from ..models.Person import IssuingEntity, Person, PersonDocument, ReviewStatus

log = logging.getLogger(__name__)

MAX_TEXT_LENGTH = 300
MAX_PAGE_SIZE = 200

GRANT_UNAVAILABLE = "Access request not available"
GRANT_EXPIRED = "Access to this request has expired"


class AccessGrantLedger:
    def __init__(self, validity_days: int | None = None, clock: Callable[[], datetime] = utcnow):
        self.validity = timedelta(days=validity_days or settings.GRANT_VALIDITY_DAYS)
        self._clock = clock

    # ==========================================
    # Creation
    # ==========================================
    def create(self, db: Session, entity_id: int, subject_id: int | None, purpose: str | None,
               item_ids: Iterable[int] | None) -> Result[int]:
        document_ids = list(dict.fromkeys(item_ids or []))
        if not document_ids:
            return Fail(ErrorKind.VALIDATION, "Select at least one document")

        purpose = (purpose or "").strip()
        if not purpose:
            return Fail(ErrorKind.VALIDATION, "Purpose is required")
        if len(purpose) > MAX_TEXT_LENGTH:
            return Fail(ErrorKind.VALIDATION, f"Purpose must be at most {MAX_TEXT_LENGTH} characters")

        entity = db.get(IssuingEntity, entity_id)
        if entity is None or not entity.is_active:
            return Fail(ErrorKind.VALIDATION, "Requesting entity is not active")
        if subject_id is None or db.get(Person, subject_id) is None:
            return Fail(ErrorKind.VALIDATION, "Person not found")

        for document_id in document_ids:
            document = db.get(PersonDocument, document_id)
            if document is None:
                return Fail(ErrorKind.VALIDATION, f"Document {document_id} does not exist")
            if document.person_id != subject_id:
                return Fail(ErrorKind.VALIDATION, f"Document {document_id} does not belong to the person")
            if document.review_status != ReviewStatus.APPROVED:
                return Fail(ErrorKind.VALIDATION, f"Document {document_id} is not approved")

        now = self._clock()
        access_request = AccessRequest(
            entity_id=entity_id,
            person_id=subject_id,
            purpose=purpose,
            status=AccessRequestStatus.PENDING,
            requested_at=now,
            expires_at=now + self.validity,
        )
        db.add(access_request)
        db.flush()
        for document_id in document_ids:
            db.add(AccessRequestItem(access_request_id=access_request.id, person_document_id=document_id))
        db.commit()
        db.refresh(access_request)

        log.info("Access request %s created by entity %s for person %s (%d items)",
                 access_request.id, entity_id, subject_id, len(document_ids))
        return Ok(access_request.id)

    # ==========================================
    # Reads
    # ==========================================
    def list_for_entity(self, db: Session, entity_id: int, limit: int = 50, offset: int = 0) -> list[AccessRequest]:
        return self._list(db, AccessRequest.entity_id == entity_id, limit, offset)

    def list_for_subject(self, db: Session, subject_id: int, limit: int = 50, offset: int = 0) -> list[AccessRequest]:
        return self._list(db, AccessRequest.person_id == subject_id, limit, offset)

    def _list(self, db: Session, owner_clause, limit: int, offset: int) -> list[AccessRequest]:
        statement = (
            select(AccessRequest)
            .where(owner_clause)
            .order_by(AccessRequest.requested_at.desc(), AccessRequest.id.desc())
            .offset(max(offset, 0))
            .limit(min(max(limit, 1), MAX_PAGE_SIZE))
        )
        requests = list(db.exec(statement).all())
        for access_request in requests:
            self._observe_expiry(db, access_request)
        return requests

    def get_for_entity(self, db: Session, entity_id: int, request_id: int) -> Result[AccessRequest]:
        access_request = db.get(AccessRequest, request_id)
        if access_request is None or access_request.entity_id != entity_id:
            return Fail(ErrorKind.NOT_FOUND, "Access request not found")
        self._observe_expiry(db, access_request)
        return Ok(access_request)

    def get_for_subject(self, db: Session, subject_id: int, request_id: int) -> Result[AccessRequest]:
        access_request = db.get(AccessRequest, request_id)
        if access_request is None or access_request.person_id != subject_id:
            return Fail(ErrorKind.NOT_FOUND, "Access request not found")
        self._observe_expiry(db, access_request)
        return Ok(access_request)

    def to_view(self, db: Session, access_request: AccessRequest,
                links: dict[int, ItemLinks] | None = None) -> AccessRequestView:
        statement = (
            select(AccessRequestItem, PersonDocument)
            .join(PersonDocument, PersonDocument.id == AccessRequestItem.person_document_id)
            .where(AccessRequestItem.access_request_id == access_request.id)
            .order_by(AccessRequestItem.id)
        )
        items = [
            AccessRequestItemView(item_id=item.id, title=document.title, links=(links or {}).get(item.id))
            for item, document in db.exec(statement).all()
        ]
        return AccessRequestView(
            request_id=access_request.id,
            entity_id=access_request.entity_id,
            subject_id=access_request.person_id,
            purpose=access_request.purpose,
            status=access_request.status,
            requested_at=access_request.requested_at,
            decided_at=access_request.decided_at,
            expires_at=access_request.expires_at,
            decision_note=access_request.decision_note,
            items=items,
        )

    # ==========================================
    # Decision
    # ==========================================
    def decide(self, db: Session, request_id: int, subject_id: int, approve: bool,
               note: str | None = None) -> Result[AccessRequest]:
        access_request = db.get(AccessRequest, request_id)
        if access_request is None or access_request.person_id != subject_id:
            return Fail(ErrorKind.NOT_FOUND, "Access request not found")
        if access_request.status != AccessRequestStatus.PENDING:
            return Fail(ErrorKind.INVALID_STATE, "Access request is no longer pending")

        now = self._clock()
        if self._is_stale(access_request, now):
            self._expire(db, access_request, AccessRequestStatus.PENDING)
            return Fail(ErrorKind.INVALID_STATE, "Access request has expired")

        note = (note or "").strip() or None
        if note and len(note) > MAX_TEXT_LENGTH:
            return Fail(ErrorKind.VALIDATION, f"Note must be at most {MAX_TEXT_LENGTH} characters")

        decision = AccessRequestStatus.APPROVED if approve else AccessRequestStatus.REJECTED
        statement = (
            update(AccessRequest)
            .where(AccessRequest.id == request_id, AccessRequest.status == AccessRequestStatus.PENDING)
            .values(status=decision, decided_at=now, decision_note=note)
        )
        updated = db.execute(statement).rowcount
        db.commit()
        if updated == 0:
            return Fail(ErrorKind.INVALID_STATE, "Access request is no longer pending")

        db.refresh(access_request)
        log.info("Access request %s %s by person %s", request_id, decision.value, subject_id)
        return Ok(access_request)

    # ==========================================
    # Use of a grant
    # ==========================================
    def _approved_grant(self, db: Session, entity_id: int, request_id: int) -> Result[AccessRequest]:
        access_request = db.get(AccessRequest, request_id)
        if access_request is None or access_request.entity_id != entity_id:
            return Fail(ErrorKind.UNAUTHORIZED, GRANT_UNAVAILABLE)

        if access_request.status == AccessRequestStatus.APPROVED and self._is_stale(access_request, self._clock()):
            self._expire(db, access_request, AccessRequestStatus.APPROVED)
            return Fail(ErrorKind.INVALID_STATE, GRANT_EXPIRED)
        if access_request.status == AccessRequestStatus.EXPIRED:
            return Fail(ErrorKind.INVALID_STATE, GRANT_EXPIRED)
        if access_request.status != AccessRequestStatus.APPROVED:
            return Fail(ErrorKind.INVALID_STATE, "Access request is not approved")
        return Ok(access_request)

    def _granted_document(self, db: Session, entity_id: int, request_id: int,
                          item_id: int) -> Result[PersonDocument]:
        gate = self._approved_grant(db, entity_id, request_id)
        if isinstance(gate, Fail):
            return gate

        item = db.get(AccessRequestItem, item_id)
        if item is None or item.access_request_id != request_id:
            return Fail(ErrorKind.NOT_FOUND, "Document is not part of this request")
        document = db.get(PersonDocument, item.person_document_id)
        if document is None:
            return Fail(ErrorKind.NOT_FOUND, "Document not found")
        return Ok(document)

    def resolve_granted_resource(self, db: Session, entity_id: int, request_id: int, item_id: int,
                                 storage: DocumentStorage) -> Result[StoredFile]:
        document = self._granted_document(db, entity_id, request_id, item_id)
        if isinstance(document, Fail):
            return document
        return storage.locate(document.value)

    def resolve_granted_trace(self, db: Session, entity_id: int, request_id: int, item_id: int,
                              gateway: LedgerGateway) -> Result[DocumentTrace]:
        document = self._granted_document(db, entity_id, request_id, item_id)
        if isinstance(document, Fail):
            return document
        return trace_document(db, gateway, document.value)

    # ==========================================
    # Lazy expiry
    # ==========================================
    @staticmethod
    def _is_stale(access_request: AccessRequest, now: datetime) -> bool:
        return access_request.expires_at is not None and as_utc(access_request.expires_at) <= as_utc(now)

    def _observe_expiry(self, db: Session, access_request: AccessRequest) -> None:
        if access_request.status not in TERMINAL_STATUSES \
                and self._is_stale(access_request, self._clock()):
            self._expire(db, access_request, access_request.status)

    def _expire(self, db: Session, access_request: AccessRequest, seen: AccessRequestStatus) -> None:
        values = {"status": AccessRequestStatus.EXPIRED}
        if seen == AccessRequestStatus.PENDING:
            # an unanswered request is closed by its expiry
            values["decided_at"] = self._clock()
        statement = (
            update(AccessRequest)
            .where(AccessRequest.id == access_request.id, AccessRequest.status == seen)
            .values(**values)
        )
        if db.execute(statement).rowcount:
            log.info("Access request %s expired (was %s)", access_request.id, seen.value)
        db.commit()
        db.refresh(access_request)
