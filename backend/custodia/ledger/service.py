import logging
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from pathlib import PurePosixPath

from sqlmodel import Session

from ..core.errors import ErrorKind, Fail, Ok, Result
from ..models.AccessRequest import DocumentTrace
from ..models.Person import Person, PersonDocument
from .client import LedgerError, LedgerGateway, LedgerRecord

log = logging.getLogger(__name__)

UNAVAILABLE = "Not available"
LEDGER_UNAVAILABLE = "The ledger service is unavailable. Please try again later."


def human_size(size_bytes: int | None) -> str:
    if not size_bytes or size_bytes <= 0:
        return UNAVAILABLE
    size = Decimal(size_bytes)
    for unit, factor in (("GB", 1024 ** 3), ("MB", 1024 ** 2), ("KB", 1024)):
        if size >= factor:
            return f"{(size / factor).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)} {unit}"
    return f"{size_bytes} B"


def human_timestamp(value: str) -> str:
    if not value:
        return UNAVAILABLE
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return value
    return parsed.strftime("%Y-%m-%d %H:%M")


def to_trace(record: LedgerRecord, network: str) -> DocumentTrace:
    return DocumentTrace(
        network=network,
        block_reference=record.doc_id,
        document_title=record.title,
        issuing_entity=record.issuing_entity or network,
        status="Registered",
        created_at=human_timestamp(record.created_at),
        size_human=human_size(record.size_bytes),
        file_name=PurePosixPath(record.file_path.replace("\\", "/")).name or "document",
    )


def trace_document(db: Session, gateway: LedgerGateway, document: PersonDocument) -> Result[DocumentTrace]:
    person = db.get(Person, document.person_id)
    if person is None:
        return Fail(ErrorKind.NOT_FOUND, "Document owner not found")

    try:
        record = gateway.find_document(person.id_type, person.id_number, document.file_path, document.title)
    except LedgerError as exc:
        log.error("Ledger lookup failed for document %s: %s", document.id, exc)
        return Fail(ErrorKind.UPSTREAM_ERROR, LEDGER_UNAVAILABLE)

    if record is None:
        return Fail(ErrorKind.NOT_FOUND, "Document is not registered on the ledger")
    return Ok(to_trace(record, gateway.network_name))
