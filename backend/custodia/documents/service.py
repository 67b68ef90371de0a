from sqlmodel import Session, select

from ..auth.principals import UserPrincipal
from ..core.errors import ErrorKind, Fail, Ok, Result
from ..links.service import LinkScope, SignedLinkAuthority, own_identifiers
from ..models.Account import CamelModel
from ..models.Person import Person, PersonDocument, ReviewStatus


class OwnDocumentView(CamelModel):
    document_id: int
    title: str
    review_status: ReviewStatus
    file_name: str | None = None
    size_bytes: int | None = None
    view_url: str
    download_url: str
    expires_at: int


def own_links(authority: SignedLinkAuthority, principal: UserPrincipal, document_id: int) -> tuple[str, str, int]:
    base = f"/user/documents/{document_id}"
    identifiers = own_identifiers(document_id, principal.id_type, principal.id_number)
    view_url, expires_at = authority.signed_path(f"{base}/view", LinkScope.OWN_DOCUMENT_VIEW, identifiers)
    download_url, _ = authority.signed_path(f"{base}/download", LinkScope.OWN_DOCUMENT_DOWNLOAD, identifiers)
    return view_url, download_url, expires_at


def list_own_documents(db: Session, principal: UserPrincipal, authority: SignedLinkAuthority) -> list[OwnDocumentView]:
    statement = (
        select(PersonDocument)
        .where(PersonDocument.person_id == principal.person_id)
        .order_by(PersonDocument.created_at.desc(), PersonDocument.id.desc())
    )
    views = []
    for document in db.exec(statement).all():
        view_url, download_url, expires_at = own_links(authority, principal, document.id)
        views.append(OwnDocumentView(
            document_id=document.id,
            title=document.title,
            review_status=document.review_status,
            file_name=document.file_name,
            size_bytes=document.size_bytes,
            view_url=view_url,
            download_url=download_url,
            expires_at=expires_at,
        ))
    return views


def resolve_own_document(db: Session, principal: UserPrincipal, document_id: int) -> Result[PersonDocument]:
    """
    Resolves by the session identity (id type, id number), never by anything the
    client sends besides the document id.
    """
    person = db.exec(
        select(Person).where(Person.id_number == principal.id_number, Person.id_type == principal.id_type)
    ).first()
    document = db.get(PersonDocument, document_id)
    if person is None or document is None or document.person_id != person.id:
        return Fail(ErrorKind.NOT_FOUND, "Document not found")
    return Ok(document)
