import logging

from fastapi import APIRouter, Depends, status
from fastapi.responses import PlainTextResponse, StreamingResponse
from sqlmodel import Session

from ..audit.service import log_event
from ..auth.principals import AdminPrincipal, UserPrincipal
from ..auth.service import require_admin, require_user
from ..core.database import get_session
from ..core.errors import ErrorKind, Fail, error_response, link_error
from ..dependencies import get_ledger_gateway, get_link_authority, get_storage
from ..ledger.client import LedgerGateway
from ..ledger.service import trace_document
from ..links.service import LinkScope, SignedLinkAuthority, own_identifiers
from ..models.AccessRequest import DocumentTrace
from ..models.Person import PersonDocument
from .service import OwnDocumentView, list_own_documents, resolve_own_document
from .storage import DocumentStorage, iter_file

log = logging.getLogger(__name__)

router = APIRouter(prefix="/user/documents", tags=["documents"])
admin_router = APIRouter(prefix="/admin/documents", tags=["admin"])


@router.get("", response_model=list[OwnDocumentView])
def list_documents(
    principal: UserPrincipal = Depends(require_user),
    session: Session = Depends(get_session),
    authority: SignedLinkAuthority = Depends(get_link_authority)
):
    return list_own_documents(session, principal, authority)


def _serve_own(document_id: int, exp: str | None, sig: str | None, scope: LinkScope, inline: bool,
               principal: UserPrincipal, session: Session, authority: SignedLinkAuthority,
               storage: DocumentStorage):
    identifiers = own_identifiers(document_id, principal.id_type, principal.id_number)
    check = authority.validate(scope, identifiers, exp, sig)
    if isinstance(check, Fail):
        return link_error(check)

    document = resolve_own_document(session, principal, document_id)
    if isinstance(document, Fail):
        return error_response(document)
    stored = storage.locate(document.value)
    if isinstance(stored, Fail):
        return error_response(stored)

    try:
        file_like = storage.open(stored.value)
    except OSError:
        log.exception("Could not open document %s", document_id)
        return PlainTextResponse("could not open document", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

    return StreamingResponse(
        iter_file(file_like),
        media_type=stored.value.media_type,
        headers={"Content-Disposition": stored.value.content_disposition(inline)},
    )


@router.get("/{document_id}/view")
def view_document(
    document_id: int,
    exp: str | None = None,
    sig: str | None = None,
    principal: UserPrincipal = Depends(require_user),
    session: Session = Depends(get_session),
    authority: SignedLinkAuthority = Depends(get_link_authority),
    storage: DocumentStorage = Depends(get_storage)
):
    return _serve_own(document_id, exp, sig, LinkScope.OWN_DOCUMENT_VIEW, True,
                      principal, session, authority, storage)


@router.get("/{document_id}/download")
def download_document(
    document_id: int,
    exp: str | None = None,
    sig: str | None = None,
    principal: UserPrincipal = Depends(require_user),
    session: Session = Depends(get_session),
    authority: SignedLinkAuthority = Depends(get_link_authority),
    storage: DocumentStorage = Depends(get_storage)
):
    return _serve_own(document_id, exp, sig, LinkScope.OWN_DOCUMENT_DOWNLOAD, False,
                      principal, session, authority, storage)


@admin_router.get("/{document_id}/trace", response_model=DocumentTrace)
def admin_trace_document(
    document_id: int,
    admin: AdminPrincipal = Depends(require_admin),
    session: Session = Depends(get_session),
    gateway: LedgerGateway = Depends(get_ledger_gateway)
):
    """
    Ledger provenance for administrators. Gated by the admin session alone, no signed link.
    """
    document = session.get(PersonDocument, document_id)
    if document is None:
        return error_response(Fail(ErrorKind.NOT_FOUND, "Document not found"))
    result = trace_document(session, gateway, document)
    if isinstance(result, Fail):
        return error_response(result)
    log_event(session, admin.account_id, "admin.document.trace", subject=f"document:{document_id}")
    return result.value
