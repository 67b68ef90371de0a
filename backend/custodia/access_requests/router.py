import logging
from urllib.parse import quote

from fastapi import APIRouter, Depends, Form, Response, status
from fastapi.responses import PlainTextResponse, RedirectResponse, StreamingResponse
from sqlmodel import Session

from ..audit.service import log_event
from ..auth.principals import IssuerPrincipal, UserPrincipal
from ..auth.service import require_issuer, require_user
from ..core.database import get_session
from ..core.errors import ErrorKind, Fail, error_response, link_error
from ..dependencies import get_grant_ledger, get_ledger_gateway, get_link_authority, get_storage
from ..documents.storage import DocumentStorage, iter_file
from ..ledger.client import LedgerGateway
from ..links.service import LinkScope, SignedLinkAuthority, granted_identifiers
from ..models.AccessRequest import (
    AccessRequest, AccessRequestCreate, AccessRequestCreated, AccessRequestStatus,
    AccessRequestView, DocumentTrace, ItemLinks
)
from .service import AccessGrantLedger

log = logging.getLogger(__name__)

router = APIRouter(prefix="/access-requests", tags=["access-requests"])
user_router = APIRouter(prefix="/user/access-requests", tags=["access-requests"])

ISSUER_LIST_URL = "/access-requests"
USER_LIST_URL = "/user/access-requests"


def _gone_json(failure: Fail) -> Response:
    response = error_response(failure)
    response.status_code = status.HTTP_410_GONE
    return response


def _item_links(authority: SignedLinkAuthority, request_id: int, item_id: int) -> ItemLinks:
    base = f"/access-requests/{request_id}/items/{item_id}"
    identifiers = granted_identifiers(request_id, item_id)
    view_url, expires_at = authority.signed_path(f"{base}/view", LinkScope.GRANTED_DOCUMENT_VIEW, identifiers)
    download_url, _ = authority.signed_path(f"{base}/download", LinkScope.GRANTED_DOCUMENT_DOWNLOAD, identifiers)
    block_url, _ = authority.signed_path(f"{base}/block", LinkScope.GRANTED_DOCUMENT_TRACE, identifiers)
    return ItemLinks(view_url=view_url, download_url=download_url, block_url=block_url, expires_at=expires_at)


# ==========================================
# Requesting entity
# ==========================================
@router.post("", response_model=AccessRequestCreated)
def create_access_request(
    data: AccessRequestCreate,
    issuer: IssuerPrincipal = Depends(require_issuer),
    session: Session = Depends(get_session),
    ledger: AccessGrantLedger = Depends(get_grant_ledger)
):
    result = ledger.create(session, issuer.entity_id, data.subject_id, data.purpose, data.item_ids)
    if isinstance(result, Fail):
        return error_response(result)

    log_event(session, issuer.account_id, "access_request.created", subject=f"access_request:{result.value}",
              details=f"entity {issuer.entity_id} -> person {data.subject_id}")
    return AccessRequestCreated(request_id=result.value, status=AccessRequestStatus.PENDING)


@router.get("", response_model=list[AccessRequestView])
def list_entity_requests(
    limit: int = 50,
    offset: int = 0,
    issuer: IssuerPrincipal = Depends(require_issuer),
    session: Session = Depends(get_session),
    ledger: AccessGrantLedger = Depends(get_grant_ledger)
):
    return [ledger.to_view(session, r) for r in ledger.list_for_entity(session, issuer.entity_id, limit, offset)]


@router.get("/{request_id}", response_model=AccessRequestView)
def get_entity_request(
    request_id: int,
    issuer: IssuerPrincipal = Depends(require_issuer),
    session: Session = Depends(get_session),
    ledger: AccessGrantLedger = Depends(get_grant_ledger),
    authority: SignedLinkAuthority = Depends(get_link_authority)
):
    """
    Request detail. Signed links are minted for every item while the grant is usable.
    """
    result = ledger.get_for_entity(session, issuer.entity_id, request_id)
    if isinstance(result, Fail):
        return error_response(result)

    access_request: AccessRequest = result.value
    links = None
    if access_request.status == AccessRequestStatus.APPROVED:
        links = {item.id: _item_links(authority, access_request.id, item.id) for item in access_request.items}
    return ledger.to_view(session, access_request, links)


def _serve_granted(
    request_id: int, item_id: int, exp: str | None, sig: str | None, scope: LinkScope, inline: bool,
    issuer: IssuerPrincipal, session: Session, ledger: AccessGrantLedger,
    authority: SignedLinkAuthority, storage: DocumentStorage
) -> Response:
    check = authority.validate(scope, granted_identifiers(request_id, item_id), exp, sig)
    if isinstance(check, Fail):
        return link_error(check)

    result = ledger.resolve_granted_resource(session, issuer.entity_id, request_id, item_id, storage)
    if isinstance(result, Fail):
        if result.kind == ErrorKind.INVALID_STATE:
            return link_error(result)
        return RedirectResponse(f"{ISSUER_LIST_URL}?error={quote(result.message)}", status_code=status.HTTP_302_FOUND)

    stored = result.value
    try:
        file_like = storage.open(stored)
    except OSError:
        log.exception("Could not open %s for access request %s item %s", stored.path, request_id, item_id)
        return PlainTextResponse("could not open document", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

    action = "access_request.document.view" if inline else "access_request.document.download"
    log_event(session, issuer.account_id, action, subject=f"access_request:{request_id}", details=f"item {item_id}")
    return StreamingResponse(
        iter_file(file_like),
        media_type=stored.media_type,
        headers={"Content-Disposition": stored.content_disposition(inline)},
    )


@router.get("/{request_id}/items/{item_id}/view")
def view_granted_document(
    request_id: int,
    item_id: int,
    exp: str | None = None,
    sig: str | None = None,
    issuer: IssuerPrincipal = Depends(require_issuer),
    session: Session = Depends(get_session),
    ledger: AccessGrantLedger = Depends(get_grant_ledger),
    authority: SignedLinkAuthority = Depends(get_link_authority),
    storage: DocumentStorage = Depends(get_storage)
):
    return _serve_granted(request_id, item_id, exp, sig, LinkScope.GRANTED_DOCUMENT_VIEW, True,
                          issuer, session, ledger, authority, storage)


@router.get("/{request_id}/items/{item_id}/download")
def download_granted_document(
    request_id: int,
    item_id: int,
    exp: str | None = None,
    sig: str | None = None,
    issuer: IssuerPrincipal = Depends(require_issuer),
    session: Session = Depends(get_session),
    ledger: AccessGrantLedger = Depends(get_grant_ledger),
    authority: SignedLinkAuthority = Depends(get_link_authority),
    storage: DocumentStorage = Depends(get_storage)
):
    return _serve_granted(request_id, item_id, exp, sig, LinkScope.GRANTED_DOCUMENT_DOWNLOAD, False,
                          issuer, session, ledger, authority, storage)


@router.get("/{request_id}/items/{item_id}/block", response_model=DocumentTrace)
def trace_granted_document(
    request_id: int,
    item_id: int,
    exp: str | None = None,
    sig: str | None = None,
    issuer: IssuerPrincipal = Depends(require_issuer),
    session: Session = Depends(get_session),
    ledger: AccessGrantLedger = Depends(get_grant_ledger),
    authority: SignedLinkAuthority = Depends(get_link_authority),
    gateway: LedgerGateway = Depends(get_ledger_gateway)
):
    """
    Ledger provenance of a granted document.
    """
    check = authority.validate(LinkScope.GRANTED_DOCUMENT_TRACE, granted_identifiers(request_id, item_id), exp, sig)
    if isinstance(check, Fail):
        return error_response(check)

    result = ledger.resolve_granted_trace(session, issuer.entity_id, request_id, item_id, gateway)
    if isinstance(result, Fail):
        if result.kind == ErrorKind.INVALID_STATE:
            return _gone_json(result)
        return error_response(result)
    return result.value


# ==========================================
# Subject (document owner)
# ==========================================
def _decide(request_id: int, approve: bool, note: str | None, principal: UserPrincipal,
            session: Session, ledger: AccessGrantLedger) -> RedirectResponse:
    result = ledger.decide(session, request_id, principal.person_id, approve, note)
    if isinstance(result, Fail):
        return RedirectResponse(f"{USER_LIST_URL}?error={quote(result.message)}", status_code=status.HTTP_303_SEE_OTHER)

    decision = result.value.status.value
    log_event(session, principal.account_id, f"access_request.{decision.lower()}",
              subject=f"access_request:{request_id}", details=result.value.decision_note)
    return RedirectResponse(f"{USER_LIST_URL}?decided={request_id}", status_code=status.HTTP_303_SEE_OTHER)


@router.post("/{request_id}/approve")
def approve_access_request(
    request_id: int,
    note: str | None = Form(default=None),
    principal: UserPrincipal = Depends(require_user),
    session: Session = Depends(get_session),
    ledger: AccessGrantLedger = Depends(get_grant_ledger)
):
    return _decide(request_id, True, note, principal, session, ledger)


@router.post("/{request_id}/reject")
def reject_access_request(
    request_id: int,
    note: str | None = Form(default=None),
    principal: UserPrincipal = Depends(require_user),
    session: Session = Depends(get_session),
    ledger: AccessGrantLedger = Depends(get_grant_ledger)
):
    return _decide(request_id, False, note, principal, session, ledger)


@user_router.get("", response_model=list[AccessRequestView])
def list_subject_requests(
    limit: int = 50,
    offset: int = 0,
    principal: UserPrincipal = Depends(require_user),
    session: Session = Depends(get_session),
    ledger: AccessGrantLedger = Depends(get_grant_ledger)
):
    return [ledger.to_view(session, r) for r in ledger.list_for_subject(session, principal.person_id, limit, offset)]


@user_router.get("/{request_id}", response_model=AccessRequestView)
def get_subject_request(
    request_id: int,
    principal: UserPrincipal = Depends(require_user),
    session: Session = Depends(get_session),
    ledger: AccessGrantLedger = Depends(get_grant_ledger)
):
    result = ledger.get_for_subject(session, principal.person_id, request_id)
    if isinstance(result, Fail):
        return error_response(result)
    return ledger.to_view(session, result.value)
