from fastapi import Request

from .access_requests.service import AccessGrantLedger
from .documents.storage import DocumentStorage
from .ledger.client import LedgerGateway
from .links.service import SignedLinkAuthority
from .login.service import ProofLoginProtocol
from .mfa.service import SecondFactorEnrollment

# Application-wide components are built once in create_app() and kept on app.state

def get_link_authority(request: Request) -> SignedLinkAuthority:
    return request.app.state.link_authority

def get_grant_ledger(request: Request) -> AccessGrantLedger:
    return request.app.state.grant_ledger

def get_storage(request: Request) -> DocumentStorage:
    return request.app.state.storage

def get_ledger_gateway(request: Request) -> LedgerGateway:
    return request.app.state.ledger_gateway

def get_proof_login(request: Request) -> ProofLoginProtocol:
    return request.app.state.proof_login

def get_enrollment(request: Request) -> SecondFactorEnrollment:
    return request.app.state.enrollment
