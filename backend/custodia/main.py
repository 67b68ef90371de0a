import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from .core.database import create_db_and_tables
from .core.errors import ErrorKind, Fail, error_response
from .core.settings import settings
from .core.logging_config import configure_logging
from .core.rate_limit import SlidingWindowRateLimiter, client_ip
from .core.session_store import SessionBindingStore
from .models.Account import UserAccount # Import models to register them with SQLModel
from .models.Person import Person, IssuingEntity, PersonDocument
from .models.AccessRequest import AccessRequest, AccessRequestItem
from .models.Audit import AuditLog
from .core.init_db import init_db

from .access_requests.service import AccessGrantLedger
from .auth.service import decode_session_cookie, encode_session_cookie, new_session_id
from .documents.storage import DocumentStorage
from .ledger.client import LedgerGateway
from .links.service import SignedLinkAuthority
from .login.service import ProofLoginProtocol
from .mfa.service import SecondFactorEnrollment
from .mfa.totp import TotpCodec
from .verifier.client import ProofVerifierClient

from .auth.router import router as auth_router
from .login.router import router as login_router
from .registration.router import router as registration_router
from .mfa.router import router as mfa_router
from .access_requests.router import router as access_requests_router, user_router as user_access_requests_router
from .documents.router import router as documents_router, admin_router as admin_documents_router
from .audit.router import router as audit_router

log = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    create_db_and_tables()
    init_db()
    yield


def create_app(
    verifier: ProofVerifierClient | None = None,
    ledger_gateway: LedgerGateway | None = None,
    storage: DocumentStorage | None = None,
    link_authority: SignedLinkAuthority | None = None,
    grant_ledger: AccessGrantLedger | None = None,
    binding_store: SessionBindingStore | None = None,
    totp_codec: TotpCodec | None = None,
) -> FastAPI:
    app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)

    store = binding_store or SessionBindingStore(settings.SESSION_BINDING_TTL_SECONDS)
    codec = totp_codec or TotpCodec()
    app.state.binding_store = store
    app.state.link_authority = link_authority or SignedLinkAuthority()
    app.state.grant_ledger = grant_ledger or AccessGrantLedger()
    app.state.storage = storage or DocumentStorage()
    app.state.ledger_gateway = ledger_gateway or LedgerGateway()
    app.state.proof_login = ProofLoginProtocol(verifier or ProofVerifierClient(), store, codec)
    app.state.enrollment = SecondFactorEnrollment(store, codec)
    app.state.rate_limiter = SlidingWindowRateLimiter(settings.RATE_LIMIT_MAX_REQUESTS,
                                                      settings.RATE_LIMIT_WINDOW_SECONDS)

    @app.middleware("http")
    async def rate_limit(request: Request, call_next):
        limiter = request.app.state.rate_limiter
        if settings.RATE_LIMIT_ENABLED and limiter.applies_to(request):
            ip = client_ip(request)
            if not limiter.allow(f"{ip}|{request.url.path}"):
                log.warning("Rate limit exceeded for %s on %s", ip, request.url.path)
                return JSONResponse(
                    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                    content={"error": "Too many attempts. Please wait a moment and try again.", "kind": "RATE_LIMITED"},
                    headers={"Retry-After": str(limiter.window_seconds)},
                )
        return await call_next(request)

    # Registered last so it wraps everything above, 429 responses included
    @app.middleware("http")
    async def browser_session(request: Request, call_next):
        session_id = decode_session_cookie(request.cookies.get(settings.SESSION_COOKIE_NAME))
        fresh = session_id is None
        if fresh:
            session_id = new_session_id()
        request.state.session_id = session_id

        response = await call_next(request)

        if fresh:
            response.set_cookie(
                settings.SESSION_COOKIE_NAME,
                encode_session_cookie(session_id),
                max_age=settings.SESSION_TTL_MINUTES * 60,
                httponly=True,
                secure=settings.SESSION_COOKIE_SECURE,
                samesite="lax",
            )
        response.headers["Cache-Control"] = "no-store"
        response.headers["Pragma"] = "no-cache"
        return response

    @app.exception_handler(RequestValidationError)
    async def invalid_request(request: Request, exc: RequestValidationError):
        fields = sorted({".".join(str(part) for part in error.get("loc", ()) if part != "body")
                         for error in exc.errors()} - {""})
        return error_response(Fail(ErrorKind.VALIDATION, "Malformed request", {"fields": fields}))

    app.include_router(auth_router)
    app.include_router(login_router)
    app.include_router(registration_router)
    app.include_router(mfa_router)
    app.include_router(access_requests_router)
    app.include_router(user_access_requests_router)
    app.include_router(documents_router)
    app.include_router(admin_documents_router)
    app.include_router(audit_router)

    @app.get("/")
    def read_root():
        return {"message": f"Welcome to {settings.PROJECT_NAME}"}

    return app


app = create_app()
