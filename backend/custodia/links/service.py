"""
Signed, time-limited capability links.

A link carries ``exp`` (epoch seconds) and ``sig`` (HMAC-SHA256, base64url without
padding) computed over the ``v1`` canonical form::

    v1\\n<SCOPE>\\n<k1>=<v1>&<k2>=<v2>...\\n<exp>

Keys are sorted and every key and value is percent-encoded with no safe characters,
so the encoding is order-stable and unambiguous. Links are bearer credentials: there
is no revocation list, only expiry.
"""
import base64
import logging
import os
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping
from urllib.parse import quote, urlencode

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac

from ..core.errors import ErrorKind, Fail, Ok, Result
from ..core.settings import settings

log = logging.getLogger(__name__)

CANONICAL_VERSION = "v1"
MIN_TTL_SECONDS = 30

_SIG_PATTERN = re.compile(r"^[A-Za-z0-9_-]{43}$")


class LinkScope(str, Enum):
    OWN_DOCUMENT_VIEW = "OWN_DOCUMENT_VIEW"
    OWN_DOCUMENT_DOWNLOAD = "OWN_DOCUMENT_DOWNLOAD"
    GRANTED_DOCUMENT_VIEW = "GRANTED_DOCUMENT_VIEW"
    GRANTED_DOCUMENT_DOWNLOAD = "GRANTED_DOCUMENT_DOWNLOAD"
    GRANTED_DOCUMENT_TRACE = "GRANTED_DOCUMENT_TRACE"
    # Session-gated, never signed
    ADMIN_TRACE = "ADMIN_TRACE"


# Scopes sharing an identifier shape; a signature made for one of them presented
# to another is a scope mismatch rather than tampering.
_FAMILIES = (
    (LinkScope.OWN_DOCUMENT_VIEW, LinkScope.OWN_DOCUMENT_DOWNLOAD),
    (LinkScope.GRANTED_DOCUMENT_VIEW, LinkScope.GRANTED_DOCUMENT_DOWNLOAD, LinkScope.GRANTED_DOCUMENT_TRACE),
)


def sibling_scopes(scope: LinkScope) -> tuple[LinkScope, ...]:
    for family in _FAMILIES:
        if scope in family:
            return tuple(s for s in family if s is not scope)
    return ()


def own_identifiers(document_id: int, id_type: str, id_number: str) -> dict[str, Any]:
    return {"documentId": document_id, "idType": id_type, "idNumber": id_number}


def granted_identifiers(request_id: int, item_id: int) -> dict[str, Any]:
    return {"requestId": request_id, "itemId": item_id}


def canonical_message(scope: LinkScope, identifiers: Mapping[str, Any], exp: int) -> bytes:
    pairs = "&".join(
        quote(str(key), safe="") + "=" + quote(str(identifiers[key]), safe="")
        for key in sorted(identifiers, key=str)
    )
    return "\n".join((CANONICAL_VERSION, scope.value, pairs, str(exp))).encode("utf-8")


def _encode_sig(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _decode_sig(sig: Any) -> bytes | None:
    if not isinstance(sig, str) or not _SIG_PATTERN.match(sig):
        return None
    try:
        raw = base64.urlsafe_b64decode(sig + "=" * (-len(sig) % 4))
    except ValueError:
        return None
    # Reject non-canonical spellings of the same bytes
    if _encode_sig(raw) != sig:
        return None
    return raw


def _parse_exp(exp: Any) -> int | None:
    if isinstance(exp, bool):
        return None
    if isinstance(exp, int):
        return exp
    if isinstance(exp, str) and exp.isascii() and exp.isdigit():
        return int(exp)
    return None


@dataclass(frozen=True)
class SignedLink:
    exp: int
    sig: str

    def as_query(self) -> dict[str, str]:
        return {"exp": str(self.exp), "sig": self.sig}


class SignedLinkAuthority:
    """Mints and checks signed links; holds the only copy of the signing key."""

    def __init__(
        self,
        secret: str | bytes | None = None,
        default_ttl_seconds: int | None = None,
        clock: Callable[[], float] = time.time,
    ):
        if secret is None:
            secret = settings.SIGNED_LINK_SECRET
        if not secret:
            log.warning("SIGNED_LINK_SECRET is not set; using a random per-process key, links die on restart")
            secret = os.urandom(32)
        self._key = secret.encode("utf-8") if isinstance(secret, str) else bytes(secret)

        if default_ttl_seconds is None:
            default_ttl_seconds = max(MIN_TTL_SECONDS, settings.SIGNED_LINK_TTL_SECONDS)
        self.default_ttl_seconds = default_ttl_seconds
        self._clock = clock

    def issue(self, scope: LinkScope, identifiers: Mapping[str, Any], ttl_seconds: int | None = None) -> SignedLink:
        if scope is LinkScope.ADMIN_TRACE:
            raise ValueError("ADMIN_TRACE is session-gated and cannot be signed")
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        exp = int(self._clock()) + ttl
        return SignedLink(exp=exp, sig=_encode_sig(self._digest(scope, identifiers, exp)))

    def validate(self, scope: LinkScope, identifiers: Mapping[str, Any], exp: Any, sig: Any) -> Result[None]:
        """
        Checks the signature first, then the expiry. A bad signature is TAMPERED
        whatever ``exp`` says.
        """
        if scope is LinkScope.ADMIN_TRACE:
            return Fail(ErrorKind.SCOPE_MISMATCH, "This resource is not reachable through a signed link")

        exp_value = _parse_exp(exp)
        raw_sig = _decode_sig(sig)
        if exp_value is None or raw_sig is None:
            return Fail(ErrorKind.TAMPERED, "Link is missing or malformed")

        if not self._verify(scope, identifiers, exp_value, raw_sig):
            for sibling in sibling_scopes(scope):
                if self._verify(sibling, identifiers, exp_value, raw_sig):
                    return Fail(ErrorKind.SCOPE_MISMATCH, "Link was issued for a different action")
            return Fail(ErrorKind.TAMPERED, "Link signature is invalid")

        if exp_value <= self._clock():
            return Fail(ErrorKind.EXPIRED, "Link has expired")
        return Ok(None)

    def signed_path(self, path: str, scope: LinkScope, identifiers: Mapping[str, Any],
                    ttl_seconds: int | None = None) -> tuple[str, int]:
        """Returns ``(path?exp=..&sig=.., exp)``."""
        link = self.issue(scope, identifiers, ttl_seconds)
        return f"{path}?{urlencode(link.as_query())}", link.exp

    def _digest(self, scope: LinkScope, identifiers: Mapping[str, Any], exp: int) -> bytes:
        h = hmac.HMAC(self._key, hashes.SHA256())
        h.update(canonical_message(scope, identifiers, exp))
        return h.finalize()

    def _verify(self, scope: LinkScope, identifiers: Mapping[str, Any], exp: int, raw_sig: bytes) -> bool:
        h = hmac.HMAC(self._key, hashes.SHA256())
        h.update(canonical_message(scope, identifiers, exp))
        try:
            h.verify(raw_sig)
        except InvalidSignature:
            return False
        return True
