"""
Client for the external proof verifier (present-proof 2.0 admin API).

Only the contract consumed by the login flow lives here: start an exchange for an
identification number, read its status, read the revealed attributes.
"""
import logging
from dataclasses import dataclass
from typing import Any

import requests

from ..core.settings import settings

log = logging.getLogger(__name__)

DONE_STATES = frozenset({"done", "abandoned"})
REQUESTED_ATTRIBUTES = ["id_type", "id_number", "first_name", "last_name", "email"]


class VerifierError(Exception):
    pass


@dataclass(frozen=True)
class ProofStatus:
    pres_ex_id: str
    state: str
    verified: bool | None
    error: str | None = None

    @property
    def done(self) -> bool:
        return self.state.lower() in DONE_STATES


def _as_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    return None


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def extract_revealed_attributes(record: dict) -> dict[str, str]:
    """
    Reads the ``profile`` attribute group of an indy presentation, falling back to
    individually revealed attributes.
    """
    indy = _as_dict(_as_dict(_as_dict(record.get("by_format")).get("pres")).get("indy"))
    requested_proof = _as_dict(indy.get("requested_proof"))

    values = _as_dict(_as_dict(_as_dict(requested_proof.get("revealed_attr_groups")).get("profile")).get("values"))
    if not values:
        values = _as_dict(requested_proof.get("revealed_attrs"))

    attributes = {}
    for name, value in values.items():
        raw = _as_dict(value).get("raw")
        attributes[name] = "" if raw is None else str(raw)
    return attributes


class ProofVerifierClient:
    def __init__(
        self,
        admin_url: str | None = None,
        api_key: str | None = None,
        cred_def_id: str | None = None,
        holder_connection_id: str | None = None,
        holder_label: str | None = None,
        timeout_seconds: float | None = None,
        http: requests.Session | None = None,
    ):
        self.admin_url = (settings.VERIFIER_ADMIN_URL if admin_url is None else admin_url).rstrip("/")
        self.api_key = settings.VERIFIER_API_KEY if api_key is None else api_key
        self.cred_def_id = settings.VERIFIER_CRED_DEF_ID if cred_def_id is None else cred_def_id
        self.holder_connection_id = (settings.VERIFIER_HOLDER_CONNECTION_ID
                                     if holder_connection_id is None else holder_connection_id)
        self.holder_label = settings.VERIFIER_HOLDER_LABEL if holder_label is None else holder_label
        self.timeout_seconds = timeout_seconds or settings.VERIFIER_TIMEOUT_SECONDS
        self._http = http or requests.Session()

    def _request(self, method: str, path: str, **kwargs) -> dict:
        if not self.admin_url:
            raise VerifierError("VERIFIER_ADMIN_URL is not configured")

        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["X-API-KEY"] = self.api_key

        url = f"{self.admin_url}{path}"
        try:
            resp = self._http.request(method, url, headers=headers, timeout=self.timeout_seconds, **kwargs)
            resp.raise_for_status()
            body = resp.json()
        except requests.RequestException as exc:
            raise VerifierError(f"{method} {path} failed: {exc}") from exc
        except ValueError as exc:
            raise VerifierError(f"{method} {path} returned a non-JSON body") from exc

        if not isinstance(body, dict):
            raise VerifierError(f"{method} {path} returned an unexpected payload")
        return body

    def resolve_holder_connection(self) -> str:
        configured = (self.holder_connection_id or "").strip()
        if configured and configured.lower() != "auto":
            return configured

        body = self._request("GET", "/connections", params={"state": "active"})
        for connection in body.get("results") or []:
            connection = _as_dict(connection)
            if str(connection.get("their_label", "")).lower() == self.holder_label.lower():
                return str(connection.get("connection_id"))
        raise VerifierError(f"No active connection labelled '{self.holder_label}'")

    def proof_request(self, connection_id: str, id_number: str) -> dict:
        profile = {
            "names": REQUESTED_ATTRIBUTES,
            "restrictions": [{
                "cred_def_id": self.cred_def_id,
                "attr::id_number::value": id_number,
            }],
        }
        return {
            "comment": "Custodia login proof",
            "connection_id": connection_id,
            "auto_verify": True,
            "auto_remove": False,
            "presentation_request": {
                "indy": {
                    "name": "Custodia Login",
                    "version": "1.0",
                    "requested_attributes": {"profile": profile},
                    "requested_predicates": {},
                }
            },
        }

    def start_exchange(self, id_number: str) -> str | None:
        """Starts a presentation exchange bound to ``id_number``; returns its id."""
        connection_id = self.resolve_holder_connection()
        body = self._request("POST", "/present-proof-2.0/send-request",
                             json=self.proof_request(connection_id, id_number))
        pres_ex_id = body.get("pres_ex_id") or body.get("presentation_exchange_id")
        return str(pres_ex_id) if pres_ex_id else None

    def get_record(self, pres_ex_id: str) -> dict:
        return self._request("GET", f"/present-proof-2.0/records/{pres_ex_id}")

    def get_status(self, pres_ex_id: str) -> ProofStatus:
        record = self.get_record(pres_ex_id)
        return ProofStatus(
            pres_ex_id=pres_ex_id,
            state=str(record.get("state") or ""),
            verified=_as_bool(record.get("verified")),
            error=record.get("error_msg") or None,
        )

    def get_revealed_attributes(self, pres_ex_id: str) -> dict[str, str]:
        return extract_revealed_attributes(self.get_record(pres_ex_id))
