"""
Authenticated principals.

A principal is resolved once, when a login completes, and stored in the session
security context. Route groups then depend on exactly the kind they accept
(``require_user``, ``require_issuer``, ``require_admin``).
"""
from dataclasses import dataclass
from typing import ClassVar, Union


@dataclass(frozen=True)
class UserPrincipal:
    """End user authenticated through a verified identity proof."""
    kind: ClassVar[str] = "USER"

    account_id: int
    person_id: int
    id_type: str
    id_number: str
    display_name: str
    email: str | None = None


@dataclass(frozen=True)
class IssuerPrincipal:
    kind: ClassVar[str] = "ISSUER"

    account_id: int
    entity_id: int
    display_name: str
    email: str | None = None


@dataclass(frozen=True)
class AdminPrincipal:
    kind: ClassVar[str] = "ADMIN"

    account_id: int
    display_name: str
    email: str | None = None


Principal = Union[UserPrincipal, IssuerPrincipal, AdminPrincipal]
