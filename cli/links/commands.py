from typing import List
import typer

from cli.core.utils import parse_identifiers
from custodia.core.settings import settings
from custodia.core.errors import Fail
from custodia.links.service import LinkScope, SignedLinkAuthority


app = typer.Typer(help="Mint and check signed document links with the server key")


def _authority() -> SignedLinkAuthority:
    if not settings.SIGNED_LINK_SECRET:
        typer.echo("SIGNED_LINK_SECRET is not configured; links signed here would not validate on the server.")
        raise typer.Exit(code=1)
    return SignedLinkAuthority(settings.SIGNED_LINK_SECRET)


def _scope(value: str) -> LinkScope:
    try:
        return LinkScope(value.strip().upper())
    except ValueError:
        raise typer.BadParameter(f"Unknown scope '{value}'. Choose from: {', '.join(s.value for s in LinkScope)}")


@app.command("sign")
def sign(
    scope: str = typer.Option(..., "--scope", "-s", help="Link scope, e.g. GRANTED_DOCUMENT_VIEW"),
    ids: List[str] = typer.Option(..., "--id", help="Identifier as key=value (repeatable)"),
    path: str = typer.Option("", "--path", help="Path to append the signature to"),
    ttl: int = typer.Option(None, "--ttl", help="Lifetime in seconds"),
):
    """
    Print a signed link (or just its exp/sig when no path is given).
    """
    link_scope = _scope(scope)
    if link_scope is LinkScope.ADMIN_TRACE:
        typer.echo("ADMIN_TRACE is session-gated and cannot be signed.")
        raise typer.Exit(code=1)

    authority = _authority()
    identifiers = parse_identifiers(ids)
    if path:
        url, exp = authority.signed_path(path, link_scope, identifiers, ttl)
        typer.echo(url)
    else:
        link = authority.issue(link_scope, identifiers, ttl)
        typer.echo(f"exp={link.exp}")
        typer.echo(f"sig={link.sig}")


@app.command("check")
def check(
    scope: str = typer.Option(..., "--scope", "-s", help="Link scope the link is presented to"),
    ids: List[str] = typer.Option(..., "--id", help="Identifier as key=value (repeatable)"),
    exp: str = typer.Option(..., "--exp", help="exp query parameter"),
    sig: str = typer.Option(..., "--sig", help="sig query parameter"),
):
    """
    Validate a link the way the server would.
    """
    result = _authority().validate(_scope(scope), parse_identifiers(ids), exp, sig)
    if isinstance(result, Fail):
        typer.echo(f"INVALID: {result.kind.value} ({result.message})")
        raise typer.Exit(code=1)
    typer.echo("VALID")
