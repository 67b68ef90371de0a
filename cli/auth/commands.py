import getpass
import time
import typer

from cli.core.config import POLL_INTERVAL_SECONDS, POLL_TIMEOUT_SECONDS
from cli.core.session import save_session, load_cookie, clear_session, is_logged_in
from cli.core.api import (
    new_client, session_cookie, api_start_login, api_poll_login, api_verify_login_code,
    api_password_login, api_logout, api_me, api_register, api_confirm_registration_totp
)
from cli.core.utils import validate_password


app = typer.Typer(help="Authentication commands (login, logout, register)")

MAX_CODE_PROMPTS = 5


def _fail(message: str) -> None:
    typer.echo(message)
    raise typer.Exit(code=1)


def _second_factor(client, pres_ex_id: str) -> dict:
    """
    Prompts for authenticator codes until the server accepts one or gives up.
    """
    for _ in range(MAX_CODE_PROMPTS):
        code = typer.prompt("Authenticator code")
        outcome = api_verify_login_code(client, pres_ex_id, code)
        if outcome is None:
            _fail("Login failed (server unreachable).")
        status_code, body = outcome
        if status_code == 200 and body.get("authenticated"):
            return body
        if status_code == 401 and "attemptsRemaining" in body:
            typer.echo(f"Invalid code. {body['attemptsRemaining']} attempt(s) left.")
            continue
        _fail(f"Login failed: {body.get('error', 'second factor rejected')}")
    _fail("Login failed: too many invalid codes.")


@app.command("login")
def login(
    email: str = typer.Option(None, "--email", "-e", help="Account email"),
    issuer: bool = typer.Option(False, "--issuer", help="Password-only login for issuers and administrators"),
    timeout: int = typer.Option(POLL_TIMEOUT_SECONDS, "--timeout", help="Seconds to wait for the identity proof"),
):
    """
    Login to the portal. End users confirm their identity in their wallet while this waits.
    """
    if is_logged_in():
        _fail("Session already active. Logout first to remove current session.")

    if email is None:
        email = typer.prompt("Email")
    password = getpass.getpass("Password: ")
    if not email.strip() or not password:
        _fail("Email and password are required.")

    client = new_client()

    if issuer:
        principal = api_password_login(client, email, password)
        if principal is None:
            _fail("Login failed (invalid credentials or API error).")
        save_session(session_cookie(client), principal.get("kind", ""), principal.get("displayName", email))
        typer.echo(f"Login successful as '{principal.get('displayName', email)}'.")
        return

    started = api_start_login(client, email, password)
    if started is None:
        _fail("Login failed (server unreachable).")
    status_code, body = started
    if status_code != 200 or not body.get("presExId"):
        _fail(f"Login failed: {body.get('error', 'invalid credentials')}")

    pres_ex_id = body["presExId"]
    typer.echo("Proof request sent. Accept it in your wallet...")

    deadline = time.monotonic() + max(timeout, 1)
    while True:
        polled = api_poll_login(client, pres_ex_id)
        if polled is None:
            _fail("Login failed (server unreachable).")
        status_code, body = polled
        if status_code != 200:
            _fail(f"Login failed: {body.get('error', 'verification rejected')}")
        if body.get("otpRequired"):
            body = _second_factor(client, pres_ex_id)
            break
        if body.get("authenticated"):
            break
        if body.get("done"):
            _fail("Login failed: the identity proof was not verified.")
        if time.monotonic() >= deadline:
            _fail("Login timed out waiting for the identity proof.")
        time.sleep(POLL_INTERVAL_SECONDS)

    display_name = body.get("displayName") or email
    save_session(session_cookie(client), "USER", display_name)
    typer.echo(f"Login successful as '{display_name}'.")


@app.command("logout")
def logout():
    """
    End session and delete the local session cookie.
    """
    cookie = load_cookie()
    if cookie:
        if api_logout(new_client(cookie)):
            typer.echo("Logged out from backend.")
        else:
            typer.echo("Warning: Failed to logout from backend. The session may have already expired.")

    clear_session()
    typer.echo("Session ended.")


@app.command("whoami")
def whoami():
    """
    Show who the stored session belongs to, as the server sees it.
    """
    cookie = load_cookie()
    if not cookie:
        _fail("Not logged in.")
    principal = api_me(new_client(cookie))
    if principal is None:
        _fail("Session is no longer valid. Login again.")
    typer.echo(f"{principal.get('kind')}: {principal.get('displayName')} <{principal.get('email') or '-'}>")


@app.command("register")
def register(
    id_type: str = typer.Option(..., "--id-type", help="Identification type on record (e.g. CC)"),
    id_number: str = typer.Option(..., "--id-number", help="Identification number on record"),
    email: str = typer.Option(None, "--email", "-e", help="Account email"),
    totp: bool = typer.Option(False, "--totp", help="Set up an authenticator app right away"),
):
    """
    Create an end-user account for a person already on record.
    """
    if email is None:
        email = typer.prompt("Email")
    password = getpass.getpass("Password: ")
    password_confirm = getpass.getpass("Confirm password: ")

    if password != password_confirm:
        _fail("Passwords do not match.")
    if not validate_password(password):
        raise typer.Exit(code=1)

    client = new_client()
    created = api_register(client, {
        "idType": id_type,
        "idNumber": id_number,
        "email": email,
        "password": password,
        "confirmPassword": password_confirm,
        "enableTotpNow": totp,
    })
    if created is None:
        _fail("Registration failed (server unreachable).")
    status_code, body = created
    if status_code != 201:
        _fail(f"Registration failed: {body.get('error', body.get('detail', 'invalid data'))}")

    typer.echo(f"Account created for {body.get('email')}.")
    setup = body.get("totp")
    if not setup:
        return

    typer.echo("Add this secret to your authenticator app:")
    typer.echo(f"  {setup.get('secret')}")
    typer.echo(f"  {setup.get('otpauthUri')}")
    code = typer.prompt("Authenticator code")
    confirmed = api_confirm_registration_totp(client, body.get("accountId"), code)
    if confirmed is None or confirmed[0] != 200:
        _fail("Authenticator was not enabled. You can set it up later from your dashboard.")
    typer.echo("Authenticator enabled.")
