import requests
from typing import Optional, Tuple
from .config import BASE_URL, CA_CERT, SESSION_COOKIE_NAME
import os

# Use the CA cert if it exists, else system certs
def _get_verify():
    if CA_CERT and os.path.exists(CA_CERT):
        return CA_CERT
    return True


def new_client(cookie: Optional[str] = None) -> requests.Session:
    """
    HTTP client carrying the browser-session cookie between calls. The proof login
    only works when start, poll and code verification share one session.
    """
    client = requests.Session()
    client.verify = _get_verify()
    if cookie:
        client.cookies.set(SESSION_COOKIE_NAME, cookie)
    return client


def session_cookie(client: requests.Session) -> Optional[str]:
    return client.cookies.get(SESSION_COOKIE_NAME)


def _json(resp: requests.Response) -> dict:
    try:
        body = resp.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def api_start_login(client: requests.Session, email: str, password: str) -> Optional[Tuple[int, dict]]:
    """
    Starts the proof login. Returns (status, body) or None if the server is unreachable.
    """
    url = f"{BASE_URL}/login/start"
    try:
        resp = client.post(url, json={"email": email, "password": password}, timeout=15)
    except requests.RequestException:
        return None
    return resp.status_code, _json(resp)


def api_poll_login(client: requests.Session, pres_ex_id: str) -> Optional[Tuple[int, dict]]:
    url = f"{BASE_URL}/login/poll"
    try:
        resp = client.get(url, params={"presExId": pres_ex_id}, timeout=15)
    except requests.RequestException:
        return None
    return resp.status_code, _json(resp)


def api_verify_login_code(client: requests.Session, pres_ex_id: str, code: str) -> Optional[Tuple[int, dict]]:
    url = f"{BASE_URL}/login/otp/verify"
    try:
        resp = client.post(url, json={"presExId": pres_ex_id, "code": code}, timeout=10)
    except requests.RequestException:
        return None
    return resp.status_code, _json(resp)


def api_password_login(client: requests.Session, email: str, password: str) -> Optional[dict]:
    """
    Password login for issuers and administrators. Returns the principal or None.
    """
    url = f"{BASE_URL}/auth/login"
    try:
        resp = client.post(url, json={"email": email, "password": password}, timeout=10)
    except requests.RequestException:
        return None
    if resp.status_code != 200:
        return None
    return _json(resp)


def api_logout(client: requests.Session) -> bool:
    url = f"{BASE_URL}/auth/logout"
    try:
        resp = client.post(url, timeout=5)
    except requests.RequestException:
        return False
    return resp.status_code == 200


def api_me(client: requests.Session) -> Optional[dict]:
    url = f"{BASE_URL}/auth/me"
    try:
        resp = client.get(url, timeout=5)
    except requests.RequestException:
        return None
    if resp.status_code != 200:
        return None
    return _json(resp)


def api_register(client: requests.Session, registration: dict) -> Optional[Tuple[int, dict]]:
    url = f"{BASE_URL}/register"
    try:
        resp = client.post(url, json=registration, timeout=15)
    except requests.RequestException:
        return None
    return resp.status_code, _json(resp)


def api_confirm_registration_totp(client: requests.Session, account_id: int, code: str) -> Optional[Tuple[int, dict]]:
    url = f"{BASE_URL}/register/totp/confirm"
    try:
        resp = client.post(url, json={"accountId": account_id, "code": code}, timeout=10)
    except requests.RequestException:
        return None
    return resp.status_code, _json(resp)
