# cli/core/session.py
import json
from typing import Optional

from .config import SESSION_FILE


def save_session(cookie: str, kind: str, display_name: str) -> None:
    """
    Stores the server session cookie together with who it belongs to.
    """
    data = {"cookie": cookie, "kind": kind, "display_name": display_name}
    with open(SESSION_FILE, "w", encoding="utf-8") as f:
        json.dump(data, f)
    SESSION_FILE.chmod(0o600)


def load_session() -> Optional[dict]:
    """
    Reads the stored session. Returns None when there is none or it is unreadable.
    """
    if not SESSION_FILE.exists():
        return None

    try:
        with open(SESSION_FILE, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError):
        return None
    if not isinstance(data, dict) or not data.get("cookie"):
        return None
    return data


def load_cookie() -> Optional[str]:
    data = load_session()
    return data["cookie"] if data else None


def clear_session() -> None:
    if SESSION_FILE.exists():
        SESSION_FILE.unlink()


def is_logged_in() -> bool:
    return load_cookie() is not None
