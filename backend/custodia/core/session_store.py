"""Per-browser-session keyed state with TTL.

Bridges the stateless HTTP calls of multi-step flows (pending proof expectations,
pending TOTP secrets, the authenticated principal). Entries live in process memory;
a horizontally scaled deployment needs a shared cache behind the same interface.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

log = logging.getLogger(__name__)

# Namespaces
EXPECTED_IDENTITY = "login.expected-identity"
LOGIN_PENDING_OTP = "login.pending-otp"
TOTP_PENDING_SECRET = "mfa.totp.pending"
SECURITY_CONTEXT = "security.context"

# Writes between opportunistic sweeps of expired entries
SWEEP_EVERY_WRITES = 256


@dataclass
class _Entry:
    value: Any
    expires_at: float


class SessionBindingStore:
    """Thread-safe map of ``(session_id, namespace, key) -> value``.

    ``pop`` is the atomic read-then-remove used to make bindings single-use.
    """

    def __init__(self, default_ttl_seconds: int = 900, clock: Callable[[], float] = time.monotonic):
        self._default_ttl = default_ttl_seconds
        self._clock = clock
        self._entries: dict[tuple[str, str, str], _Entry] = {}
        self._lock = threading.Lock()
        self._writes = 0

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def put(self, session_id: str, namespace: str, key: Any, value: Any,
            ttl_seconds: Optional[int] = None) -> None:
        ttl = self._default_ttl if ttl_seconds is None else ttl_seconds
        with self._lock:
            now = self._clock()
            self._entries[(session_id, namespace, str(key))] = _Entry(value, now + ttl)
            self._writes += 1
            if self._writes >= SWEEP_EVERY_WRITES:
                self._sweep(now)

    def get(self, session_id: str, namespace: str, key: Any) -> Any:
        with self._lock:
            entry = self._live_entry((session_id, namespace, str(key)))
            return entry.value if entry else None

    def pop(self, session_id: str, namespace: str, key: Any) -> Any:
        with self._lock:
            entry = self._live_entry((session_id, namespace, str(key)))
            if entry is None:
                return None
            del self._entries[(session_id, namespace, str(key))]
            return entry.value

    def update(self, session_id: str, namespace: str, key: Any, change: Callable[[Any], Any]) -> Any:
        """Replaces a live value with ``change(value)`` under the lock and returns the new value.

        Returns None without calling ``change`` when there is no live entry. The entry keeps
        its original expiry.
        """
        with self._lock:
            entry = self._live_entry((session_id, namespace, str(key)))
            if entry is None:
                return None
            entry.value = change(entry.value)
            return entry.value

    def discard(self, session_id: str, namespace: str, key: Any) -> bool:
        with self._lock:
            return self._entries.pop((session_id, namespace, str(key)), None) is not None

    def clear_session(self, session_id: str) -> int:
        with self._lock:
            doomed = [k for k in self._entries if k[0] == session_id]
            for k in doomed:
                del self._entries[k]
        return len(doomed)

    def purge_expired(self) -> int:
        with self._lock:
            return self._sweep(self._clock())

    def _sweep(self, now: float) -> int:
        # caller holds the lock
        doomed = [k for k, e in self._entries.items() if e.expires_at <= now]
        for k in doomed:
            del self._entries[k]
        self._writes = 0
        if doomed:
            log.debug("Purged %d expired session bindings", len(doomed))
        return len(doomed)

    def _live_entry(self, full_key: tuple[str, str, str]) -> Optional[_Entry]:
        # caller holds the lock
        entry = self._entries.get(full_key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._entries[full_key]
            return None
        return entry
