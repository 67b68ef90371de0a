import base64
import os
import time
from typing import Callable

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.twofactor import InvalidToken
from cryptography.hazmat.primitives.twofactor.totp import TOTP

from ..core.settings import settings

SECRET_BYTES = 20


def _key(secret: str) -> bytes:
    normalized = secret.strip().replace(" ", "").upper()
    return base64.b32decode(normalized + "=" * (-len(normalized) % 8))


class TotpCodec:
    """RFC 6238 codes (SHA1) with a symmetric acceptance window of time steps."""

    def __init__(
        self,
        digits: int | None = None,
        period_seconds: int | None = None,
        window_steps: int | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.digits = digits or settings.TOTP_DIGITS
        self.period_seconds = period_seconds or settings.TOTP_PERIOD_SECONDS
        self.window_steps = settings.TOTP_WINDOW_STEPS if window_steps is None else window_steps
        self._clock = clock

    def new_secret(self) -> str:
        return base64.b32encode(os.urandom(SECRET_BYTES)).decode("ascii").rstrip("=")

    def _totp(self, secret: str) -> TOTP:
        return TOTP(_key(secret), self.digits, hashes.SHA1(), self.period_seconds)

    def provisioning_uri(self, secret: str, account_name: str, issuer: str) -> str:
        return self._totp(secret).get_provisioning_uri(account_name, issuer)

    def current_step(self) -> int:
        return int(self._clock() // self.period_seconds)

    def code_at_step(self, secret: str, step: int) -> str:
        return self._totp(secret).generate(step * self.period_seconds).decode("ascii")

    def match(self, secret: str, code: str, last_step: int | None = None) -> int | None:
        """
        Returns the time step ``code`` belongs to, or None. Steps at or before
        ``last_step`` are never accepted again.
        """
        code = (code or "").strip().replace(" ", "")
        if len(code) != self.digits or not code.isascii() or not code.isdigit():
            return None

        totp = self._totp(secret)
        current = self.current_step()
        for offset in sorted(range(-self.window_steps, self.window_steps + 1), key=abs):
            step = current + offset
            if last_step is not None and step <= last_step:
                continue
            try:
                totp.verify(code.encode("ascii"), step * self.period_seconds)
            except InvalidToken:
                continue
            return step
        return None
