import unittest
from urllib.parse import parse_qs, urlparse

from sqlmodel import Session

from custodia.core.errors import ErrorKind, Ok
from custodia.core.session_store import TOTP_PENDING_SECRET, SessionBindingStore
from custodia.mfa.service import SecondFactorEnrollment
from custodia.mfa.totp import TotpCodec
from custodia.models.Account import UserAccount

from helpers import FakeClock, memory_engine, seed_account, seed_person

SECRET = "JBSWY3DPEHPK3PXPJBSWY3DPEHPK3PXP"


class TestTotpCodec(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock(1_700_000_015.0)
        self.codec = TotpCodec(digits=6, period_seconds=30, window_steps=1, clock=self.clock)
        self.step = self.codec.current_step()

    def test_rfc6238_vector(self):
        # RFC 6238 appendix B, SHA1, T = 59
        codec = TotpCodec(digits=8, period_seconds=30, window_steps=0, clock=lambda: 59)
        rfc_secret = "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ"  # "12345678901234567890"
        self.assertEqual(codec.code_at_step(rfc_secret, 1), "94287082")
        self.assertEqual(codec.match(rfc_secret, "94287082"), 1)

    def test_adjacent_steps_are_accepted(self):
        for offset in (-1, 0, 1):
            code = self.codec.code_at_step(SECRET, self.step + offset)
            self.assertEqual(self.codec.match(SECRET, code), self.step + offset)

    def test_steps_outside_window_are_rejected(self):
        window = {self.codec.code_at_step(SECRET, self.step + o) for o in (-1, 0, 1)}
        for offset in (-2, 2):
            code = self.codec.code_at_step(SECRET, self.step + offset)
            if code in window:
                continue
            self.assertIsNone(self.codec.match(SECRET, code))

    def test_last_step_blocks_replay(self):
        code = self.codec.code_at_step(SECRET, self.step)
        self.assertIsNone(self.codec.match(SECRET, code, last_step=self.step))
        self.assertEqual(self.codec.match(SECRET, code, last_step=self.step - 1), self.step)

    def test_malformed_codes(self):
        for code in ("", "12345", "1234567", "abcdef", None, "١٢٣٤٥٦"):
            self.assertIsNone(self.codec.match(SECRET, code))

    def test_spaces_in_code_are_ignored(self):
        code = self.codec.code_at_step(SECRET, self.step)
        self.assertEqual(self.codec.match(SECRET, f" {code[:3]} {code[3:]} "), self.step)

    def test_new_secret_is_base32_without_padding(self):
        secret = self.codec.new_secret()
        self.assertEqual(len(secret), 32)
        self.assertNotIn("=", secret)
        self.assertNotEqual(secret, self.codec.new_secret())

    def test_provisioning_uri(self):
        uri = self.codec.provisioning_uri(SECRET, "ana@example.com", "Custodia")
        parsed = urlparse(uri)
        self.assertEqual(parsed.scheme, "otpauth")
        self.assertEqual(parsed.netloc, "totp")
        query = parse_qs(parsed.query)
        self.assertEqual(query["secret"], [SECRET])
        self.assertEqual(query["issuer"], ["Custodia"])


class TestSecondFactorEnrollment(unittest.TestCase):
    def setUp(self):
        self.engine = memory_engine()
        self.db = Session(self.engine)
        self.clock = FakeClock()
        self.store = SessionBindingStore(900)
        self.codec = TotpCodec(digits=6, period_seconds=30, window_steps=1, clock=self.clock)
        self.enrollment = SecondFactorEnrollment(self.store, self.codec, issuer="Custodia")
        person = seed_person(self.db, "1001")
        self.account = seed_account(self.db, "ana@example.com", person=person)

    def tearDown(self):
        self.db.close()

    def _setup(self):
        result = self.enrollment.begin_setup(self.db, "s1", self.account.id)
        self.assertIsInstance(result, Ok)
        return result.value

    def test_setup_keeps_secret_pending_until_confirmed(self):
        setup = self._setup()
        self.assertIn("ana%40example.com", setup.otpauth_uri)
        self.assertEqual(self.store.get("s1", TOTP_PENDING_SECRET, self.account.id), setup.secret)

        status = self.enrollment.status(self.db, self.account.id).value
        self.assertFalse(status.enabled)
        self.assertIsNone(self.db.get(UserAccount, self.account.id).totp_secret)

    def test_confirm_enables_and_records_step(self):
        setup = self._setup()
        step = self.codec.current_step()
        code = self.codec.code_at_step(setup.secret, step + 1)

        result = self.enrollment.confirm(self.db, "s1", self.account.id, code)
        self.assertIsInstance(result, Ok)
        self.assertTrue(result.value.enabled)

        account = self.db.get(UserAccount, self.account.id)
        self.assertEqual(account.totp_secret, setup.secret)
        self.assertEqual(account.totp_last_time_step, step + 1)
        self.assertEqual(account.totp_drift_steps, 1)
        self.assertIsNotNone(account.totp_confirmed_at)
        self.assertIsNone(self.store.get("s1", TOTP_PENDING_SECRET, self.account.id))

    def test_confirm_failures(self):
        self.assertEqual(self.enrollment.confirm(self.db, "s1", self.account.id, "123456").kind,
                         ErrorKind.FORBIDDEN)

        setup = self._setup()
        self.assertEqual(self.enrollment.confirm(self.db, "s1", self.account.id, "  ").kind,
                         ErrorKind.VALIDATION)

        window = {self.codec.code_at_step(setup.secret, self.codec.current_step() + o) for o in (-1, 0, 1)}
        wrong = next(c for c in ("000000", "111111", "222222", "333333") if c not in window)
        self.assertEqual(self.enrollment.confirm(self.db, "s1", self.account.id, wrong).kind,
                         ErrorKind.UNAUTHORIZED)
        # a wrong code does not discard the pending secret
        self.assertIsNotNone(self.store.get("s1", TOTP_PENDING_SECRET, self.account.id))

        # pending secrets belong to the browser session that created them
        code = self.codec.code_at_step(setup.secret, self.codec.current_step())
        self.assertEqual(self.enrollment.confirm(self.db, "s2", self.account.id, code).kind,
                         ErrorKind.FORBIDDEN)

    def test_unknown_account(self):
        self.assertEqual(self.enrollment.begin_setup(self.db, "s1", 999).kind, ErrorKind.NOT_FOUND)
        self.assertEqual(self.enrollment.status(self.db, 999).kind, ErrorKind.NOT_FOUND)

    def test_disable_clears_factor(self):
        setup = self._setup()
        code = self.codec.code_at_step(setup.secret, self.codec.current_step())
        self.enrollment.confirm(self.db, "s1", self.account.id, code)

        result = self.enrollment.disable(self.db, "s1", self.account.id)
        self.assertFalse(result.value.enabled)
        account = self.db.get(UserAccount, self.account.id)
        self.assertFalse(account.totp_enabled)
        self.assertIsNone(account.totp_secret)
        self.assertIsNone(account.totp_last_time_step)


if __name__ == "__main__":
    unittest.main()
