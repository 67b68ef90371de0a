import base64
import hashlib
import hmac
import unittest
from unittest.mock import patch

from custodia.core.errors import ErrorKind, Fail, Ok
from custodia.core.settings import settings
from custodia.links.service import (
    LinkScope,
    SignedLinkAuthority,
    canonical_message,
    granted_identifiers,
    own_identifiers,
)

from helpers import FakeClock


class TestCanonicalForm(unittest.TestCase):
    def test_keys_are_sorted_and_versioned(self):
        message = canonical_message(LinkScope.GRANTED_DOCUMENT_VIEW, {"requestId": 7, "itemId": 3}, 1700000300)
        self.assertEqual(message, b"v1\nGRANTED_DOCUMENT_VIEW\nitemId=3&requestId=7\n1700000300")

    def test_keys_and_values_are_percent_encoded(self):
        message = canonical_message(LinkScope.OWN_DOCUMENT_VIEW, {"idNumber": "a b&c=d/e"}, 10)
        self.assertEqual(message, b"v1\nOWN_DOCUMENT_VIEW\nidNumber=a%20b%26c%3Dd%2Fe\n10")

    def test_signature_is_hmac_sha256_base64url_without_padding(self):
        clock = FakeClock(1_700_000_000)
        authority = SignedLinkAuthority("k3y", default_ttl_seconds=300, clock=clock)
        link = authority.issue(LinkScope.GRANTED_DOCUMENT_DOWNLOAD, granted_identifiers(7, 3))

        message = b"v1\nGRANTED_DOCUMENT_DOWNLOAD\nitemId=3&requestId=7\n1700000300"
        expected = base64.urlsafe_b64encode(hmac.new(b"k3y", message, hashlib.sha256).digest()).rstrip(b"=")
        self.assertEqual(link.exp, 1_700_000_300)
        self.assertEqual(link.sig, expected.decode("ascii"))
        self.assertEqual(len(link.sig), 43)


class TestSignedLinkAuthority(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.authority = SignedLinkAuthority("test-secret", default_ttl_seconds=300, clock=self.clock)
        self.ids = granted_identifiers(12, 34)

    def test_fresh_link_is_valid(self):
        link = self.authority.issue(LinkScope.GRANTED_DOCUMENT_VIEW, self.ids)
        self.assertIsInstance(self.authority.validate(LinkScope.GRANTED_DOCUMENT_VIEW, self.ids, link.exp, link.sig), Ok)
        # query strings arrive as text
        result = self.authority.validate(LinkScope.GRANTED_DOCUMENT_VIEW, self.ids, str(link.exp), link.sig)
        self.assertIsInstance(result, Ok)

    def test_link_expires_at_exp(self):
        link = self.authority.issue(LinkScope.GRANTED_DOCUMENT_VIEW, self.ids)
        self.clock.advance(299)
        self.assertIsInstance(self.authority.validate(LinkScope.GRANTED_DOCUMENT_VIEW, self.ids, link.exp, link.sig), Ok)
        self.clock.advance(1)
        result = self.authority.validate(LinkScope.GRANTED_DOCUMENT_VIEW, self.ids, link.exp, link.sig)
        self.assertEqual(result.kind, ErrorKind.EXPIRED)

    def test_every_single_bit_flip_is_tampered(self):
        link = self.authority.issue(LinkScope.GRANTED_DOCUMENT_VIEW, self.ids)
        # even past expiry the signature check wins
        self.clock.advance(10_000)
        for position in range(len(link.sig)):
            for bit in (1, 2, 4, 8, 16, 32, 64):
                flipped = chr(ord(link.sig[position]) ^ bit)
                forged = link.sig[:position] + flipped + link.sig[position + 1:]
                result = self.authority.validate(LinkScope.GRANTED_DOCUMENT_VIEW, self.ids, link.exp, forged)
                self.assertIsInstance(result, Fail)
                self.assertEqual(result.kind, ErrorKind.TAMPERED, f"position {position} bit {bit}")

    def test_changed_identifier_or_exp_is_tampered(self):
        link = self.authority.issue(LinkScope.GRANTED_DOCUMENT_VIEW, self.ids)
        other = granted_identifiers(12, 35)
        self.assertEqual(
            self.authority.validate(LinkScope.GRANTED_DOCUMENT_VIEW, other, link.exp, link.sig).kind,
            ErrorKind.TAMPERED,
        )
        self.assertEqual(
            self.authority.validate(LinkScope.GRANTED_DOCUMENT_VIEW, self.ids, link.exp + 60, link.sig).kind,
            ErrorKind.TAMPERED,
        )

    def test_view_link_presented_to_download_is_scope_mismatch(self):
        link = self.authority.issue(LinkScope.GRANTED_DOCUMENT_VIEW, self.ids)
        for scope in (LinkScope.GRANTED_DOCUMENT_DOWNLOAD, LinkScope.GRANTED_DOCUMENT_TRACE):
            result = self.authority.validate(scope, self.ids, link.exp, link.sig)
            self.assertEqual(result.kind, ErrorKind.SCOPE_MISMATCH)

        own = own_identifiers(5, "CC", "1001")
        own_link = self.authority.issue(LinkScope.OWN_DOCUMENT_DOWNLOAD, own)
        result = self.authority.validate(LinkScope.OWN_DOCUMENT_VIEW, own, own_link.exp, own_link.sig)
        self.assertEqual(result.kind, ErrorKind.SCOPE_MISMATCH)

    def test_admin_trace_is_never_signed(self):
        with self.assertRaises(ValueError):
            self.authority.issue(LinkScope.ADMIN_TRACE, {"documentId": 1})
        result = self.authority.validate(LinkScope.ADMIN_TRACE, {"documentId": 1}, "1", "x" * 43)
        self.assertEqual(result.kind, ErrorKind.SCOPE_MISMATCH)

    def test_malformed_parameters_are_tampered(self):
        link = self.authority.issue(LinkScope.OWN_DOCUMENT_VIEW, self.ids)
        cases = [
            (None, link.sig),
            ("", link.sig),
            ("12e3", link.sig),
            ("-5", link.sig),
            (link.exp, None),
            (link.exp, ""),
            (link.exp, link.sig + "="),
            (link.exp, link.sig[:-1]),
            (link.exp, link.sig.replace(link.sig[0], "+", 1)),
        ]
        for exp, sig in cases:
            result = self.authority.validate(LinkScope.OWN_DOCUMENT_VIEW, self.ids, exp, sig)
            self.assertEqual(result.kind, ErrorKind.TAMPERED, f"exp={exp!r} sig={sig!r}")

    def test_links_from_another_key_are_tampered(self):
        link = SignedLinkAuthority("other-secret", clock=self.clock).issue(LinkScope.GRANTED_DOCUMENT_VIEW, self.ids)
        result = self.authority.validate(LinkScope.GRANTED_DOCUMENT_VIEW, self.ids, link.exp, link.sig)
        self.assertEqual(result.kind, ErrorKind.TAMPERED)

    def test_signed_path_carries_exp_and_sig(self):
        url, exp = self.authority.signed_path("/access-requests/12/items/34/view",
                                              LinkScope.GRANTED_DOCUMENT_VIEW, self.ids)
        self.assertTrue(url.startswith("/access-requests/12/items/34/view?exp="))
        self.assertIn("&sig=", url)
        self.assertEqual(exp, int(self.clock()) + 300)

    def test_default_ttl_has_a_floor(self):
        with patch.object(settings, "SIGNED_LINK_TTL_SECONDS", 5):
            authority = SignedLinkAuthority("s", clock=self.clock)
        self.assertEqual(authority.default_ttl_seconds, 30)

    def test_missing_secret_falls_back_to_random_key(self):
        with patch.object(settings, "SIGNED_LINK_SECRET", ""):
            with self.assertLogs("custodia.links.service", level="WARNING"):
                first = SignedLinkAuthority(clock=self.clock)
            with self.assertLogs("custodia.links.service", level="WARNING"):
                second = SignedLinkAuthority(clock=self.clock)

        link = first.issue(LinkScope.GRANTED_DOCUMENT_VIEW, self.ids)
        self.assertIsInstance(first.validate(LinkScope.GRANTED_DOCUMENT_VIEW, self.ids, link.exp, link.sig), Ok)
        self.assertEqual(
            second.validate(LinkScope.GRANTED_DOCUMENT_VIEW, self.ids, link.exp, link.sig).kind,
            ErrorKind.TAMPERED,
        )


if __name__ == "__main__":
    unittest.main()
