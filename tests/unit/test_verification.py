from __future__ import annotations

import unittest

from config.settings import parse_settings
from services.verification import NoTrust, SharedTokenVerifier, VerificationError, build_verifier


class VerificationTests(unittest.TestCase):
    def test_no_trust_accepts_everything(self) -> None:
        verifier = NoTrust()
        for message in ("ping", "", "{\"action\": \"poweroff\"}"):
            self.assertIsNone(verifier.verify(message))

    def test_shared_token_accepts_matching_message(self) -> None:
        verifier = SharedTokenVerifier("s3cret")
        verifier.verify("s3cret")
        verifier.verify("s3cret\n")

    def test_shared_token_rejects_mismatch(self) -> None:
        verifier = SharedTokenVerifier("s3cret")
        with self.assertRaises(VerificationError) as exc:
            verifier.verify("guess")
        self.assertIn("mismatch", str(exc.exception))

    def test_shared_token_rejects_empty_message(self) -> None:
        with self.assertRaises(VerificationError):
            SharedTokenVerifier("s3cret").verify("   ")

    def test_shared_token_requires_token(self) -> None:
        with self.assertRaises(ValueError):
            SharedTokenVerifier("")

    def test_build_verifier_follows_settings(self) -> None:
        plain = parse_settings({"http_addr": ":8080"})
        tokened = parse_settings({"http_addr": ":8080", "verify_token": "abc"})
        self.assertIsInstance(build_verifier(plain), NoTrust)
        self.assertIsInstance(build_verifier(tokened), SharedTokenVerifier)


if __name__ == "__main__":
    unittest.main()
