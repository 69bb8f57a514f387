"""Message verification strategies."""

from __future__ import annotations

import hmac
from typing import Protocol

from config.settings import Settings


class VerificationError(ValueError):
    pass


class VerificationStrategy(Protocol):
    def verify(self, message: str) -> None:
        """Return when the message is accepted, raise VerificationError to drop it."""
        ...


class NoTrust:
    """Accepts every received message."""

    def verify(self, message: str) -> None:
        return None


class SharedTokenVerifier:
    """Accepts a message only when its text matches the shared token."""

    def __init__(self, token: str) -> None:
        if not token:
            raise ValueError("shared token must be non-empty")
        self._token = token.encode("utf-8")

    def verify(self, message: str) -> None:
        candidate = message.strip().encode("utf-8")
        if not candidate:
            raise VerificationError("empty message")
        if not hmac.compare_digest(candidate, self._token):
            raise VerificationError("shared token mismatch")


def build_verifier(settings: Settings) -> VerificationStrategy:
    if settings.verify_token:
        return SharedTokenVerifier(settings.verify_token)
    return NoTrust()
