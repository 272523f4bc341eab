"""
Stateless signed identity tokens.

Wire format::

    base64url(subject + "." + expiry_epoch_millis) + "." + hex(HMAC-SHA256(secret, payload))

The payload is self-describing, so verification needs nothing but the shared
secret. There is no revocation list: a leaked token stays valid until it
expires.
"""

import base64
import binascii
import hashlib
import hmac
import re
import time
from collections.abc import Callable
from datetime import UTC, datetime

from app.services.errors import ConfigurationError

DELIMITER = "."

_BASE64URL_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_EXPIRY_RE = re.compile(r"^[0-9]{1,16}$")


def _now_millis() -> int:
    return time.time_ns() // 1_000_000


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64url_decode(value: str) -> bytes | None:
    """Decode unpadded base64url, rejecting non-canonical encodings."""
    if not _BASE64URL_RE.match(value):
        return None
    try:
        raw = base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))
    except (binascii.Error, ValueError):
        return None
    # Trailing bits that decoding ignores would let two strings share a payload
    if _b64url_encode(raw) != value:
        return None
    return raw


class TokenCodec:
    """Signs and verifies short-lived identity tokens with a process-wide secret."""

    def __init__(self, secret: str | None, clock: Callable[[], int] = _now_millis):
        if not secret:
            raise ConfigurationError("TOKEN_SECRET is not set; identity tokens cannot be signed")
        self._key = secret.encode("utf-8")
        self._clock = clock

    def _sign(self, payload: bytes) -> str:
        return hmac.new(self._key, payload, hashlib.sha256).hexdigest()

    def issue(self, subject: str, ttl_millis: int) -> str:
        """Return a token for ``subject`` valid for ``ttl_millis`` from now."""
        token, _ = self.issue_with_expiry(subject, ttl_millis)
        return token

    def issue_with_expiry(self, subject: str, ttl_millis: int) -> tuple[str, datetime]:
        """Like ``issue`` but also return the absolute expiry (naive UTC)."""
        if not subject:
            raise ValueError("subject must be a non-empty string")
        if ttl_millis <= 0:
            raise ValueError("ttl must be positive")

        expires_at = self._clock() + ttl_millis
        payload = f"{subject}{DELIMITER}{expires_at}".encode("utf-8")
        token = f"{_b64url_encode(payload)}{DELIMITER}{self._sign(payload)}"
        return token, datetime.fromtimestamp(expires_at / 1000, UTC).replace(tzinfo=None)

    def verify(self, token: str) -> str | None:
        """
        Return the subject of a valid token, or None.

        Malformed, tampered and expired tokens all produce the same None.
        """
        if not isinstance(token, str):
            return None

        encoded, sep, signature = token.partition(DELIMITER)
        if not sep or not encoded or not signature:
            return None

        raw = _b64url_decode(encoded)
        if raw is None:
            return None

        expected = self._sign(raw).encode("ascii")
        supplied = signature.encode("utf-8", "surrogatepass")
        if not hmac.compare_digest(expected, supplied):
            return None

        try:
            data = raw.decode("utf-8")
        except UnicodeDecodeError:
            return None

        subject, sep, expiry = data.rpartition(DELIMITER)
        if not sep or not subject or not _EXPIRY_RE.match(expiry):
            return None

        if self._clock() > int(expiry):
            return None

        return subject
