"""Tests for signed identity tokens."""

import base64
import hashlib
import hmac
import time
from datetime import UTC, datetime

import pytest

from app.services.errors import ConfigurationError
from app.services.token_codec import TokenCodec

SECRET = "unit-test-secret"
NOW_MS = 1_700_000_000_000


class FakeClock:
    def __init__(self, now: int = NOW_MS):
        self.now = now

    def __call__(self) -> int:
        return self.now


def forge(payload: str, secret: str = SECRET) -> str:
    """Build a correctly signed token around an arbitrary payload."""
    raw = payload.encode()
    encoded = base64.urlsafe_b64encode(raw).rstrip(b"=").decode()
    signature = hmac.new(secret.encode(), raw, hashlib.sha256).hexdigest()
    return f"{encoded}.{signature}"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def codec(clock):
    return TokenCodec(SECRET, clock=clock)


class TestIssueAndVerify:
    def test_round_trip(self, codec):
        token = codec.issue("user-123", 60_000)
        assert codec.verify(token) == "user-123"

    def test_subject_with_delimiters_round_trips(self, codec):
        token = codec.issue("a.b.c", 60_000)
        assert codec.verify(token) == "a.b.c"

    def test_wire_format(self, codec):
        token = codec.issue("user-123", 1_000)
        encoded, signature = token.split(".")
        padded = encoded + "=" * (-len(encoded) % 4)
        assert base64.urlsafe_b64decode(padded) == f"user-123.{NOW_MS + 1_000}".encode()
        assert len(signature) == 64
        assert "=" not in encoded

    def test_issue_with_expiry_returns_absolute_time(self, codec):
        _, expires_at = codec.issue_with_expiry("user-123", 86_400_000)
        expected = datetime.fromtimestamp((NOW_MS + 86_400_000) / 1000, UTC).replace(tzinfo=None)
        assert expires_at == expected

    def test_empty_subject_rejected(self, codec):
        with pytest.raises(ValueError):
            codec.issue("", 1_000)

    @pytest.mark.parametrize("ttl", [0, -1])
    def test_non_positive_ttl_rejected(self, codec, ttl):
        with pytest.raises(ValueError):
            codec.issue("user-123", ttl)

    @pytest.mark.parametrize("secret", [None, ""])
    def test_missing_secret_is_configuration_error(self, secret):
        with pytest.raises(ConfigurationError):
            TokenCodec(secret)


class TestExpiry:
    def test_valid_at_exact_expiry(self, codec, clock):
        token = codec.issue("user-123", 1_000)
        clock.now = NOW_MS + 1_000
        assert codec.verify(token) == "user-123"

    def test_invalid_one_millisecond_after_expiry(self, codec, clock):
        token = codec.issue("user-123", 1_000)
        clock.now = NOW_MS + 1_001
        assert codec.verify(token) is None

    def test_valid_one_millisecond_before_expiry(self, codec, clock):
        token = codec.issue("user-123", 1_000)
        clock.now = NOW_MS + 999
        assert codec.verify(token) == "user-123"

    def test_short_ttl_expires_in_real_time(self):
        """A 1000ms token checked again after 1100ms is rejected."""
        codec = TokenCodec(SECRET)
        token = codec.issue("user-123", 1_000)
        assert codec.verify(token) == "user-123"

        time.sleep(1.1)

        assert codec.verify(token) is None


class TestTamperRejection:
    def test_every_single_character_change_is_rejected(self, codec):
        token = codec.issue("user-123", 60_000)
        for i, char in enumerate(token):
            replacement = "A" if char != "A" else "B"
            tampered = token[:i] + replacement + token[i + 1 :]
            assert codec.verify(tampered) is None, f"accepted tampering at position {i}"

    def test_other_secret_rejected(self, codec, clock):
        other = TokenCodec("another-secret", clock=clock)
        assert other.verify(codec.issue("user-123", 60_000)) is None

    def test_swapped_signature_rejected(self, codec):
        first = codec.issue("user-1", 60_000)
        second = codec.issue("user-2", 60_000)
        forged = first.split(".")[0] + "." + second.split(".")[1]
        assert codec.verify(forged) is None

    def test_truncated_signature_rejected(self, codec):
        token = codec.issue("user-123", 60_000)
        assert codec.verify(token[:-1]) is None

    def test_uppercase_signature_rejected(self, codec):
        encoded, signature = codec.issue("user-123", 60_000).split(".")
        assert codec.verify(f"{encoded}.{signature.upper()}") is None

    def test_non_canonical_base64_rejected(self, codec):
        token = codec.issue("user-123", 60_000)
        encoded, signature = token.split(".")
        assert codec.verify(f"{encoded}==.{signature}") is None


class TestMalformedInput:
    @pytest.mark.parametrize(
        "token",
        [
            "",
            ".",
            "abc",
            "abc.",
            ".abc",
            "!!!.abc",
            "dXNlcg.éé",
            "\ud800.abc",
            "a" * 10_000,
        ],
    )
    def test_malformed_tokens_are_invalid(self, codec, token):
        assert codec.verify(token) is None

    @pytest.mark.parametrize("token", [None, 123, b"bytes.token"])
    def test_non_string_is_invalid(self, codec, token):
        assert codec.verify(token) is None

    @pytest.mark.parametrize(
        "payload",
        [
            "user-123",
            "user-123.",
            ".99999999999999",
            "user-123.12ab",
            "user-123.-5",
            "user-123.12345678901234567",
        ],
    )
    def test_signed_but_malformed_payload_is_invalid(self, codec, payload):
        assert codec.verify(forge(payload)) is None

    def test_signed_invalid_utf8_is_invalid(self, codec):
        raw = b"\xff\xfe.99999999999999"
        encoded = base64.urlsafe_b64encode(raw).rstrip(b"=").decode()
        signature = hmac.new(SECRET.encode(), raw, hashlib.sha256).hexdigest()
        assert codec.verify(f"{encoded}.{signature}") is None

    def test_forged_with_correct_secret_is_accepted(self, codec):
        assert codec.verify(forge(f"user-9.{NOW_MS + 5}")) == "user-9"
