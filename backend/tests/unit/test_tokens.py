"""Tests for link code encoding and the security-stamp token provider."""

import uuid
from datetime import timedelta

import jwt
import pytest

from passwordless.core.tokens import (
    InvalidCodeError,
    SecurityStampTokenProvider,
    decode_code,
    encode_code,
)
from tests.conftest import TEST_AUTH_SECRET, FixedClock

_PURPOSE = "MagicLinkLogin"
_USER_ID = uuid.UUID("00000000-0000-0000-0000-0000000000aa")
_OTHER_USER_ID = uuid.UUID("00000000-0000-0000-0000-0000000000bb")
_STAMP = "0123456789abcdef0123456789abcdef"


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def provider(clock) -> SecurityStampTokenProvider:
    return SecurityStampTokenProvider(
        secret=TEST_AUTH_SECRET,
        issuer="passwordless",
        lifespan=timedelta(minutes=15),
        clock=clock,
    )


def _mint(provider, *, stamp=_STAMP, purpose=_PURPOSE, user_id=_USER_ID) -> str:
    return provider.generate(user_id=user_id, security_stamp=stamp, purpose=purpose)


def _check(provider, token, *, stamp=_STAMP, purpose=_PURPOSE, user_id=_USER_ID):
    return provider.verify(
        token, user_id=user_id, security_stamp=stamp, purpose=purpose
    )


class TestCodeEncoding:
    """Tests for encode_code() / decode_code()."""

    def test_encoded_code_is_url_safe_without_padding(self):
        code = encode_code("a.b?c=d/e+f")
        assert "=" not in code
        assert "+" not in code
        assert "/" not in code

    def test_decode_reverses_encode(self):
        token = "header.payload.signature"
        assert decode_code(encode_code(token)) == token

    @pytest.mark.parametrize("code", ["", "not*base64", "abc=", "a b"])
    def test_rejects_characters_outside_alphabet(self, code):
        with pytest.raises(InvalidCodeError):
            decode_code(code)

    def test_rejects_impossible_length(self):
        """A single leftover base64 character cannot encode a byte."""
        with pytest.raises(InvalidCodeError):
            decode_code("abcde")

    def test_rejects_non_utf8_payload(self):
        # "_w" is 0xFF, never valid UTF-8 on its own
        with pytest.raises(InvalidCodeError):
            decode_code("_w")


class TestSecurityStampTokenProvider:
    """Tests for SecurityStampTokenProvider."""

    def test_fresh_token_verifies(self, provider):
        assert _check(provider, _mint(provider)) is True

    def test_payload_carries_digest_not_raw_stamp(self, provider):
        token = _mint(provider)
        payload = jwt.decode(token, options={"verify_signature": False})
        assert payload["stm"] != _STAMP
        assert len(payload["stm"]) == 64
        assert payload["pur"] == _PURPOSE
        assert payload["sub"] == str(_USER_ID)

    def test_rotated_stamp_fails_verification(self, provider):
        token = _mint(provider)
        assert _check(provider, token, stamp="f" * 32) is False

    def test_other_purpose_fails_verification(self, provider):
        token = _mint(provider, purpose="EmailConfirmation")
        assert _check(provider, token) is False

    def test_other_user_fails_verification(self, provider):
        token = _mint(provider, user_id=_OTHER_USER_ID)
        assert _check(provider, token) is False

    def test_valid_just_before_lifespan_ends(self, provider, clock):
        token = _mint(provider)
        clock.advance(minutes=14, seconds=59)
        assert _check(provider, token) is True

    def test_expired_after_lifespan(self, provider, clock):
        token = _mint(provider)
        clock.advance(minutes=15)
        assert _check(provider, token) is False

    def test_wrong_secret_fails_verification(self, provider, clock):
        other = SecurityStampTokenProvider(
            secret="another-secret-that-is-also-32-characters-long",
            issuer="passwordless",
            lifespan=timedelta(minutes=15),
            clock=clock,
        )
        assert _check(provider, _mint(other)) is False

    def test_session_jwt_is_not_a_link_token(self, provider):
        """Audience separation: a session token never verifies as a link token."""
        from tests.conftest import create_test_jwt

        assert _check(provider, create_test_jwt(_USER_ID)) is False

    def test_garbage_token_returns_false(self, provider):
        assert _check(provider, "definitely-not-a-jwt") is False
