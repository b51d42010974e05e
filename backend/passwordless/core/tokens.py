"""Purpose-bound user tokens and their URL-safe transport encoding.

Tokens are never stored. Each one is a signed JWT that carries the user id,
a purpose tag, and a digest of the user's security stamp at issuance time.
Verification recomputes the digest from the *current* stamp, so rotating
the stamp invalidates every outstanding token for that user at once.

The raw token is wrapped a second time in unpadded base64url before it is
placed in a link, so the code survives any query-string handling unchanged.
"""

import base64
import binascii
import hashlib
import hmac
import logging
import re
import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import jwt

logger = logging.getLogger(__name__)

_ALGORITHM = "HS256"
_BASE64URL_RE = re.compile(r"^[A-Za-z0-9_-]+$")


class InvalidCodeError(ValueError):
    """Raised when a link code is not valid unpadded base64url UTF-8."""


def encode_code(token: str) -> str:
    """Encode a raw token for use as the `code` query parameter.

    Args:
        token: Raw token string.

    Returns:
        Unpadded base64url encoding of the token's UTF-8 bytes.
    """
    return base64.urlsafe_b64encode(token.encode("utf-8")).rstrip(b"=").decode("ascii")


def decode_code(code: str) -> str:
    """Decode a `code` query parameter back to the raw token.

    Args:
        code: Unpadded base64url string from the link.

    Returns:
        The raw token string.

    Raises:
        InvalidCodeError: If the code has characters outside the base64url
            alphabet, an impossible length, or does not decode to UTF-8.
    """
    if not code or not _BASE64URL_RE.match(code) or len(code) % 4 == 1:
        raise InvalidCodeError("Malformed code")

    padded = code + "=" * (-len(code) % 4)
    try:
        return base64.urlsafe_b64decode(padded).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise InvalidCodeError("Malformed code") from exc


def _stamp_digest(security_stamp: str) -> str:
    return hashlib.sha256(security_stamp.encode("utf-8")).hexdigest()


class SecurityStampTokenProvider:
    """Mint and verify purpose-bound tokens tied to a security stamp.

    Tokens are not stored. Rotating the stamp invalidates every token minted
    under the old one, and only a digest of the stamp goes in the payload.

    Args:
        secret: HMAC signing secret.
        issuer: JWT issuer claim.
        lifespan: How long a token stays valid after issuance.
        clock: Returns the current UTC time. Injectable for tests.
    """

    def __init__(
        self,
        *,
        secret: str,
        issuer: str,
        lifespan: timedelta,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._secret = secret
        self._issuer = issuer
        self._audience = f"{issuer}:user-token"
        self._lifespan = lifespan
        self._clock = clock or (lambda: datetime.now(UTC))

    def generate(
        self,
        *,
        user_id: uuid.UUID,
        security_stamp: str,
        purpose: str,
    ) -> str:
        """Mint a token for one user and one purpose.

        Args:
            user_id: Subject of the token.
            security_stamp: The user's current security stamp.
            purpose: Purpose tag (e.g. "MagicLinkLogin").

        Returns:
            Encoded JWT string.
        """
        now = self._clock()
        payload = {
            "sub": str(user_id),
            "pur": purpose,
            "stm": _stamp_digest(security_stamp),
            "aud": self._audience,
            "iss": self._issuer,
            "iat": now,
            "exp": now + self._lifespan,
        }
        return jwt.encode(payload, self._secret, algorithm=_ALGORITHM)

    def verify(
        self,
        token: str,
        *,
        user_id: uuid.UUID,
        security_stamp: str,
        purpose: str,
    ) -> bool:
        """Check a token against a user, a purpose, and the current stamp.

        Time claims are checked against the injected clock rather than
        PyJWT's wall clock so that tests can move time forward.

        Args:
            token: Raw token (already base64url-decoded).
            user_id: User the token must belong to.
            security_stamp: The user's current security stamp.
            purpose: Purpose tag the token must carry.

        Returns:
            True only if every check passes.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[_ALGORITHM],
                audience=self._audience,
                issuer=self._issuer,
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "require": ["sub", "pur", "stm", "exp", "iat"],
                },
            )
        except jwt.InvalidTokenError:
            logger.debug("User token failed signature or claim validation")
            return False

        if payload["exp"] <= self._clock().timestamp():
            return False
        if payload["sub"] != str(user_id):
            return False
        if payload["pur"] != purpose:
            return False
        return hmac.compare_digest(payload["stm"], _stamp_digest(security_stamp))
