"""Session helpers: JWT creation, cookie management, and cookie decoding.

Shared utilities used by the sign-in endpoints.

Pipeline:
- create_jwt / set_auth_cookie: full session after a successful sign-in
- create_two_factor_jwt / set_two_factor_cookie: partial context that only
  the second-factor challenge accepts
- decode_session_token: optional auth check ("is the caller signed in?")
"""

import logging
import uuid
from datetime import UTC, datetime, timedelta

import jwt
from fastapi import Response

from passwordless.core.config import settings

logger = logging.getLogger(__name__)

# Default JWT expiration: 1 hour
_DEFAULT_EXPIRATION = timedelta(hours=1)

_ALGORITHM = "HS256"


def session_audience() -> str:
    """Audience claim for full session tokens."""
    return settings.auth_issuer


def two_factor_audience() -> str:
    """Audience claim for partial two-factor tokens.

    Distinct from the session audience so a partial token can never be
    replayed as a full session.
    """
    return f"{settings.auth_issuer}:two-factor"


def create_jwt(
    *,
    user_id: str,
    secret: str,
    expires_delta: timedelta | None = None,
    audience: str | None = None,
) -> str:
    """Create a signed JWT with standard claims.

    Args:
        user_id: User UUID string for the sub claim.
        secret: HMAC signing secret.
        expires_delta: Time until expiration. Defaults to 1 hour.
        audience: aud claim. Defaults to the session audience.

    Returns:
        Encoded JWT string.
    """
    now = datetime.now(UTC)
    payload = {
        "sub": user_id,
        "aud": audience or session_audience(),
        "iss": settings.auth_issuer,
        "exp": now + (expires_delta or _DEFAULT_EXPIRATION),
        "iat": now,
    }
    return jwt.encode(payload, secret, algorithm=_ALGORITHM)


def create_two_factor_jwt(*, user_id: str, secret: str) -> str:
    """Create the short-lived partial token handed to the 2FA challenge."""
    return create_jwt(
        user_id=user_id,
        secret=secret,
        expires_delta=timedelta(minutes=settings.two_factor_cookie_minutes),
        audience=two_factor_audience(),
    )


def set_auth_cookie(response: Response, token: str, *, persistent: bool = False) -> None:
    """Set httpOnly JWT session cookie on response.

    Security: httpOnly prevents XSS cookie theft. Secure flag and SameSite
    are configured via settings for environment-appropriate security.

    Args:
        response: FastAPI response object.
        token: JWT token string.
        persistent: When False the cookie has no max-age and is dropped
            when the browser closes.
    """
    response.set_cookie(
        key=settings.auth_cookie_name,
        value=token,
        httponly=True,
        secure=settings.auth_cookie_secure,
        samesite=settings.auth_cookie_samesite,
        path="/",
        max_age=int(_DEFAULT_EXPIRATION.total_seconds()) if persistent else None,
        domain=settings.auth_cookie_domain or None,
    )


def set_two_factor_cookie(response: Response, token: str) -> None:
    """Set the partial two-factor cookie on response.

    Args:
        response: FastAPI response object.
        token: Partial JWT from create_two_factor_jwt().
    """
    response.set_cookie(
        key=settings.two_factor_cookie_name,
        value=token,
        httponly=True,
        secure=settings.auth_cookie_secure,
        samesite=settings.auth_cookie_samesite,
        path="/",
        max_age=settings.two_factor_cookie_minutes * 60,
        domain=settings.auth_cookie_domain or None,
    )


def clear_auth_cookie(response: Response) -> None:
    """Delete the session cookie.

    Cookie attributes must match set_auth_cookie() for browser to delete.
    """
    response.delete_cookie(
        key=settings.auth_cookie_name,
        path="/",
        httponly=True,
        secure=settings.auth_cookie_secure,
        samesite=settings.auth_cookie_samesite,
        domain=settings.auth_cookie_domain or None,
    )


def decode_session_token(token: str | None) -> uuid.UUID | None:
    """Return the user id of a valid session token, or None.

    Never raises: any decode failure means "not signed in".

    Args:
        token: Raw cookie value (may be None).

    Returns:
        UUID from the sub claim, or None.
    """
    if not token:
        return None
    try:
        payload = jwt.decode(
            token,
            settings.auth_secret.get_secret_value(),
            algorithms=[_ALGORITHM],
            audience=session_audience(),
            issuer=settings.auth_issuer,
        )
        return uuid.UUID(payload["sub"])
    except (jwt.InvalidTokenError, KeyError, ValueError):
        logger.debug("Ignoring invalid session cookie")
        return None
