"""Shared dependencies for API endpoints.

Authentication, identity store, and magic link service wiring.
"""

import uuid
from datetime import timedelta
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from passwordless.core.auth import decode_session_token
from passwordless.core.config import settings
from passwordless.core.database import get_db
from passwordless.core.email import EmailSender, get_email_sender
from passwordless.core.errors import UnauthorizedError
from passwordless.core.rate_limiting import (
    MagicLinkRateLimiter,
    get_magic_link_rate_limiter,
)
from passwordless.core.tokens import SecurityStampTokenProvider
from passwordless.services.identity_store import IdentityStore, SqlIdentityStore
from passwordless.services.magic_link_issuer import MagicLinkIssuer
from passwordless.services.magic_link_redeemer import MagicLinkRedeemer

DbSession = Annotated[AsyncSession, Depends(get_db)]


def get_optional_user_id(request: Request) -> uuid.UUID | None:
    """Return the signed-in user's id, or None for anonymous callers.

    Args:
        request: HTTP request (injected by FastAPI).
    """
    return decode_session_token(request.cookies.get(settings.auth_cookie_name))


def get_current_user_id(
    user_id: Annotated[uuid.UUID | None, Depends(get_optional_user_id)],
) -> uuid.UUID:
    """Get current user ID from the session cookie.

    Raises:
        UnauthorizedError: 401 if the cookie is missing or invalid.
            Never says why the cookie was rejected.
    """
    if user_id is None:
        raise UnauthorizedError()
    return user_id


def get_token_provider() -> SecurityStampTokenProvider:
    """Build the stamp-bound token provider from settings."""
    return SecurityStampTokenProvider(
        secret=settings.auth_secret.get_secret_value(),
        issuer=settings.auth_issuer,
        lifespan=timedelta(minutes=settings.magic_link_token_lifespan_minutes),
    )


def get_identity_store(
    db: DbSession,
    token_provider: Annotated[SecurityStampTokenProvider, Depends(get_token_provider)],
) -> IdentityStore:
    """Get the request-scoped identity store."""
    return SqlIdentityStore(db, token_provider)


# Reusable type aliases for dependency injection
OptionalUserId = Annotated[uuid.UUID | None, Depends(get_optional_user_id)]
CurrentUserId = Annotated[uuid.UUID, Depends(get_current_user_id)]
Identities = Annotated[IdentityStore, Depends(get_identity_store)]
Mailer = Annotated[EmailSender, Depends(get_email_sender)]
RequestQuota = Annotated[MagicLinkRateLimiter, Depends(get_magic_link_rate_limiter)]


def get_magic_link_issuer(
    identity_store: Identities,
    email_sender: Mailer,
    rate_limiter: RequestQuota,
) -> MagicLinkIssuer:
    """Wire the issuer from request-scoped collaborators and settings."""
    return MagicLinkIssuer(
        identity_store=identity_store,
        email_sender=email_sender,
        rate_limiter=rate_limiter,
        app_name=settings.app_name,
        public_base_url=settings.public_base_url,
        verify_path=settings.magic_link_verify_path,
        token_purpose=settings.magic_link_token_purpose,
        lifespan_minutes=settings.magic_link_token_lifespan_minutes,
    )


def get_magic_link_redeemer(identity_store: Identities) -> MagicLinkRedeemer:
    """Wire the redeemer from the request-scoped identity store."""
    return MagicLinkRedeemer(
        identity_store=identity_store,
        secret=settings.auth_secret.get_secret_value(),
        token_purpose=settings.magic_link_token_purpose,
    )


Issuer = Annotated[MagicLinkIssuer, Depends(get_magic_link_issuer)]
Redeemer = Annotated[MagicLinkRedeemer, Depends(get_magic_link_redeemer)]
