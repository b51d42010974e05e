"""Magic link + session endpoints.

Passwordless sign-in via email magic links, logout, and current user info.

Endpoints:
- POST /auth/magic-link: request magic link email
- GET /auth/login-with-magic-link: redeem link, start session, redirect
- POST /auth/logout: clear auth cookie
- GET /auth/me: return current user info
"""

from typing import Annotated
from urllib.parse import quote, urlencode

from fastapi import APIRouter, Query, Request
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from starlette.responses import Response

from passwordless.api.deps import (
    CurrentUserId,
    Identities,
    Issuer,
    OptionalUserId,
    Redeemer,
)
from passwordless.core.auth import (
    clear_auth_cookie,
    set_auth_cookie,
    set_two_factor_cookie,
)
from passwordless.core.config import settings
from passwordless.core.errors import UnauthorizedError
from passwordless.core.rate_limiting import limiter
from passwordless.core.responses import DataResponse
from passwordless.models.user import User
from passwordless.services.magic_link_redeemer import (
    RedemptionResult,
    RedemptionStatus,
)

router = APIRouter()

_MAX_URL_PARAM_LENGTH = 2048


# ===================================================================
# Request models
# ===================================================================


class MagicLinkRequest(BaseModel):
    """Request body for POST /auth/magic-link."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    email: EmailStr
    return_url: str | None = Field(
        default=None, alias="returnUrl", max_length=_MAX_URL_PARAM_LENGTH
    )


# ===================================================================
# POST /auth/magic-link
# ===================================================================


@router.post("/magic-link")
@limiter.limit(settings.rate_limit_magic_link_request)
async def request_magic_link(
    request: Request,  # noqa: ARG001
    body: MagicLinkRequest,
    issuer: Issuer,
) -> DataResponse[dict]:
    """Request a magic link sign-in email.

    Always returns the same confirmation whether or not the email belongs
    to an eligible account (prevents email enumeration). The only
    distinguishable outcomes are 429 (per-email quota used up) and 502
    (email transport failure).
    """
    outcome = await issuer.request(body.email, body.return_url)
    return DataResponse(
        data={"message": outcome.message, "return_url": outcome.return_url}
    )


# ===================================================================
# GET /auth/login-with-magic-link
# ===================================================================


def _redirect(url: str) -> RedirectResponse:
    response = RedirectResponse(url=url, status_code=303)
    # The code is in the URL; keep it out of the Referer header
    response.headers["Referrer-Policy"] = "no-referrer"
    return response


def _two_factor_url(result: RedemptionResult) -> str:
    params = urlencode(
        {
            "returnUrl": result.return_url,
            "rememberMe": str(result.remember_me).lower(),
        },
        quote_via=quote,
    )
    return f"{settings.two_factor_path}?{params}"


@router.get("/login-with-magic-link")
@limiter.limit(settings.rate_limit_magic_link_verify)
async def login_with_magic_link(
    request: Request,  # noqa: ARG001
    redeemer: Redeemer,
    current_user_id: OptionalUserId,
    user_id: Annotated[
        str | None, Query(alias="userId", max_length=_MAX_URL_PARAM_LENGTH)
    ] = None,
    code: Annotated[str | None, Query(max_length=_MAX_URL_PARAM_LENGTH)] = None,
    return_url: Annotated[
        str | None, Query(alias="returnUrl", max_length=_MAX_URL_PARAM_LENGTH)
    ] = None,
    area: Annotated[str | None, Query(max_length=64)] = None,  # noqa: ARG001
) -> RedirectResponse:
    """Redeem a magic link.

    303 redirect to the validated return URL on sign-in (or when already
    signed in), 303 redirect into the two-factor challenge when the account
    requires it, 400 with a fixed message otherwise.
    """
    result = await redeemer.redeem(
        user_id,
        code,
        return_url,
        already_authenticated=current_user_id is not None,
    )
    result.raise_for_rejection()

    if result.status is RedemptionStatus.TWO_FACTOR_REQUIRED:
        response = _redirect(_two_factor_url(result))
        set_two_factor_cookie(response, result.two_factor_token or "")
        return response

    response = _redirect(result.return_url)
    if result.status is RedemptionStatus.SIGNED_IN:
        set_auth_cookie(response, result.session_token or "", persistent=False)
    return response


# ===================================================================
# POST /auth/logout
# ===================================================================


@router.post("/logout")
async def logout(response: Response) -> DataResponse[dict]:
    """Clear auth cookie.

    No auth required. Clears the cookie regardless.
    """
    clear_auth_cookie(response)
    return DataResponse(data={"message": "Signed out"})


# ===================================================================
# GET /auth/me
# ===================================================================


def _user_to_response(user: User) -> dict:
    """Build user response payload for /me."""
    return {
        "id": str(user.id),
        "email": user.email,
        "email_verified": user.email_verified is not None,
        "two_factor_enabled": user.two_factor_enabled,
    }


@router.get("/me")
async def get_me(
    user_id: CurrentUserId,
    identity_store: Identities,
) -> DataResponse[dict]:
    """Return current user info from the session cookie.

    Returns 401 if no valid session or the user no longer exists.
    """
    user = await identity_store.find_by_id(user_id)
    if user is None:
        raise UnauthorizedError()
    return DataResponse(data=_user_to_response(user))
