"""Magic link issuance.

Given an email and an optional return URL, mint a single-use sign-in token
for an eligible account and email it as a callback link.

The outcome is the same for every eligible and ineligible account, so the
response never reveals whether an email is registered. Only two things
surface to the caller: throttling (429) and delivery failure (502).

Order of gates:
1. Validate the return URL (open-redirect protection).
2. Check the per-email quota without consuming it.
3. Unknown or unconfirmed account: stop silently.
4. Locked-out account: stop silently.
5. Consume quota, mint token, send the link.

Quota is consumed only in step 5. Requests for ineligible accounts are
still refused once the quota is used up.
"""

import html
import logging
from dataclasses import dataclass
from urllib.parse import quote, urlencode

from passwordless.core.email import EmailSender
from passwordless.core.errors import RateLimitedError, ValidationError
from passwordless.core.rate_limiting import MagicLinkRateLimiter
from passwordless.core.redirects import validate_return_url
from passwordless.core.tokens import encode_code
from passwordless.models.user import User
from passwordless.services.identity_store import IdentityStore

logger = logging.getLogger(__name__)

GENERIC_MESSAGE = (
    "If an account with that email exists and is confirmed, "
    "a sign-in link has been sent."
)

# Fixed value of the `area` query parameter on callback links
CALLBACK_AREA = "Identity"


@dataclass(frozen=True)
class IssueOutcome:
    """Result of a magic link request.

    Identical whether or not a link was actually sent.

    Attributes:
        message: Generic confirmation shown to the caller.
        return_url: Validated post-login destination.
    """

    message: str
    return_url: str


def build_callback_url(
    *,
    base_url: str,
    verify_path: str,
    user_id: str,
    code: str,
    return_url: str,
) -> str:
    """Build the absolute link the recipient clicks.

    Args:
        base_url: Public origin, e.g. "https://auth.example.com".
        verify_path: Path of the redemption endpoint.
        user_id: User id string.
        code: URL-safe encoded token.
        return_url: Validated post-login destination.

    Returns:
        Absolute URL with area, userId, code, and returnUrl query params.
    """
    params = urlencode(
        {
            "area": CALLBACK_AREA,
            "userId": user_id,
            "code": code,
            "returnUrl": return_url,
        },
        quote_via=quote,
    )
    return f"{base_url.rstrip('/')}{verify_path}?{params}"


def render_email_body(callback_url: str, *, lifespan_minutes: int) -> str:
    """Render the HTML body of the sign-in email.

    The link is HTML-escaped for both the href and the visible text.
    """
    link = html.escape(callback_url, quote=True)
    return (
        "<p>Click the link below to sign in to your account:</p>"
        f'<p><a href="{link}">{link}</a></p>'
        f"<p>This link expires in {lifespan_minutes} minutes "
        "and can only be used once.</p>"
        "<p>If you did not request this, please ignore this email.</p>"
    )


class MagicLinkIssuer:
    """Issue magic links for eligible accounts.

    Args:
        identity_store: User lookup and token capability.
        email_sender: Delivery collaborator.
        rate_limiter: Per-email request quota.
        app_name: Shown in the email subject.
        public_base_url: Origin used to build callback links.
        verify_path: Path of the redemption endpoint.
        token_purpose: Purpose tag bound into each token.
        lifespan_minutes: Token lifespan, quoted in the email body.
    """

    def __init__(
        self,
        *,
        identity_store: IdentityStore,
        email_sender: EmailSender,
        rate_limiter: MagicLinkRateLimiter,
        app_name: str,
        public_base_url: str,
        verify_path: str,
        token_purpose: str,
        lifespan_minutes: int,
    ) -> None:
        self._identity_store = identity_store
        self._email_sender = email_sender
        self._rate_limiter = rate_limiter
        self._app_name = app_name
        self._public_base_url = public_base_url
        self._verify_path = verify_path
        self._token_purpose = token_purpose
        self._lifespan_minutes = lifespan_minutes

    async def request(self, email: str, return_url: str | None = None) -> IssueOutcome:
        """Request a sign-in link for an email address.

        Args:
            email: Address the caller typed.
            return_url: Untrusted post-login destination.

        Returns:
            IssueOutcome with the generic message and validated return URL.

        Raises:
            ValidationError: If the email is blank.
            RateLimitedError: If the email has used up its quota.
            EmailDeliveryError: If the transport refused the message.
        """
        safe_return_url = validate_return_url(return_url)
        outcome = IssueOutcome(message=GENERIC_MESSAGE, return_url=safe_return_url)

        if not email or not email.strip():
            raise ValidationError("Email is required")

        decision = self._rate_limiter.check(email)
        if not decision.allowed:
            logger.warning(
                "Magic link rate limit exceeded for %s (%s requests)",
                email,
                decision.count,
            )
            raise RateLimitedError(decision.retry_after_minutes)

        user = await self._identity_store.find_by_email(email)
        if user is None or not await self._identity_store.is_email_confirmed(user):
            logger.info(
                "Magic link requested for unknown or unconfirmed email: %s", email
            )
            return outcome

        if await self._identity_store.is_locked_out(user):
            logger.warning("Magic link requested for locked out user %s", user.id)
            return outcome

        self._rate_limiter.increment(email)
        await self._send_link(user, safe_return_url)
        logger.info("Magic link sent to user %s", user.id)
        return outcome

    async def _send_link(self, user: User, return_url: str) -> None:
        token = await self._identity_store.generate_token(user, self._token_purpose)
        callback_url = build_callback_url(
            base_url=self._public_base_url,
            verify_path=self._verify_path,
            user_id=str(user.id),
            code=encode_code(token),
            return_url=return_url,
        )
        await self._email_sender.send(
            user.email,
            f"Sign in to {self._app_name}",
            render_email_body(callback_url, lifespan_minutes=self._lifespan_minutes),
        )
