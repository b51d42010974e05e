"""Magic link redemption.

Turns a clicked callback link into either a full session, a hand-off into
the second-factor challenge, or a rejection with a fixed user-facing
message.

The security stamp is always rotated before control leaves this service on
a success path. Rotation is what makes the link single use, so a link is
spent even if the browser never follows the redirect.
"""

import enum
import logging
import uuid
from dataclasses import dataclass

from passwordless.core.auth import create_jwt, create_two_factor_jwt
from passwordless.core.errors import MagicLinkRejectedError
from passwordless.core.redirects import validate_return_url
from passwordless.core.tokens import InvalidCodeError, decode_code
from passwordless.services.identity_store import IdentityStore

logger = logging.getLogger(__name__)


class RedemptionStatus(enum.Enum):
    ALREADY_AUTHENTICATED = "already_authenticated"
    SIGNED_IN = "signed_in"
    TWO_FACTOR_REQUIRED = "two_factor_required"
    REJECTED = "rejected"


class RejectionReason(enum.Enum):
    """Why a link was refused, with the error code and message shown."""

    INVALID_LINK = ("INVALID_MAGIC_LINK", "Invalid sign-in link.")
    INVALID_OR_EXPIRED = (
        "MAGIC_LINK_EXPIRED",
        "This sign-in link is invalid or has expired. Please request a new one.",
    )
    EMAIL_NOT_CONFIRMED = (
        "EMAIL_NOT_CONFIRMED",
        "Please confirm your email before signing in.",
    )
    LOCKED_OUT = (
        "ACCOUNT_LOCKED_OUT",
        "Your account is locked out. Please try again later.",
    )

    @property
    def code(self) -> str:
        return self.value[0]

    @property
    def message(self) -> str:
        return self.value[1]


@dataclass(frozen=True)
class RedemptionResult:
    """Outcome of redeeming a link.

    Attributes:
        status: Terminal state reached.
        return_url: Validated post-login destination.
        user_id: Subject of the link, once resolved.
        session_token: Full session JWT (SIGNED_IN only).
        two_factor_token: Partial JWT for the 2FA challenge
            (TWO_FACTOR_REQUIRED only).
        remember_me: Carried into the 2FA challenge. Always False.
        reason: Why the link was refused (REJECTED only).
    """

    status: RedemptionStatus
    return_url: str
    user_id: uuid.UUID | None = None
    session_token: str | None = None
    two_factor_token: str | None = None
    remember_me: bool = False
    reason: RejectionReason | None = None

    def raise_for_rejection(self) -> None:
        """Raise MagicLinkRejectedError if this result is a rejection."""
        if self.status is RedemptionStatus.REJECTED and self.reason is not None:
            raise MagicLinkRejectedError(self.reason.code, self.reason.message)


def _parse_user_id(user_id: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(user_id)
    except ValueError:
        return None


class MagicLinkRedeemer:
    """Redeem magic links for sessions.

    Args:
        identity_store: User lookup and token capability.
        secret: Signing secret for session and two-factor JWTs.
        token_purpose: Purpose tag the token must carry.
    """

    def __init__(
        self,
        *,
        identity_store: IdentityStore,
        secret: str,
        token_purpose: str,
    ) -> None:
        self._identity_store = identity_store
        self._secret = secret
        self._token_purpose = token_purpose

    def _reject(
        self,
        reason: RejectionReason,
        return_url: str,
        user_id: str | None,
        detail: str = "",
    ) -> RedemptionResult:
        logger.warning(
            "Magic link rejected for user %s: %s %s", user_id, reason.name, detail
        )
        return RedemptionResult(
            status=RedemptionStatus.REJECTED,
            return_url=return_url,
            reason=reason,
        )

    async def redeem(
        self,
        user_id: str | None,
        code: str | None,
        return_url: str | None = None,
        *,
        already_authenticated: bool = False,
    ) -> RedemptionResult:
        """Redeem a callback link.

        Args:
            user_id: `userId` query value.
            code: `code` query value (URL-safe encoded token).
            return_url: Untrusted post-login destination.
            already_authenticated: Caller already holds a session.

        Returns:
            RedemptionResult describing the terminal state.
        """
        safe_return_url = validate_return_url(return_url)

        if already_authenticated:
            return RedemptionResult(
                status=RedemptionStatus.ALREADY_AUTHENTICATED,
                return_url=safe_return_url,
            )

        if not user_id or not code:
            return self._reject(RejectionReason.INVALID_LINK, safe_return_url, user_id)

        parsed_id = _parse_user_id(user_id)
        user = (
            await self._identity_store.find_by_id(parsed_id)
            if parsed_id is not None
            else None
        )
        if user is None:
            return self._reject(
                RejectionReason.INVALID_LINK, safe_return_url, user_id, "(unknown user)"
            )

        try:
            token = decode_code(code)
        except InvalidCodeError:
            return self._reject(
                RejectionReason.INVALID_LINK, safe_return_url, user_id, "(malformed code)"
            )

        if not await self._identity_store.verify_token(user, self._token_purpose, token):
            return self._reject(
                RejectionReason.INVALID_OR_EXPIRED, safe_return_url, user_id
            )

        if not await self._identity_store.is_email_confirmed(user):
            return self._reject(
                RejectionReason.EMAIL_NOT_CONFIRMED, safe_return_url, user_id
            )

        if await self._identity_store.is_locked_out(user):
            return self._reject(RejectionReason.LOCKED_OUT, safe_return_url, user_id)

        if await self._identity_store.is_two_factor_enabled(user):
            # Spend the link before handing off to the second factor
            await self._identity_store.rotate_security_stamp(user)
            two_factor_token = create_two_factor_jwt(
                user_id=str(user.id), secret=self._secret
            )
            logger.info("Magic link verified, two-factor required for user %s", user.id)
            return RedemptionResult(
                status=RedemptionStatus.TWO_FACTOR_REQUIRED,
                return_url=safe_return_url,
                user_id=user.id,
                two_factor_token=two_factor_token,
                remember_me=False,
            )

        session_token = create_jwt(user_id=str(user.id), secret=self._secret)
        await self._identity_store.rotate_security_stamp(user)
        logger.info("User %s signed in via magic link", user.id)
        return RedemptionResult(
            status=RedemptionStatus.SIGNED_IN,
            return_url=safe_return_url,
            user_id=user.id,
            session_token=session_token,
        )
