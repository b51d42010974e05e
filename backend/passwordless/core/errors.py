"""API error classes.

HTTP status codes and machine-readable error codes for every failure the
sign-in flow can surface.
"""


class APIError(Exception):
    """Error that maps directly onto an HTTP error response.

    Attributes:
        code: Machine-readable error code (e.g., "RATE_LIMITED").
        message: Human-readable error message.
        status_code: HTTP status code to return.
        details: Optional list of additional error details.
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: list[dict] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class ValidationError(APIError):
    """Input the service refuses to act on (400)."""

    def __init__(
        self,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=400,
            details=details,
        )


class UnauthorizedError(APIError):
    """No valid session cookie (401)."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(
            code="UNAUTHORIZED",
            message=message,
            status_code=401,
        )


class MagicLinkRejectedError(APIError):
    """Magic link could not be redeemed (400).

    The message is one of a small fixed set. "User not found" and
    "malformed code" deliberately share code and message so a caller
    cannot tell which check failed.

    Args:
        code: Error code for the rejection reason.
        message: User-facing rejection message.
    """

    def __init__(self, code: str, message: str) -> None:
        super().__init__(
            code=code,
            message=message,
            status_code=400,
        )


class RateLimitedError(APIError):
    """Too many magic link requests for one identity (429).

    Args:
        retry_after_minutes: Window length the caller should wait.
    """

    def __init__(self, retry_after_minutes: int) -> None:
        self.retry_after_minutes = retry_after_minutes
        super().__init__(
            code="RATE_LIMITED",
            message=(
                "Too many requests. Please try again in "
                f"{retry_after_minutes} minutes."
            ),
            status_code=429,
        )


class EmailDeliveryError(APIError):
    """Email transport failed to accept the message (502).

    Surfaced instead of swallowed: the user would otherwise wait for a
    link that was never sent.
    """

    def __init__(
        self, message: str = "Unable to send the sign-in email. Please try again."
    ) -> None:
        super().__init__(
            code="EMAIL_DELIVERY_FAILED",
            message=message,
            status_code=502,
        )

