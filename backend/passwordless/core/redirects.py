"""Open-redirect protection for post-login destinations.

The return URL arrives from an untrusted caller on both the request and the
redemption path. Only same-origin local paths survive; everything else is
replaced with the site root.
"""

DEFAULT_RETURN_URL = "/"


def _has_control_characters(value: str) -> bool:
    return any(ord(ch) < 0x20 or ord(ch) == 0x7F for ch in value)


def is_local_url(candidate: str | None) -> bool:
    """Check whether a URL is a same-origin local path.

    Accepted: "/" and "/path...". Rejected: "//host" and "/\\host" (browsers
    treat both as protocol-relative), absolute URLs, scheme-only URLs
    ("javascript:..."), bare relative paths ("foo/bar"), and anything
    containing control characters (browsers strip tabs and newlines, which
    can turn "/\\t/host" into "//host").

    Args:
        candidate: Untrusted URL string.

    Returns:
        True if the URL is safe to redirect to.
    """
    if not candidate or candidate[0] != "/":
        return False
    if _has_control_characters(candidate):
        return False
    if len(candidate) == 1:
        return True
    return candidate[1] not in ("/", "\\")


def validate_return_url(candidate: str | None) -> str:
    """Return the candidate if it is a local path, otherwise the site root.

    Pure and total: never raises, always returns a usable redirect target.

    Args:
        candidate: Untrusted post-login destination.

    Returns:
        The unchanged candidate, or DEFAULT_RETURN_URL.
    """
    if is_local_url(candidate):
        return candidate  # type: ignore[return-value]
    return DEFAULT_RETURN_URL
