"""JSON envelopes: `{"data": ...}` on success, `{"error": {...}}` on failure."""

from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class DataResponse(BaseModel, Generic[T]):
    """Success body wrapping a single payload."""

    data: T


class ErrorDetail(BaseModel):
    """Error detail for response body.

    Attributes:
        code: Machine-readable error code (e.g., "RATE_LIMITED").
        message: Human-readable error message.
        details: Optional list of field-level errors (for validation).
    """

    code: str
    message: str
    details: list[dict] | None = None


class ErrorResponse(BaseModel):
    """Failure body rendered by the exception handlers in main.py."""

    error: ErrorDetail
