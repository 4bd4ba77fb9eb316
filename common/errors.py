"""Error taxonomy shared by the tracker modules.

Three kinds of failure leave a public operation:

- NotFoundError:   referenced entity missing or owned by someone else
- ValidationError: bad enumerated value, empty required text, conflicting input
- InternalError:   unexpected store failure (logged, message kept opaque)

NotFound and Validation errors carry a stable machine-readable code and are
meant to be surfaced to the caller verbatim.
"""
import functools
import logging
from enum import Enum
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Stable error codes."""
    APPLICATION_NOT_FOUND = "APPLICATION_NOT_FOUND"
    STAGE_TEMPLATE_NOT_FOUND = "STAGE_TEMPLATE_NOT_FOUND"
    APPLICATION_STAGE_NOT_FOUND = "APPLICATION_STAGE_NOT_FOUND"
    JOB_NOT_FOUND = "JOB_NOT_FOUND"
    RESUME_NOT_FOUND = "RESUME_NOT_FOUND"
    COMPANY_NOT_FOUND = "COMPANY_NOT_FOUND"

    INVALID_STATUS = "INVALID_STATUS"
    INVALID_COMPLETED_AT = "INVALID_COMPLETED_AT"
    INVALID_ORDER = "INVALID_ORDER"
    INVALID_SCOPE = "INVALID_SCOPE"
    STAGE_NAME_REQUIRED = "STAGE_NAME_REQUIRED"
    DUPLICATE_STAGE_TEMPLATE = "DUPLICATE_STAGE_TEMPLATE"
    STAGE_TEMPLATE_IN_USE = "STAGE_TEMPLATE_IN_USE"
    IMMUTABLE_FIELD = "IMMUTABLE_FIELD"

    INTERNAL_ERROR = "INTERNAL_ERROR"


def build_error_payload(
    code: ErrorCode,
    message: str,
    details: Optional[dict[str, Any]] = None,
) -> dict:
    payload = {"error": {"code": code.value, "message": message}}
    if details is not None:
        payload["error"]["details"] = details
    return payload


class TrackerError(Exception):
    """Base exception with structured error information."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[dict[str, Any]] = None,
    ):
        self.code = code
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert error to the response shape used by callers."""
        return build_error_payload(self.code, self.message, self.details)


class NotFoundError(TrackerError):
    """Entity does not exist within the caller's scope."""


class ValidationError(TrackerError):
    """Input rejected before touching the store."""


class InternalError(TrackerError):
    """Unexpected store failure. Never exposes the underlying message."""

    def __init__(self, message: str = "Internal server error"):
        super().__init__(ErrorCode.INTERNAL_ERROR, message)


def store_errors(func):
    """Translate SQLAlchemy failures into InternalError.

    TrackerError subclasses pass through untouched.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except SQLAlchemyError as e:
            logger.exception(f"Store failure in {func.__qualname__}: {e}")
            raise InternalError() from e
    return wrapper
