"""API error definitions.

All API errors are defined here with their corresponding HTTP status codes.
"""

from enum import Enum
from typing import Any


class ApiErrorCode(str, Enum):
    """Standardized error codes for the API.

    Format: E_CATEGORY_NAME
    """

    # Authentication errors (401)
    E_UNAUTHENTICATED = "E_UNAUTHENTICATED"

    # Authorization errors (403)
    E_FORBIDDEN = "E_FORBIDDEN"
    E_INTERNAL_ONLY = "E_INTERNAL_ONLY"
    E_INVITE_EMAIL_MISMATCH = "E_INVITE_EMAIL_MISMATCH"

    # Not found errors (404)
    E_NOT_FOUND = "E_NOT_FOUND"
    E_WORKSPACE_NOT_FOUND = "E_WORKSPACE_NOT_FOUND"
    E_CONNECTION_NOT_FOUND = "E_CONNECTION_NOT_FOUND"
    E_CONVERSATION_NOT_FOUND = "E_CONVERSATION_NOT_FOUND"
    E_INVITE_NOT_FOUND = "E_INVITE_NOT_FOUND"
    E_KEY_NOT_FOUND = "E_KEY_NOT_FOUND"

    # Conflict errors (409)
    E_CONFLICT = "E_CONFLICT"
    E_MEMBER_EXISTS = "E_MEMBER_EXISTS"
    E_INVITE_EXISTS = "E_INVITE_EXISTS"
    E_INVITE_NOT_PENDING = "E_INVITE_NOT_PENDING"
    E_CONVERSATION_CONFLICT = "E_CONVERSATION_CONFLICT"

    # Gone (410)
    E_INVITE_EXPIRED = "E_INVITE_EXPIRED"

    # Validation errors (400)
    E_INVALID_REQUEST = "E_INVALID_REQUEST"
    E_VALIDATION = "E_VALIDATION"

    # Server errors
    E_AUTH_UNAVAILABLE = "E_AUTH_UNAVAILABLE"  # 503
    E_INTERNAL = "E_INTERNAL"  # 500


# Error code to HTTP status mapping
ERROR_CODE_TO_STATUS: dict[ApiErrorCode, int] = {
    ApiErrorCode.E_UNAUTHENTICATED: 401,
    ApiErrorCode.E_FORBIDDEN: 403,
    ApiErrorCode.E_INTERNAL_ONLY: 403,
    ApiErrorCode.E_INVITE_EMAIL_MISMATCH: 403,
    ApiErrorCode.E_NOT_FOUND: 404,
    ApiErrorCode.E_WORKSPACE_NOT_FOUND: 404,
    ApiErrorCode.E_CONNECTION_NOT_FOUND: 404,
    ApiErrorCode.E_CONVERSATION_NOT_FOUND: 404,
    ApiErrorCode.E_INVITE_NOT_FOUND: 404,
    ApiErrorCode.E_KEY_NOT_FOUND: 404,
    ApiErrorCode.E_CONFLICT: 409,
    ApiErrorCode.E_MEMBER_EXISTS: 409,
    ApiErrorCode.E_INVITE_EXISTS: 409,
    ApiErrorCode.E_INVITE_NOT_PENDING: 409,
    ApiErrorCode.E_CONVERSATION_CONFLICT: 409,
    ApiErrorCode.E_INVITE_EXPIRED: 410,
    ApiErrorCode.E_INVALID_REQUEST: 400,
    ApiErrorCode.E_VALIDATION: 400,
    ApiErrorCode.E_AUTH_UNAVAILABLE: 503,
    ApiErrorCode.E_INTERNAL: 500,
}


class ApiError(Exception):
    """Base exception for API errors.

    Attributes:
        code: The error code enum value
        message: Human-readable error message
        status_code: HTTP status code (derived from code)
        details: Optional field-level detail list (validation failures)
    """

    def __init__(
        self,
        code: ApiErrorCode,
        message: str,
        details: list[dict[str, Any]] | None = None,
    ):
        self.code = code
        self.message = message
        self.details = details
        self.status_code = ERROR_CODE_TO_STATUS.get(code, 500)
        super().__init__(message)


class NotFoundError(ApiError):
    """Resource not found error."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_NOT_FOUND, message: str = "Not found"):
        super().__init__(code, message)


class ForbiddenError(ApiError):
    """Authorization failure error."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_FORBIDDEN, message: str = "Forbidden"):
        super().__init__(code, message)


class InvalidRequestError(ApiError):
    """Invalid request error."""

    def __init__(
        self, code: ApiErrorCode = ApiErrorCode.E_INVALID_REQUEST, message: str = "Invalid request"
    ):
        super().__init__(code, message)


class ConflictError(ApiError):
    """State conflict error (duplicate membership, duplicate invitation, ...)."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_CONFLICT, message: str = "Conflict"):
        super().__init__(code, message)


class ValidationFailedError(ApiError):
    """Field-level validation failure.

    Carries every offending field, not just the first one found.
    Each detail is {"field": <name>, "message": <reason>}.
    """

    def __init__(self, details: list[dict[str, Any]], message: str = "Validation failed"):
        super().__init__(ApiErrorCode.E_VALIDATION, message, details=details)
