"""Standardized API errors with suggested actions.

Service-layer exceptions (ledger source, filter validation, saved filters)
are translated into these at the endpoint boundary so every error response
has the same shape.
"""

from enum import Enum
from typing import Any, Dict, Optional

from fastapi import HTTPException, status
from pydantic import BaseModel


class ErrorCode(str, Enum):
    """Standardized error codes for the application."""

    # Authentication errors
    AUTH_TOKEN_EXPIRED = "AUTH_TOKEN_EXPIRED"
    AUTH_TOKEN_INVALID = "AUTH_TOKEN_INVALID"
    AUTH_UNAUTHORIZED = "AUTH_UNAUTHORIZED"

    # Ledger source errors
    LEDGER_SOURCE_CONNECTION_ERROR = "LEDGER_SOURCE_CONNECTION_ERROR"
    LEDGER_SOURCE_AUTH_ERROR = "LEDGER_SOURCE_AUTH_ERROR"
    LEDGER_SOURCE_RATE_LIMITED = "LEDGER_SOURCE_RATE_LIMITED"
    LEDGER_SOURCE_SERVER_ERROR = "LEDGER_SOURCE_SERVER_ERROR"
    LEDGER_SOURCE_ERROR = "LEDGER_SOURCE_ERROR"

    # Filter errors
    FILTER_CONFIG_INVALID = "FILTER_CONFIG_INVALID"
    SAVED_FILTER_NOT_FOUND = "SAVED_FILTER_NOT_FOUND"
    SAVED_FILTER_NAME_TAKEN = "SAVED_FILTER_NAME_TAKEN"

    # Date search errors
    TIMESTAMP_INVALID = "TIMESTAMP_INVALID"

    # Pass lifecycle
    PASS_SUPERSEDED = "PASS_SUPERSEDED"

    # General errors
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    NOT_FOUND = "NOT_FOUND"


class ErrorResponse(BaseModel):
    """Standardized error response format.

    Attributes:
        error: Short error description
        error_code: Machine-readable error code
        message: Human-readable error message
        details: Additional error details
        retry_after: Seconds to wait before retrying (for rate limits)
        suggested_action: Actionable suggestion for the user
        is_retryable: Whether the operation can be retried
    """
    error: str
    error_code: str
    message: str
    details: Optional[Dict[str, Any]] = None
    retry_after: Optional[int] = None
    suggested_action: Optional[str] = None
    is_retryable: bool = False


SUGGESTED_ACTIONS = {
    ErrorCode.AUTH_TOKEN_EXPIRED: "Your session has expired. Please sign in again.",
    ErrorCode.AUTH_TOKEN_INVALID: "Your session is invalid. Please sign in again.",
    ErrorCode.AUTH_UNAUTHORIZED: "You don't have permission to perform this action.",

    ErrorCode.LEDGER_SOURCE_CONNECTION_ERROR: "Cannot reach the ledger store. Please try again shortly.",
    ErrorCode.LEDGER_SOURCE_AUTH_ERROR: "The ledger store rejected our credentials. Please check the service key.",
    ErrorCode.LEDGER_SOURCE_RATE_LIMITED: "Too many requests to the ledger store. Please wait a moment and try again.",
    ErrorCode.LEDGER_SOURCE_SERVER_ERROR: "The ledger store returned an error. Please try again later.",
    ErrorCode.LEDGER_SOURCE_ERROR: "Ledger data could not be loaded completely, so no results were computed.",

    ErrorCode.FILTER_CONFIG_INVALID: "The filter is invalid. Please correct the highlighted field.",
    ErrorCode.SAVED_FILTER_NOT_FOUND: "The saved filter was not found.",
    ErrorCode.SAVED_FILTER_NAME_TAKEN: "A saved filter with this name already exists. Please choose another name.",

    ErrorCode.TIMESTAMP_INVALID: "The date could not be interpreted. Please use YYYY-MM-DD.",

    ErrorCode.PASS_SUPERSEDED: "A newer request replaced this one. Its results will be shown instead.",

    ErrorCode.VALIDATION_ERROR: "The submitted data is invalid. Please check the form and correct any errors.",
    ErrorCode.INTERNAL_ERROR: "An internal error occurred. Please try again or contact support.",
    ErrorCode.NOT_FOUND: "The requested resource was not found.",
}

RETRYABLE_ERRORS = {
    ErrorCode.LEDGER_SOURCE_CONNECTION_ERROR,
    ErrorCode.LEDGER_SOURCE_RATE_LIMITED,
    ErrorCode.LEDGER_SOURCE_SERVER_ERROR,
    ErrorCode.LEDGER_SOURCE_ERROR,
    ErrorCode.INTERNAL_ERROR,
}


def create_error_response(
    error_code: ErrorCode,
    message: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    retry_after: Optional[int] = None,
) -> ErrorResponse:
    """Create a standardized error response.

    Args:
        error_code: The error code
        message: Optional custom message (uses default if not provided)
        details: Optional additional details
        retry_after: Optional retry delay in seconds

    Returns:
        ErrorResponse with suggested action
    """
    suggested_action = SUGGESTED_ACTIONS.get(error_code)

    return ErrorResponse(
        error=error_code.value,
        error_code=error_code.value,
        message=message or suggested_action or "An error occurred",
        details=details,
        retry_after=retry_after,
        suggested_action=suggested_action,
        is_retryable=error_code in RETRYABLE_ERRORS,
    )


class AppException(HTTPException):
    """Application exception carrying a standardized error response."""

    def __init__(
        self,
        error_code: ErrorCode,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        retry_after: Optional[int] = None,
    ):
        self.error_code = error_code
        self.error_response = create_error_response(
            error_code=error_code,
            message=message,
            details=details,
            retry_after=retry_after,
        )

        super().__init__(
            status_code=status_code,
            detail=self.error_response.model_dump(),
        )


class AuthenticationError(AppException):
    """Authentication-related errors."""

    def __init__(
        self,
        error_code: ErrorCode = ErrorCode.AUTH_UNAUTHORIZED,
        message: Optional[str] = None,
    ):
        super().__init__(
            error_code=error_code,
            status_code=status.HTTP_401_UNAUTHORIZED,
            message=message,
        )


class NotFoundError(AppException):
    """Resource not found errors."""

    def __init__(
        self,
        error_code: ErrorCode = ErrorCode.NOT_FOUND,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            error_code=error_code,
            status_code=status.HTTP_404_NOT_FOUND,
            message=message,
            details=details,
        )


class ValidationError(AppException):
    """Validation errors."""

    def __init__(
        self,
        error_code: ErrorCode = ErrorCode.VALIDATION_ERROR,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            error_code=error_code,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            message=message,
            details=details,
        )


class ConflictError(AppException):
    """Request conflicts with current state (duplicate name, superseded pass)."""

    def __init__(
        self,
        error_code: ErrorCode,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            error_code=error_code,
            status_code=status.HTTP_409_CONFLICT,
            message=message,
            details=details,
        )


class UpstreamError(AppException):
    """Ledger source failures surfaced as 502/503."""

    def __init__(
        self,
        error_code: ErrorCode = ErrorCode.LEDGER_SOURCE_ERROR,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        retry_after: Optional[int] = None,
    ):
        status_code = (
            status.HTTP_503_SERVICE_UNAVAILABLE
            if error_code in (
                ErrorCode.LEDGER_SOURCE_CONNECTION_ERROR,
                ErrorCode.LEDGER_SOURCE_RATE_LIMITED,
            )
            else status.HTTP_502_BAD_GATEWAY
        )
        super().__init__(
            error_code=error_code,
            status_code=status_code,
            message=message,
            details=details,
            retry_after=retry_after,
        )
