"""
FraudDesk — Error Handling & Exception Classes

Centralised exception handling with proper HTTP status codes and
safe error messages (avoids information leakage).
"""

import logging
from typing import Any, Dict, Optional

from fastapi import status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger("frauddesk.errors")


# ===========================================================================
# Custom Exceptions (domain-specific)
# ===========================================================================
class FraudDeskException(Exception):
    """Base exception for all FraudDesk errors."""
    pass


class ScoringError(FraudDeskException):
    """Scoring pipeline errors (loading rules, persisting results)."""
    pass


class DatabaseError(FraudDeskException):
    """Database operation errors."""
    pass


class AuthenticationError(FraudDeskException):
    """Missing or invalid credentials."""
    pass


class AuthorizationError(FraudDeskException):
    """Authenticated, but the role may not perform the operation."""
    pass


# ===========================================================================
# HTTP Error Response Factory
# ===========================================================================
class ErrorResponse:
    """Standardised error response format."""

    def __init__(
        self,
        error_code: str,
        message: str,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        details: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None,
    ):
        self.error_code = error_code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.request_id = request_id

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "request_id": self.request_id,
            },
            **({'details': self.details} if self.details else {}),
        }

    def to_response(self, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
        return JSONResponse(
            status_code=self.status_code,
            content=self.to_dict(),
            headers=headers,
        )


# ===========================================================================
# Exception to HTTP Response Mapping
# ===========================================================================
def exception_to_response(
    exc: Exception,
    request_id: Optional[str] = None,
) -> tuple[JSONResponse, str]:
    """
    Convert an exception to an HTTP response.

    Parameters
    ----------
    exc : Exception
        The exception to handle
    request_id : str
        Request ID for tracking

    Returns
    -------
    response : JSONResponse
    log_level : str
        Logging level (error, warning, info)
    """

    # Request validation errors
    if isinstance(exc, RequestValidationError):
        return ErrorResponse(
            error_code="VALIDATION_ERROR",
            message="Input validation failed",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"errors": str(exc)},
            request_id=request_id,
        ).to_response(), "warning"

    # Scoring errors
    if isinstance(exc, ScoringError):
        logger.error("ScoringError: %s", exc)
        return ErrorResponse(
            error_code="SCORING_ERROR",
            message="Risk scoring pipeline failed",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            request_id=request_id,
        ).to_response(), "error"

    # Database errors
    if isinstance(exc, DatabaseError):
        logger.error("DatabaseError: %s", exc)
        return ErrorResponse(
            error_code="DATABASE_ERROR",
            message="Database operation failed",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            request_id=request_id,
        ).to_response(), "error"

    # Authentication errors
    if isinstance(exc, AuthenticationError):
        logger.warning("AuthenticationError: unauthorized access attempt")
        return ErrorResponse(
            error_code="AUTHENTICATION_ERROR",
            message="Invalid or missing authentication",
            status_code=status.HTTP_401_UNAUTHORIZED,
            request_id=request_id,
        ).to_response(headers={"WWW-Authenticate": "Bearer"}), "warning"

    # Authorization errors
    if isinstance(exc, AuthorizationError):
        logger.warning("AuthorizationError: %s", exc)
        return ErrorResponse(
            error_code="AUTHORIZATION_ERROR",
            message="Insufficient permissions for this operation",
            status_code=status.HTTP_403_FORBIDDEN,
            request_id=request_id,
        ).to_response(), "warning"

    # Generic error (never expose full traceback to client)
    logger.error("Unhandled exception: %s", exc, exc_info=exc)
    return ErrorResponse(
        error_code="INTERNAL_ERROR",
        message="An unexpected error occurred. Please contact support with the request id.",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        request_id=request_id,
    ).to_response(), "error"
