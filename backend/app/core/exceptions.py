"""
Failure kinds for the agent pipeline and safe HTTP errors for the API.

Pipeline stages do not raise for expected outcomes. They return result
objects tagged with a FailureKind and the caller decides whether the turn
stops or continues. Only infrastructure faults that must abort a turn
before any session mutation are raised (ConfigStoreUnavailable).

HTTP errors never echo tenant data or internals back to the caller; the
detail goes to the log instead.
"""
import logging
from enum import Enum

from fastapi import HTTPException, status

logger = logging.getLogger(__name__)


class FailureKind(str, Enum):
    """Why a pipeline stage refused or could not complete."""
    ADMISSION_DENIED = "admission_denied"
    RATE_LIMITED = "rate_limited"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    MALFORMED_TOOL_CALL = "malformed_tool_call"
    POLICY_VIOLATION = "policy_violation"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    CONFIG_UNAVAILABLE = "config_unavailable"
    INTERNAL_ERROR = "internal_error"


class ConfigStoreUnavailable(Exception):
    """Tenant configuration could not be read. Fatal for the current turn."""


class BusinessError:
    """Factory for HTTPExceptions with non-leaky details."""

    @staticmethod
    def not_found(resource: str = "Resource", reason: str = "") -> HTTPException:
        """
        Same 404 for "missing" and "belongs to another tenant", so ids
        cannot be enumerated across tenants.
        """
        if reason:
            logger.warning(f"[API] {resource} not found: {reason}")
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Resource not found")

    @staticmethod
    def unauthorized(reason: str = "") -> HTTPException:
        logger.warning(f"[API] operator auth failed: {reason}")
        return HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication failed",
            headers={"WWW-Authenticate": "Bearer"},
        )

    @staticmethod
    def bad_request(detail: str) -> HTTPException:
        # Caller's own input, safe to echo.
        logger.info(f"[API] bad request: {detail}")
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)

    @staticmethod
    def conflict(detail: str) -> HTTPException:
        """409, e.g. rejecting an approval that was already approved."""
        logger.info(f"[API] conflict: {detail}")
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=detail)

    @staticmethod
    def service_unavailable(reason: str = "") -> HTTPException:
        logger.error(f"[API] backing store unavailable: {reason}")
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service temporarily unavailable. Please retry.",
        )

    @staticmethod
    def server_error(original_error: Exception = None) -> HTTPException:
        if original_error:
            logger.error(
                f"[API] internal error: {type(original_error).__name__}: {original_error}",
                exc_info=original_error,
            )
        else:
            logger.error("[API] internal error", exc_info=True)
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An internal error occurred. Please try again later.",
        )
