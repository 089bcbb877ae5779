"""
Custom exception classes for the Voice DNA system.

Exceptions follow the fail-fast philosophy: surface errors immediately with
clear context.  The only absorbed failures are the per-unit ones (a single
malformed post, a single generation variation, a single scraped platform),
which are reported inside the batch result instead of raised.

Hierarchy:
    Exception
    +-- VoiceDNAError (base for all domain errors)
        +-- InvalidArgumentError (ValueError)
        +-- UnauthenticatedError
        +-- UnauthorizedError
        +-- NotFoundError
        +-- ConflictError
        +-- UpstreamUnavailableError
        |   +-- BackendError
        |   +-- ScraperError
        +-- InternalError
        |   +-- DatabaseError
        +-- ConfigurationError
        +-- RetryExhaustedError
"""

import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


# =============================================================================
# BASE EXCEPTION
# =============================================================================


class VoiceDNAError(Exception):
    """Base exception for all Voice DNA errors.

    Attributes:
        code: Stable machine-readable error code.
        status: HTTP-equivalent status code used by ``error_payload``.
    """

    code: str = "internal"
    status: int = 500


# =============================================================================
# CLIENT ERRORS
# =============================================================================


class InvalidArgumentError(VoiceDNAError, ValueError):
    """Raised when a required field is missing or malformed."""

    code = "invalid_argument"
    status = 400


class UnauthenticatedError(VoiceDNAError):
    """Raised when the identity collaborator rejects a bearer token."""

    code = "unauthenticated"
    status = 401


class UnauthorizedError(VoiceDNAError):
    """Raised when an authenticated caller touches another user's data."""

    code = "unauthorized"
    status = 403


class NotFoundError(VoiceDNAError):
    """Raised when no profile, content or feedback exists for the keys."""

    code = "not_found"
    status = 404


class ConflictError(VoiceDNAError):
    """Raised when two synthesis passes race for the same profile version.

    Attributes:
        key: Document key that was already taken.
        base_version: Version the losing writer started from, if known.
    """

    code = "conflict"
    status = 409

    def __init__(
        self,
        message: str,
        key: Optional[str] = None,
        base_version: Optional[str] = None,
    ) -> None:
        self.key = key
        self.base_version = base_version
        super().__init__(message)


# =============================================================================
# UPSTREAM ERRORS
# =============================================================================


class UpstreamUnavailableError(VoiceDNAError):
    """Raised when the scraping or generation collaborator fails.

    Attributes:
        transient: ``True`` when retrying may succeed (timeouts, rate
            limits, 5xx); ``False`` for permanent rejections.
    """

    code = "upstream_unavailable"
    status = 503

    def __init__(self, message: str, transient: bool = True) -> None:
        self.transient = transient
        super().__init__(message)


class BackendError(UpstreamUnavailableError):
    """Raised by a text-generation backend."""

    code = "backend_error"


class ScraperError(UpstreamUnavailableError):
    """Raised by a scraping collaborator for one platform."""

    code = "scraper_error"


# =============================================================================
# INTERNAL ERRORS
# =============================================================================


class InternalError(VoiceDNAError):
    """Raised on invariant violations.  Never exposed verbatim to callers."""

    code = "internal"
    status = 500


class DatabaseError(InternalError):
    """Raised when document store operations fail."""

    code = "database_error"


class ConfigurationError(VoiceDNAError):
    """Raised when system configuration is invalid."""

    code = "configuration_error"
    status = 500


class RetryExhaustedError(VoiceDNAError):
    """Raised when all retry attempts have been exhausted.

    Attributes:
        operation: Name of the operation that was retried.
        attempts: Total number of attempts made.
        last_error: The last exception raised before giving up.
    """

    code = "retry_exhausted"
    status = 503

    def __init__(self, operation: str, attempts: int, last_error: Exception):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"{operation} failed after {attempts} attempts. "
            f"Last error: {last_error}"
        )


# =============================================================================
# STRUCTURED RESULTS
# =============================================================================

_GENERIC_INTERNAL_MESSAGE = "Something went wrong on our side. Please try again."


def error_payload(exc: Exception) -> Dict[str, Any]:
    """Map an exception to a structured, caller-safe result.

    Client-correctable errors keep their message.  Internal errors (and any
    exception outside the hierarchy) are logged with traceback and replaced
    by a generic message.

    Args:
        exc: The exception to convert.

    Returns:
        Dict with ``success`` (always ``False``), ``status``, ``error``
        (code) and ``message``.
    """
    if isinstance(exc, VoiceDNAError) and exc.status < 500:
        return {
            "success": False,
            "status": exc.status,
            "error": exc.code,
            "message": str(exc),
        }

    if isinstance(exc, (UpstreamUnavailableError, RetryExhaustedError)):
        logger.warning("Upstream failure surfaced to caller: %s", exc)
        return {
            "success": False,
            "status": exc.status,
            "error": exc.code,
            "message": "An upstream service is unavailable. Please retry shortly.",
            "retryable": True,
        }

    logger.error("Internal error: %s", exc, exc_info=exc)
    code = exc.code if isinstance(exc, VoiceDNAError) else "internal"
    return {
        "success": False,
        "status": 500,
        "error": code,
        "message": _GENERIC_INTERNAL_MESSAGE,
    }


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "VoiceDNAError",
    "InvalidArgumentError",
    "UnauthenticatedError",
    "UnauthorizedError",
    "NotFoundError",
    "ConflictError",
    "UpstreamUnavailableError",
    "BackendError",
    "ScraperError",
    "InternalError",
    "DatabaseError",
    "ConfigurationError",
    "RetryExhaustedError",
    "error_payload",
]
