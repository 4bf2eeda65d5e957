"""
Closed error taxonomy shared by the server and participant processes.

Every externally visible failure is reduced to one AppError.  Raw storage /
transport exceptions are logged with context and never shown to the user.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass, replace
from enum import Enum

import httpx

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    NETWORK_ERROR = "NETWORK_ERROR"
    CONNECTION_TIMEOUT = "CONNECTION_TIMEOUT"
    MATCHMAKING_FAILED = "MATCHMAKING_FAILED"
    PARTNER_DISCONNECTED = "PARTNER_DISCONNECTED"
    MEDIA_ACCESS_DENIED = "MEDIA_ACCESS_DENIED"
    MEDIA_NOT_SUPPORTED = "MEDIA_NOT_SUPPORTED"
    WEBRTC_FAILED = "WEBRTC_FAILED"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    RATE_LIMITED = "RATE_LIMITED"
    SERVER_ERROR = "SERVER_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


@dataclass(frozen=True)
class AppError:
    code: ErrorCode
    message: str
    user_message: str
    recoverable: bool
    action: str | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        return {
            "code": self.code.value,
            "message": data["message"],
            "userMessage": data["user_message"],
            "recoverable": data["recoverable"],
            "action": data["action"],
        }


_ERRORS: dict[ErrorCode, AppError] = {
    ErrorCode.NETWORK_ERROR: AppError(
        ErrorCode.NETWORK_ERROR,
        "Network connection failed",
        "Unable to connect. Please check your internet connection.",
        True,
        "Retry",
    ),
    ErrorCode.CONNECTION_TIMEOUT: AppError(
        ErrorCode.CONNECTION_TIMEOUT,
        "Connection timed out",
        "Connection took too long. Trying again...",
        True,
        "Retry",
    ),
    ErrorCode.MATCHMAKING_FAILED: AppError(
        ErrorCode.MATCHMAKING_FAILED,
        "Matchmaking service unavailable",
        "Unable to find a match right now. Please try again.",
        True,
        "Try Again",
    ),
    ErrorCode.PARTNER_DISCONNECTED: AppError(
        ErrorCode.PARTNER_DISCONNECTED,
        "Partner disconnected",
        "Your chat partner has disconnected.",
        True,
        "Find New",
    ),
    ErrorCode.MEDIA_ACCESS_DENIED: AppError(
        ErrorCode.MEDIA_ACCESS_DENIED,
        "Camera/microphone access denied",
        "Please allow camera and microphone access to use video chat.",
        False,
        "Enable Permissions",
    ),
    ErrorCode.MEDIA_NOT_SUPPORTED: AppError(
        ErrorCode.MEDIA_NOT_SUPPORTED,
        "Media devices not supported",
        "Your device doesn't support video chat.",
        False,
    ),
    ErrorCode.WEBRTC_FAILED: AppError(
        ErrorCode.WEBRTC_FAILED,
        "Peer connection failed",
        "Video connection failed. Attempting to reconnect...",
        True,
        "Reconnect",
    ),
    ErrorCode.SESSION_EXPIRED: AppError(
        ErrorCode.SESSION_EXPIRED,
        "Session expired",
        "Your session has expired. Refreshing...",
        True,
        "Refresh",
    ),
    ErrorCode.RATE_LIMITED: AppError(
        ErrorCode.RATE_LIMITED,
        "Too many requests",
        "Please slow down and try again in a moment.",
        True,
        "Wait",
    ),
    ErrorCode.SERVER_ERROR: AppError(
        ErrorCode.SERVER_ERROR,
        "Server error",
        "Something went wrong on our end. Please try again.",
        True,
        "Retry",
    ),
    ErrorCode.UNKNOWN_ERROR: AppError(
        ErrorCode.UNKNOWN_ERROR,
        "Unknown error occurred",
        "An unexpected error occurred. Please try again.",
        True,
        "Retry",
    ),
}

# HTTP status a server-side AppException is rendered with
HTTP_STATUS: dict[ErrorCode, int] = {
    ErrorCode.MATCHMAKING_FAILED: 500,
    ErrorCode.SESSION_EXPIRED: 401,
    ErrorCode.RATE_LIMITED: 429,
    ErrorCode.SERVER_ERROR: 500,
    ErrorCode.UNKNOWN_ERROR: 500,
}


class MediaAccessDeniedError(Exception):
    """The user (or the OS) refused camera/microphone access."""


class MediaNotSupportedError(Exception):
    """No usable capture device or codec on this host."""


class AppException(Exception):
    """Carries an AppError through a raise; rendered by the API's handler."""

    def __init__(self, error: AppError, status_code: int | None = None) -> None:
        super().__init__(error.message)
        self.error = error
        self.status_code = status_code or HTTP_STATUS.get(error.code, 400)


def create_error(code: ErrorCode, details: str | None = None, **overrides) -> AppError:
    """Build the taxonomy entry for code, optionally appending details to the
    internal message and overriding recoverable / action."""
    error = _ERRORS[code]
    if details:
        error = replace(error, message=f"{error.message}: {details}")
    if overrides:
        error = replace(error, **overrides)
    return error


def error_from_status(status_code: int, details: str | None = None) -> AppError:
    if status_code == 429:
        return create_error(ErrorCode.RATE_LIMITED, details)
    if status_code in (401, 410):
        return create_error(ErrorCode.SESSION_EXPIRED, details)
    if status_code >= 500:
        return create_error(ErrorCode.SERVER_ERROR, details)
    return create_error(ErrorCode.UNKNOWN_ERROR, details)


def parse_error(exc: BaseException) -> AppError:
    """Reduce any exception to a taxonomy entry."""
    if isinstance(exc, AppException):
        return exc.error
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError, httpx.TimeoutException)):
        return create_error(ErrorCode.CONNECTION_TIMEOUT, str(exc) or None)
    if isinstance(exc, httpx.HTTPStatusError):
        return error_from_status(exc.response.status_code, str(exc))
    if isinstance(exc, (MediaAccessDeniedError, PermissionError)):
        return create_error(ErrorCode.MEDIA_ACCESS_DENIED, str(exc) or None)
    if isinstance(exc, MediaNotSupportedError):
        return create_error(ErrorCode.MEDIA_NOT_SUPPORTED, str(exc) or None)
    if isinstance(exc, (httpx.RequestError, ConnectionError, OSError)):
        return create_error(ErrorCode.NETWORK_ERROR, str(exc) or None)

    message = str(exc).lower()
    if "timeout" in message or "timed out" in message:
        return create_error(ErrorCode.CONNECTION_TIMEOUT, str(exc))
    if "network" in message or "connect" in message:
        return create_error(ErrorCode.NETWORK_ERROR, str(exc))
    if "permission" in message or "denied" in message:
        return create_error(ErrorCode.MEDIA_ACCESS_DENIED, str(exc))
    if "not supported" in message:
        return create_error(ErrorCode.MEDIA_NOT_SUPPORTED, str(exc))
    return create_error(ErrorCode.UNKNOWN_ERROR, str(exc) or type(exc).__name__)


def log_error(error: AppError, context: str | None = None) -> None:
    if context:
        logger.error("[%s] [%s] %s", error.code.value, context, error.message)
    else:
        logger.error("[%s] %s", error.code.value, error.message)
