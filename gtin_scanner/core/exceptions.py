"""
Application Exception Handling

Single AppException class for all scanner errors with FastAPI integration.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


# Error codes
PERMISSION_DENIED = "PERMISSION_DENIED"
DEVICE_UNAVAILABLE = "DEVICE_UNAVAILABLE"
DECODE_NOT_FOUND = "DECODE_NOT_FOUND"
TRANSCODE_FAILED = "TRANSCODE_FAILED"
UNREADABLE_IMAGE = "UNREADABLE_IMAGE"
IMAGE_TOO_LARGE = "IMAGE_TOO_LARGE"
SCANNER_BUSY = "SCANNER_BUSY"
INVALID_STATE = "INVALID_STATE"
INVALID_REQUEST = "INVALID_REQUEST"
INTERNAL_ERROR = "INTERNAL_ERROR"


class AppException(Exception):
    """
    Unified application exception for all error scenarios.

    Usage:
        raise AppException("No barcode detected in image.", "DECODE_NOT_FOUND", 422, retryable=True)

    Error Codes:
        Camera:
            - PERMISSION_DENIED (403)
            - DEVICE_UNAVAILABLE (503)
            - INVALID_STATE (409)
            - SCANNER_BUSY (409)

        Still image:
            - DECODE_NOT_FOUND (422, retryable)
            - TRANSCODE_FAILED (422, retryable)
            - UNREADABLE_IMAGE (422, retryable)
            - IMAGE_TOO_LARGE (413)

        General:
            - INTERNAL_ERROR (500)
    """

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 400,
        details: Optional[Dict[str, Any]] = None,
        retryable: bool = False
    ):
        """
        Initialize application exception.

        Args:
            message: Human-readable error message
            code: Machine-readable error code (e.g., "DECODE_NOT_FOUND")
            status_code: HTTP status code (default: 400)
            details: Additional error context (optional)
            retryable: Whether the same call may succeed on a new attempt
        """
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        self.retryable = retryable
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response."""
        error_dict = {
            "success": False,
            "error": {
                "code": self.code,
                "message": self.message,
                "retryable": self.retryable,
                "timestamp": self.timestamp
            }
        }

        if self.details:
            error_dict["error"]["details"] = self.details

        return error_dict


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Convert AppException to consistent JSON error response."""
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict()
    )


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register all exception handlers with FastAPI app.

    Args:
        app: FastAPI application instance
    """
    app.add_exception_handler(AppException, app_exception_handler)


# ============================================
# CONVENIENCE FACTORY FUNCTIONS
# ============================================

def permission_denied() -> AppException:
    """Camera request rejected by the host or the user."""
    return AppException(
        "Camera access denied. Please allow camera permissions.",
        PERMISSION_DENIED,
        403
    )


def device_unavailable(attempts: int = 3) -> AppException:
    """Every acquisition fallback failed."""
    return AppException(
        "No camera available. Connect a camera and try again.",
        DEVICE_UNAVAILABLE,
        503,
        {"attempts": attempts}
    )


def decode_not_found(captured: bool = False) -> AppException:
    """No symbol found in a still image."""
    message = (
        "No barcode detected in captured image. Try resuming to capture again."
        if captured
        else "No barcode detected in image."
    )
    return AppException(message, DECODE_NOT_FOUND, 422, retryable=True)


def transcode_failed(source_format: str, reason: str) -> AppException:
    """Image container could not be converted for decoding."""
    return AppException(
        f"Could not convert {source_format.upper()} image. Try a JPEG or PNG instead.",
        TRANSCODE_FAILED,
        422,
        {"source_format": source_format, "reason": reason},
        retryable=True
    )


def unreadable_image(filename: Optional[str] = None) -> AppException:
    """Image bytes could not be turned into pixels."""
    details = {"filename": filename} if filename else {}
    return AppException(
        "Could not read image. Please try again with a different file.",
        UNREADABLE_IMAGE,
        422,
        details,
        retryable=True
    )


def image_too_large(size: int, limit: int) -> AppException:
    """Upload exceeds the configured size limit."""
    return AppException(
        f"Image is too large ({size} bytes, limit {limit})",
        IMAGE_TOO_LARGE,
        413,
        {"size": size, "limit": limit}
    )


def scanner_busy() -> AppException:
    """Input is disabled while the camera or a dependent operation is active."""
    return AppException("Scanner is busy", SCANNER_BUSY, 409, retryable=True)


def invalid_state(current: str, expected: str) -> AppException:
    """Operation not valid from the current session state."""
    return AppException(
        f"Invalid scanner state. Current: {current}, Expected: {expected}",
        INVALID_STATE,
        409,
        {"current_state": current, "expected_state": expected}
    )


def invalid_request(reason: str) -> AppException:
    """Client command failed validation."""
    return AppException(
        f"Invalid request: {reason}",
        INVALID_REQUEST,
        422,
        {"reason": reason}
    )


def internal_error(message: str = "Internal server error") -> AppException:
    """Create internal server error exception."""
    return AppException(message, INTERNAL_ERROR, 500)
