"""
JSON error bodies for the admin API.

Every error leaves the app as {"error": {"message": ..., "code": ...}}.
ProHealthError subclasses carry their own code; the helpers below cover
the few responses built by hand in views and middleware.
"""
import logging
from enum import Enum
from typing import Optional, Union

from flask import jsonify

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Codes not tied to a ProHealthError subclass."""

    AUTH_REQUIRED = "AUTH_REQUIRED"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    INVALID_PASSWORD = "INVALID_PASSWORD"
    INVALID_REQUEST = "INVALID_REQUEST"
    NOT_FOUND = "NOT_FOUND"
    SHOP_NOT_FOUND = "SHOP_NOT_FOUND"
    SHOPIFY_ERROR = "SHOPIFY_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


def error_response(
    message: str,
    code: Union[ErrorCode, str] = ErrorCode.INTERNAL_ERROR,
    status_code: int = 500,
    log_error: bool = True,
    details: Optional[dict] = None
) -> tuple:
    """
    Build the (response, status) pair for an API error.

    5xx are logged as errors and 4xx as warnings unless log_error is
    False. details go to the log only.
    """
    code = code.value if isinstance(code, ErrorCode) else code
    if log_error and status_code >= 500:
        logger.error(f"{status_code} [{code}] {message}", extra={"details": details})
    elif log_error and status_code >= 400:
        logger.warning(f"{status_code} [{code}] {message}", extra={"details": details})

    return jsonify({"error": {"message": message, "code": code}}), status_code


def bad_request(message: str, code: Union[ErrorCode, str] = ErrorCode.INVALID_REQUEST) -> tuple:
    return error_response(message, code, 400, log_error=False)


def unauthorized(message: str = "Authentication required",
                 code: Union[ErrorCode, str] = ErrorCode.AUTH_REQUIRED) -> tuple:
    return error_response(message, code, 401, log_error=False)


def forbidden(message: str = "Permission denied",
              code: Union[ErrorCode, str] = ErrorCode.PERMISSION_DENIED) -> tuple:
    return error_response(message, code, 403, log_error=False)


def not_found(message: str, code: Union[ErrorCode, str] = ErrorCode.NOT_FOUND) -> tuple:
    return error_response(message, code, 404, log_error=False)
