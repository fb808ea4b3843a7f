"""
Helpers for logging failures that must not propagate.

Several steps run after the primary change has committed: adjusting a
folder's video count, deleting blobs, queueing notifications. When one of
them fails the caller's operation still succeeds, so the failure is only
logged, through :func:`safe_log_error`, with enough context to repair it
later.
"""
import logging
import sys
from typing import Any

from flask import g, has_request_context

GENERIC_SERVER_ERROR = "An internal error occurred. Please try again later."
GENERIC_CLIENT_ERROR = "The request could not be completed."


def _describe(exc_info) -> dict:
    if isinstance(exc_info, BaseException):
        exc = exc_info
    elif isinstance(exc_info, tuple):
        exc = exc_info[1]
    elif exc_info is True:
        exc = sys.exc_info()[1]
    else:
        exc = None
    if exc is None:
        return {}
    return {"exception_type": type(exc).__name__, "exception_message": str(exc)}


def safe_log_error(
    logger,
    message: str,
    exc_info: bool | BaseException | tuple | None = True,
    level: int = logging.ERROR,
    **extra_context: Any,
) -> None:
    """
    Log a tolerated failure with its exception and structured context.

    Works with stdlib and structlog loggers alike; the context ends up in
    ``extra`` (``error_context``, ``exception_type``, ``exception_message``).

    Args:
        logger: Logger to write to
        message: Event name, e.g. ``"blob_cleanup_failed"``
        exc_info: The exception, an exc_info tuple, True for the one being
            handled, or a falsy value for none
        level: Log level
        **extra_context: Identifiers needed to repair the failure later
    """
    details = _describe(exc_info)
    extra = {"error_context": extra_context, "has_exception": bool(details), **details}
    logger.log(level, message, exc_info=exc_info or None, extra=extra)


def handle_api_exception(
    logger,
    message: str,
    status_code: int = 500,
    public_message: str | None = None,
    **extra_context: Any,
) -> tuple[dict[str, Any], int]:
    """
    Log the exception being handled and build a response body that hides it.

    Returns:
        tuple: (JSON body, status code). The body carries the request id when
        one was bound to the request.
    """
    safe_log_error(logger, message, exc_info=True, **extra_context)
    if public_message is None:
        public_message = GENERIC_SERVER_ERROR if status_code >= 500 else GENERIC_CLIENT_ERROR

    body = {"success": False, "error": public_message}
    if has_request_context() and g.get("request_id"):
        body["request_id"] = g.request_id
    return body, status_code
