"""
Response helpers shared by the tool handlers.

Every tool returns either a success payload::

    {"content": [{"type": "text", "text": ...}], "data": {...}}

or an error payload that tells the client what kind of failure it was::

    {"isError": True, "errorType": "not_found", "content": [...]}
"""

import logging
from typing import Any

from pydantic import ValidationError

from ..database.exceptions import (
    ConcurrencyError,
    DomainError,
    DuplicateError,
    NotFoundError,
    RepositoryException,
)

logger = logging.getLogger(__name__)


def success_response(message: str, data: dict[str, Any]) -> dict[str, Any]:
    return {
        "content": [{"type": "text", "text": message}],
        "data": data,
    }


def error_response(error_type: str, message: str, **details: Any) -> dict[str, Any]:
    response: dict[str, Any] = {
        "isError": True,
        "errorType": error_type,
        "content": [{"type": "text", "text": message}],
    }
    if details:
        response["details"] = details
    return response


def validation_errors(error: ValidationError) -> list[dict[str, str]]:
    """Flatten a ValidationError to ``[{"field": "a.b", "message": ...}]``."""
    return [
        {
            "field": ".".join(str(part) for part in err["loc"]) or "__root__",
            "message": err["msg"],
        }
        for err in error.errors(include_url=False)
    ]


def error_from_exception(error: Exception, action: str) -> dict[str, Any]:
    """
    Map a failure to a structured error response.

    Args:
        error: What the handler caught
        action: Short description for messages, e.g. "borrow book"
    """
    if isinstance(error, ValidationError):
        errors = validation_errors(error)
        summary = "; ".join(f"{e['field']}: {e['message']}" for e in errors)
        logger.warning("Invalid %s parameters: %s", action, summary)
        return error_response(
            "validation_error", f"Invalid {action} parameters: {summary}", errors=errors
        )

    if isinstance(error, NotFoundError):
        logger.info("%s failed - not found: %s", action, error)
        return error_response("not_found", str(error))

    if isinstance(error, DuplicateError):
        logger.info("%s failed - duplicate: %s", action, error)
        return error_response("duplicate", str(error), field=error.field)

    if isinstance(error, DomainError):
        logger.info("%s failed - business rule: %s", action, error)
        return error_response("domain_error", str(error))

    if isinstance(error, ConcurrencyError):
        logger.info("%s failed - concurrent modification: %s", action, error)
        return error_response("concurrency_conflict", str(error))

    if isinstance(error, RepositoryException):
        logger.error("%s failed - database error: %s", action, error)
        return error_response("internal_error", f"Failed to {action}: {error}")

    logger.exception("Unexpected error in %s", action)
    return error_response("internal_error", f"An unexpected error occurred: {error!s}")
