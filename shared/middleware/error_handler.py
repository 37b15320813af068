"""
shared/middleware/error_handler.py
Single top-level error formatter for GraphQL responses.

Every failure is logged server-side in full, then mapped to a stable code.
Internal errors keep their message outside production and are redacted in it.
"""

import logging
from typing import Any, Dict, Optional

import pydantic
from graphql import GraphQLError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from config.settings import settings
from shared.utils.exceptions import AppError, ConflictError, InternalError, ValidationError

logger = logging.getLogger(__name__)

REDACTED_MESSAGE = "An unexpected error occurred"


def _is_unique_violation(exc: IntegrityError) -> bool:
    text = str(exc.orig if exc.orig is not None else exc).lower()
    return "unique" in text or "duplicate" in text


def _describe_pydantic_error(exc: pydantic.ValidationError) -> str:
    parts = []
    for err in exc.errors():
        location = ".".join(str(p) for p in err.get("loc", ()) if p != "__root__")
        message = err.get("msg", "invalid value")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts) or "Invalid input"


def classify_exception(exc: BaseException) -> AppError:
    """Map any exception onto the error taxonomy."""
    if isinstance(exc, AppError):
        return exc
    if isinstance(exc, pydantic.ValidationError):
        return ValidationError(_describe_pydantic_error(exc))
    if isinstance(exc, IntegrityError):
        if _is_unique_violation(exc):
            return ConflictError("Resource already exists", detail=str(exc.orig))
        return InternalError("Database error occurred", detail=str(exc.orig))
    if isinstance(exc, SQLAlchemyError):
        return InternalError("Database error occurred", detail=str(exc))
    return InternalError(str(exc) or type(exc).__name__, detail=type(exc).__name__)


def format_error(
    error: GraphQLError,
    *,
    production: Optional[bool] = None,
    request_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Log a GraphQL error and return the client-facing dict."""
    if production is None:
        production = settings.is_production

    original = error.original_error
    payload: Dict[str, Any] = {}

    if original is None:
        # Parse or validation failure against the schema
        logger.info("[%s] GraphQL request rejected: %s", request_id, error.message)
        payload["message"] = error.message
        payload["extensions"] = {"code": "GRAPHQL_VALIDATION_FAILED", "statusCode": 400}
    else:
        classified = classify_exception(original)
        path = ".".join(str(p) for p in error.path or [])

        if classified.status_code >= 500:
            logger.error(
                "[%s] %s at %s: %s",
                request_id,
                classified.code,
                path,
                classified.log_message(),
                exc_info=original,
            )
        else:
            logger.warning(
                "[%s] %s at %s: %s",
                request_id,
                classified.code,
                path,
                classified.log_message(),
            )

        message = classified.public_message
        if isinstance(classified, InternalError) and production:
            message = REDACTED_MESSAGE

        payload["message"] = message
        payload["extensions"] = {
            "code": classified.code,
            "statusCode": classified.status_code,
        }

    if error.locations:
        payload["locations"] = [{"line": loc.line, "column": loc.column} for loc in error.locations]
    if error.path:
        payload["path"] = list(error.path)
    return payload
