"""
shared/utils/exceptions.py
Domain error taxonomy. Resolvers raise these; the GraphQL error formatter
turns them into {message, extensions: {code, statusCode}}.
"""

from typing import Optional


class AppError(Exception):
    """Base for every classified error.

    ``message`` is what the client sees. ``detail`` is extra context that is
    only ever logged.
    """

    code: str = "INTERNAL_SERVER_ERROR"
    status_code: int = 500
    default_message: str = "An unexpected error occurred"

    def __init__(self, message: Optional[str] = None, *, detail: Optional[str] = None):
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)

    @property
    def public_message(self) -> str:
        return self.message

    def log_message(self) -> str:
        if self.detail:
            return f"{self.message} ({self.detail})"
        return self.message


class AuthenticationRequired(AppError):
    code = "UNAUTHENTICATED"
    status_code = 401
    default_message = "Authentication required"


class InsufficientPermissions(AppError):
    code = "FORBIDDEN"
    status_code = 403
    default_message = "Insufficient permissions"


class NotFoundOrUnauthorized(AppError):
    """
    Zero rows matched an id + owner condition.

    The client always sees the same message whether the row is missing or
    belongs to someone else; ``detail`` keeps the real reason for the logs.
    """

    code = "NOT_FOUND"
    status_code = 404
    default_message = "Resource not found"

    def __init__(self, resource: str = "Resource", *, detail: Optional[str] = None):
        self.resource = resource
        super().__init__(f"{resource} not found", detail=detail)


class ConflictError(AppError):
    code = "CONFLICT"
    status_code = 409
    default_message = "Resource already exists"


class InvalidStateTransition(AppError):
    code = "INVALID_STATE_TRANSITION"
    status_code = 409
    default_message = "Invalid state transition"

    def __init__(self, entity: str, current: str, target: str):
        self.entity = entity
        self.current = current
        self.target = target
        super().__init__(f"Cannot move {entity} from '{current}' to '{target}'")


class ValidationError(AppError):
    code = "BAD_USER_INPUT"
    status_code = 400
    default_message = "Invalid input"


class InternalError(AppError):
    code = "INTERNAL_SERVER_ERROR"
    status_code = 500


class CreationFailed(InternalError):
    default_message = "Failed to create resource"


class PaymentGatewayError(AppError):
    code = "PAYMENT_GATEWAY_ERROR"
    status_code = 502
    default_message = "Payment gateway error"


class TokenVerificationError(Exception):
    """Raised by identity providers; never surfaced to clients."""
