"""
shared/middleware/auth.py
Per-request authentication context and the authorization guard.

The context is derived from the Authorization header only. A missing,
malformed or unverifiable token yields an anonymous context, never an error.
Access rules live in one map from GraphQL operation name to access level;
AuthorizationMiddleware enforces them before any top-level resolver runs.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from fastapi import Request

from shared.utils.exceptions import (
    AuthenticationRequired,
    InsufficientPermissions,
    TokenVerificationError,
)
from shared.utils.security import IdentityProvider, VerifiedIdentity

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


@dataclass(frozen=True)
class RequestContext:
    """Immutable per-request context handed to every resolver as ``info.context``."""
    identity: Optional[VerifiedIdentity] = None
    request_id: Optional[str] = None
    identity_provider: Optional[IdentityProvider] = None
    payment_gateway: Any = None
    extras: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_authenticated(self) -> bool:
        return self.identity is not None


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the token from 'Bearer <token>', or None for anything else."""
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        return None
    token = authorization[len(BEARER_PREFIX):].strip()
    return token or None


async def build_context(
    request: Request,
    identity_provider: IdentityProvider,
    payment_gateway: Any = None,
) -> RequestContext:
    request_id = getattr(request.state, "request_id", None)
    base = dict(
        request_id=request_id,
        identity_provider=identity_provider,
        payment_gateway=payment_gateway,
    )

    token = extract_bearer_token(request.headers.get("Authorization"))
    if token is None:
        return RequestContext(**base)

    try:
        identity = await identity_provider.verify_token(token)
    except TokenVerificationError as exc:
        logger.warning("[%s] Token verification failed: %s", request_id, exc)
        return RequestContext(**base)

    logger.debug("[%s] Authenticated subject %s", request_id, identity.subject_id)
    return RequestContext(identity=identity, **base)


# ── Guards ────────────────────────────────────────────────────

def require_auth(context: RequestContext) -> VerifiedIdentity:
    if context is None or context.identity is None:
        raise AuthenticationRequired()
    return context.identity


def has_role(identity: VerifiedIdentity, role: str) -> bool:
    claims = identity.claims or {}
    if claims.get(role) is True:
        return True
    roles = claims.get("roles") or []
    return role in roles or claims.get("role") == role


def require_role(context: RequestContext, role: str) -> VerifiedIdentity:
    identity = require_auth(context)
    if not has_role(identity, role):
        raise InsufficientPermissions(f"Insufficient permissions. Required role: {role}")
    return identity


# ── Operation Access Map ──────────────────────────────────────

class AccessLevel(str, Enum):
    PUBLIC = "public"
    AUTHENTICATED = "authenticated"
    ADMIN = "admin"


OPERATION_ACCESS: Dict[str, AccessLevel] = {
    # Queries
    "me": AccessLevel.AUTHENTICATED,
    "user": AccessLevel.AUTHENTICATED,
    "trips": AccessLevel.PUBLIC,
    "trip": AccessLevel.AUTHENTICATED,
    "myTrips": AccessLevel.AUTHENTICATED,
    "booking": AccessLevel.AUTHENTICATED,
    "myBookings": AccessLevel.AUTHENTICATED,
    "tripBookings": AccessLevel.AUTHENTICATED,
    "payment": AccessLevel.AUTHENTICATED,
    "paymentHistory": AccessLevel.AUTHENTICATED,
    "userReviews": AccessLevel.AUTHENTICATED,
    "myNotifications": AccessLevel.AUTHENTICATED,
    "unreadNotificationCount": AccessLevel.AUTHENTICATED,
    # Mutations
    "verifyToken": AccessLevel.PUBLIC,
    "createUser": AccessLevel.AUTHENTICATED,
    "updateUser": AccessLevel.AUTHENTICATED,
    "createDriverProfile": AccessLevel.AUTHENTICATED,
    "updateDriverProfile": AccessLevel.AUTHENTICATED,
    "toggleDriverAvailability": AccessLevel.AUTHENTICATED,
    "createVehicle": AccessLevel.AUTHENTICATED,
    "updateVehicle": AccessLevel.AUTHENTICATED,
    "deleteVehicle": AccessLevel.AUTHENTICATED,
    "generateUploadUrl": AccessLevel.AUTHENTICATED,
    "createTrip": AccessLevel.AUTHENTICATED,
    "updateTrip": AccessLevel.AUTHENTICATED,
    "cancelTrip": AccessLevel.AUTHENTICATED,
    "startTrip": AccessLevel.AUTHENTICATED,
    "completeTrip": AccessLevel.AUTHENTICATED,
    "createBooking": AccessLevel.AUTHENTICATED,
    "confirmBooking": AccessLevel.AUTHENTICATED,
    "cancelBooking": AccessLevel.AUTHENTICATED,
    "initializePayment": AccessLevel.AUTHENTICATED,
    "verifyPayment": AccessLevel.AUTHENTICATED,
    "processRefund": AccessLevel.ADMIN,
    "createReview": AccessLevel.AUTHENTICATED,
    "markNotificationAsRead": AccessLevel.AUTHENTICATED,
    "markAllNotificationsAsRead": AccessLevel.AUTHENTICATED,
}


def check_operation_access(
    operation: str,
    context: RequestContext,
    rules: Optional[Dict[str, AccessLevel]] = None,
) -> None:
    rules = OPERATION_ACCESS if rules is None else rules
    if operation.startswith("__"):
        return  # introspection

    # Unknown operations require authentication
    level = rules.get(operation, AccessLevel.AUTHENTICATED)
    if level is AccessLevel.PUBLIC:
        return
    if level is AccessLevel.ADMIN:
        require_role(context, "admin")
        return
    require_auth(context)


class AuthorizationMiddleware:
    """graphene middleware applying OPERATION_ACCESS to top-level fields."""

    def __init__(self, rules: Optional[Dict[str, AccessLevel]] = None):
        self.rules = OPERATION_ACCESS if rules is None else rules

    def resolve(self, next, root, info, **args):
        if info.path.prev is None:
            check_operation_access(info.field_name, info.context, self.rules)
        return next(root, info, **args)
