"""
shared/utils/security.py
Identity providers that verify bearer credentials, plus token minting for
local development and tests.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from config.settings import settings
from shared.utils.exceptions import TokenVerificationError

logger = logging.getLogger(__name__)

# Registered JWT claims that are not provider "custom claims"
_RESERVED_CLAIMS = {"sub", "email", "iat", "exp", "nbf", "aud", "iss", "jti", "type", "auth_time"}


@dataclass(frozen=True)
class VerifiedIdentity:
    subject_id: str
    email: Optional[str]
    claims: Dict[str, Any] = field(default_factory=dict)


class IdentityProvider:
    """External service that turns a bearer token into a verified identity."""

    async def verify_token(self, token: str) -> VerifiedIdentity:
        raise NotImplementedError


# ── JWT ───────────────────────────────────────────────────────

class JWTIdentityProvider(IdentityProvider):
    """Verifies HMAC/RSA-signed JWTs with python-jose."""

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        audience: Optional[str] = None,
        issuer: Optional[str] = None,
    ):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.audience = audience
        self.issuer = issuer

    async def verify_token(self, token: str) -> VerifiedIdentity:
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
                options={"verify_aud": self.audience is not None},
            )
        except JWTError as exc:
            raise TokenVerificationError(str(exc)) from exc

        subject = payload.get("sub")
        if not subject:
            raise TokenVerificationError("Token has no subject")

        claims = {k: v for k, v in payload.items() if k not in _RESERVED_CLAIMS}
        return VerifiedIdentity(subject_id=str(subject), email=payload.get("email"), claims=claims)


def create_access_token(
    subject_id: str,
    email: Optional[str] = None,
    claims: Optional[dict] = None,
    expires_minutes: Optional[int] = None,
) -> str:
    """Create a signed JWT accepted by JWTIdentityProvider."""
    now = datetime.now(timezone.utc)
    expire = now + timedelta(minutes=expires_minutes or settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)

    payload = {
        "sub": str(subject_id),
        "jti": str(uuid.uuid4()),
        "iat": now,
        "exp": expire,
        **(claims or {}),
    }
    if email:
        payload["email"] = email
    if settings.JWT_AUDIENCE:
        payload["aud"] = settings.JWT_AUDIENCE
    if settings.JWT_ISSUER:
        payload["iss"] = settings.JWT_ISSUER

    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


# ── Firebase ──────────────────────────────────────────────────

class FirebaseIdentityProvider(IdentityProvider):
    """Verifies Firebase ID tokens. The SDK call is blocking, so it runs in a thread."""

    def __init__(self, credentials_path: str = "", project_id: str = ""):
        import firebase_admin
        from firebase_admin import credentials

        if not firebase_admin._apps:
            options = {"projectId": project_id} if project_id else None
            cred = credentials.Certificate(credentials_path) if credentials_path else None
            firebase_admin.initialize_app(cred, options)

    async def verify_token(self, token: str) -> VerifiedIdentity:
        from firebase_admin import auth

        try:
            decoded = await asyncio.to_thread(auth.verify_id_token, token)
        except (
            auth.InvalidIdTokenError,
            auth.RevokedIdTokenError,
            auth.CertificateFetchError,
            ValueError,
        ) as exc:
            raise TokenVerificationError(str(exc)) from exc

        claims = {k: v for k, v in decoded.items() if k not in _RESERVED_CLAIMS | {"uid", "firebase", "user_id"}}
        return VerifiedIdentity(subject_id=decoded["uid"], email=decoded.get("email"), claims=claims)


def build_identity_provider() -> IdentityProvider:
    if settings.AUTH_PROVIDER == "firebase":
        logger.info("Using Firebase identity provider")
        return FirebaseIdentityProvider(
            credentials_path=settings.FIREBASE_CREDENTIALS_PATH,
            project_id=settings.FIREBASE_PROJECT_ID,
        )
    return JWTIdentityProvider(
        secret_key=settings.JWT_SECRET_KEY,
        algorithm=settings.JWT_ALGORITHM,
        audience=settings.JWT_AUDIENCE,
        issuer=settings.JWT_ISSUER,
    )
