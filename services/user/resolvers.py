"""
services/user/resolvers.py
User accounts, driver profiles, vehicles and upload URLs.
"""

import logging
from typing import Iterable, Optional
from urllib.parse import quote

import graphene
from sqlalchemy import delete, insert, not_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import query, query_one, session_scope
from config.settings import settings
from shared.middleware.auth import require_auth
from shared.models.models import DRIVER_ROLES, DriverProfile, User, UserRole, Vehicle
from shared.schemas.schemas import (
    DriverProfileCreate,
    DriverProfileUpdate,
    UploadRequest,
    UserCreate,
    UserUpdate,
    VehicleCreate,
    VehicleUpdate,
    validate_input,
)
from shared.schemas.types import (
    CreateDriverProfileInput,
    CreateUserInput,
    CreateVehicleInput,
    DriverProfileNode,
    UpdateDriverProfileInput,
    UpdateUserInput,
    UpdateVehicleInput,
    UploadUrl,
    UserNode,
    VehicleNode,
    parse_id,
)
from shared.utils.exceptions import (
    AuthenticationRequired,
    ConflictError,
    InsufficientPermissions,
    NotFoundOrUnauthorized,
    TokenVerificationError,
)
from shared.utils.payment_gateway import generate_reference

logger = logging.getLogger(__name__)


async def require_account(
    db: AsyncSession,
    user_id: str,
    roles: Optional[Iterable[UserRole]] = None,
) -> User:
    """Load the caller's active account, optionally checking its marketplace role."""
    user = await query_one(db, select(User).where(User.id == user_id))
    if user is None or not user.is_active:
        raise InsufficientPermissions("Registration required")
    if roles is not None and user.role not in tuple(roles):
        allowed = "/".join(r.value for r in roles)
        raise InsufficientPermissions(f"Requires a {allowed} account")
    return user


# ── Queries ───────────────────────────────────────────────────

class UserQuery(graphene.ObjectType):
    me = graphene.Field(UserNode)
    user = graphene.Field(UserNode, id=graphene.ID(required=True))

    async def resolve_me(root, info):
        identity = require_auth(info.context)
        async with session_scope() as db:
            return await query_one(db, select(User).where(User.id == identity.subject_id))

    async def resolve_user(root, info, id):
        require_auth(info.context)
        async with session_scope() as db:
            return await query_one(
                db, select(User).where(User.id == str(id), User.is_active.is_(True))
            )


# ── Mutations ─────────────────────────────────────────────────

class UserMutation(graphene.ObjectType):
    verify_token = graphene.Field(UserNode, token=graphene.String(required=True), required=True)
    create_user = graphene.Field(UserNode, input=CreateUserInput(required=True), required=True)
    update_user = graphene.Field(UserNode, input=UpdateUserInput(required=True), required=True)

    create_driver_profile = graphene.Field(
        DriverProfileNode, input=CreateDriverProfileInput(required=True), required=True
    )
    update_driver_profile = graphene.Field(
        DriverProfileNode, input=UpdateDriverProfileInput(required=True), required=True
    )
    toggle_driver_availability = graphene.Field(DriverProfileNode, required=True)

    create_vehicle = graphene.Field(VehicleNode, input=CreateVehicleInput(required=True), required=True)
    update_vehicle = graphene.Field(
        VehicleNode,
        id=graphene.ID(required=True),
        input=UpdateVehicleInput(required=True),
        required=True,
    )
    delete_vehicle = graphene.Boolean(id=graphene.ID(required=True), required=True)

    generate_upload_url = graphene.Field(
        UploadUrl,
        file_name=graphene.String(required=True),
        file_type=graphene.String(required=True),
        required=True,
    )

    # ── Account ───────────────────────────────────────────────

    async def resolve_verify_token(root, info, token):
        provider = info.context.identity_provider
        try:
            identity = await provider.verify_token(token)
        except TokenVerificationError as exc:
            logger.warning("verifyToken rejected a token: %s", exc)
            raise AuthenticationRequired("Invalid or expired token")

        async with session_scope() as db:
            user = await query_one(db, select(User).where(User.id == identity.subject_id))
        if user is None:
            raise NotFoundOrUnauthorized("User", detail=f"no account for subject {identity.subject_id}")
        return user

    async def resolve_create_user(root, info, input):
        identity = require_auth(info.context)
        data = validate_input(UserCreate, input)

        async with session_scope() as db:
            existing = await query_one(db, select(User.id).where(User.id == identity.subject_id))
            if existing is not None:
                raise ConflictError("User already registered")

            rows = await query(
                db,
                insert(User)
                .values(id=identity.subject_id, **data.model_dump())
                .returning(User),
            )
        logger.info("Registered user %s as %s", identity.subject_id, data.role.value)
        return rows[0]

    async def resolve_update_user(root, info, input):
        identity = require_auth(info.context)
        updates = validate_input(UserUpdate, input).model_dump(exclude_unset=True)

        async with session_scope() as db:
            if not updates:
                user = await query_one(db, select(User).where(User.id == identity.subject_id))
            else:
                if updates.get("phone"):
                    taken = await query_one(
                        db,
                        select(User.id).where(
                            User.phone == updates["phone"], User.id != identity.subject_id
                        ),
                    )
                    if taken is not None:
                        raise ConflictError("Phone number already in use")
                user = await query_one(
                    db,
                    update(User)
                    .where(User.id == identity.subject_id)
                    .values(**updates)
                    .returning(User),
                )
        if user is None:
            raise NotFoundOrUnauthorized("User", detail=f"no account for subject {identity.subject_id}")
        return user

    # ── Driver Profile ────────────────────────────────────────

    async def resolve_create_driver_profile(root, info, input):
        identity = require_auth(info.context)
        data = validate_input(DriverProfileCreate, input)

        async with session_scope() as db:
            await require_account(db, identity.subject_id, DRIVER_ROLES)
            existing = await query_one(
                db, select(DriverProfile.id).where(DriverProfile.user_id == identity.subject_id)
            )
            if existing is not None:
                raise ConflictError("Driver profile already exists")

            rows = await query(
                db,
                insert(DriverProfile)
                .values(user_id=identity.subject_id, **data.model_dump())
                .returning(DriverProfile),
            )
        return rows[0]

    async def resolve_update_driver_profile(root, info, input):
        identity = require_auth(info.context)
        updates = validate_input(DriverProfileUpdate, input).model_dump(exclude_unset=True)

        async with session_scope() as db:
            if updates:
                stmt = (
                    update(DriverProfile)
                    .where(DriverProfile.user_id == identity.subject_id)
                    .values(**updates)
                    .returning(DriverProfile)
                )
            else:
                stmt = select(DriverProfile).where(DriverProfile.user_id == identity.subject_id)
            profile = await query_one(db, stmt)
        if profile is None:
            raise NotFoundOrUnauthorized("Driver profile")
        return profile

    async def resolve_toggle_driver_availability(root, info):
        identity = require_auth(info.context)
        async with session_scope() as db:
            profile = await query_one(
                db,
                update(DriverProfile)
                .where(DriverProfile.user_id == identity.subject_id)
                .values(is_available=not_(DriverProfile.is_available))
                .returning(DriverProfile),
            )
        if profile is None:
            raise NotFoundOrUnauthorized("Driver profile")
        return profile

    # ── Vehicles ──────────────────────────────────────────────

    async def resolve_create_vehicle(root, info, input):
        identity = require_auth(info.context)
        data = validate_input(VehicleCreate, input)

        async with session_scope() as db:
            await require_account(db, identity.subject_id, DRIVER_ROLES)
            vehicle = (
                await query(
                    db,
                    insert(Vehicle)
                    .values(driver_id=identity.subject_id, **data.model_dump())
                    .returning(Vehicle),
                )
            )[0]
            # First vehicle becomes the profile's active vehicle
            await query(
                db,
                update(DriverProfile)
                .where(
                    DriverProfile.user_id == identity.subject_id,
                    DriverProfile.vehicle_id.is_(None),
                )
                .values(vehicle_id=vehicle.id)
                .returning(DriverProfile.id),
            )
        return vehicle

    async def resolve_update_vehicle(root, info, id, input):
        identity = require_auth(info.context)
        vehicle_id = parse_id(id, "Vehicle")
        updates = validate_input(VehicleUpdate, input).model_dump(exclude_unset=True)

        owned = (Vehicle.id == vehicle_id, Vehicle.driver_id == identity.subject_id)
        async with session_scope() as db:
            if updates:
                stmt = update(Vehicle).where(*owned).values(**updates).returning(Vehicle)
            else:
                stmt = select(Vehicle).where(*owned)
            vehicle = await query_one(db, stmt)
        if vehicle is None:
            raise NotFoundOrUnauthorized("Vehicle", detail=f"{vehicle_id} for {identity.subject_id}")
        return vehicle

    async def resolve_delete_vehicle(root, info, id):
        identity = require_auth(info.context)
        vehicle_id = parse_id(id, "Vehicle")

        async with session_scope() as db:
            await query(
                db,
                update(DriverProfile)
                .where(
                    DriverProfile.user_id == identity.subject_id,
                    DriverProfile.vehicle_id == vehicle_id,
                )
                .values(vehicle_id=None)
                .returning(DriverProfile.id),
            )
            deleted = await query(
                db,
                delete(Vehicle)
                .where(Vehicle.id == vehicle_id, Vehicle.driver_id == identity.subject_id)
                .returning(Vehicle.id),
            )
        return len(deleted) > 0

    async def resolve_generate_upload_url(root, info, file_name, file_type):
        identity = require_auth(info.context)
        data = validate_input(UploadRequest, {"file_name": file_name, "file_type": file_type})

        key = f"{identity.subject_id}/{generate_reference()}_{quote(data.file_name)}"
        base = settings.UPLOAD_BASE_URL.rstrip("/")
        return {
            "upload_url": f"{base}/upload/{key}?contentType={quote(data.file_type, safe='')}",
            "file_url": f"{base}/files/{key}",
        }
