"""
services/notification/resolvers.py
In-app notifications. Other services write them inside their own
transaction through create_notification(); only the owner can read them.
"""

import logging
from typing import Optional

import graphene
from sqlalchemy import func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import query, query_one, session_scope
from shared.middleware.auth import require_auth
from shared.models.models import Notification, NotificationType, utcnow
from shared.schemas.types import NotificationNode, parse_id
from shared.utils.exceptions import NotFoundOrUnauthorized

logger = logging.getLogger(__name__)


async def create_notification(
    db: AsyncSession,
    user_id: str,
    notification_type: NotificationType,
    title: str,
    message: str,
    data: Optional[dict] = None,
) -> Notification:
    """Insert an in-app notification in the caller's transaction."""
    rows = await query(
        db,
        insert(Notification)
        .values(
            user_id=user_id,
            notification_type=notification_type,
            title=title,
            message=message,
            data=data,
        )
        .returning(Notification),
    )
    logger.debug("Notification %s queued for %s", notification_type.value, user_id)
    return rows[0]


# ── Queries ───────────────────────────────────────────────────

class NotificationQuery(graphene.ObjectType):
    my_notifications = graphene.List(
        graphene.NonNull(NotificationNode),
        unread_only=graphene.Boolean(default_value=False),
        required=True,
    )
    unread_notification_count = graphene.Int(required=True)

    async def resolve_my_notifications(root, info, unread_only=False):
        identity = require_auth(info.context)
        stmt = select(Notification).where(Notification.user_id == identity.subject_id)
        if unread_only:
            stmt = stmt.where(Notification.is_read.is_(False))
        async with session_scope() as db:
            return await query(db, stmt.order_by(Notification.created_at.desc()))

    async def resolve_unread_notification_count(root, info):
        identity = require_auth(info.context)
        async with session_scope() as db:
            rows = await query(
                db,
                select(func.count(Notification.id)).where(
                    Notification.user_id == identity.subject_id,
                    Notification.is_read.is_(False),
                ),
            )
        return rows[0]


# ── Mutations ─────────────────────────────────────────────────

class NotificationMutation(graphene.ObjectType):
    mark_notification_as_read = graphene.Field(
        NotificationNode, id=graphene.ID(required=True), required=True
    )
    mark_all_notifications_as_read = graphene.Boolean(required=True)

    async def resolve_mark_notification_as_read(root, info, id):
        identity = require_auth(info.context)
        notification_id = parse_id(id, "Notification")
        async with session_scope() as db:
            notification = await query_one(
                db,
                update(Notification)
                .where(
                    Notification.id == notification_id,
                    Notification.user_id == identity.subject_id,
                )
                .values(is_read=True, read_at=utcnow())
                .returning(Notification),
            )
        if notification is None:
            raise NotFoundOrUnauthorized(
                "Notification", detail=f"{notification_id} for {identity.subject_id}"
            )
        return notification

    async def resolve_mark_all_notifications_as_read(root, info):
        identity = require_auth(info.context)
        async with session_scope() as db:
            await query(
                db,
                update(Notification)
                .where(
                    Notification.user_id == identity.subject_id,
                    Notification.is_read.is_(False),
                )
                .values(is_read=True, read_at=utcnow())
                .returning(Notification.id),
            )
        return True
