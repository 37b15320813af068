"""
services/review/resolvers.py
Post-booking reviews between a rider and a driver.
"""

import logging

import graphene
from sqlalchemy import func, insert, select, update
from sqlalchemy.exc import IntegrityError

from config.database import query, query_one, session_scope
from shared.middleware.auth import require_auth
from shared.models.models import Booking, DriverProfile, NotificationType, Review, Trip
from shared.schemas.schemas import ReviewCreate, validate_input
from shared.schemas.types import CreateReviewInput, ReviewNode, parse_id
from shared.utils.exceptions import ConflictError, NotFoundOrUnauthorized, ValidationError
from services.notification.resolvers import create_notification

logger = logging.getLogger(__name__)

MAX_REVIEWS = 100


def driver_rating_update(driver_id: str):
    """Recompute a driver's average rating from all of their reviews in one statement."""
    average = (
        select(func.round(func.avg(Review.rating), 2))
        .where(Review.reviewee_id == driver_id)
        .scalar_subquery()
    )
    return (
        update(DriverProfile)
        .where(DriverProfile.user_id == driver_id)
        .values(average_rating=func.coalesce(average, 0))
        .returning(DriverProfile.average_rating)
    )


class ReviewQuery(graphene.ObjectType):
    user_reviews = graphene.List(
        graphene.NonNull(ReviewNode),
        user_id=graphene.ID(required=True),
        first=graphene.Int(default_value=10),
        required=True,
    )

    async def resolve_user_reviews(root, info, user_id, first=10):
        require_auth(info.context)
        if first < 1 or first > MAX_REVIEWS:
            raise ValidationError(f"first must be between 1 and {MAX_REVIEWS}")
        async with session_scope() as db:
            return await query(
                db,
                select(Review)
                .where(Review.reviewee_id == str(user_id))
                .order_by(Review.created_at.desc())
                .limit(first),
            )


class ReviewMutation(graphene.ObjectType):
    create_review = graphene.Field(ReviewNode, input=CreateReviewInput(required=True), required=True)

    async def resolve_create_review(root, info, input):
        """
        Checks run in a fixed order: party membership, duplicate review, then
        rating range. Nothing is written until all three pass.
        """
        identity = require_auth(info.context)
        booking_id = parse_id(input.get("booking_id"), "Booking")

        async with session_scope() as db:
            booking = await query_one(db, select(Booking).where(Booking.id == booking_id))
            driver_id = None
            if booking is not None:
                driver_id = await query_one(
                    db, select(Trip.driver_id).where(Trip.id == booking.trip_id)
                )
            if booking is None or identity.subject_id not in (booking.rider_id, driver_id):
                raise NotFoundOrUnauthorized("Booking", detail=f"{booking_id} for {identity.subject_id}")

            existing = await query_one(
                db,
                select(Review.id).where(
                    Review.booking_id == booking_id,
                    Review.reviewer_id == identity.subject_id,
                ),
            )
            if existing is not None:
                raise ConflictError("You have already reviewed this booking")

            data = validate_input(ReviewCreate, input)
            reviewee_id = driver_id if identity.subject_id == booking.rider_id else booking.rider_id

            try:
                review = await query_one(
                    db,
                    insert(Review)
                    .values(
                        booking_id=booking_id,
                        reviewer_id=identity.subject_id,
                        reviewee_id=reviewee_id,
                        rating=data.rating,
                        comment=data.comment,
                    )
                    .returning(Review),
                )
            except IntegrityError as exc:
                # Lost a race with a concurrent review for the same booking
                raise ConflictError("You have already reviewed this booking", detail=str(exc.orig)) from exc

            if reviewee_id == driver_id:
                rating = await query_one(db, driver_rating_update(driver_id))
                logger.info("Driver %s average rating now %s", driver_id, rating)

            await create_notification(
                db,
                user_id=reviewee_id,
                notification_type=NotificationType.REVIEW_RECEIVED,
                title="New review",
                message=f"You received a {data.rating}-star review.",
                data={"reviewId": str(review.id), "bookingId": str(booking_id)},
            )
        return review
