"""
services/payment/resolvers.py
Charge initialization, verification and refunds.

The gateway is always called outside a database transaction, and payment
and booking rows only change after the gateway has answered. A charge that
is still pending leaves both rows untouched apart from the stored response.
"""

import logging

import graphene
from sqlalchemy import insert, select, update

from config.database import query, query_one, session_scope
from shared.middleware.auth import has_role, require_auth, require_role
from shared.models.models import (
    Booking,
    BookingStatus,
    NotificationType,
    Payment,
    PaymentStatus,
    User,
)
from shared.schemas.schemas import PaymentInitialize, validate_input
from shared.schemas.types import InitializePaymentInput, PaymentNode, parse_id
from shared.utils.exceptions import (
    ConflictError,
    InvalidStateTransition,
    NotFoundOrUnauthorized,
    PaymentGatewayError,
    ValidationError,
)
from shared.utils.payment_gateway import PaymentGateway
from services.notification.resolvers import create_notification

logger = logging.getLogger(__name__)

MAX_HISTORY = 100

PAYABLE_BOOKING = (BookingStatus.PENDING, BookingStatus.CONFIRMED)
RETRYABLE_PAYMENT = (PaymentStatus.PENDING, PaymentStatus.FAILED)


def _gateway(info) -> PaymentGateway:
    gateway = info.context.payment_gateway
    if gateway is None:
        raise PaymentGatewayError("Payment gateway not configured")
    return gateway


# ── Queries ───────────────────────────────────────────────────

class PaymentQuery(graphene.ObjectType):
    payment = graphene.Field(PaymentNode, id=graphene.ID(required=True))
    payment_history = graphene.List(
        graphene.NonNull(PaymentNode), first=graphene.Int(default_value=20), required=True
    )

    async def resolve_payment(root, info, id):
        identity = require_auth(info.context)
        payment_id = parse_id(id, "Payment")
        stmt = (
            select(Payment)
            .join(Booking, Booking.id == Payment.booking_id)
            .where(Payment.id == payment_id)
        )
        if not has_role(identity, "admin"):
            stmt = stmt.where(Booking.rider_id == identity.subject_id)
        async with session_scope() as db:
            return await query_one(db, stmt)

    async def resolve_payment_history(root, info, first=20):
        identity = require_auth(info.context)
        if first < 1 or first > MAX_HISTORY:
            raise ValidationError(f"first must be between 1 and {MAX_HISTORY}")
        async with session_scope() as db:
            return await query(
                db,
                select(Payment)
                .join(Booking, Booking.id == Payment.booking_id)
                .where(Booking.rider_id == identity.subject_id)
                .order_by(Payment.created_at.desc())
                .limit(first),
            )


# ── Mutations ─────────────────────────────────────────────────

class PaymentMutation(graphene.ObjectType):
    initialize_payment = graphene.Field(
        PaymentNode, input=InitializePaymentInput(required=True), required=True
    )
    verify_payment = graphene.Field(
        PaymentNode, reference=graphene.String(required=True), required=True
    )
    process_refund = graphene.Field(
        PaymentNode, payment_id=graphene.ID(required=True), required=True
    )

    async def resolve_initialize_payment(root, info, input):
        identity = require_auth(info.context)
        data = validate_input(PaymentInitialize, input)
        booking_id = parse_id(data.booking_id, "Booking")
        gateway = _gateway(info)

        async with session_scope() as db:
            booking = await query_one(
                db,
                select(Booking).where(
                    Booking.id == booking_id, Booking.rider_id == identity.subject_id
                ),
            )
            if booking is None:
                raise NotFoundOrUnauthorized("Booking", detail=f"{booking_id} for {identity.subject_id}")
            if booking.payment_status == PaymentStatus.PAID:
                raise ConflictError("Booking already paid")
            if booking.payment_status not in RETRYABLE_PAYMENT:
                raise InvalidStateTransition(
                    "payment", PaymentStatus(booking.payment_status).value, PaymentStatus.PENDING.value
                )
            if booking.booking_status not in PAYABLE_BOOKING:
                raise ValidationError("Booking is not awaiting payment")
            email = await query_one(db, select(User.email).where(User.id == identity.subject_id))

        reference = await gateway.initialize_charge(
            booking.total_amount,
            data.payment_method,
            email=email,
            metadata={"bookingId": str(booking.id)},
        )

        async with session_scope() as db:
            claimed = await query_one(
                db,
                update(Booking)
                .where(Booking.id == booking.id, Booking.payment_status.in_(RETRYABLE_PAYMENT))
                .values(
                    payment_reference=reference,
                    payment_method=data.payment_method,
                    payment_status=PaymentStatus.PENDING,
                )
                .returning(Booking.id),
            )
            if claimed is None:
                raise ConflictError("Booking already paid", detail=f"lost race for {booking.id}")

            payment_values = dict(
                amount=booking.total_amount,
                payment_method=data.payment_method,
                gateway_reference=reference,
                gateway_transaction_id=None,
                payment_status=PaymentStatus.PENDING,
                gateway_response=None,
            )
            # A failed attempt is retried on the same payment row
            payment = await query_one(
                db,
                update(Payment)
                .where(Payment.booking_id == booking.id)
                .values(**payment_values)
                .returning(Payment),
            )
            if payment is None:
                payment = await query_one(
                    db,
                    insert(Payment)
                    .values(booking_id=booking.id, **payment_values)
                    .returning(Payment),
                )

        logger.info("Payment %s initialized for booking %s (%s)", reference, booking.id, booking.total_amount)
        return payment

    async def resolve_verify_payment(root, info, reference):
        identity = require_auth(info.context)
        gateway = _gateway(info)

        async with session_scope() as db:
            payment = await query_one(
                db,
                select(Payment)
                .join(Booking, Booking.id == Payment.booking_id)
                .where(
                    Payment.gateway_reference == reference,
                    Booking.rider_id == identity.subject_id,
                ),
            )
        if payment is None:
            raise NotFoundOrUnauthorized("Payment", detail=f"reference {reference}")
        if payment.payment_status not in RETRYABLE_PAYMENT:
            return payment

        outcome = await gateway.verify_charge(reference)

        async with session_scope() as db:
            if outcome.succeeded:
                updated = await query_one(
                    db,
                    update(Payment)
                    .where(Payment.id == payment.id, Payment.payment_status.in_(RETRYABLE_PAYMENT))
                    .values(
                        payment_status=PaymentStatus.PAID,
                        gateway_transaction_id=outcome.transaction_id,
                        gateway_response=outcome.raw,
                    )
                    .returning(Payment),
                )
                if updated is None:
                    # Verified concurrently
                    return await query_one(db, select(Payment).where(Payment.id == payment.id))
                booking_status = await query_one(
                    db,
                    update(Booking)
                    .where(Booking.id == payment.booking_id)
                    .values(payment_status=PaymentStatus.PAID)
                    .returning(Booking.booking_status),
                )
                message = f"Payment of {updated.amount} received. Your booking is confirmed."
                if booking_status == BookingStatus.PENDING:
                    await query(
                        db,
                        update(Booking)
                        .where(
                            Booking.id == payment.booking_id,
                            Booking.booking_status == BookingStatus.PENDING,
                        )
                        .values(booking_status=BookingStatus.CONFIRMED)
                        .returning(Booking.id),
                    )
                elif booking_status == BookingStatus.CANCELLED:
                    # Cancelled while the charge was in flight
                    logger.warning(
                        "Payment %s captured for cancelled booking %s; refund required",
                        reference,
                        payment.booking_id,
                    )
                    message = (
                        f"Payment of {updated.amount} received for a cancelled booking. "
                        "It will be refunded."
                    )
                await create_notification(
                    db,
                    user_id=identity.subject_id,
                    notification_type=NotificationType.PAYMENT_SUCCESS,
                    title="Payment successful",
                    message=message,
                    data={"paymentId": str(updated.id), "bookingId": str(updated.booking_id)},
                )
                logger.info("Payment %s verified as paid", reference)
                return updated

            if outcome.failed:
                updated = await query_one(
                    db,
                    update(Payment)
                    .where(Payment.id == payment.id, Payment.payment_status.in_(RETRYABLE_PAYMENT))
                    .values(payment_status=PaymentStatus.FAILED, gateway_response=outcome.raw)
                    .returning(Payment),
                )
                if updated is None:
                    return await query_one(db, select(Payment).where(Payment.id == payment.id))
                await query(
                    db,
                    update(Booking)
                    .where(
                        Booking.id == payment.booking_id,
                        Booking.payment_status == PaymentStatus.PENDING,
                    )
                    .values(payment_status=PaymentStatus.FAILED)
                    .returning(Booking.id),
                )
                await create_notification(
                    db,
                    user_id=identity.subject_id,
                    notification_type=NotificationType.PAYMENT_FAILED,
                    title="Payment failed",
                    message="Your payment could not be completed. You can try again.",
                    data={"paymentId": str(updated.id), "bookingId": str(updated.booking_id)},
                )
                logger.warning("Payment %s verified as failed", reference)
                return updated

            # Still pending at the gateway
            logger.info("Payment %s still pending", reference)
            return await query_one(
                db,
                update(Payment)
                .where(Payment.id == payment.id)
                .values(gateway_response=outcome.raw)
                .returning(Payment),
            )

    async def resolve_process_refund(root, info, payment_id):
        identity = require_role(info.context, "admin")
        payment_uuid = parse_id(payment_id, "Payment")
        gateway = _gateway(info)

        async with session_scope() as db:
            payment = await query_one(db, select(Payment).where(Payment.id == payment_uuid))
        if payment is None:
            raise NotFoundOrUnauthorized("Payment", detail=f"{payment_uuid} does not exist")
        if payment.payment_status != PaymentStatus.PAID:
            raise InvalidStateTransition(
                "payment", PaymentStatus(payment.payment_status).value, PaymentStatus.REFUNDED.value
            )

        outcome = await gateway.refund_charge(payment.gateway_reference, payment.amount)
        if not outcome.succeeded:
            raise PaymentGatewayError("Refund was not accepted", detail=str(outcome.raw))

        async with session_scope() as db:
            refunded = await query_one(
                db,
                update(Payment)
                .where(Payment.id == payment.id, Payment.payment_status == PaymentStatus.PAID)
                .values(payment_status=PaymentStatus.REFUNDED)
                .returning(Payment),
            )
            if refunded is None:
                current = await query_one(db, select(Payment.payment_status).where(Payment.id == payment.id))
                raise InvalidStateTransition(
                    "payment", PaymentStatus(current).value, PaymentStatus.REFUNDED.value
                )
            booking = await query_one(
                db,
                update(Booking)
                .where(Booking.id == payment.booking_id)
                .values(payment_status=PaymentStatus.REFUNDED)
                .returning(Booking),
            )
            await create_notification(
                db,
                user_id=booking.rider_id,
                notification_type=NotificationType.PAYMENT_REFUNDED,
                title="Payment refunded",
                message=f"{payment.amount} has been refunded for your booking.",
                data={"paymentId": str(payment.id), "bookingId": str(booking.id)},
            )

        logger.info("Payment %s refunded by %s", payment.gateway_reference, identity.subject_id)
        return refunded
