"""
services/schema.py
Root GraphQL schema assembled from each service's query and mutation mixins.
"""

import graphene

from services.booking.resolvers import BookingMutation, BookingQuery
from services.notification.resolvers import NotificationMutation, NotificationQuery
from services.payment.resolvers import PaymentMutation, PaymentQuery
from services.review.resolvers import ReviewMutation, ReviewQuery
from services.trip.resolvers import TripMutation, TripQuery
from services.user.resolvers import UserMutation, UserQuery


class Query(
    UserQuery,
    TripQuery,
    BookingQuery,
    PaymentQuery,
    ReviewQuery,
    NotificationQuery,
    graphene.ObjectType,
):
    pass


class Mutation(
    UserMutation,
    TripMutation,
    BookingMutation,
    PaymentMutation,
    ReviewMutation,
    NotificationMutation,
    graphene.ObjectType,
):
    pass


schema = graphene.Schema(query=Query, mutation=Mutation)
