"""
services/checkin/service.py
GPS check-in gate: both parties confirm they are at the meeting point
before a confirmed booking can start.
"""

import logging
from datetime import datetime, timedelta

from config.settings import Settings
from shared.exceptions import (
    OutOfRangeError,
    TransitionError,
    UnauthorizedActorError,
    ValidationError,
    WindowExpiredError,
)
from shared.models.actor import Actor
from shared.models.models import ActorRole, Booking, BookingStatus
from shared.utils.geo import haversine_meters, validate_coordinates

logger = logging.getLogger(__name__)


class CheckInGate:
    def __init__(self, settings: Settings):
        self.settings = settings

    def window(self, booking: Booking) -> tuple[datetime, datetime]:
        opens = booking.start_date - timedelta(minutes=self.settings.CHECKIN_EARLY_MINUTES)
        return opens, booking.effective_end_date

    def record(
        self,
        booking: Booking,
        actor: Actor,
        latitude: float,
        longitude: float,
        timestamp: datetime,
    ) -> ActorRole:
        """
        Validate and store one party's check-in on a locked booking.
        Returns the party role that checked in.
        """
        role = booking.party_role(actor.actor_id)
        if role is None:
            raise UnauthorizedActorError("Only the customer or model of this booking can check in")
        if booking.status != BookingStatus.CONFIRMED:
            raise TransitionError(f"Cannot check in to a booking that is {booking.status.value}")

        already = booking.customer_checkin_at if role == ActorRole.CUSTOMER else booking.model_checkin_at
        if already is not None:
            raise TransitionError(f"The {role.value} has already checked in")

        if not validate_coordinates(latitude, longitude):
            raise ValidationError("Invalid coordinates")

        opens, closes = self.window(booking)
        if timestamp < opens:
            raise WindowExpiredError(
                f"Check-in opens {self.settings.CHECKIN_EARLY_MINUTES} minutes before the start"
            )
        if timestamp > closes:
            raise WindowExpiredError("The check-in window for this booking has closed")

        distance = haversine_meters(latitude, longitude, booking.latitude, booking.longitude)
        if distance > self.settings.CHECKIN_RADIUS_METERS:
            raise OutOfRangeError(
                f"You are {distance:.0f} m from the meeting point; "
                f"check-in requires {self.settings.CHECKIN_RADIUS_METERS:.0f} m or less"
            )

        if role == ActorRole.CUSTOMER:
            booking.customer_checkin_lat = latitude
            booking.customer_checkin_lng = longitude
            booking.customer_checkin_at = timestamp
        else:
            booking.model_checkin_lat = latitude
            booking.model_checkin_lng = longitude
            booking.model_checkin_at = timestamp

        logger.info(f"{role.value} checked in to booking {booking.id} at {distance:.0f} m")
        return role
