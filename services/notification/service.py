"""
services/notification/service.py
In-app notifications for booking and payment events.

Rows are added to the caller's session so a notification exists if and only
if the event that caused it was committed.
"""

import logging
import uuid
from typing import Callable, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from services.booking.state_machine import BookingAction
from shared.models.models import (
    ActorRole,
    Booking,
    Notification,
    NotificationType,
    utcnow,
)
from shared.utils.money import format_minor_units

logger = logging.getLogger(__name__)


# ── Templates ─────────────────────────────────────────────────

TEMPLATES = {
    NotificationType.BOOKING_CREATED: {
        "title": "New booking request",
        "body": "You have a new booking request for {start_date}. Please accept or reject it.",
    },
    NotificationType.BOOKING_CONFIRMED: {
        "title": "Booking confirmed",
        "body": "Your booking for {start_date} has been accepted.",
    },
    NotificationType.BOOKING_REJECTED: {
        "title": "Booking rejected",
        "body": "Your booking for {start_date} was rejected.",
    },
    NotificationType.BOOKING_CANCELLED: {
        "title": "Booking cancelled",
        "body": "The customer cancelled the booking for {start_date}.",
    },
    NotificationType.BOOKING_CHECKIN_MODEL: {
        "title": "Model checked in",
        "body": "The model has arrived at the meeting point. Check in to start the booking.",
    },
    NotificationType.BOOKING_CHECKIN_CUSTOMER: {
        "title": "Customer checked in",
        "body": "The customer has arrived at the meeting point. Check in to start the booking.",
    },
    NotificationType.BOOKING_STARTED: {
        "title": "Booking started",
        "body": "Both parties checked in. The booking is now in progress.",
    },
    NotificationType.BOOKING_COMPLETION_REQUESTED: {
        "title": "Please confirm completion",
        "body": "The model marked the booking as done. Confirm or dispute before {deadline}.",
    },
    NotificationType.BOOKING_DISPUTED: {
        "title": "Booking disputed",
        "body": "The booking is under dispute. Held funds are frozen until it is resolved.",
    },
    NotificationType.PAYMENT_RELEASED: {
        "title": "Payment released",
        "body": "The customer confirmed the booking. {amount} has been released to your wallet.",
    },
    NotificationType.PAYMENT_AUTO_RELEASED: {
        "title": "Payment released automatically",
        "body": "The confirmation window closed and {amount} was released for the booking.",
    },
    NotificationType.PAYMENT_REFUNDED: {
        "title": "Payment refunded",
        "body": "{amount} has been returned to your wallet balance.",
    },
}

# action -> [(notification type, recipient role)]
ACTION_NOTIFICATIONS = {
    BookingAction.ACCEPT: [(NotificationType.BOOKING_CONFIRMED, ActorRole.CUSTOMER)],
    BookingAction.REJECT: [
        (NotificationType.BOOKING_REJECTED, ActorRole.CUSTOMER),
        (NotificationType.PAYMENT_REFUNDED, ActorRole.CUSTOMER),
    ],
    BookingAction.CANCEL: [
        (NotificationType.BOOKING_CANCELLED, ActorRole.MODEL),
        (NotificationType.PAYMENT_REFUNDED, ActorRole.CUSTOMER),
    ],
    BookingAction.START: [
        (NotificationType.BOOKING_STARTED, ActorRole.CUSTOMER),
        (NotificationType.BOOKING_STARTED, ActorRole.MODEL),
    ],
    BookingAction.MARK_DONE: [(NotificationType.BOOKING_COMPLETION_REQUESTED, ActorRole.CUSTOMER)],
    BookingAction.CONFIRM: [(NotificationType.PAYMENT_RELEASED, ActorRole.MODEL)],
    BookingAction.AUTO_COMPLETE: [
        (NotificationType.PAYMENT_AUTO_RELEASED, ActorRole.MODEL),
        (NotificationType.PAYMENT_AUTO_RELEASED, ActorRole.CUSTOMER),
    ],
    BookingAction.DISPUTE: [
        (NotificationType.BOOKING_DISPUTED, ActorRole.MODEL),
        (NotificationType.BOOKING_DISPUTED, ActorRole.CUSTOMER),
    ],
    BookingAction.ESCALATE: [
        (NotificationType.BOOKING_DISPUTED, ActorRole.MODEL),
        (NotificationType.BOOKING_DISPUTED, ActorRole.CUSTOMER),
    ],
}


class Notifier:
    def __init__(self, clock: Callable = utcnow):
        self.clock = clock

    def notify(
        self,
        session: AsyncSession,
        booking: Booking,
        notification_type: NotificationType,
        recipient_role: ActorRole,
    ) -> Notification:
        recipient_id = booking.customer_id if recipient_role == ActorRole.CUSTOMER else booking.model_id
        template = TEMPLATES[notification_type]
        vars_ = {
            "start_date": booking.start_date.strftime("%Y-%m-%d %H:%M UTC"),
            "amount": format_minor_units(booking.price),
            "deadline": (
                booking.confirmation_deadline.strftime("%Y-%m-%d %H:%M UTC")
                if booking.confirmation_deadline else ""
            ),
        }
        now = self.clock()
        notif = Notification(
            recipient_id=recipient_id,
            recipient_role=recipient_role.value,
            booking_id=booking.id,
            type=notification_type,
            title=template["title"].format(**vars_),
            body=template["body"].format(**vars_),
            data={"booking_id": str(booking.id), "status": booking.status.value},
            created_at=now,
            updated_at=now,
        )
        session.add(notif)
        return notif

    def booking_created(self, session: AsyncSession, booking: Booking) -> None:
        self.notify(session, booking, NotificationType.BOOKING_CREATED, ActorRole.MODEL)

    def booking_transitioned(self, session: AsyncSession, booking: Booking, action: BookingAction) -> None:
        for notification_type, recipient_role in ACTION_NOTIFICATIONS.get(action, []):
            self.notify(session, booking, notification_type, recipient_role)

    def checked_in(self, session: AsyncSession, booking: Booking, role: ActorRole) -> None:
        """Tell the other party that this one has arrived."""
        if role == ActorRole.MODEL:
            self.notify(session, booking, NotificationType.BOOKING_CHECKIN_MODEL, ActorRole.CUSTOMER)
        else:
            self.notify(session, booking, NotificationType.BOOKING_CHECKIN_CUSTOMER, ActorRole.MODEL)

    # ── Inbox ─────────────────────────────────────────────────

    async def list_for_recipient(
        self,
        session: AsyncSession,
        recipient_id: str,
        unread_only: bool = False,
        page: int = 1,
        page_size: int = 20,
    ) -> List[Notification]:
        query = (
            select(Notification)
            .where(Notification.recipient_id == recipient_id)
            .order_by(Notification.created_at.desc())
        )
        if unread_only:
            query = query.where(Notification.is_read.is_(False))

        result = await session.execute(query.offset((page - 1) * page_size).limit(page_size))
        return list(result.scalars().all())

    async def unread_count(self, session: AsyncSession, recipient_id: str) -> int:
        count = await session.scalar(
            select(func.count(Notification.id)).where(
                Notification.recipient_id == recipient_id,
                Notification.is_read.is_(False),
            )
        )
        return count or 0

    async def mark_read(
        self, session: AsyncSession, recipient_id: str, notification_id: Optional[uuid.UUID] = None
    ) -> int:
        """Mark one notification, or all unread ones when no id is given. Returns rows changed."""
        now = self.clock()
        query = update(Notification).where(
            Notification.recipient_id == recipient_id,
            Notification.is_read.is_(False),
        )
        if notification_id is not None:
            query = query.where(Notification.id == notification_id)
        result = await session.execute(query.values(is_read=True, read_at=now, updated_at=now))
        return result.rowcount or 0

    async def delete(self, session: AsyncSession, recipient_id: str, notification_id: uuid.UUID) -> int:
        """Remove one notification from the recipient's inbox. Returns rows deleted."""
        result = await session.execute(
            delete(Notification).where(
                Notification.id == notification_id,
                Notification.recipient_id == recipient_id,
            )
        )
        return result.rowcount or 0
