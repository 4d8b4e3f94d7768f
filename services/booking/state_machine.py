"""
services/booking/state_machine.py
Booking lifecycle rules: which action moves which status, who may take it,
and what it does to the escrowed funds.

Pure logic. Nothing here touches the database; the booking service locks the
row, asks the machine for the edge, applies it and performs the settlement.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, FrozenSet, Optional

from config.settings import Settings
from shared.exceptions import TransitionError, ValidationError
from shared.models.models import ActorRole, Booking, BookingStatus

S = BookingStatus
R = ActorRole


class BookingAction(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"
    CANCEL = "cancel"
    START = "start"
    MARK_DONE = "mark_done"
    CONFIRM = "confirm"
    AUTO_COMPLETE = "auto_complete"
    DISPUTE = "dispute"
    ESCALATE = "escalate"

    @classmethod
    def parse(cls, value: "str | BookingAction") -> "BookingAction":
        try:
            return cls(value)
        except ValueError:
            raise ValidationError(f"Unknown booking action '{value}'")


class Settlement(str, Enum):
    NONE = "none"
    REFUND = "refund"
    RELEASE = "release"


@dataclass(frozen=True)
class Edge:
    action: BookingAction
    sources: FrozenSet[BookingStatus]
    target: BookingStatus
    roles: FrozenSet[ActorRole]
    settlement: Settlement = Settlement.NONE


NON_TERMINAL = frozenset({S.PENDING, S.CONFIRMED, S.IN_PROGRESS, S.AWAITING_CONFIRMATION})

EDGES: Dict[BookingAction, Edge] = {
    BookingAction.ACCEPT: Edge(
        BookingAction.ACCEPT, frozenset({S.PENDING}), S.CONFIRMED, frozenset({R.MODEL})),
    BookingAction.REJECT: Edge(
        BookingAction.REJECT, frozenset({S.PENDING}), S.REJECTED, frozenset({R.MODEL}), Settlement.REFUND),
    BookingAction.CANCEL: Edge(
        BookingAction.CANCEL, frozenset({S.PENDING}), S.CANCELLED, frozenset({R.CUSTOMER}), Settlement.REFUND),
    BookingAction.START: Edge(
        BookingAction.START, frozenset({S.CONFIRMED}), S.IN_PROGRESS, frozenset({R.SYSTEM})),
    BookingAction.MARK_DONE: Edge(
        BookingAction.MARK_DONE, frozenset({S.IN_PROGRESS}), S.AWAITING_CONFIRMATION, frozenset({R.MODEL})),
    BookingAction.CONFIRM: Edge(
        BookingAction.CONFIRM, frozenset({S.AWAITING_CONFIRMATION}), S.COMPLETED,
        frozenset({R.CUSTOMER}), Settlement.RELEASE),
    BookingAction.AUTO_COMPLETE: Edge(
        BookingAction.AUTO_COMPLETE, frozenset({S.AWAITING_CONFIRMATION}), S.COMPLETED,
        frozenset({R.SYSTEM}), Settlement.RELEASE),
    BookingAction.DISPUTE: Edge(
        BookingAction.DISPUTE, frozenset({S.AWAITING_CONFIRMATION}), S.DISPUTED, frozenset({R.CUSTOMER})),
    BookingAction.ESCALATE: Edge(
        BookingAction.ESCALATE, NON_TERMINAL, S.DISPUTED, frozenset({R.SYSTEM, R.ADMIN})),
}


class BookingStateMachine:
    def __init__(self, settings: Settings):
        self.settings = settings

    def edge_for(
        self,
        booking: Booking,
        role: ActorRole,
        action: BookingAction,
        now: datetime,
    ) -> Edge:
        """
        Return the edge `role` may take from the booking's current status,
        or raise TransitionError. `role` is the caller's role on this booking.
        """
        edge = EDGES[action]
        status = booking.status

        if status not in edge.sources:
            if status == edge.target:
                raise TransitionError(f"Booking is already {status.value}")
            raise TransitionError(f"Cannot {action.value} a booking that is {status.value}")
        if role not in edge.roles:
            raise TransitionError(f"A {role.value} cannot {action.value} this booking")

        self._check_guard(booking, action, now)
        return edge

    def _check_guard(self, booking: Booking, action: BookingAction, now: datetime) -> None:
        if action == BookingAction.CANCEL:
            cutoff = booking.start_date - timedelta(hours=self.settings.BOOKING_CANCEL_CUTOFF_HOURS)
            if now >= cutoff:
                raise TransitionError(
                    f"Bookings cannot be cancelled within "
                    f"{self.settings.BOOKING_CANCEL_CUTOFF_HOURS} hours of the start"
                )
        elif action == BookingAction.START:
            if not booking.both_checked_in:
                raise TransitionError("Both parties must check in before the booking starts")
        elif action == BookingAction.AUTO_COMPLETE:
            if booking.confirmation_deadline is None or booking.confirmation_deadline > now:
                raise TransitionError("The confirmation window has not elapsed yet")
        elif action == BookingAction.DISPUTE:
            if booking.confirmation_deadline is None or now > booking.confirmation_deadline:
                raise TransitionError("The confirmation window has closed")

    def apply(
        self,
        booking: Booking,
        edge: Edge,
        now: datetime,
        reason: Optional[str] = None,
    ) -> None:
        """Write the new status and the fields that travel with it."""
        booking.status = edge.target

        if edge.target == S.AWAITING_CONFIRMATION:
            booking.confirmation_deadline = now + timedelta(hours=self.settings.CONFIRMATION_WINDOW_HOURS)
        else:
            booking.confirmation_deadline = None

        if edge.target == S.COMPLETED:
            booking.completed_at = now
        if reason:
            booking.status_reason = reason
