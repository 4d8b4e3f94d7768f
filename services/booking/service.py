"""
services/booking/service.py
Booking lifecycle: creation, transitions, check-in and term edits.

Every mutating call runs in one short transaction:
    lock the booking row → validate the edge → write the new status (the
    version check on flush is the compare-and-set) → move funds → notify
and then appends exactly one audit entry, whatever the outcome.
"""

import logging
import math
import uuid
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.settings import Settings
from services.audit.service import AuditEntry, AuditLogService, AuditSnapshot
from services.booking.state_machine import BookingAction, BookingStateMachine, Settlement
from services.checkin.service import CheckInGate
from services.notification.service import Notifier
from services.wallet.service import WalletLedger
from shared.exceptions import (
    NotFoundError,
    TransitionError,
    UnauthorizedActorError,
    ValidationError,
)
from shared.models.actor import SYSTEM_ACTOR, Actor
from shared.models.models import (
    SETTLED_STATUSES,
    ActorRole,
    AuditLog,
    AuditStatus,
    Booking,
    BookingStatus,
    WalletAccount,
    WalletOwnerType,
    utcnow,
    window_end,
)
from shared.schemas.schemas import BookingTerms, BookingTermsUpdate
from shared.utils.geo import validate_coordinates
from shared.utils.transactions import write_transaction

logger = logging.getLogger(__name__)


def booking_snapshot(booking: Booking) -> AuditSnapshot:
    return AuditSnapshot(
        payload={
            "status": booking.status.value,
            "price": booking.price,
            "confirmation_deadline": (
                booking.confirmation_deadline.isoformat() if booking.confirmation_deadline else None
            ),
            "version": booking.version,
        },
        booking_id=booking.id,
    )


class BookingService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
        audit: AuditLogService,
        ledger: WalletLedger,
        notifier: Notifier,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.audit = audit
        self.ledger = ledger
        self.notifier = notifier
        self.clock = clock
        self.machine = BookingStateMachine(settings)
        self.gate = CheckInGate(settings)

    def _transaction(self):
        return write_transaction(self.session_factory, self.settings.BOOKING_LOCK_TIMEOUT_MS)

    # ── Helpers ───────────────────────────────────────────────

    async def _lock_booking(self, session: AsyncSession, booking_id: uuid.UUID) -> Booking:
        result = await session.execute(
            select(Booking).where(Booking.id == booking_id).with_for_update()
        )
        booking = result.scalar_one_or_none()
        if not booking:
            raise NotFoundError("Booking not found")
        return booking

    def _role_on(self, booking: Booking, actor: Actor) -> ActorRole:
        """The role an actor plays on this particular booking."""
        if actor.is_privileged:
            return actor.role
        role = booking.party_role(actor.actor_id)
        if role is None:
            raise UnauthorizedActorError("You are not a party to this booking")
        return role

    def _ensure_visible(self, booking: Booking, actor: Actor) -> None:
        if actor.is_privileged:
            return
        if booking.party_role(actor.actor_id) is None:
            raise UnauthorizedActorError("You are not a party to this booking")

    async def _apply(
        self,
        session: AsyncSession,
        booking: Booking,
        actor: Actor,
        action: BookingAction,
        reason: Optional[str] = None,
    ) -> Booking:
        now = self.clock()
        role = self._role_on(booking, actor)
        edge = self.machine.edge_for(booking, role, action, now)
        previous = booking.status

        self.machine.apply(booking, edge, now, reason)
        # Version-checked UPDATE; a concurrent writer makes this raise
        await session.flush()

        if edge.settlement == Settlement.REFUND:
            await self.ledger.refund(session, booking)
        elif edge.settlement == Settlement.RELEASE:
            await self.ledger.release(session, booking)

        self.notifier.booking_transitioned(session, booking, action)
        logger.info(
            f"Booking {booking.id}: {previous.value} → {booking.status.value} "
            f"({action.value} by {actor.role.value} {actor.actor_id})"
        )
        return booking

    # ── Creation ──────────────────────────────────────────────

    async def create_booking(
        self,
        customer: Actor,
        model_id: str,
        model_service_id: str,
        terms: BookingTerms,
    ) -> Booking:
        """Insert a pending booking and hold its price on the customer's wallet."""
        async def operation() -> Booking:
            if customer.role != ActorRole.CUSTOMER:
                raise UnauthorizedActorError("Only customers can create bookings")
            self._validate_terms(customer.actor_id, model_id, terms)

            async with self._transaction() as session:
                model_wallet = await session.execute(
                    select(WalletAccount.id).where(
                        WalletAccount.owner_id == model_id,
                        WalletAccount.owner_type == WalletOwnerType.MODEL,
                    )
                )
                if model_wallet.scalar_one_or_none() is None:
                    raise ValidationError("The model has no wallet and cannot be booked")
                customer_wallet = await session.execute(
                    select(WalletAccount.id).where(
                        WalletAccount.owner_id == customer.actor_id,
                        WalletAccount.owner_type == WalletOwnerType.CUSTOMER,
                    )
                )
                if customer_wallet.scalar_one_or_none() is None:
                    raise ValidationError("Create a wallet before booking")

                booking = Booking(
                    customer_id=customer.actor_id,
                    model_id=model_id,
                    model_service_id=model_service_id,
                    price=terms.price,
                    day_amount=terms.day_amount,
                    location=terms.location,
                    latitude=terms.latitude,
                    longitude=terms.longitude,
                    preferred_attire=terms.preferred_attire,
                    start_date=terms.start_date,
                    end_date=terms.end_date,
                    window_ends_at=window_end(terms.start_date, terms.end_date),
                    status=BookingStatus.PENDING,
                )
                session.add(booking)
                await session.flush()

                await self.ledger.hold(session, booking)
                self.notifier.booking_created(session, booking)
                logger.info(f"Booking {booking.id} created by {customer.actor_id} for model {model_id}")
                return booking

        return await self.audit.track(
            action="booking.create",
            actor=customer,
            description=f"Create booking with model {model_id}",
            operation=operation,
            payload={"model_id": model_id, "price": terms.price},
            describe=booking_snapshot,
        )

    def _validate_terms(self, customer_id: str, model_id: str, terms: BookingTerms) -> None:
        if customer_id == model_id:
            raise ValidationError("You cannot book yourself")
        if terms.price <= 0:
            raise ValidationError("Price must be positive")
        if terms.day_amount < 1:
            raise ValidationError("day_amount must be at least 1")
        if not terms.location.strip():
            raise ValidationError("Location is required")
        if not validate_coordinates(terms.latitude, terms.longitude):
            raise ValidationError("Invalid coordinates")
        self._validate_dates(terms.start_date, terms.end_date)

    def _validate_dates(self, start_date: datetime, end_date: Optional[datetime]) -> None:
        if start_date.tzinfo is None or (end_date is not None and end_date.tzinfo is None):
            raise ValidationError("Dates must include a timezone")
        if start_date <= self.clock():
            raise ValidationError("start_date must be in the future")
        if end_date is not None and end_date < start_date:
            raise ValidationError("end_date must not be before start_date")

    # ── Transitions ───────────────────────────────────────────

    async def transition(
        self,
        booking_id: uuid.UUID,
        actor: Actor,
        action: "BookingAction | str",
        reason: Optional[str] = None,
    ) -> Booking:
        action_name = action.value if isinstance(action, BookingAction) else str(action)

        async def operation() -> Booking:
            parsed = BookingAction.parse(action)
            async with self._transaction() as session:
                booking = await self._lock_booking(session, booking_id)
                return await self._apply(session, booking, actor, parsed, reason)

        return await self.audit.track(
            action=f"booking.{action_name}",
            actor=actor,
            description=f"{action_name} booking {booking_id}",
            operation=operation,
            booking_id=booking_id,
            payload={"reason": reason} if reason else None,
            describe=booking_snapshot,
        )

    async def escalate(self, booking_id: uuid.UUID, actor: Actor, reason: str) -> Booking:
        return await self.transition(booking_id, actor, BookingAction.ESCALATE, reason)

    # ── Check-in ──────────────────────────────────────────────

    async def check_in(
        self,
        booking_id: uuid.UUID,
        actor: Actor,
        latitude: float,
        longitude: float,
        timestamp: Optional[datetime] = None,
    ) -> Booking:
        """
        Record one party's arrival. The check-in that completes the pair starts
        the booking in the same transaction, audited as a separate system action.
        """
        started = False

        async def operation() -> Booking:
            nonlocal started
            at = timestamp or self.clock()
            async with self._transaction() as session:
                booking = await self._lock_booking(session, booking_id)
                role = self.gate.record(booking, actor, latitude, longitude, at)
                await session.flush()
                self.notifier.checked_in(session, booking, role)

                if booking.both_checked_in:
                    await self._apply(session, booking, SYSTEM_ACTOR, BookingAction.START)
                    started = True
                return booking

        booking = await self.audit.track(
            action="booking.check_in",
            actor=actor,
            description=f"Check in to booking {booking_id}",
            operation=operation,
            booking_id=booking_id,
            payload={"latitude": latitude, "longitude": longitude},
            describe=booking_snapshot,
        )
        if started:
            await self.audit.append(AuditEntry(
                action=f"booking.{BookingAction.START.value}",
                actor=SYSTEM_ACTOR,
                description=f"start booking {booking_id} after both check-ins",
                status=AuditStatus.SUCCESS,
                booking_id=booking_id,
                payload=booking_snapshot(booking).payload,
            ))
        return booking

    # ── Term edits & deletion ─────────────────────────────────

    async def update_booking_terms(
        self, booking_id: uuid.UUID, actor: Actor, changes: BookingTermsUpdate
    ) -> Booking:
        """Edit non-financial terms of a pending booking. Only the customer may do this."""
        async def operation() -> Booking:
            async with self._transaction() as session:
                booking = await self._lock_booking(session, booking_id)
                if booking.party_role(actor.actor_id) != ActorRole.CUSTOMER:
                    raise UnauthorizedActorError("Only the customer can edit this booking")
                if booking.status != BookingStatus.PENDING:
                    raise TransitionError(f"Cannot edit a booking that is {booking.status.value}")

                data = changes.model_dump(exclude_unset=True)
                price = data.pop("price", None)
                if price is not None and price != booking.price:
                    raise ValidationError("The price of a booking cannot be changed")

                start_date = data.get("start_date", booking.start_date)
                end_date = data.get("end_date", booking.end_date)
                if "start_date" in data or "end_date" in data:
                    self._validate_dates(start_date, end_date)
                if "location" in data and not (data["location"] or "").strip():
                    raise ValidationError("Location is required")

                for field, value in data.items():
                    # end_date may be cleared; every other column is NOT NULL
                    if value is None and field != "end_date":
                        continue
                    setattr(booking, field, value)
                booking.window_ends_at = window_end(booking.start_date, booking.end_date)
                await session.flush()
                return booking

        return await self.audit.track(
            action="booking.update_terms",
            actor=actor,
            description=f"Update terms of booking {booking_id}",
            operation=operation,
            booking_id=booking_id,
            payload={"fields": sorted(changes.model_dump(exclude_unset=True).keys())},
            describe=booking_snapshot,
        )

    async def delete_booking(self, booking_id: uuid.UUID, actor: Actor) -> None:
        """Remove a settled booking. Disputed bookings still carry a frozen hold and are kept."""
        async def operation() -> None:
            async with self._transaction() as session:
                booking = await self._lock_booking(session, booking_id)
                self._role_on(booking, actor)
                if booking.status not in SETTLED_STATUSES:
                    raise TransitionError(f"Cannot delete a booking that is {booking.status.value}")
                await session.delete(booking)

        await self.audit.track(
            action="booking.delete",
            actor=actor,
            description=f"Delete booking {booking_id}",
            operation=operation,
            booking_id=booking_id,
        )

    # ── Queries ───────────────────────────────────────────────

    async def get_booking(self, booking_id: uuid.UUID, actor: Actor) -> Booking:
        async with self.session_factory() as session:
            booking = await session.get(Booking, booking_id)
        if not booking:
            raise NotFoundError("Booking not found")
        self._ensure_visible(booking, actor)
        return booking

    async def get_booking_history(
        self,
        actor: Actor,
        status: Optional[BookingStatus] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[Booking], int, int]:
        """Bookings the actor is a party to, newest first. Returns (items, total, pages)."""
        query = select(Booking)
        if not actor.is_privileged:
            query = query.where(
                or_(Booking.customer_id == actor.actor_id, Booking.model_id == actor.actor_id)
            )
        if status:
            query = query.where(Booking.status == status)

        async with self.session_factory() as session:
            total = (await session.execute(
                select(func.count()).select_from(query.subquery())
            )).scalar_one()
            result = await session.execute(
                query.order_by(Booking.created_at.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            items = list(result.scalars().all())
        return items, total, math.ceil(total / page_size) if total else 0

    async def get_booking_audit(self, booking_id: uuid.UUID, actor: Actor) -> List[AuditLog]:
        await self.get_booking(booking_id, actor)
        return await self.audit.list_for_booking(booking_id)
