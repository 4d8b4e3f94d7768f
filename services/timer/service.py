"""
services/timer/service.py
Time-driven transitions.

Deadlines live on the booking rows, so the scanner keeps no state: after a
restart the next scan picks up whatever is due. Two scans run per tick:
  - awaiting_confirmation bookings past their deadline are auto-completed
  - confirmed bookings whose check-in window closed without both parties
    present are escalated to disputed
Both fire through the booking service as the system actor. If a customer or
another worker got there first, the status guard rejects the duplicate and
the scanner moves on.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.settings import Settings
from services.booking.service import BookingService
from services.booking.state_machine import BookingAction
from shared.exceptions import DomainError, ProcessingError
from shared.models.actor import SYSTEM_ACTOR
from shared.models.models import Booking, BookingStatus, utcnow

logger = logging.getLogger(__name__)


@dataclass
class ScanResult:
    found: int = 0
    fired: int = 0
    skipped: int = 0
    failed: int = 0


class TimerService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
        bookings: BookingService,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.bookings = bookings
        self.clock = clock

    async def _due_for_auto_complete(self, now: datetime) -> List[uuid.UUID]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Booking.id)
                .where(
                    Booking.status == BookingStatus.AWAITING_CONFIRMATION,
                    Booking.confirmation_deadline <= now,
                )
                .order_by(Booking.confirmation_deadline)
                .limit(self.settings.TIMER_SCAN_BATCH_SIZE)
            )
            return list(result.scalars().all())

    async def _stalled_check_ins(self, now: datetime) -> List[uuid.UUID]:
        grace = timedelta(minutes=self.settings.CHECKIN_GRACE_MINUTES)
        async with self.session_factory() as session:
            result = await session.execute(
                select(Booking.id)
                .where(
                    Booking.status == BookingStatus.CONFIRMED,
                    Booking.window_ends_at <= now - grace,
                    or_(Booking.customer_checkin_at.is_(None), Booking.model_checkin_at.is_(None)),
                )
                .order_by(Booking.window_ends_at)
                .limit(self.settings.TIMER_SCAN_BATCH_SIZE)
            )
            return list(result.scalars().all())

    async def _fire(
        self,
        booking_ids: List[uuid.UUID],
        action: BookingAction,
        reason: Optional[str] = None,
    ) -> ScanResult:
        outcome = ScanResult(found=len(booking_ids))
        for booking_id in booking_ids:
            try:
                await self.bookings.transition(booking_id, SYSTEM_ACTOR, action, reason)
                outcome.fired += 1
            except DomainError as e:
                # Lost the race to a party or another scanner
                logger.info(f"Timer skipped {action.value} on booking {booking_id}: {e.message}")
                outcome.skipped += 1
            except ProcessingError:
                logger.error(f"Timer failed {action.value} on booking {booking_id}; retrying next scan")
                outcome.failed += 1
        return outcome

    async def scan_once(self) -> ScanResult:
        """Auto-complete every booking whose confirmation window has elapsed."""
        due = await self._due_for_auto_complete(self.clock())
        outcome = await self._fire(due, BookingAction.AUTO_COMPLETE)
        if outcome.found:
            logger.info(
                f"Auto-complete scan: {outcome.fired} released, "
                f"{outcome.skipped} skipped, {outcome.failed} failed"
            )
        return outcome

    async def escalate_stalled_check_ins(self) -> ScanResult:
        stalled = await self._stalled_check_ins(self.clock())
        outcome = await self._fire(
            stalled,
            BookingAction.ESCALATE,
            reason="Check-in window closed without both parties checking in",
        )
        if outcome.found:
            logger.info(f"Check-in scan: {outcome.fired} escalated, {outcome.skipped} skipped")
        return outcome

    async def tick(self) -> None:
        await self.scan_once()
        await self.escalate_stalled_check_ins()

    async def run_forever(self, stop: Optional[asyncio.Event] = None) -> None:
        """In-process scan loop. Stops when `stop` is set."""
        stop = stop or asyncio.Event()
        interval = self.settings.TIMER_SCAN_INTERVAL_SECONDS
        logger.info(f"Timer service started (every {interval}s)")
        while not stop.is_set():
            try:
                await self.tick()
            except Exception:
                logger.exception("Timer scan failed")
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Timer service stopped")
