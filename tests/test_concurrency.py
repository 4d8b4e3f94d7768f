"""
tests/test_concurrency.py
Competing transitions on the same booking: exactly one wins and the
booking settles at most once. Payouts on different bookings never conflict.

The race is staged deterministically: the first request loads the booking,
then the competing request runs to completion before the first one writes.
"""

import pytest
from sqlalchemy import select

from config.container import build_container
from services.booking.service import BookingService
from services.booking.state_machine import BookingAction
from shared.exceptions import StaleStateError, TransitionError
from shared.models.models import AuditLog, AuditStatus, BookingStatus
from tests.conftest import (
    CUSTOMER,
    MEETING_LAT,
    MEETING_LNG,
    MODEL,
    create_booking,
    get_platform_wallet,
    get_wallet,
)


class InterleavingBookingService(BookingService):
    """Runs `competitor` right after the booking row has been read."""

    competitor = None

    async def _lock_booking(self, session, booking_id):
        booking = await super()._lock_booking(session, booking_id)
        if self.competitor is not None:
            competitor, self.competitor = self.competitor, None
            await competitor()
        return booking


def _interleaving(services):
    return InterleavingBookingService(
        services.session_factory,
        services.settings,
        services.audit,
        services.ledger,
        services.notifier,
        clock=services.bookings.clock,
    )


async def _settlements(services, booking_id):
    entries = await services.ledger.entries_for_booking(booking_id)
    return sorted(e.type.value for e in entries)


# ── Scenario C: accept vs. reject ─────────────────────────────

@pytest.mark.asyncio
async def test_accept_loses_to_concurrent_reject(services, clock, wallets, session_factory):
    booking = await create_booking(services, clock)
    racer = _interleaving(services)
    racer.competitor = lambda: services.bookings.transition(booking.id, MODEL, BookingAction.REJECT)

    with pytest.raises(StaleStateError):
        await racer.transition(booking.id, MODEL, BookingAction.ACCEPT)

    final = await services.bookings.get_booking(booking.id, MODEL)
    assert final.status == BookingStatus.REJECTED
    assert await _settlements(services, booking.id) == ["hold", "refund"]

    wallet = await get_wallet(services, CUSTOMER)
    assert wallet.balance == 150_000
    assert wallet.held_balance == 0

    async with session_factory() as session:
        audits = (await session.execute(
            select(AuditLog).where(AuditLog.booking_id == booking.id)
        )).scalars().all()
    outcomes = sorted((a.action, a.status.value) for a in audits)
    assert ("booking.accept", AuditStatus.FAILED.value) in outcomes
    assert ("booking.reject", AuditStatus.SUCCESS.value) in outcomes


@pytest.mark.asyncio
async def test_reject_loses_to_concurrent_accept(services, clock, wallets):
    booking = await create_booking(services, clock)
    racer = _interleaving(services)
    racer.competitor = lambda: services.bookings.transition(booking.id, MODEL, BookingAction.ACCEPT)

    with pytest.raises(StaleStateError):
        await racer.transition(booking.id, MODEL, BookingAction.REJECT)

    final = await services.bookings.get_booking(booking.id, MODEL)
    assert final.status == BookingStatus.CONFIRMED
    # The losing reject must not have refunded anything
    assert await _settlements(services, booking.id) == ["hold"]
    assert (await get_wallet(services, CUSTOMER)).held_balance == 100_000


@pytest.mark.asyncio
async def test_late_request_sees_new_status(services, clock, wallets):
    booking = await create_booking(services, clock)
    await services.bookings.transition(booking.id, MODEL, BookingAction.ACCEPT)

    with pytest.raises(TransitionError):
        await services.bookings.transition(booking.id, MODEL, BookingAction.REJECT)
    assert await _settlements(services, booking.id) == ["hold"]


@pytest.mark.asyncio
async def test_timer_and_customer_settle_once(services, clock, wallets):
    booking = await create_booking(services, clock)
    await services.bookings.transition(booking.id, MODEL, BookingAction.ACCEPT)
    clock.set(booking.start_date)
    await services.bookings.check_in(booking.id, MODEL, MEETING_LAT, MEETING_LNG)
    await services.bookings.check_in(booking.id, CUSTOMER, MEETING_LAT, MEETING_LNG)
    await services.bookings.transition(booking.id, MODEL, BookingAction.MARK_DONE)
    clock.advance(hours=48)

    # The customer confirms while the timer's auto-complete is mid-flight
    racer = _interleaving(services)
    racer.competitor = lambda: services.bookings.transition(booking.id, CUSTOMER, BookingAction.CONFIRM)
    timer = build_container(services.session_factory, services.settings, clock=clock).timer
    timer.bookings = racer

    result = await timer.scan_once()
    assert result.found == 1
    assert result.fired == 0
    assert result.skipped == 1

    assert await _settlements(services, booking.id) == ["hold", "release"]
    assert (await get_wallet(services, MODEL)).balance == 90_000


# ── Different bookings settle in parallel ─────────────────────

@pytest.mark.asyncio
async def test_payouts_on_different_bookings_do_not_conflict(services, clock, wallets):
    first = await create_booking(services, clock, price=50_000)
    second = await create_booking(services, clock, price=50_000)
    await services.bookings.transition(first.id, MODEL, BookingAction.ACCEPT)
    await services.bookings.transition(second.id, MODEL, BookingAction.ACCEPT)
    clock.set(second.start_date)
    await services.bookings.check_in(second.id, MODEL, MEETING_LAT, MEETING_LNG)
    await services.bookings.check_in(second.id, CUSTOMER, MEETING_LAT, MEETING_LNG)
    await services.bookings.transition(second.id, MODEL, BookingAction.MARK_DONE)

    async with services.ledger._transaction() as session:
        # The platform wallet is already loaded when the other payout commits
        await services.ledger._platform_wallet(session)
        await services.bookings.transition(second.id, CUSTOMER, BookingAction.CONFIRM)
        await services.ledger.release(session, first)

    assert await _settlements(services, first.id) == ["hold", "release"]
    assert await _settlements(services, second.id) == ["hold", "release"]
    assert (await get_platform_wallet(services)).balance == 10_000
    assert (await get_wallet(services, MODEL)).balance == 90_000

    wallet = await get_wallet(services, CUSTOMER)
    assert wallet.balance == 50_000
    assert wallet.held_balance == 0
