"""
tests/test_bookings.py
Tests for the booking lifecycle through the booking service:
create → accept/reject/cancel → check-in → mark_done → confirm/dispute
"""

import uuid
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from services.booking.state_machine import BookingAction
from shared.exceptions import (
    InsufficientBalanceError,
    NotFoundError,
    TransitionError,
    UnauthorizedActorError,
    ValidationError,
)
from shared.models.actor import Actor
from shared.models.models import (
    ActorRole,
    AuditLog,
    AuditStatus,
    BookingStatus,
    LedgerEntry,
)
from shared.schemas.schemas import BookingTermsUpdate
from tests.conftest import (
    ADMIN,
    CUSTOMER,
    MEETING_LAT,
    MEETING_LNG,
    MODEL,
    OTHER_CUSTOMER,
    create_booking,
    fund_wallet,
    get_platform_wallet,
    get_wallet,
    make_terms,
)


async def _ledger_types(session_factory, booking_id):
    async with session_factory() as session:
        result = await session.execute(
            select(LedgerEntry.type).where(LedgerEntry.booking_id == booking_id)
        )
        return sorted(t.value for t in result.scalars().all())


async def _audit_rows(session_factory, booking_id):
    async with session_factory() as session:
        result = await session.execute(select(AuditLog).where(AuditLog.booking_id == booking_id))
        return result.scalars().all()


async def _bring_to_awaiting_confirmation(services, clock, booking):
    await services.bookings.transition(booking.id, MODEL, BookingAction.ACCEPT)
    clock.set(booking.start_date)
    await services.bookings.check_in(booking.id, MODEL, MEETING_LAT, MEETING_LNG)
    await services.bookings.check_in(booking.id, CUSTOMER, MEETING_LAT, MEETING_LNG)
    clock.advance(hours=3)
    return await services.bookings.transition(booking.id, MODEL, BookingAction.MARK_DONE)


# ── Creation ──────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_booking_places_hold(services, clock, wallets, session_factory):
    booking = await create_booking(services, clock, price=100_000)

    assert booking.status == BookingStatus.PENDING
    assert booking.confirmation_deadline is None
    assert booking.effective_end_date == booking.start_date + timedelta(days=1)

    wallet = await get_wallet(services, CUSTOMER)
    assert wallet.balance == 50_000
    assert wallet.held_balance == 100_000
    assert await _ledger_types(session_factory, booking.id) == ["hold"]


@pytest.mark.asyncio
async def test_create_booking_in_the_past_rejected(services, clock, wallets):
    with pytest.raises(ValidationError):
        await create_booking(services, clock, start_in=timedelta(hours=-1))


@pytest.mark.asyncio
async def test_create_booking_with_yourself_rejected(services, clock, wallets):
    with pytest.raises(ValidationError):
        await services.bookings.create_booking(CUSTOMER, CUSTOMER.actor_id, "service-1", make_terms(clock))


@pytest.mark.asyncio
async def test_create_booking_requires_model_wallet(services, clock, customer_wallet):
    with pytest.raises(ValidationError):
        await create_booking(services, clock)


@pytest.mark.asyncio
async def test_model_cannot_create_booking(services, clock, wallets):
    with pytest.raises(UnauthorizedActorError):
        await services.bookings.create_booking(MODEL, "model-2", "service-1", make_terms(clock))


@pytest.mark.asyncio
async def test_create_booking_insufficient_balance_is_audited(services, clock, wallets, session_factory):
    with pytest.raises(InsufficientBalanceError):
        await create_booking(services, clock, price=200_000)

    async with session_factory() as session:
        count = await session.scalar(select(func.count(AuditLog.id)).where(
            AuditLog.action == "booking.create", AuditLog.status == AuditStatus.FAILED
        ))
    assert count == 1


# ── Scenario A: reject refunds ────────────────────────────────

@pytest.mark.asyncio
async def test_reject_refunds_full_price(services, clock, wallets, session_factory):
    booking = await create_booking(services, clock, price=100_000)

    rejected = await services.bookings.transition(booking.id, MODEL, "reject", reason="Unavailable")
    assert rejected.status == BookingStatus.REJECTED
    assert rejected.status_reason == "Unavailable"

    wallet = await get_wallet(services, CUSTOMER)
    assert wallet.balance == 150_000
    assert wallet.held_balance == 0
    assert await _ledger_types(session_factory, booking.id) == ["hold", "refund"]

    audits = await _audit_rows(session_factory, booking.id)
    assert sorted(a.action for a in audits) == ["booking.create", "booking.reject"]
    assert all(a.status == AuditStatus.SUCCESS for a in audits)


# ── Accept / idempotency ──────────────────────────────────────

@pytest.mark.asyncio
async def test_accept_is_not_applied_twice(services, clock, wallets, session_factory):
    booking = await create_booking(services, clock)
    accepted = await services.bookings.transition(booking.id, MODEL, BookingAction.ACCEPT)
    assert accepted.status == BookingStatus.CONFIRMED

    with pytest.raises(TransitionError, match="already confirmed"):
        await services.bookings.transition(booking.id, MODEL, BookingAction.ACCEPT)

    wallet = await get_wallet(services, CUSTOMER)
    assert wallet.held_balance == 100_000
    assert await _ledger_types(session_factory, booking.id) == ["hold"]

    audits = await _audit_rows(session_factory, booking.id)
    accept_audits = [a for a in audits if a.action == "booking.accept"]
    assert sorted(a.status.value for a in accept_audits) == ["failed", "success"]


@pytest.mark.asyncio
async def test_customer_cannot_accept(services, clock, wallets):
    booking = await create_booking(services, clock)
    with pytest.raises(TransitionError):
        await services.bookings.transition(booking.id, CUSTOMER, BookingAction.ACCEPT)


@pytest.mark.asyncio
async def test_stranger_cannot_transition(services, clock, wallets):
    booking = await create_booking(services, clock)
    stranger = Actor("model-9", ActorRole.MODEL)
    with pytest.raises(UnauthorizedActorError):
        await services.bookings.transition(booking.id, stranger, BookingAction.ACCEPT)


@pytest.mark.asyncio
async def test_unknown_booking_not_found(services, wallets):
    with pytest.raises(NotFoundError):
        await services.bookings.transition(uuid.uuid4(), MODEL, BookingAction.ACCEPT)


@pytest.mark.asyncio
async def test_unknown_action_rejected(services, clock, wallets):
    booking = await create_booking(services, clock)
    with pytest.raises(ValidationError):
        await services.bookings.transition(booking.id, MODEL, "teleport")


@pytest.mark.asyncio
async def test_customer_cannot_invoke_system_start(services, clock, wallets):
    booking = await create_booking(services, clock)
    await services.bookings.transition(booking.id, MODEL, BookingAction.ACCEPT)
    with pytest.raises(TransitionError):
        await services.bookings.transition(booking.id, CUSTOMER, BookingAction.START)


# ── Cancel ────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_customer_cancel_refunds(services, clock, wallets, session_factory):
    booking = await create_booking(services, clock)
    cancelled = await services.bookings.transition(booking.id, CUSTOMER, BookingAction.CANCEL)

    assert cancelled.status == BookingStatus.CANCELLED
    assert (await get_wallet(services, CUSTOMER)).balance == 150_000
    assert await _ledger_types(session_factory, booking.id) == ["hold", "refund"]


@pytest.mark.asyncio
async def test_cancel_within_cutoff_rejected(services, clock, wallets):
    booking = await create_booking(services, clock, start_in=timedelta(hours=3))
    clock.advance(hours=1, minutes=30)
    with pytest.raises(TransitionError):
        await services.bookings.transition(booking.id, CUSTOMER, BookingAction.CANCEL)


@pytest.mark.asyncio
async def test_cannot_cancel_confirmed_booking(services, clock, wallets):
    booking = await create_booking(services, clock)
    await services.bookings.transition(booking.id, MODEL, BookingAction.ACCEPT)
    with pytest.raises(TransitionError):
        await services.bookings.transition(booking.id, CUSTOMER, BookingAction.CANCEL)


# ── Completion ────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_full_lifecycle_releases_with_commission(services, clock, wallets, session_factory):
    booking = await create_booking(services, clock, price=100_000)
    awaiting = await _bring_to_awaiting_confirmation(services, clock, booking)

    assert awaiting.status == BookingStatus.AWAITING_CONFIRMATION
    assert awaiting.confirmation_deadline == clock() + timedelta(hours=48)

    completed = await services.bookings.transition(booking.id, CUSTOMER, BookingAction.CONFIRM)
    assert completed.status == BookingStatus.COMPLETED
    assert completed.confirmation_deadline is None
    assert completed.completed_at == clock()

    customer = await get_wallet(services, CUSTOMER)
    model = await get_wallet(services, MODEL)
    platform = await get_platform_wallet(services)
    assert customer.balance == 50_000
    assert customer.held_balance == 0
    assert model.balance == 90_000
    assert platform.balance == 10_000
    assert await _ledger_types(session_factory, booking.id) == ["hold", "release"]


@pytest.mark.asyncio
async def test_confirm_twice_settles_once(services, clock, wallets, session_factory):
    booking = await create_booking(services, clock)
    await _bring_to_awaiting_confirmation(services, clock, booking)
    await services.bookings.transition(booking.id, CUSTOMER, BookingAction.CONFIRM)

    with pytest.raises(TransitionError):
        await services.bookings.transition(booking.id, CUSTOMER, BookingAction.CONFIRM)
    assert await _ledger_types(session_factory, booking.id) == ["hold", "release"]
    assert (await get_wallet(services, MODEL)).balance == 90_000


@pytest.mark.asyncio
async def test_dispute_freezes_hold(services, clock, wallets, session_factory):
    booking = await create_booking(services, clock)
    await _bring_to_awaiting_confirmation(services, clock, booking)

    disputed = await services.bookings.transition(
        booking.id, CUSTOMER, BookingAction.DISPUTE, reason="No show for half the time"
    )
    assert disputed.status == BookingStatus.DISPUTED
    assert disputed.confirmation_deadline is None

    customer = await get_wallet(services, CUSTOMER)
    assert customer.held_balance == 100_000
    assert (await get_wallet(services, MODEL)).balance == 0
    assert await _ledger_types(session_factory, booking.id) == ["hold"]


@pytest.mark.asyncio
async def test_dispute_after_window_rejected(services, clock, wallets):
    booking = await create_booking(services, clock)
    await _bring_to_awaiting_confirmation(services, clock, booking)
    clock.advance(hours=49)

    with pytest.raises(TransitionError):
        await services.bookings.transition(booking.id, CUSTOMER, BookingAction.DISPUTE)


@pytest.mark.asyncio
async def test_admin_escalates_confirmed_booking(services, clock, wallets):
    booking = await create_booking(services, clock)
    await services.bookings.transition(booking.id, MODEL, BookingAction.ACCEPT)

    disputed = await services.bookings.escalate(booking.id, ADMIN, "Reported by support")
    assert disputed.status == BookingStatus.DISPUTED
    assert disputed.status_reason == "Reported by support"

    with pytest.raises(TransitionError):
        await services.bookings.escalate(booking.id, ADMIN, "Again")


@pytest.mark.asyncio
async def test_party_cannot_escalate(services, clock, wallets):
    booking = await create_booking(services, clock)
    with pytest.raises(TransitionError):
        await services.bookings.escalate(booking.id, CUSTOMER, "I changed my mind")


# ── Term edits & deletion ─────────────────────────────────────

@pytest.mark.asyncio
async def test_customer_updates_pending_terms(services, clock, wallets):
    booking = await create_booking(services, clock)
    updated = await services.bookings.update_booking_terms(
        booking.id, CUSTOMER, BookingTermsUpdate(location="Museumplein", preferred_attire="Formal")
    )
    assert updated.location == "Museumplein"
    assert updated.preferred_attire == "Formal"
    assert updated.price == booking.price


@pytest.mark.asyncio
async def test_date_change_moves_the_window_end(services, clock, wallets):
    booking = await create_booking(services, clock)
    assert booking.window_ends_at == booking.start_date + timedelta(days=1)

    end_date = booking.start_date + timedelta(days=3)
    updated = await services.bookings.update_booking_terms(
        booking.id, CUSTOMER, BookingTermsUpdate(end_date=end_date)
    )
    assert updated.window_ends_at == end_date

    updated = await services.bookings.update_booking_terms(
        booking.id, CUSTOMER, BookingTermsUpdate(end_date=None)
    )
    assert updated.window_ends_at == booking.start_date + timedelta(days=1)


@pytest.mark.asyncio
async def test_price_change_rejected(services, clock, wallets):
    booking = await create_booking(services, clock)
    with pytest.raises(ValidationError):
        await services.bookings.update_booking_terms(booking.id, CUSTOMER, BookingTermsUpdate(price=1))


@pytest.mark.asyncio
async def test_model_cannot_edit_terms(services, clock, wallets):
    booking = await create_booking(services, clock)
    with pytest.raises(UnauthorizedActorError):
        await services.bookings.update_booking_terms(
            booking.id, MODEL, BookingTermsUpdate(location="Elsewhere")
        )


@pytest.mark.asyncio
async def test_terms_locked_after_accept(services, clock, wallets):
    booking = await create_booking(services, clock)
    await services.bookings.transition(booking.id, MODEL, BookingAction.ACCEPT)
    with pytest.raises(TransitionError):
        await services.bookings.update_booking_terms(
            booking.id, CUSTOMER, BookingTermsUpdate(location="Elsewhere")
        )


@pytest.mark.asyncio
async def test_delete_only_settled_bookings(services, clock, wallets):
    booking = await create_booking(services, clock)
    with pytest.raises(TransitionError):
        await services.bookings.delete_booking(booking.id, CUSTOMER)

    await services.bookings.transition(booking.id, MODEL, BookingAction.REJECT)
    await services.bookings.delete_booking(booking.id, CUSTOMER)
    with pytest.raises(NotFoundError):
        await services.bookings.get_booking(booking.id, CUSTOMER)


# ── Queries ───────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_booking_history_is_scoped_to_parties(services, clock, wallets):
    await fund_wallet(services, OTHER_CUSTOMER, 100_000)
    await create_booking(services, clock)
    await services.bookings.create_booking(OTHER_CUSTOMER, MODEL.actor_id, "service-1", make_terms(clock))

    mine, total, pages = await services.bookings.get_booking_history(CUSTOMER)
    assert total == 1
    assert pages == 1
    assert mine[0].customer_id == CUSTOMER.actor_id

    _, model_total, _ = await services.bookings.get_booking_history(MODEL)
    assert model_total == 2

    _, confirmed_total, _ = await services.bookings.get_booking_history(MODEL, BookingStatus.CONFIRMED)
    assert confirmed_total == 0


@pytest.mark.asyncio
async def test_outsider_cannot_read_booking(services, clock, wallets):
    booking = await create_booking(services, clock)
    with pytest.raises(UnauthorizedActorError):
        await services.bookings.get_booking(booking.id, OTHER_CUSTOMER)
    assert (await services.bookings.get_booking(booking.id, ADMIN)).id == booking.id


@pytest.mark.asyncio
async def test_booking_audit_lists_every_attempt(services, clock, wallets):
    booking = await create_booking(services, clock)
    await services.bookings.transition(booking.id, MODEL, BookingAction.ACCEPT)
    with pytest.raises(TransitionError):
        await services.bookings.transition(booking.id, MODEL, BookingAction.REJECT)

    entries = await services.bookings.get_booking_audit(booking.id, CUSTOMER)
    assert len(entries) == 3
    assert {e.status for e in entries} == {AuditStatus.SUCCESS, AuditStatus.FAILED}
