"""
tests/test_notifications.py
In-app notifications: which lifecycle events notify whom, and the inbox API
(listing, unread count, marking as read, deleting).
"""

import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from services.booking.state_machine import BookingAction
from shared.exceptions import TransitionError
from shared.models.models import Notification, NotificationType
from tests.conftest import CUSTOMER, MODEL, OTHER_CUSTOMER, auth_headers, create_booking


async def _inbox(session_factory, recipient_id):
    async with session_factory() as session:
        result = await session.execute(
            select(Notification).where(Notification.recipient_id == recipient_id)
        )
        return result.scalars().all()


@pytest.mark.asyncio
async def test_new_booking_notifies_model(services, clock, wallets, session_factory):
    booking = await create_booking(services, clock)

    inbox = await _inbox(session_factory, MODEL.actor_id)
    assert [n.type for n in inbox] == [NotificationType.BOOKING_CREATED]
    assert inbox[0].booking_id == booking.id
    assert inbox[0].data["status"] == "pending"
    assert await _inbox(session_factory, CUSTOMER.actor_id) == []


@pytest.mark.asyncio
async def test_reject_notifies_customer_of_refund(services, clock, wallets, session_factory):
    booking = await create_booking(services, clock, price=12_345)
    await services.bookings.transition(booking.id, MODEL, BookingAction.REJECT, "Fully booked")

    inbox = await _inbox(session_factory, CUSTOMER.actor_id)
    types = sorted(n.type.value for n in inbox)
    assert types == ["booking_rejected", "payment_refunded"]
    refund = next(n for n in inbox if n.type == NotificationType.PAYMENT_REFUNDED)
    assert "123.45" in refund.body


@pytest.mark.asyncio
async def test_failed_transition_sends_nothing(services, clock, wallets, session_factory):
    booking = await create_booking(services, clock)
    with pytest.raises(TransitionError):
        await services.bookings.transition(booking.id, MODEL, BookingAction.MARK_DONE)

    assert len(await _inbox(session_factory, CUSTOMER.actor_id)) == 0
    assert len(await _inbox(session_factory, MODEL.actor_id)) == 1


# ── Inbox API ─────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_inbox_lists_own_notifications(client: AsyncClient, services, clock, wallets):
    await create_booking(services, clock)

    response = await client.get("/notifications", headers=auth_headers(MODEL))
    assert response.status_code == 200
    items = response.json()
    assert len(items) == 1
    assert items[0]["type"] == "booking_created"
    assert items[0]["is_read"] is False

    response = await client.get("/notifications", headers=auth_headers(OTHER_CUSTOMER))
    assert response.json() == []


@pytest.mark.asyncio
async def test_unread_count_and_mark_read(client: AsyncClient, services, clock, wallets):
    booking = await create_booking(services, clock)
    await services.bookings.transition(booking.id, MODEL, BookingAction.REJECT)

    headers = auth_headers(CUSTOMER)
    response = await client.get("/notifications/unread-count", headers=headers)
    # booking_rejected + payment_refunded
    assert response.json()["unread_count"] == 2

    items = (await client.get("/notifications", headers=headers)).json()
    response = await client.post(f"/notifications/{items[0]['id']}/read", headers=headers)
    assert response.status_code == 200
    assert (await client.get("/notifications/unread-count", headers=headers)).json()["unread_count"] == 1

    response = await client.post("/notifications/read-all", headers=headers)
    assert response.status_code == 200
    assert (await client.get("/notifications/unread-count", headers=headers)).json()["unread_count"] == 0

    unread = (await client.get("/notifications?unread_only=true", headers=headers)).json()
    assert unread == []


@pytest.mark.asyncio
async def test_cannot_mark_someone_elses_notification(client: AsyncClient, services, clock, wallets):
    await create_booking(services, clock)
    model_items = (await client.get("/notifications", headers=auth_headers(MODEL))).json()

    response = await client.post(
        f"/notifications/{model_items[0]['id']}/read", headers=auth_headers(CUSTOMER)
    )
    assert response.status_code == 404
    assert response.json()["kind"] == "not_found"


@pytest.mark.asyncio
async def test_mark_unknown_notification_read(client: AsyncClient):
    response = await client.post(f"/notifications/{uuid.uuid4()}/read", headers=auth_headers(CUSTOMER))
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_recipient_deletes_notification(client: AsyncClient, services, clock, wallets, session_factory):
    await create_booking(services, clock)
    model_items = (await client.get("/notifications", headers=auth_headers(MODEL))).json()
    url = f"/notifications/{model_items[0]['id']}"

    # Only the recipient can delete it
    response = await client.delete(url, headers=auth_headers(CUSTOMER))
    assert response.status_code == 404
    assert response.json()["kind"] == "not_found"
    assert len(await _inbox(session_factory, MODEL.actor_id)) == 1

    response = await client.delete(url, headers=auth_headers(MODEL))
    assert response.status_code == 200
    assert await _inbox(session_factory, MODEL.actor_id) == []

    response = await client.delete(url, headers=auth_headers(MODEL))
    assert response.status_code == 404
