"""
services/booking/router.py
Booking lifecycle endpoints.
States: PENDING → CONFIRMED → IN_PROGRESS → AWAITING_CONFIRMATION → COMPLETED
        PENDING → REJECTED | CANCELLED, AWAITING_CONFIRMATION → DISPUTED,
        any non-terminal → DISPUTED (escalation)
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from config.container import get_booking_service
from services.booking.service import BookingService
from shared.middleware.auth import get_current_actor, require_customer, require_party
from shared.models.actor import Actor
from shared.models.models import BookingStatus
from shared.schemas.schemas import (
    AuditLogResponse,
    BookingCreateRequest,
    BookingResponse,
    BookingTermsUpdate,
    BookingTransitionRequest,
    CheckInRequest,
    ErrorResponse,
    MessageResponse,
    PaginatedResponse,
)

router = APIRouter(
    prefix="/bookings",
    tags=["Bookings"],
    responses={
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    data: BookingCreateRequest,
    actor: Actor = Depends(require_customer),
    service: BookingService = Depends(get_booking_service),
):
    """Request a booking. The price is held on the customer's wallet immediately."""
    booking = await service.create_booking(
        customer=actor,
        model_id=data.model_id,
        model_service_id=data.model_service_id,
        terms=data,
    )
    return BookingResponse.model_validate(booking)


@router.get("", response_model=PaginatedResponse)
async def list_my_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service),
):
    items, total, pages = await service.get_booking_history(actor, status_filter, page, page_size)
    return PaginatedResponse(
        items=[BookingResponse.model_validate(b) for b in items],
        total=total,
        page=page,
        page_size=page_size,
        pages=pages,
    )


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: UUID,
    actor: Actor = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service),
):
    return BookingResponse.model_validate(await service.get_booking(booking_id, actor))


@router.patch("/{booking_id}", response_model=BookingResponse)
async def update_booking(
    booking_id: UUID,
    data: BookingTermsUpdate,
    actor: Actor = Depends(require_customer),
    service: BookingService = Depends(get_booking_service),
):
    """Edit location, attire or dates while the booking is still pending."""
    booking = await service.update_booking_terms(booking_id, actor, data)
    return BookingResponse.model_validate(booking)


@router.delete("/{booking_id}", response_model=MessageResponse)
async def delete_booking(
    booking_id: UUID,
    actor: Actor = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service),
):
    await service.delete_booking(booking_id, actor)
    return MessageResponse(message="Booking deleted")


@router.post("/{booking_id}/transitions", response_model=BookingResponse)
async def transition_booking(
    booking_id: UUID,
    data: BookingTransitionRequest,
    actor: Actor = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service),
):
    """
    Move the booking along its lifecycle.
    - model: accept, reject, mark_done
    - customer: cancel, confirm, dispute
    - admin: escalate
    """
    booking = await service.transition(booking_id, actor, data.action, data.reason)
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/check-in", response_model=BookingResponse)
async def check_in(
    booking_id: UUID,
    data: CheckInRequest,
    actor: Actor = Depends(require_party),
    service: BookingService = Depends(get_booking_service),
):
    """GPS check-in at the meeting point. The second check-in starts the booking."""
    booking = await service.check_in(booking_id, actor, data.latitude, data.longitude)
    return BookingResponse.model_validate(booking)


@router.get("/{booking_id}/audit", response_model=list[AuditLogResponse])
async def get_booking_audit(
    booking_id: UUID,
    actor: Actor = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service),
):
    entries = await service.get_booking_audit(booking_id, actor)
    return [AuditLogResponse.model_validate(e) for e in entries]
