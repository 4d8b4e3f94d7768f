"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the platform.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from shared.models.models import BookingStatus


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class PaginatedResponse(BaseSchema):
    items: List[Any]
    total: int
    page: int
    page_size: int
    pages: int


# ── Booking ───────────────────────────────────────────────────

class BookingTerms(BaseSchema):
    """Negotiable terms of an engagement, as submitted by the customer."""
    price: int = Field(..., gt=0, description="Minor currency units")
    day_amount: int = Field(1, ge=1)
    location: str = Field(..., min_length=1, max_length=1000)
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    preferred_attire: str = Field("", max_length=255)
    start_date: datetime
    end_date: Optional[datetime] = None

    @model_validator(mode="after")
    def validate_dates(self) -> "BookingTerms":
        if self.start_date.tzinfo is None:
            raise ValueError("start_date must include a timezone")
        if self.end_date is not None:
            if self.end_date.tzinfo is None:
                raise ValueError("end_date must include a timezone")
            if self.end_date < self.start_date:
                raise ValueError("end_date must not be before start_date")
        return self


class BookingCreateRequest(BookingTerms):
    model_id: str = Field(..., min_length=1, max_length=64)
    model_service_id: str = Field(..., min_length=1, max_length=64)


class BookingTermsUpdate(BaseSchema):
    location: Optional[str] = Field(None, min_length=1, max_length=1000)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    preferred_attire: Optional[str] = Field(None, max_length=255)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    price: Optional[int] = None  # accepted only so a change can be refused explicitly


class BookingTransitionRequest(BaseSchema):
    action: str = Field(..., description="accept | reject | cancel | mark_done | confirm | dispute")
    reason: Optional[str] = Field(None, max_length=500)


class EscalateRequest(BaseSchema):
    reason: str = Field(..., min_length=3, max_length=500)


class CheckInRequest(BaseSchema):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class BookingResponse(BaseSchema):
    id: uuid.UUID
    customer_id: str
    model_id: str
    model_service_id: str
    price: int
    day_amount: int
    location: str
    latitude: float
    longitude: float
    preferred_attire: str
    start_date: datetime
    end_date: Optional[datetime]
    status: BookingStatus
    status_reason: Optional[str]
    confirmation_deadline: Optional[datetime]
    completed_at: Optional[datetime]
    customer_checkin_at: Optional[datetime]
    model_checkin_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime


# ── Wallet ────────────────────────────────────────────────────

class WalletResponse(BaseSchema):
    id: uuid.UUID
    owner_id: str
    owner_type: str
    balance: int
    held_balance: int
    status: str
    updated_at: datetime


class LedgerEntryResponse(BaseSchema):
    id: uuid.UUID
    wallet_id: uuid.UUID
    source_wallet_id: Optional[uuid.UUID]
    type: str
    amount: int
    commission: int
    booking_id: Optional[uuid.UUID]
    status: str
    proof_url: Optional[str]
    reason: Optional[str]
    reviewed_at: Optional[datetime]
    created_at: datetime


class TopUpRequest(BaseSchema):
    amount: int = Field(..., gt=0)
    proof_url: str = Field(..., min_length=1, max_length=2048)


class TopUpUpdateRequest(BaseSchema):
    amount: Optional[int] = Field(None, gt=0)
    proof_url: Optional[str] = Field(None, min_length=1, max_length=2048)


class DeductRequest(BaseSchema):
    amount: int = Field(..., gt=0)
    reason: str = Field(..., min_length=3, max_length=500)


class DepositReviewRequest(BaseSchema):
    reason: Optional[str] = Field(None, max_length=500)


# ── Audit ─────────────────────────────────────────────────────

class AuditLogResponse(BaseSchema):
    id: uuid.UUID
    action: str
    actor_id: str
    actor_role: str
    description: str
    status: str
    booking_id: Optional[uuid.UUID]
    wallet_id: Optional[uuid.UUID]
    payload: Optional[Dict[str, Any]]
    created_at: datetime


# ── Notification ──────────────────────────────────────────────

class NotificationResponse(BaseSchema):
    id: uuid.UUID
    type: str
    title: str
    body: str
    data: Optional[Dict[str, Any]]
    is_read: bool
    read_at: Optional[datetime]
    created_at: datetime
    booking_id: Optional[uuid.UUID]


# ── Generic ───────────────────────────────────────────────────

class MessageResponse(BaseSchema):
    message: str
    success: bool = True


class ErrorResponse(BaseSchema):
    success: bool = False
    kind: str
    message: str
