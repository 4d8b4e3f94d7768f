"""
shared/models/models.py
All SQLAlchemy ORM models for the escrow booking core.
UUID primary keys throughout; money is stored as integer minor units.
"""

import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from config.database import Base
from shared.models.types import JSONType, UTCDateTime


def utcnow() -> datetime:
    return datetime.now(timezone.utc)



def window_end(start_date: datetime, end_date: Optional[datetime]) -> datetime:
    """End of a booking's engagement. Single-day when no end date was given."""
    if end_date is not None:
        return end_date
    return start_date + timedelta(days=1)


# ── Enumerations ──────────────────────────────────────────────

class ActorRole(str, PyEnum):
    CUSTOMER = "customer"
    MODEL = "model"
    SYSTEM = "system"
    ADMIN = "admin"


class BookingStatus(str, PyEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"
    DISPUTED = "disputed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    BookingStatus.COMPLETED,
    BookingStatus.CANCELLED,
    BookingStatus.REJECTED,
    BookingStatus.DISPUTED,
})

# Statuses in which the booking price is no longer held
SETTLED_STATUSES = frozenset({
    BookingStatus.COMPLETED,
    BookingStatus.CANCELLED,
    BookingStatus.REJECTED,
})


class WalletOwnerType(str, PyEnum):
    CUSTOMER = "customer"
    MODEL = "model"
    PLATFORM = "platform"


class WalletStatus(str, PyEnum):
    ACTIVE = "active"
    SUSPENDED = "suspended"


class LedgerEntryType(str, PyEnum):
    HOLD = "hold"
    RELEASE = "release"
    REFUND = "refund"
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"


class LedgerEntryStatus(str, PyEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class AuditStatus(str, PyEnum):
    SUCCESS = "success"
    FAILED = "failed"


class NotificationType(str, PyEnum):
    BOOKING_CREATED = "booking_created"
    BOOKING_CONFIRMED = "booking_confirmed"
    BOOKING_REJECTED = "booking_rejected"
    BOOKING_CANCELLED = "booking_cancelled"
    BOOKING_CHECKIN_MODEL = "booking_checkin_model"
    BOOKING_CHECKIN_CUSTOMER = "booking_checkin_customer"
    BOOKING_STARTED = "booking_started"
    BOOKING_COMPLETION_REQUESTED = "booking_completion_requested"
    BOOKING_DISPUTED = "booking_disputed"
    PAYMENT_RELEASED = "payment_released"
    PAYMENT_AUTO_RELEASED = "payment_auto_released"
    PAYMENT_REFUNDED = "payment_refunded"


# ── Mixins ────────────────────────────────────────────────────

class TimestampMixin:
    """Adds created_at and updated_at to any model."""
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow, nullable=False
    )


# ── Models ────────────────────────────────────────────────────

class Booking(TimestampMixin, Base):
    """
    A paid service engagement between a customer and a model.
    Status only changes through the booking state machine; `version` is the
    optimistic concurrency counter checked on every UPDATE.
    """
    __tablename__ = "bookings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    customer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    model_id: Mapped[str] = mapped_column(String(64), nullable=False)
    model_service_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # Terms
    price: Mapped[int] = mapped_column(BigInteger, nullable=False)  # minor units
    day_amount: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    location: Mapped[str] = mapped_column(Text, nullable=False)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    preferred_attire: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    start_date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    end_date: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    # Stored copy of window_end(start_date, end_date) so scans can filter on it
    window_ends_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    # Status
    status: Mapped[BookingStatus] = mapped_column(
        Enum(BookingStatus, values_callable=lambda e: [m.value for m in e], native_enum=False),
        nullable=False,
        default=BookingStatus.PENDING,
    )
    status_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    confirmation_deadline: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    # Check-ins
    customer_checkin_lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    customer_checkin_lng: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    customer_checkin_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    model_checkin_lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    model_checkin_lng: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    model_checkin_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("price > 0", name="ck_booking_price_positive"),
        CheckConstraint("day_amount >= 1", name="ck_booking_day_amount"),
        CheckConstraint(
            "(status = 'awaiting_confirmation') = (confirmation_deadline IS NOT NULL)",
            name="ck_booking_confirmation_deadline",
        ),
        Index("ix_bookings_customer_id", "customer_id"),
        Index("ix_bookings_model_id", "model_id"),
        Index("ix_bookings_status_deadline", "status", "confirmation_deadline"),
        Index("ix_bookings_status_window_end", "status", "window_ends_at"),
    )

    @property
    def effective_end_date(self) -> datetime:
        return window_end(self.start_date, self.end_date)

    @property
    def both_checked_in(self) -> bool:
        return self.customer_checkin_at is not None and self.model_checkin_at is not None

    def party_role(self, actor_id: str) -> Optional[ActorRole]:
        if actor_id == self.customer_id:
            return ActorRole.CUSTOMER
        if actor_id == self.model_id:
            return ActorRole.MODEL
        return None

    def __repr__(self) -> str:
        return f"<Booking {self.id} ({self.status.value})>"


class WalletAccount(TimestampMixin, Base):
    """One wallet per actor. Balances change only through the wallet ledger."""
    __tablename__ = "wallet_accounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    owner_type: Mapped[WalletOwnerType] = mapped_column(
        Enum(WalletOwnerType, values_callable=lambda e: [m.value for m in e], native_enum=False),
        nullable=False,
    )
    balance: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    held_balance: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    status: Mapped[WalletStatus] = mapped_column(
        Enum(WalletStatus, values_callable=lambda e: [m.value for m in e], native_enum=False),
        default=WalletStatus.ACTIVE,
        nullable=False,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint("owner_id", "owner_type", name="uq_wallet_owner"),
        CheckConstraint("balance >= 0", name="ck_wallet_balance_non_negative"),
        CheckConstraint("held_balance >= 0", name="ck_wallet_held_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<WalletAccount {self.owner_type.value}:{self.owner_id}>"


class LedgerEntry(Base):
    """
    Immutable record of a fund movement.
    UNIQUE(booking_id, type) guarantees a booking settles at most once per path.
    """
    __tablename__ = "ledger_entries"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    wallet_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("wallet_accounts.id"), nullable=False
    )
    source_wallet_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("wallet_accounts.id"), nullable=True
    )  # payer wallet on release
    type: Mapped[LedgerEntryType] = mapped_column(
        Enum(LedgerEntryType, values_callable=lambda e: [m.value for m in e], native_enum=False),
        nullable=False,
    )
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    commission: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    booking_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True
    )
    status: Mapped[LedgerEntryStatus] = mapped_column(
        Enum(LedgerEntryStatus, values_callable=lambda e: [m.value for m in e], native_enum=False),
        default=LedgerEntryStatus.APPROVED,
        nullable=False,
    )
    proof_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reviewed_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("booking_id", "type", name="uq_ledger_booking_type"),
        CheckConstraint("amount > 0", name="ck_ledger_amount_positive"),
        CheckConstraint("commission >= 0", name="ck_ledger_commission_non_negative"),
        Index("ix_ledger_entries_wallet_id", "wallet_id"),
        Index("ix_ledger_entries_status_type", "status", "type"),
    )


class AuditLog(Base):
    """Immutable log of every mutating attempt, successful or not."""
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    actor_role: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[AuditStatus] = mapped_column(
        Enum(AuditStatus, values_callable=lambda e: [m.value for m in e], native_enum=False),
        nullable=False,
    )
    booking_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    wallet_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    payload: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_audit_logs_booking_id", "booking_id"),
        Index("ix_audit_logs_actor_id", "actor_id"),
        Index("ix_audit_logs_created_at", "created_at"),
    )


class Notification(TimestampMixin, Base):
    """In-app notification written alongside the lifecycle event that caused it."""
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    recipient_id: Mapped[str] = mapped_column(String(64), nullable=False)
    recipient_role: Mapped[str] = mapped_column(String(20), nullable=False)
    booking_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    type: Mapped[NotificationType] = mapped_column(
        Enum(NotificationType, values_callable=lambda e: [m.value for m in e], native_enum=False),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    __table_args__ = (Index("ix_notifications_recipient_read", "recipient_id", "is_read"),)
