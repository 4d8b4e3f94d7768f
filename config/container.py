"""
config/container.py
Wires the services together around one session factory.
The API builds a container in its lifespan; Celery tasks and tests build their own.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.settings import Settings
from services.audit.service import AuditLogService
from services.booking.service import BookingService
from services.notification.service import Notifier
from services.timer.service import TimerService
from services.wallet.service import WalletLedger
from shared.models.models import utcnow


@dataclass
class ServiceContainer:
    settings: Settings
    session_factory: async_sessionmaker[AsyncSession]
    audit: AuditLogService
    ledger: WalletLedger
    notifier: Notifier
    bookings: BookingService
    timer: TimerService


def build_container(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    clock: Callable[[], datetime] = utcnow,
) -> ServiceContainer:
    audit = AuditLogService(session_factory, clock=clock)
    ledger = WalletLedger(session_factory, settings, audit, clock=clock)
    notifier = Notifier(clock=clock)
    bookings = BookingService(session_factory, settings, audit, ledger, notifier, clock=clock)
    timer = TimerService(session_factory, settings, bookings, clock=clock)
    return ServiceContainer(
        settings=settings,
        session_factory=session_factory,
        audit=audit,
        ledger=ledger,
        notifier=notifier,
        bookings=bookings,
        timer=timer,
    )


# ── FastAPI dependencies ──────────────────────────────────────

def get_booking_service(request: Request) -> BookingService:
    return request.app.state.services.bookings


def get_wallet_ledger(request: Request) -> WalletLedger:
    return request.app.state.services.ledger


def get_audit_service(request: Request) -> AuditLogService:
    return request.app.state.services.audit


def get_notifier(request: Request) -> Notifier:
    return request.app.state.services.notifier
