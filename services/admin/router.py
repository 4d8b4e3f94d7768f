"""
services/admin/router.py
Admin-only endpoints: top-up review queue, audit log browsing,
and manual escalation of bookings into dispute.

Every mutation goes through the services, which write the audit entry.
"""

import math
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from config.container import get_audit_service, get_booking_service, get_wallet_ledger
from services.audit.service import AuditLogService
from services.booking.service import BookingService
from services.wallet.service import WalletLedger
from shared.middleware.auth import require_admin
from shared.models.actor import Actor
from shared.models.models import AuditStatus
from shared.schemas.schemas import (
    AuditLogResponse,
    BookingResponse,
    DepositReviewRequest,
    EscalateRequest,
    LedgerEntryResponse,
    PaginatedResponse,
)

router = APIRouter(prefix="/admin", tags=["Admin"])


# ── Top-up Review Queue ───────────────────────────────────────

@router.get("/top-ups/pending", response_model=PaginatedResponse)
async def get_pending_top_ups(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=50),
    admin: Actor = Depends(require_admin),
    ledger: WalletLedger = Depends(get_wallet_ledger),
):
    """Top-ups awaiting review, oldest first."""
    entries, total = await ledger.list_pending_deposits(page, page_size)
    return PaginatedResponse(
        items=[LedgerEntryResponse.model_validate(e) for e in entries],
        total=total,
        page=page,
        page_size=page_size,
        pages=math.ceil(total / page_size) if total else 0,
    )


@router.post("/top-ups/{entry_id}/approve", response_model=LedgerEntryResponse)
async def approve_top_up(
    entry_id: UUID,
    admin: Actor = Depends(require_admin),
    ledger: WalletLedger = Depends(get_wallet_ledger),
):
    entry = await ledger.approve_deposit(entry_id, admin)
    return LedgerEntryResponse.model_validate(entry)


@router.post("/top-ups/{entry_id}/reject", response_model=LedgerEntryResponse)
async def reject_top_up(
    entry_id: UUID,
    data: DepositReviewRequest,
    admin: Actor = Depends(require_admin),
    ledger: WalletLedger = Depends(get_wallet_ledger),
):
    entry = await ledger.reject_deposit(entry_id, admin, data.reason)
    return LedgerEntryResponse.model_validate(entry)


# ── Audit Log ─────────────────────────────────────────────────

@router.get("/audit-logs", response_model=PaginatedResponse)
async def get_audit_logs(
    actor_id: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    status_filter: Optional[AuditStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    admin: Actor = Depends(require_admin),
    audit: AuditLogService = Depends(get_audit_service),
):
    entries, total = await audit.list_entries(page, page_size, actor_id, action, status_filter)
    return PaginatedResponse(
        items=[AuditLogResponse.model_validate(e) for e in entries],
        total=total,
        page=page,
        page_size=page_size,
        pages=math.ceil(total / page_size) if total else 0,
    )


# ── Disputes ──────────────────────────────────────────────────

@router.post("/bookings/{booking_id}/escalate", response_model=BookingResponse)
async def escalate_booking(
    booking_id: UUID,
    data: EscalateRequest,
    admin: Actor = Depends(require_admin),
    service: BookingService = Depends(get_booking_service),
):
    """Freeze a booking's held funds by moving it into dispute."""
    booking = await service.escalate(booking_id, admin, data.reason)
    return BookingResponse.model_validate(booking)
