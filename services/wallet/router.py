"""
services/wallet/router.py
Wallet endpoints for customers and models: balance, ledger history,
top-up requests and deductions.
"""

import math
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from config.container import get_wallet_ledger
from services.wallet.service import WalletLedger, owner_type_for
from shared.middleware.auth import require_party
from shared.models.actor import Actor
from shared.models.models import LedgerEntryType
from shared.schemas.schemas import (
    DeductRequest,
    ErrorResponse,
    LedgerEntryResponse,
    MessageResponse,
    PaginatedResponse,
    TopUpRequest,
    TopUpUpdateRequest,
    WalletResponse,
)

router = APIRouter(
    prefix="/wallets",
    tags=["Wallets"],
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)


@router.post("/me", response_model=WalletResponse, status_code=status.HTTP_201_CREATED)
async def create_my_wallet(
    actor: Actor = Depends(require_party),
    ledger: WalletLedger = Depends(get_wallet_ledger),
):
    """Open the caller's wallet. Each actor has exactly one."""
    wallet = await ledger.create_wallet(actor.actor_id, owner_type_for(actor.role), actor)
    return WalletResponse.model_validate(wallet)


@router.get("/me", response_model=WalletResponse)
async def get_my_wallet(
    actor: Actor = Depends(require_party),
    ledger: WalletLedger = Depends(get_wallet_ledger),
):
    return WalletResponse.model_validate(await ledger.get_wallet_for_actor(actor))


@router.get("/me/ledger", response_model=PaginatedResponse)
async def get_my_ledger(
    entry_type: Optional[LedgerEntryType] = Query(None, alias="type"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(require_party),
    ledger: WalletLedger = Depends(get_wallet_ledger),
):
    wallet = await ledger.get_wallet_for_actor(actor)
    entries, total = await ledger.get_ledger(wallet.id, page, page_size, entry_type)
    return PaginatedResponse(
        items=[LedgerEntryResponse.model_validate(e) for e in entries],
        total=total,
        page=page,
        page_size=page_size,
        pages=math.ceil(total / page_size) if total else 0,
    )


@router.post("/me/top-ups", response_model=LedgerEntryResponse, status_code=status.HTTP_201_CREATED)
async def request_top_up(
    data: TopUpRequest,
    actor: Actor = Depends(require_party),
    ledger: WalletLedger = Depends(get_wallet_ledger),
):
    """Submit a top-up with proof of transfer. The balance changes once an admin approves it."""
    entry = await ledger.deposit(actor, data.amount, data.proof_url)
    return LedgerEntryResponse.model_validate(entry)


@router.patch("/me/top-ups/{entry_id}", response_model=LedgerEntryResponse)
async def update_top_up(
    entry_id: UUID,
    data: TopUpUpdateRequest,
    actor: Actor = Depends(require_party),
    ledger: WalletLedger = Depends(get_wallet_ledger),
):
    entry = await ledger.update_pending_deposit(entry_id, actor, data.amount, data.proof_url)
    return LedgerEntryResponse.model_validate(entry)


@router.delete("/me/top-ups/{entry_id}", response_model=MessageResponse)
async def delete_top_up(
    entry_id: UUID,
    actor: Actor = Depends(require_party),
    ledger: WalletLedger = Depends(get_wallet_ledger),
):
    await ledger.delete_pending_deposit(entry_id, actor)
    return MessageResponse(message="Top-up request deleted")


@router.post("/me/deductions", response_model=LedgerEntryResponse, status_code=status.HTTP_201_CREATED)
async def deduct(
    data: DeductRequest,
    actor: Actor = Depends(require_party),
    ledger: WalletLedger = Depends(get_wallet_ledger),
):
    entry = await ledger.withdraw(actor, data.amount, data.reason)
    return LedgerEntryResponse.model_validate(entry)
