"""
services/wallet/service.py
Wallet ledger: balances, escrow holds, settlements, top-ups and deductions.

Booking settlement primitives (hold / release / refund) run on the caller's
session so they commit or roll back together with the booking transition.
Every other operation owns its transaction and writes one audit entry.

All amounts are integer minor units.
"""

import logging
import uuid
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, List, Optional, Tuple

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.settings import Settings
from services.audit.service import AuditLogService, AuditSnapshot
from shared.exceptions import (
    InsufficientBalanceError,
    LedgerInvariantError,
    NotFoundError,
    TransitionError,
    UnauthorizedActorError,
    ValidationError,
)
from shared.models.actor import Actor
from shared.models.models import (
    ActorRole,
    Booking,
    LedgerEntry,
    LedgerEntryStatus,
    LedgerEntryType,
    WalletAccount,
    WalletOwnerType,
    WalletStatus,
    utcnow,
)
from shared.utils.transactions import write_transaction

logger = logging.getLogger(__name__)


def split_commission(amount: int, percent: float) -> Tuple[int, int]:
    """
    Split a settled amount into (payee_amount, platform_cut).
    The platform cut is rounded half-up to a whole minor unit and the payee
    receives the remainder, so the two always sum to `amount`.
    """
    cut = (Decimal(amount) * Decimal(str(percent)) / Decimal(100)).quantize(
        Decimal("1"), rounding=ROUND_HALF_UP
    )
    platform_cut = int(cut)
    return amount - platform_cut, platform_cut


def owner_type_for(role: ActorRole) -> WalletOwnerType:
    if role == ActorRole.CUSTOMER:
        return WalletOwnerType.CUSTOMER
    if role == ActorRole.MODEL:
        return WalletOwnerType.MODEL
    raise ValidationError(f"Role '{role.value}' does not own a wallet")


def wallet_snapshot(wallet: WalletAccount) -> AuditSnapshot:
    return AuditSnapshot(
        payload={"balance": wallet.balance, "held_balance": wallet.held_balance},
        wallet_id=wallet.id,
    )


def entry_snapshot(entry: LedgerEntry) -> AuditSnapshot:
    return AuditSnapshot(
        payload={
            "entry_id": str(entry.id),
            "type": entry.type.value,
            "amount": entry.amount,
            "status": entry.status.value,
        },
        wallet_id=entry.wallet_id,
    )


class WalletLedger:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
        audit: AuditLogService,
        clock: Callable = utcnow,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.audit = audit
        self.clock = clock

    def _transaction(self):
        return write_transaction(self.session_factory, self.settings.BOOKING_LOCK_TIMEOUT_MS)

    # ── Locking helpers ───────────────────────────────────────

    async def _lock_wallet(
        self, session: AsyncSession, owner_id: str, owner_type: WalletOwnerType
    ) -> WalletAccount:
        result = await session.execute(
            select(WalletAccount)
            .where(WalletAccount.owner_id == owner_id, WalletAccount.owner_type == owner_type)
            .with_for_update()
        )
        wallet = result.scalar_one_or_none()
        if not wallet:
            raise NotFoundError(f"No {owner_type.value} wallet for '{owner_id}'")
        return wallet

    async def _lock_entry(self, session: AsyncSession, entry_id: uuid.UUID) -> LedgerEntry:
        result = await session.execute(
            select(LedgerEntry).where(LedgerEntry.id == entry_id).with_for_update()
        )
        entry = result.scalar_one_or_none()
        if not entry:
            raise NotFoundError("Ledger entry not found")
        return entry

    async def _platform_wallet(self, session: AsyncSession) -> WalletAccount:
        result = await session.execute(
            select(WalletAccount).where(
                WalletAccount.owner_id == self.settings.PLATFORM_WALLET_OWNER_ID,
                WalletAccount.owner_type == WalletOwnerType.PLATFORM,
            )
        )
        wallet = result.scalar_one_or_none()
        if wallet is None:
            wallet = WalletAccount(
                owner_id=self.settings.PLATFORM_WALLET_OWNER_ID,
                owner_type=WalletOwnerType.PLATFORM,
            )
            session.add(wallet)
            await session.flush()
        return wallet

    async def _flush_settlement(
        self, session: AsyncSession, booking_id: uuid.UUID, entry_type: LedgerEntryType
    ) -> None:
        try:
            await session.flush()
        except IntegrityError as exc:
            raise LedgerInvariantError(
                f"Booking {booking_id} already has a {entry_type.value} entry"
            ) from exc

    # ── Settlement primitives (caller's transaction) ──────────

    async def hold(self, session: AsyncSession, booking: Booking) -> LedgerEntry:
        """Move the booking price from the customer's balance into held funds."""
        wallet = await self._lock_wallet(session, booking.customer_id, WalletOwnerType.CUSTOMER)
        if wallet.status != WalletStatus.ACTIVE:
            raise ValidationError("Customer wallet is suspended")
        if wallet.balance < booking.price:
            raise InsufficientBalanceError(
                f"Balance {wallet.balance} is less than the booking price {booking.price}"
            )

        wallet.balance -= booking.price
        wallet.held_balance += booking.price
        entry = LedgerEntry(
            wallet_id=wallet.id,
            type=LedgerEntryType.HOLD,
            amount=booking.price,
            booking_id=booking.id,
            status=LedgerEntryStatus.APPROVED,
            created_at=self.clock(),
        )
        session.add(entry)
        await self._flush_settlement(session, booking.id, LedgerEntryType.HOLD)
        return entry

    async def release(self, session: AsyncSession, booking: Booking) -> LedgerEntry:
        """Pay out held funds: model receives the price less commission, platform the rest."""
        # Lock every wallet involved in id order so concurrent settlements never deadlock.
        # Rows already in the identity map are refreshed from the locked read.
        result = await session.execute(
            select(WalletAccount)
            .where(or_(
                and_(WalletAccount.owner_id == booking.customer_id,
                     WalletAccount.owner_type == WalletOwnerType.CUSTOMER),
                and_(WalletAccount.owner_id == booking.model_id,
                     WalletAccount.owner_type == WalletOwnerType.MODEL),
                and_(WalletAccount.owner_id == self.settings.PLATFORM_WALLET_OWNER_ID,
                     WalletAccount.owner_type == WalletOwnerType.PLATFORM),
            ))
            .order_by(WalletAccount.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        wallets = {w.owner_type: w for w in result.scalars().all()}
        platform = wallets.get(WalletOwnerType.PLATFORM)
        if platform is None:
            platform = await self._platform_wallet(session)
        payer = wallets.get(WalletOwnerType.CUSTOMER)
        payee = wallets.get(WalletOwnerType.MODEL)
        if payer is None:
            raise NotFoundError(f"No customer wallet for '{booking.customer_id}'")
        if payee is None:
            raise NotFoundError(f"No model wallet for '{booking.model_id}'")
        if payer.held_balance < booking.price:
            raise LedgerInvariantError(
                f"Held balance of wallet {payer.id} does not cover booking {booking.id}"
            )

        payee_amount, platform_cut = split_commission(
            booking.price, self.settings.PLATFORM_COMMISSION_PERCENT
        )
        payer.held_balance -= booking.price
        payee.balance += payee_amount
        platform.balance += platform_cut

        entry = LedgerEntry(
            wallet_id=payee.id,
            source_wallet_id=payer.id,
            type=LedgerEntryType.RELEASE,
            amount=booking.price,
            commission=platform_cut,
            booking_id=booking.id,
            status=LedgerEntryStatus.APPROVED,
            created_at=self.clock(),
        )
        session.add(entry)
        await self._flush_settlement(session, booking.id, LedgerEntryType.RELEASE)
        logger.info(
            f"Released booking {booking.id}: {payee_amount} to model {booking.model_id}, "
            f"{platform_cut} commission"
        )
        return entry

    async def refund(self, session: AsyncSession, booking: Booking) -> LedgerEntry:
        """Return held funds to the customer's available balance."""
        wallet = await self._lock_wallet(session, booking.customer_id, WalletOwnerType.CUSTOMER)
        if wallet.held_balance < booking.price:
            raise LedgerInvariantError(
                f"Held balance of wallet {wallet.id} does not cover booking {booking.id}"
            )

        wallet.held_balance -= booking.price
        wallet.balance += booking.price
        entry = LedgerEntry(
            wallet_id=wallet.id,
            type=LedgerEntryType.REFUND,
            amount=booking.price,
            booking_id=booking.id,
            status=LedgerEntryStatus.APPROVED,
            created_at=self.clock(),
        )
        session.add(entry)
        await self._flush_settlement(session, booking.id, LedgerEntryType.REFUND)
        logger.info(f"Refunded booking {booking.id}: {booking.price} to customer {booking.customer_id}")
        return entry

    # ── Onboarding ────────────────────────────────────────────

    async def create_wallet(
        self, owner_id: str, owner_type: WalletOwnerType, actor: Actor
    ) -> WalletAccount:
        async def operation() -> WalletAccount:
            async with self._transaction() as session:
                existing = await session.execute(
                    select(WalletAccount.id).where(
                        WalletAccount.owner_id == owner_id,
                        WalletAccount.owner_type == owner_type,
                    )
                )
                if existing.scalar_one_or_none():
                    raise ValidationError("Wallet already exists")
                wallet = WalletAccount(owner_id=owner_id, owner_type=owner_type)
                session.add(wallet)
                try:
                    await session.flush()
                except IntegrityError as exc:
                    raise ValidationError("Wallet already exists") from exc
                return wallet

        return await self.audit.track(
            action="wallet.create",
            actor=actor,
            description=f"Create {owner_type.value} wallet for {owner_id}",
            operation=operation,
            describe=wallet_snapshot,
        )

    async def ensure_platform_wallet(self) -> WalletAccount:
        """Create the commission wallet if it does not exist yet. Safe to call repeatedly."""
        try:
            async with self._transaction() as session:
                return await self._platform_wallet(session)
        except IntegrityError:
            # Another process created it first
            return await self.get_wallet_by_owner(
                self.settings.PLATFORM_WALLET_OWNER_ID, WalletOwnerType.PLATFORM
            )

    # ── Top-ups ───────────────────────────────────────────────

    async def deposit(self, actor: Actor, amount: int, proof_url: str) -> LedgerEntry:
        """Record a top-up request. The balance is credited only on approval."""
        async def operation() -> LedgerEntry:
            if amount <= 0:
                raise ValidationError("Deposit amount must be positive")
            if not proof_url:
                raise ValidationError("A proof of transfer is required")
            async with self._transaction() as session:
                wallet = await self._lock_wallet(session, actor.actor_id, owner_type_for(actor.role))
                if wallet.status != WalletStatus.ACTIVE:
                    raise ValidationError("Wallet is suspended")
                entry = LedgerEntry(
                    wallet_id=wallet.id,
                    type=LedgerEntryType.DEPOSIT,
                    amount=amount,
                    status=LedgerEntryStatus.PENDING,
                    proof_url=proof_url,
                    created_at=self.clock(),
                )
                session.add(entry)
                await session.flush()
                return entry

        return await self.audit.track(
            action="wallet.deposit",
            actor=actor,
            description=f"Top-up request of {amount}",
            operation=operation,
            payload={"amount": amount},
            describe=entry_snapshot,
        )

    async def update_pending_deposit(
        self,
        entry_id: uuid.UUID,
        actor: Actor,
        amount: Optional[int] = None,
        proof_url: Optional[str] = None,
    ) -> LedgerEntry:
        async def operation() -> LedgerEntry:
            if amount is not None and amount <= 0:
                raise ValidationError("Deposit amount must be positive")
            async with self._transaction() as session:
                entry = await self._own_pending_deposit(session, entry_id, actor)
                if amount is not None:
                    entry.amount = amount
                if proof_url:
                    entry.proof_url = proof_url
                await session.flush()
                return entry

        return await self.audit.track(
            action="wallet.deposit.update",
            actor=actor,
            description=f"Update pending top-up {entry_id}",
            operation=operation,
            describe=entry_snapshot,
        )

    async def delete_pending_deposit(self, entry_id: uuid.UUID, actor: Actor) -> None:
        async def operation() -> None:
            async with self._transaction() as session:
                entry = await self._own_pending_deposit(session, entry_id, actor)
                await session.delete(entry)

        await self.audit.track(
            action="wallet.deposit.delete",
            actor=actor,
            description=f"Delete pending top-up {entry_id}",
            operation=operation,
            payload={"entry_id": str(entry_id)},
        )

    async def _own_pending_deposit(
        self, session: AsyncSession, entry_id: uuid.UUID, actor: Actor
    ) -> LedgerEntry:
        entry = await self._lock_entry(session, entry_id)
        wallet = await session.get(WalletAccount, entry.wallet_id)
        if entry.type != LedgerEntryType.DEPOSIT or wallet is None or wallet.owner_id != actor.actor_id:
            raise UnauthorizedActorError("You can only change your own top-up requests")
        if entry.status != LedgerEntryStatus.PENDING:
            raise TransitionError(f"Top-up is already {entry.status.value}")
        return entry

    async def approve_deposit(self, entry_id: uuid.UUID, reviewer: Actor) -> LedgerEntry:
        """Credit the wallet with a pending top-up. The pending guard makes this exactly-once."""
        async def operation() -> LedgerEntry:
            if reviewer.role != ActorRole.ADMIN:
                raise UnauthorizedActorError("Only an administrator can approve top-ups")
            async with self._transaction() as session:
                entry = await self._pending_deposit(session, entry_id)
                wallet = (await session.execute(
                    select(WalletAccount).where(WalletAccount.id == entry.wallet_id).with_for_update()
                )).scalar_one()
                wallet.balance += entry.amount
                entry.status = LedgerEntryStatus.APPROVED
                entry.reviewed_by = reviewer.actor_id
                entry.reviewed_at = self.clock()
                await session.flush()
                return entry

        return await self.audit.track(
            action="wallet.deposit.approve",
            actor=reviewer,
            description=f"Approve top-up {entry_id}",
            operation=operation,
            describe=entry_snapshot,
        )

    async def reject_deposit(
        self, entry_id: uuid.UUID, reviewer: Actor, reason: Optional[str] = None
    ) -> LedgerEntry:
        async def operation() -> LedgerEntry:
            if reviewer.role != ActorRole.ADMIN:
                raise UnauthorizedActorError("Only an administrator can reject top-ups")
            async with self._transaction() as session:
                entry = await self._pending_deposit(session, entry_id)
                entry.status = LedgerEntryStatus.REJECTED
                entry.reason = reason
                entry.reviewed_by = reviewer.actor_id
                entry.reviewed_at = self.clock()
                await session.flush()
                return entry

        return await self.audit.track(
            action="wallet.deposit.reject",
            actor=reviewer,
            description=f"Reject top-up {entry_id}",
            operation=operation,
            payload={"reason": reason},
            describe=entry_snapshot,
        )

    async def _pending_deposit(self, session: AsyncSession, entry_id: uuid.UUID) -> LedgerEntry:
        entry = await self._lock_entry(session, entry_id)
        if entry.type != LedgerEntryType.DEPOSIT:
            raise ValidationError("Ledger entry is not a top-up")
        if entry.status != LedgerEntryStatus.PENDING:
            raise TransitionError(f"Top-up is already {entry.status.value}")
        return entry

    # ── Deductions ────────────────────────────────────────────

    async def withdraw(self, actor: Actor, amount: int, reason: str) -> LedgerEntry:
        """Debit the caller's available balance immediately."""
        async def operation() -> LedgerEntry:
            if amount <= 0:
                raise ValidationError("Deduction amount must be positive")
            if not reason or not reason.strip():
                raise ValidationError("A reason is required for a deduction")
            async with self._transaction() as session:
                wallet = await self._lock_wallet(session, actor.actor_id, owner_type_for(actor.role))
                if wallet.balance < amount:
                    raise InsufficientBalanceError(
                        f"Balance {wallet.balance} is less than the requested {amount}"
                    )
                wallet.balance -= amount
                entry = LedgerEntry(
                    wallet_id=wallet.id,
                    type=LedgerEntryType.WITHDRAWAL,
                    amount=amount,
                    status=LedgerEntryStatus.APPROVED,
                    reason=reason.strip(),
                    created_at=self.clock(),
                )
                session.add(entry)
                await session.flush()
                return entry

        return await self.audit.track(
            action="wallet.withdraw",
            actor=actor,
            description=f"Deduct {amount}",
            operation=operation,
            payload={"amount": amount, "reason": reason},
            describe=entry_snapshot,
        )

    # ── Queries ───────────────────────────────────────────────

    async def get_wallet_by_owner(self, owner_id: str, owner_type: WalletOwnerType) -> WalletAccount:
        async with self.session_factory() as session:
            result = await session.execute(
                select(WalletAccount).where(
                    WalletAccount.owner_id == owner_id,
                    WalletAccount.owner_type == owner_type,
                )
            )
            wallet = result.scalar_one_or_none()
        if not wallet:
            raise NotFoundError("Wallet not found")
        return wallet

    async def get_wallet_for_actor(self, actor: Actor) -> WalletAccount:
        return await self.get_wallet_by_owner(actor.actor_id, owner_type_for(actor.role))

    async def get_ledger(
        self,
        wallet_id: uuid.UUID,
        page: int = 1,
        page_size: int = 20,
        entry_type: Optional[LedgerEntryType] = None,
    ) -> Tuple[List[LedgerEntry], int]:
        """Entries credited to or debited from a wallet, newest first."""
        query = select(LedgerEntry).where(
            or_(LedgerEntry.wallet_id == wallet_id, LedgerEntry.source_wallet_id == wallet_id)
        )
        if entry_type:
            query = query.where(LedgerEntry.type == entry_type)

        async with self.session_factory() as session:
            total = (await session.execute(
                select(func.count()).select_from(query.subquery())
            )).scalar_one()
            result = await session.execute(
                query.order_by(LedgerEntry.created_at.desc(), LedgerEntry.id)
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            return list(result.scalars().all()), total

    async def list_pending_deposits(
        self, page: int = 1, page_size: int = 20
    ) -> Tuple[List[LedgerEntry], int]:
        query = select(LedgerEntry).where(
            LedgerEntry.type == LedgerEntryType.DEPOSIT,
            LedgerEntry.status == LedgerEntryStatus.PENDING,
        )
        async with self.session_factory() as session:
            total = (await session.execute(
                select(func.count()).select_from(query.subquery())
            )).scalar_one()
            result = await session.execute(
                query.order_by(LedgerEntry.created_at.asc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            return list(result.scalars().all()), total

    async def entries_for_booking(self, booking_id: uuid.UUID) -> List[LedgerEntry]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(LedgerEntry)
                .where(LedgerEntry.booking_id == booking_id)
                .order_by(LedgerEntry.created_at, LedgerEntry.id)
            )
            return list(result.scalars().all())
