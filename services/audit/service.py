"""
services/audit/service.py
Append-only audit trail of every mutating attempt, successful or not.

Entries are written in their own short transaction after the primary
operation has committed or rolled back, so a failed transition still leaves
a record. Appending never raises: infrastructure failures are logged on the
`audit.fallback` logger and sent to Sentry.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

import sentry_sdk
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shared.exceptions import DomainError, LedgerInvariantError, ProcessingError
from shared.models.actor import Actor
from shared.models.models import AuditLog, AuditStatus, utcnow

logger = logging.getLogger(__name__)
fallback_logger = logging.getLogger("audit.fallback")

T = TypeVar("T")


@dataclass
class AuditEntry:
    action: str
    actor: Actor
    description: str
    status: AuditStatus
    booking_id: Optional[uuid.UUID] = None
    wallet_id: Optional[uuid.UUID] = None
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AuditSnapshot:
    """What a successful operation contributes to its audit entry."""
    payload: Dict[str, Any] = field(default_factory=dict)
    booking_id: Optional[uuid.UUID] = None
    wallet_id: Optional[uuid.UUID] = None


class AuditLogService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable = utcnow,
    ):
        self.session_factory = session_factory
        self.clock = clock

    async def append(self, entry: AuditEntry) -> None:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    session.add(AuditLog(
                        action=entry.action,
                        actor_id=entry.actor.actor_id,
                        actor_role=entry.actor.role.value,
                        description=entry.description,
                        status=entry.status,
                        booking_id=entry.booking_id,
                        wallet_id=entry.wallet_id,
                        payload=entry.payload or None,
                        created_at=self.clock(),
                    ))
        except Exception as exc:
            fallback_logger.error(
                f"Audit append failed for {entry.action} by {entry.actor.actor_id} "
                f"({entry.status.value}): {exc}"
            )
            sentry_sdk.capture_exception(exc)

    async def track(
        self,
        *,
        action: str,
        actor: Actor,
        description: str,
        operation: Callable[[], Awaitable[T]],
        booking_id: Optional[uuid.UUID] = None,
        wallet_id: Optional[uuid.UUID] = None,
        payload: Optional[Dict[str, Any]] = None,
        describe: Optional[Callable[[T], AuditSnapshot]] = None,
    ) -> T:
        """
        Run `operation` and append exactly one audit entry for it.

        Domain errors are recorded and re-raised unchanged. Database failures
        and ledger invariant violations are recorded, logged with their cause,
        and re-raised as a generic ProcessingError.
        `describe` turns the result into the success entry's snapshot.
        """
        base_payload = dict(payload or {})
        try:
            result = await operation()
        except DomainError as exc:
            await self.append(AuditEntry(
                action=action,
                actor=actor,
                description=f"{description} failed: {exc.message}",
                status=AuditStatus.FAILED,
                booking_id=booking_id,
                wallet_id=wallet_id,
                payload={**base_payload, "error_kind": exc.kind, "error": exc.message},
            ))
            raise
        except (SQLAlchemyError, LedgerInvariantError) as exc:
            logger.exception(f"{action} failed unexpectedly for {actor.actor_id}")
            await self.append(AuditEntry(
                action=action,
                actor=actor,
                description=f"{description} failed: processing error",
                status=AuditStatus.FAILED,
                booking_id=booking_id,
                wallet_id=wallet_id,
                payload={**base_payload, "error_kind": ProcessingError.kind, "error": type(exc).__name__},
            ))
            raise ProcessingError() from exc

        snapshot = describe(result) if describe is not None else AuditSnapshot()
        await self.append(AuditEntry(
            action=action,
            actor=actor,
            description=description,
            status=AuditStatus.SUCCESS,
            booking_id=booking_id or snapshot.booking_id,
            wallet_id=wallet_id or snapshot.wallet_id,
            payload={**base_payload, **snapshot.payload},
        ))
        return result

    # ── Queries ───────────────────────────────────────────────

    async def list_for_booking(self, booking_id: uuid.UUID) -> List[AuditLog]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(AuditLog)
                .where(AuditLog.booking_id == booking_id)
                .order_by(AuditLog.created_at.asc(), AuditLog.id.asc())
            )
            return list(result.scalars().all())

    async def list_entries(
        self,
        page: int = 1,
        page_size: int = 50,
        actor_id: Optional[str] = None,
        action: Optional[str] = None,
        status: Optional[AuditStatus] = None,
    ) -> Tuple[List[AuditLog], int]:
        query = select(AuditLog)
        if actor_id:
            query = query.where(AuditLog.actor_id == actor_id)
        if action:
            query = query.where(AuditLog.action == action)
        if status:
            query = query.where(AuditLog.status == status)

        async with self.session_factory() as session:
            total = (await session.execute(
                select(func.count()).select_from(query.subquery())
            )).scalar_one()
            result = await session.execute(
                query.order_by(AuditLog.created_at.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            return list(result.scalars().all()), total
