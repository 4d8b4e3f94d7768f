"""
services/notification/router.py
In-app notification inbox for booking and payment events.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from config.container import get_notifier
from config.database import get_db
from services.notification.service import Notifier
from shared.exceptions import NotFoundError
from shared.middleware.auth import get_current_actor
from shared.models.actor import Actor
from shared.schemas.schemas import MessageResponse, NotificationResponse

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get("", response_model=list[NotificationResponse])
async def get_my_notifications(
    unread_only: bool = Query(False),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=50),
    actor: Actor = Depends(get_current_actor),
    notifier: Notifier = Depends(get_notifier),
    db: AsyncSession = Depends(get_db),
):
    """Get the caller's in-app notifications, newest first."""
    items = await notifier.list_for_recipient(db, actor.actor_id, unread_only, page, page_size)
    return [NotificationResponse.model_validate(n) for n in items]


@router.get("/unread-count")
async def unread_count(
    actor: Actor = Depends(get_current_actor),
    notifier: Notifier = Depends(get_notifier),
    db: AsyncSession = Depends(get_db),
):
    return {"unread_count": await notifier.unread_count(db, actor.actor_id)}


@router.post("/read-all", response_model=MessageResponse)
async def mark_all_read(
    actor: Actor = Depends(get_current_actor),
    notifier: Notifier = Depends(get_notifier),
    db: AsyncSession = Depends(get_db),
):
    changed = await notifier.mark_read(db, actor.actor_id)
    return MessageResponse(message=f"{changed} notifications marked as read")


@router.post("/{notification_id}/read", response_model=MessageResponse)
async def mark_read(
    notification_id: UUID,
    actor: Actor = Depends(get_current_actor),
    notifier: Notifier = Depends(get_notifier),
    db: AsyncSession = Depends(get_db),
):
    changed = await notifier.mark_read(db, actor.actor_id, notification_id)
    if not changed:
        raise NotFoundError("Notification not found or already read")
    return MessageResponse(message="Marked as read")


@router.delete("/{notification_id}", response_model=MessageResponse)
async def delete_notification(
    notification_id: UUID,
    actor: Actor = Depends(get_current_actor),
    notifier: Notifier = Depends(get_notifier),
    db: AsyncSession = Depends(get_db),
):
    """Only the recipient can delete a notification; anyone else gets 404."""
    if not await notifier.delete(db, actor.actor_id, notification_id):
        raise NotFoundError("Notification not found")
    return MessageResponse(message="Notification deleted")
