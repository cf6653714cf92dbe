"""
Notifications router: the caller's inbox.
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from carpool.database import get_db
from carpool.middleware.auth import CurrentUser, get_current_user
from carpool.schemas.schemas import MarkReadResponse, NotificationResponse
from carpool.services import notifications as notification_service

router = APIRouter(prefix="/v1/notifications", tags=["Notifications"])


@router.get("", response_model=list[NotificationResponse])
async def list_notifications(
    unread_only: bool = False,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    items = await notification_service.list_notifications(user.id, db, unread_only=unread_only)
    return [NotificationResponse.model_validate(n) for n in items]


@router.post("/read-all", response_model=MarkReadResponse)
async def mark_all_read(
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    return MarkReadResponse(updated=await notification_service.mark_all_read(user.id, db))


@router.post("/{notification_id}/read", response_model=MarkReadResponse)
async def mark_read(
    notification_id: str,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    updated = await notification_service.mark_read(notification_id, user.id, db)
    if not updated:
        raise HTTPException(status_code=404, detail="Notification not found")
    return MarkReadResponse(updated=updated)
