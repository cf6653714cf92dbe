"""
Notification emitter.

Every ride/booking transition drops a record in the recipient's inbox and
pushes it to the recipient's Redis channel for live clients. Delivery is
best-effort: it runs after the primary transition has committed and a
failure is logged, never raised.
"""
import json
import logging
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from carpool.models.notification import Notification
from carpool.redis_client import get_redis, notification_channel, publish
from carpool.schemas.schemas import NotificationTypeEnum

logger = logging.getLogger(__name__)


async def notify(
    user_id: str,
    type: NotificationTypeEnum,
    title: str,
    message: str,
    db: AsyncSession,
    ride_id: Optional[str] = None,
    booking_id: Optional[str] = None,
    data: Optional[dict[str, Any]] = None,
) -> Optional[Notification]:
    """
    Persist and publish one notification. Returns None if persisting failed.

    Uses its own session on the caller's engine so a failed write cannot
    disturb objects the caller still holds.
    """
    notification = Notification(
        user_id=user_id,
        type=NotificationTypeEnum(type).value,
        title=title,
        message=message,
        ride_id=ride_id,
        booking_id=booking_id,
        data=data,
        is_read=False,
    )
    try:
        async with AsyncSession(db.bind, expire_on_commit=False) as session:
            session.add(notification)
            await session.commit()
    except Exception as exc:
        logger.error("Failed to store %s notification for user=%s: %s", notification.type, user_id, exc)
        return None

    try:
        redis = await get_redis()
        await publish(
            redis,
            notification_channel(user_id),
            json.dumps(
                {
                    "id": notification.id,
                    "type": notification.type,
                    "title": title,
                    "message": message,
                    "ride_id": ride_id,
                    "booking_id": booking_id,
                    "data": data,
                },
                default=str,
            ),
        )
    except Exception as exc:
        logger.warning("Failed to publish notification %s: %s", notification.id, exc)

    return notification


async def list_notifications(user_id: str, db: AsyncSession, unread_only: bool = False) -> list[Notification]:
    stmt = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        stmt = stmt.where(Notification.is_read.is_(False))
    result = await db.execute(stmt.order_by(Notification.created_at.desc()))
    return list(result.scalars().all())


async def mark_read(notification_id: str, user_id: str, db: AsyncSession) -> int:
    result = await db.execute(
        update(Notification)
        .where(Notification.id == notification_id, Notification.user_id == user_id)
        .values(is_read=True)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount


async def mark_all_read(user_id: str, db: AsyncSession) -> int:
    """Single batched UPDATE over the user's unread inbox."""
    result = await db.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.is_read.is_(False))
        .values(is_read=True)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount
