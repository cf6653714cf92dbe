"""
Ratings and the per-user rating aggregate.

A user's `average_rating` is always recomputed from every rating they have
received. It is never updated incrementally, so the stored value is exactly
round(mean(all ratings), 2).
"""
import logging
from typing import Iterable, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from carpool.database import atomic
from carpool.models.booking import Booking
from carpool.models.rating import Rating
from carpool.models.ride import Ride
from carpool.models.user import User
from carpool.schemas.schemas import BookingStatusEnum
from carpool.services.exceptions import (
    AlreadyRatedError, BookingNotCompletedError, BookingNotFoundError,
    InvalidRatingError, PermissionDeniedError, ValidationError,
)
from carpool.services.users import ensure_user

logger = logging.getLogger(__name__)

MIN_STARS = 1
MAX_STARS = 5


def compute_average(stars: Sequence[int]) -> tuple[float, int]:
    """Returns (average rounded to 2 dp, count). No ratings -> (0.0, 0)."""
    count = len(stars)
    if count == 0:
        return 0.0, 0
    return round(sum(stars) / count, 2), count


def compose_feedback(issues: Iterable[str], comment: str = "") -> str:
    issues = [i.strip() for i in issues if i and i.strip()]
    comment = (comment or "").strip()
    if issues:
        text = f"Issues: {', '.join(issues)}"
        return f"{text}. Other: {comment}" if comment else text
    return comment or "Good ride"


def validate_stars(stars) -> int:
    if isinstance(stars, bool) or not isinstance(stars, int) or not MIN_STARS <= stars <= MAX_STARS:
        raise InvalidRatingError()
    return stars


async def recompute_user_rating(user_id: str, db: AsyncSession) -> User:
    """Full scan of the user's ratings, written back under a row lock."""
    user = await ensure_user(user_id, "", db, lock=True)
    result = await db.execute(select(Rating.rating).where(Rating.rated_user_id == user_id))
    average, count = compute_average(list(result.scalars().all()))
    user.average_rating = average
    user.total_ratings = count
    return user


async def submit_rating(
    booking_id: str,
    rater_id: str,
    rated_user_id: str,
    stars: int,
    db: AsyncSession,
    comment: str = "",
) -> float:
    """Record one rating for a completed booking and return the rated user's new average."""
    validate_stars(stars)

    async with atomic(db):
        booking = (
            await db.execute(
                select(Booking)
                .where(Booking.id == booking_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if booking is None:
            raise BookingNotFoundError()
        parties = {booking.rider_id, booking.driver_id}
        if rater_id not in parties:
            raise PermissionDeniedError("You were not part of this ride")
        if rated_user_id not in parties or rated_user_id == rater_id:
            raise ValidationError("You can only rate the other party of this ride")
        if booking.status != BookingStatusEnum.completed.value:
            raise BookingNotCompletedError()

        existing = await db.execute(
            select(Rating.id).where(Rating.booking_id == booking.id, Rating.rater_id == rater_id)
        )
        if existing.first() is not None:
            raise AlreadyRatedError()

        db.add(
            Rating(
                booking_id=booking.id,
                ride_id=booking.ride_id,
                rater_id=rater_id,
                rated_user_id=rated_user_id,
                rating=stars,
                comment=(comment or "").strip(),
            )
        )
        try:
            await db.flush()
        except IntegrityError as exc:
            raise AlreadyRatedError() from exc

        user = await recompute_user_rating(rated_user_id, db)
        booking.rated = True

    logger.info(
        "Rating %d for user=%s on booking=%s -> average=%.2f over %d",
        stars, rated_user_id, booking_id, user.average_rating, user.total_ratings,
    )
    return user.average_rating


async def list_reviews(user_id: str, db: AsyncSession) -> list[Rating]:
    result = await db.execute(
        select(Rating).where(Rating.rated_user_id == user_id).order_by(Rating.created_at.desc())
    )
    return list(result.scalars().all())


async def user_stats(user_id: str, db: AsyncSession) -> dict:
    offered = await db.scalar(select(func.count()).select_from(Ride).where(Ride.driver_id == user_id))
    taken = await db.scalar(
        select(func.count())
        .select_from(Booking)
        .where(Booking.rider_id == user_id, Booking.status != BookingStatusEnum.cancelled.value)
    )
    user: Optional[User] = await db.get(User, user_id)
    return {
        "rides_offered": offered or 0,
        "rides_taken": taken or 0,
        "average_rating": user.average_rating if user else 0.0,
        "total_ratings": user.total_ratings if user else 0,
    }
