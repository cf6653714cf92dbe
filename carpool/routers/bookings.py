"""
Bookings router: /v1/bookings
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, status
from sqlalchemy.ext.asyncio import AsyncSession

from carpool.database import get_db
from carpool.middleware.auth import CurrentUser, get_current_user
from carpool.middleware.idempotency import check_idempotency, store_idempotency_result
from carpool.routers.rides import invalidate_ride_cache
from carpool.schemas.schemas import BookingResponse, RatingCreateRequest, RatingSubmitResponse
from carpool.services import bookings as booking_service
from carpool.services.ratings import compose_feedback, submit_rating

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/bookings", tags=["Bookings"])


@router.get("/mine", response_model=list[BookingResponse])
async def my_bookings(
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    bookings = await booking_service.list_rider_bookings(user.id, db)
    return [BookingResponse.model_validate(b) for b in bookings]


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: str,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    booking = await booking_service.get_booking(booking_id, user.id, db)
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: str,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    booking = await booking_service.cancel_booking(booking_id, user.id, db, actor_name=user.name)
    await invalidate_ride_cache(booking.ride_id)
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/ratings", status_code=status.HTTP_201_CREATED, response_model=RatingSubmitResponse)
async def rate_booking(
    booking_id: str,
    payload: RatingCreateRequest,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
):
    cached = await check_idempotency(user.id, idempotency_key)
    if cached:
        return cached

    average = await submit_rating(
        booking_id,
        user.id,
        payload.rated_user_id,
        payload.rating,
        db,
        comment=compose_feedback(payload.issues, payload.comment),
    )
    resp = RatingSubmitResponse(
        booking_id=booking_id, rated_user_id=payload.rated_user_id, average_rating=average
    )
    await store_idempotency_result(user.id, idempotency_key, status.HTTP_201_CREATED, resp.model_dump())
    return resp
