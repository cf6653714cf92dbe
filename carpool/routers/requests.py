"""
Ride requests router: driver decisions on pending requests.
"""
from typing import Optional

from fastapi import APIRouter, Body, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from carpool.database import get_db
from carpool.middleware.auth import CurrentUser, get_current_user
from carpool.routers.rides import invalidate_ride_cache
from carpool.schemas.schemas import BookingResponse, DeclineRequest, RideRequestResponse
from carpool.services import bookings as booking_service

router = APIRouter(prefix="/v1/requests", tags=["Requests"])


@router.post("/{request_id}/accept", response_model=BookingResponse)
async def accept_request(
    request_id: str,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    """
    Accept a pending request:
      1. Lock request + ride
      2. Take one seat (conditional UPDATE)
      3. Create the booking and mark the request accepted, all in one commit
    """
    booking = await booking_service.accept_request(request_id, user.id, db)
    await invalidate_ride_cache(booking.ride_id)
    return BookingResponse.model_validate(booking)


@router.post("/{request_id}/decline", response_model=RideRequestResponse)
async def decline_request(
    request_id: str,
    payload: Optional[DeclineRequest] = Body(default=None),
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    request = await booking_service.decline_request(
        request_id, user.id, db, reason=payload.reason if payload else None
    )
    return RideRequestResponse.model_validate(request)
