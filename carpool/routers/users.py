"""
Users router: /v1/users
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from carpool.database import get_db
from carpool.middleware.auth import CurrentUser, get_current_user
from carpool.schemas.schemas import (
    DriverDocumentsRequest, ProfileUpdateRequest, RatingResponse, UserResponse, UserStatsResponse,
)
from carpool.services.ratings import list_reviews, user_stats
from carpool.services.users import ensure_user, submit_documents, update_profile

router = APIRouter(prefix="/v1/users", tags=["Users"])


@router.get("/me", response_model=UserResponse)
async def get_me(
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    profile = await ensure_user(user.id, user.name, db)
    await db.commit()
    return UserResponse.model_validate(profile)


@router.patch("/me", response_model=UserResponse)
async def patch_me(
    payload: ProfileUpdateRequest,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    profile = await update_profile(
        user.id,
        db,
        name=payload.name,
        phone=payload.phone,
        gender=payload.gender.value if payload.gender else None,
    )
    return UserResponse.model_validate(profile)


@router.put("/me/documents", response_model=UserResponse)
async def put_documents(
    payload: DriverDocumentsRequest,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    profile = await submit_documents(user.id, payload.license_number, payload.cpr_number, db)
    return UserResponse.model_validate(profile)


@router.get("/{user_id}/stats", response_model=UserStatsResponse)
async def get_stats(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    _: CurrentUser = Depends(get_current_user),
):
    return UserStatsResponse(**await user_stats(user_id, db))


@router.get("/{user_id}/reviews", response_model=list[RatingResponse])
async def get_reviews(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    _: CurrentUser = Depends(get_current_user),
):
    reviews = await list_reviews(user_id, db)
    return [RatingResponse.model_validate(r) for r in reviews]
