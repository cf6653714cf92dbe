from datetime import datetime
from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, Field, model_validator


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class RideStatusEnum(str, Enum):
    scheduled = "scheduled"
    active = "active"
    completed = "completed"
    cancelled = "cancelled"


class BookingStatusEnum(str, Enum):
    confirmed = "confirmed"
    scheduled = "scheduled"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"


class RequestStatusEnum(str, Enum):
    pending = "pending"
    accepted = "accepted"
    declined = "declined"


class NotificationTypeEnum(str, Enum):
    ride_request = "ride_request"
    ride_accepted = "ride_accepted"
    ride_declined = "ride_declined"
    ride_started = "ride_started"
    ride_completed = "ride_completed"
    ride_cancelled = "ride_cancelled"
    booking_cancelled = "booking_cancelled"


class GenderEnum(str, Enum):
    male = "male"
    female = "female"


# ---------------------------------------------------------------------------
# User schemas
# ---------------------------------------------------------------------------

class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    phone: Optional[str] = Field(default=None, min_length=8, max_length=20)
    gender: Optional[GenderEnum] = None


class DriverDocumentsRequest(BaseModel):
    license_number: str = Field(..., min_length=3, max_length=50)
    cpr_number: str = Field(..., min_length=3, max_length=50)


class UserResponse(BaseModel):
    id: str
    name: str
    phone: Optional[str] = None
    gender: Optional[str] = None
    license_number: Optional[str] = None
    cpr_number: Optional[str] = None
    average_rating: float
    total_ratings: int
    created_at: datetime

    model_config = {"from_attributes": True}


class UserStatsResponse(BaseModel):
    rides_offered: int
    rides_taken: int
    average_rating: float
    total_ratings: int


# ---------------------------------------------------------------------------
# Vehicle schemas
# ---------------------------------------------------------------------------

class VehicleCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    model: str = Field(..., min_length=1, max_length=100)
    color: str = Field(default="", max_length=50)
    plate_number: str = Field(..., min_length=1, max_length=20)
    seats: int = Field(default=4, gt=0, le=20)


class VehicleUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    model: Optional[str] = Field(default=None, min_length=1, max_length=100)
    color: Optional[str] = Field(default=None, max_length=50)
    plate_number: Optional[str] = Field(default=None, min_length=1, max_length=20)
    seats: Optional[int] = Field(default=None, gt=0, le=20)


class VehicleResponse(BaseModel):
    id: str
    owner_id: str
    name: str
    model: str
    color: str
    plate_number: str
    seats: int
    created_at: datetime

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Ride schemas
# ---------------------------------------------------------------------------

class RouteInfo(BaseModel):
    pickup_location: str = Field(..., min_length=1, max_length=500)
    pickup_lat: Optional[float] = Field(default=None, ge=-90, le=90)
    pickup_lng: Optional[float] = Field(default=None, ge=-180, le=180)
    destination: str = Field(..., min_length=1, max_length=500)
    dest_lat: Optional[float] = Field(default=None, ge=-90, le=90)
    dest_lng: Optional[float] = Field(default=None, ge=-180, le=180)
    polyline: Optional[str] = None
    distance_km: Optional[float] = Field(default=None, ge=0)
    duration_minutes: Optional[float] = Field(default=None, ge=0)


class RideCreateRequest(BaseModel):
    vehicle_id: str
    route: RouteInfo
    departure_time: datetime
    is_scheduled: bool = False
    scheduled_time: Optional[datetime] = None
    seats: int = Field(..., gt=0)
    is_free: bool = False
    price: float = Field(default=0.0, ge=0)
    is_female_only: bool = False
    notes: str = Field(default="", max_length=1000)


class RideResponse(BaseModel):
    id: str
    driver_id: str
    driver_name: str
    vehicle_id: Optional[str] = None
    vehicle_name: str
    vehicle_model: str
    vehicle_color: str
    vehicle_plate: str
    pickup_location: str
    pickup_lat: Optional[float] = None
    pickup_lng: Optional[float] = None
    destination: str
    dest_lat: Optional[float] = None
    dest_lng: Optional[float] = None
    route_polyline: Optional[str] = None
    distance_km: Optional[float] = None
    duration_minutes: Optional[float] = None
    is_scheduled: bool
    scheduled_time: Optional[datetime] = None
    departure_time: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    total_seats: int
    available_seats: int
    is_free: bool
    price: float
    is_female_only: bool
    notes: str
    status: RideStatusEnum
    created_at: datetime

    model_config = {"from_attributes": True}


class PostEligibilityResponse(BaseModel):
    can_post: bool
    vehicles: list[VehicleResponse]
    open_ride_id: Optional[str] = None


class FanoutResponse(BaseModel):
    ride_id: str
    status: RideStatusEnum
    transitioned_booking_ids: list[str]
    failed_booking_ids: list[str]


class RiderCost(BaseModel):
    booking_id: str
    rider_id: str
    name: str
    cost: float


class RideCompletionResponse(BaseModel):
    ride_id: str
    riders: list[RiderCost]
    total_cost: float
    currency: str
    failed_booking_ids: list[str]


class CostSplitResponse(BaseModel):
    total_cost: float
    cost_per_person: float
    number_of_riders: int
    currency: str


# ---------------------------------------------------------------------------
# Request / booking schemas
# ---------------------------------------------------------------------------

class RideRequestCreate(BaseModel):
    pickup_location: str = Field(..., min_length=1, max_length=500)
    pickup_lat: Optional[float] = Field(default=None, ge=-90, le=90)
    pickup_lng: Optional[float] = Field(default=None, ge=-180, le=180)
    message: str = Field(default="", max_length=500)


class DeclineRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=255)


class RideRequestResponse(BaseModel):
    id: str
    ride_id: str
    driver_id: str
    rider_id: str
    rider_name: str
    pickup_location: str
    pickup_lat: Optional[float] = None
    pickup_lng: Optional[float] = None
    message: str
    status: RequestStatusEnum
    decline_reason: Optional[str] = None
    responded_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class BookingResponse(BaseModel):
    id: str
    ride_id: str
    request_id: Optional[str] = None
    rider_id: str
    rider_name: str
    driver_id: str
    driver_name: str
    pickup_location: str
    destination: str
    departure_time: Optional[datetime] = None
    estimated_cost: float
    status: BookingStatusEnum
    rated: bool
    cancelled_by: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Rating schemas
# ---------------------------------------------------------------------------

class RatingCreateRequest(BaseModel):
    rated_user_id: str
    rating: int = Field(..., ge=1, le=5)
    issues: list[str] = Field(default_factory=list)
    comment: str = Field(default="", max_length=1000)

    @model_validator(mode="after")
    def feedback_for_low_ratings(self):
        # Anything under four stars needs a reason
        if self.rating < 4 and not self.issues and not self.comment.strip():
            raise ValueError("Please select at least one issue or provide feedback")
        return self


class RatingSubmitResponse(BaseModel):
    booking_id: str
    rated_user_id: str
    average_rating: float


class RatingResponse(BaseModel):
    id: str
    booking_id: str
    ride_id: str
    rater_id: str
    rated_user_id: str
    rating: int
    comment: str
    created_at: datetime

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Notification schemas
# ---------------------------------------------------------------------------

class NotificationResponse(BaseModel):
    id: str
    user_id: str
    type: NotificationTypeEnum
    title: str
    message: str
    ride_id: Optional[str] = None
    booking_id: Optional[str] = None
    data: Optional[dict[str, Any]] = None
    is_read: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class MarkReadResponse(BaseModel):
    updated: int
