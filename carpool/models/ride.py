import uuid
from datetime import datetime
from sqlalchemy import (
    String, Float, Integer, Boolean, Text, DateTime, ForeignKey, CheckConstraint, Index, func, text,
)
from sqlalchemy.orm import Mapped, mapped_column
from carpool.database import Base, utcnow

OPEN_RIDE_PREDICATE = "status IN ('scheduled', 'active')"


class Ride(Base):
    __tablename__ = "rides"
    __table_args__ = (
        CheckConstraint(
            "available_seats >= 0 AND available_seats <= total_seats",
            name="ck_rides_available_seats_range",
        ),
        # One non-terminal ride per driver
        Index(
            "uq_rides_driver_open",
            "driver_id",
            unique=True,
            postgresql_where=text(OPEN_RIDE_PREDICATE),
            sqlite_where=text(OPEN_RIDE_PREDICATE),
        ),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    driver_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False, index=True)
    driver_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    vehicle_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("vehicles.id", ondelete="SET NULL"), nullable=True
    )
    vehicle_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    vehicle_model: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    vehicle_color: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    vehicle_plate: Mapped[str] = mapped_column(String(20), nullable=False, default="")

    pickup_location: Mapped[str] = mapped_column(String(500), nullable=False)
    pickup_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    pickup_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    destination: Mapped[str] = mapped_column(String(500), nullable=False)
    dest_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    dest_lng: Mapped[float | None] = mapped_column(Float, nullable=True)

    route_polyline: Mapped[str | None] = mapped_column(Text, nullable=True)
    distance_km: Mapped[float | None] = mapped_column(Float, nullable=True)
    duration_minutes: Mapped[float | None] = mapped_column(Float, nullable=True)

    is_scheduled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    scheduled_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    departure_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # total_seats never changes after insert; available_seats only moves via services.bookings
    total_seats: Mapped[int] = mapped_column(Integer, nullable=False)
    available_seats: Mapped[int] = mapped_column(Integer, nullable=False)

    is_free: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Estimated cost per rider
    price: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    is_female_only: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # scheduled | active | completed | cancelled
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="scheduled", index=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now()
    )
