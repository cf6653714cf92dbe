import uuid
from datetime import datetime
from sqlalchemy import String, Float, Boolean, DateTime, ForeignKey, Index, func, text
from sqlalchemy.orm import Mapped, mapped_column
from carpool.database import Base, utcnow

ACTIVE_BOOKING_PREDICATE = "status IN ('confirmed', 'scheduled', 'in_progress')"


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        # One non-terminal booking per rider per ride
        Index(
            "uq_bookings_ride_rider_active",
            "ride_id",
            "rider_id",
            unique=True,
            postgresql_where=text(ACTIVE_BOOKING_PREDICATE),
            sqlite_where=text(ACTIVE_BOOKING_PREDICATE),
        ),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    ride_id: Mapped[str] = mapped_column(String, ForeignKey("rides.id"), nullable=False, index=True)
    request_id: Mapped[str | None] = mapped_column(String, ForeignKey("ride_requests.id"), nullable=True)

    rider_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    rider_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    driver_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    driver_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    # Snapshot taken at booking time
    pickup_location: Mapped[str] = mapped_column(String(500), nullable=False)
    destination: Mapped[str] = mapped_column(String(500), nullable=False)
    departure_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    estimated_cost: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    # confirmed | scheduled | in_progress | completed | cancelled
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="confirmed", index=True)
    rated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cancelled_by: Mapped[str | None] = mapped_column(String, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), index=True
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
