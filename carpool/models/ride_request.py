import uuid
from datetime import datetime
from sqlalchemy import String, Float, Text, DateTime, ForeignKey, func
from sqlalchemy.orm import Mapped, mapped_column
from carpool.database import Base, utcnow


class RideRequest(Base):
    __tablename__ = "ride_requests"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    ride_id: Mapped[str] = mapped_column(String, ForeignKey("rides.id"), nullable=False, index=True)
    driver_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    rider_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    rider_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    pickup_location: Mapped[str] = mapped_column(String(500), nullable=False)
    pickup_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    pickup_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    message: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # pending | accepted | declined
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", index=True)
    decline_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    responded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
