from datetime import datetime
from sqlalchemy import String, Float, Integer, DateTime, func
from sqlalchemy.orm import Mapped, mapped_column
from carpool.database import Base, utcnow


class User(Base):
    __tablename__ = "users"

    # Issued by the identity provider, never generated here
    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    phone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    # male | female
    gender: Mapped[str | None] = mapped_column(String(10), nullable=True)

    license_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    cpr_number: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Derived from the ratings table, see services.ratings
    average_rating: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    total_ratings: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now()
    )
