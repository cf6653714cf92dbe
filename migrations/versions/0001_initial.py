"""Initial schema: users, vehicles, rides, ride_requests, bookings, ratings, notifications"""
from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

OPEN_RIDE_PREDICATE = "status IN ('scheduled', 'active')"
ACTIVE_BOOKING_PREDICATE = "status IN ('confirmed', 'scheduled', 'in_progress')"


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("name", sa.String(255), nullable=False, server_default=""),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("gender", sa.String(10), nullable=True),
        sa.Column("license_number", sa.String(50), nullable=True),
        sa.Column("cpr_number", sa.String(50), nullable=True),
        sa.Column("average_rating", sa.Float, nullable=False, server_default="0"),
        sa.Column("total_ratings", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "vehicles",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("owner_id", sa.String, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("model", sa.String(100), nullable=False),
        sa.Column("color", sa.String(50), nullable=False, server_default=""),
        sa.Column("plate_number", sa.String(20), nullable=False),
        sa.Column("seats", sa.Integer, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("seats > 0", name="ck_vehicles_seats_positive"),
    )
    op.create_index("ix_vehicles_owner_id", "vehicles", ["owner_id"])

    op.create_table(
        "rides",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("driver_id", sa.String, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("driver_name", sa.String(255), nullable=False, server_default=""),
        sa.Column("vehicle_id", sa.String, sa.ForeignKey("vehicles.id", ondelete="SET NULL"), nullable=True),
        sa.Column("vehicle_name", sa.String(100), nullable=False, server_default=""),
        sa.Column("vehicle_model", sa.String(100), nullable=False, server_default=""),
        sa.Column("vehicle_color", sa.String(50), nullable=False, server_default=""),
        sa.Column("vehicle_plate", sa.String(20), nullable=False, server_default=""),
        sa.Column("pickup_location", sa.String(500), nullable=False),
        sa.Column("pickup_lat", sa.Float, nullable=True),
        sa.Column("pickup_lng", sa.Float, nullable=True),
        sa.Column("destination", sa.String(500), nullable=False),
        sa.Column("dest_lat", sa.Float, nullable=True),
        sa.Column("dest_lng", sa.Float, nullable=True),
        sa.Column("route_polyline", sa.Text, nullable=True),
        sa.Column("distance_km", sa.Float, nullable=True),
        sa.Column("duration_minutes", sa.Float, nullable=True),
        sa.Column("is_scheduled", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("scheduled_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("departure_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_seats", sa.Integer, nullable=False),
        sa.Column("available_seats", sa.Integer, nullable=False),
        sa.Column("is_free", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("price", sa.Float, nullable=False, server_default="0"),
        sa.Column("is_female_only", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("notes", sa.Text, nullable=False, server_default=""),
        sa.Column("status", sa.String(20), nullable=False, server_default="scheduled"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(
            "available_seats >= 0 AND available_seats <= total_seats",
            name="ck_rides_available_seats_range",
        ),
    )
    op.create_index("ix_rides_driver_id", "rides", ["driver_id"])
    op.create_index("ix_rides_status", "rides", ["status"])
    op.create_index("ix_rides_departure_time", "rides", ["departure_time"])
    op.create_index("ix_rides_created_at", "rides", ["created_at"])
    op.create_index(
        "uq_rides_driver_open", "rides", ["driver_id"],
        unique=True, postgresql_where=sa.text(OPEN_RIDE_PREDICATE),
    )

    op.create_table(
        "ride_requests",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("ride_id", sa.String, sa.ForeignKey("rides.id"), nullable=False),
        sa.Column("driver_id", sa.String, nullable=False),
        sa.Column("rider_id", sa.String, nullable=False),
        sa.Column("rider_name", sa.String(255), nullable=False, server_default=""),
        sa.Column("pickup_location", sa.String(500), nullable=False),
        sa.Column("pickup_lat", sa.Float, nullable=True),
        sa.Column("pickup_lng", sa.Float, nullable=True),
        sa.Column("message", sa.Text, nullable=False, server_default=""),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("decline_reason", sa.String(255), nullable=True),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_ride_requests_ride_id", "ride_requests", ["ride_id"])
    op.create_index("ix_ride_requests_driver_id", "ride_requests", ["driver_id"])
    op.create_index("ix_ride_requests_rider_id", "ride_requests", ["rider_id"])
    op.create_index("ix_ride_requests_status", "ride_requests", ["status"])

    op.create_table(
        "bookings",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("ride_id", sa.String, sa.ForeignKey("rides.id"), nullable=False),
        sa.Column("request_id", sa.String, sa.ForeignKey("ride_requests.id"), nullable=True),
        sa.Column("rider_id", sa.String, nullable=False),
        sa.Column("rider_name", sa.String(255), nullable=False, server_default=""),
        sa.Column("driver_id", sa.String, nullable=False),
        sa.Column("driver_name", sa.String(255), nullable=False, server_default=""),
        sa.Column("pickup_location", sa.String(500), nullable=False),
        sa.Column("destination", sa.String(500), nullable=False),
        sa.Column("departure_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("estimated_cost", sa.Float, nullable=False, server_default="0"),
        sa.Column("status", sa.String(20), nullable=False, server_default="confirmed"),
        sa.Column("rated", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("cancelled_by", sa.String, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_bookings_ride_id", "bookings", ["ride_id"])
    op.create_index("ix_bookings_rider_id", "bookings", ["rider_id"])
    op.create_index("ix_bookings_driver_id", "bookings", ["driver_id"])
    op.create_index("ix_bookings_status", "bookings", ["status"])
    op.create_index("ix_bookings_created_at", "bookings", ["created_at"])
    op.create_index(
        "uq_bookings_ride_rider_active", "bookings", ["ride_id", "rider_id"],
        unique=True, postgresql_where=sa.text(ACTIVE_BOOKING_PREDICATE),
    )

    op.create_table(
        "ratings",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("booking_id", sa.String, sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("ride_id", sa.String, nullable=False),
        sa.Column("rater_id", sa.String, nullable=False),
        sa.Column("rated_user_id", sa.String, nullable=False),
        sa.Column("rating", sa.Integer, nullable=False),
        sa.Column("comment", sa.Text, nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("booking_id", "rater_id", name="uq_ratings_booking_rater"),
        sa.CheckConstraint("rating BETWEEN 1 AND 5", name="ck_ratings_range"),
    )
    op.create_index("ix_ratings_booking_id", "ratings", ["booking_id"])
    op.create_index("ix_ratings_rated_user_id", "ratings", ["rated_user_id"])
    op.create_index("ix_ratings_created_at", "ratings", ["created_at"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("user_id", sa.String, nullable=False),
        sa.Column("type", sa.String(30), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("ride_id", sa.String, nullable=True),
        sa.Column("booking_id", sa.String, nullable=True),
        sa.Column("data", sa.JSON, nullable=True),
        sa.Column("is_read", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
    op.create_index("ix_notifications_is_read", "notifications", ["is_read"])
    op.create_index("ix_notifications_created_at", "notifications", ["created_at"])


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_table("ratings")
    op.drop_table("bookings")
    op.drop_table("ride_requests")
    op.drop_table("rides")
    op.drop_table("vehicles")
    op.drop_table("users")
