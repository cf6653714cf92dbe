from carpool.models.user import User
from carpool.models.vehicle import Vehicle
from carpool.models.ride import Ride
from carpool.models.ride_request import RideRequest
from carpool.models.booking import Booking
from carpool.models.rating import Rating
from carpool.models.notification import Notification

__all__ = ["User", "Vehicle", "Ride", "RideRequest", "Booking", "Rating", "Notification"]
