"""Domain errors raised by the service layer and mapped to HTTP responses in main.py."""


class CarpoolError(Exception):
    """Base class. `status_code` is the HTTP status the API reports."""
    status_code = 400

    def __init__(self, detail: str = ""):
        super().__init__(detail)
        self.detail = detail or self.__class__.__doc__ or "Request failed"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class ValidationError(CarpoolError):
    """Invalid input."""
    status_code = 422


class InvalidRatingError(ValidationError):
    """Rating must be between 1 and 5."""


# ---------------------------------------------------------------------------
# Lookup / authorization
# ---------------------------------------------------------------------------

class NotFoundError(CarpoolError):
    """Resource not found."""
    status_code = 404


class RideNotFoundError(NotFoundError):
    """Ride not found."""


class RequestNotFoundError(NotFoundError):
    """Ride request not found."""


class BookingNotFoundError(NotFoundError):
    """Booking not found."""


class VehicleNotFoundError(NotFoundError):
    """Vehicle not found."""


class PermissionDeniedError(CarpoolError):
    """Not allowed to perform this action."""
    status_code = 403


# ---------------------------------------------------------------------------
# State conflicts
# ---------------------------------------------------------------------------

class ConflictError(CarpoolError):
    """The current state does not allow this operation."""
    status_code = 409


class NoSeatsAvailableError(ConflictError):
    """No seats available."""


class AlreadyBookedError(ConflictError):
    """You have already booked this ride."""


class AlreadyRatedError(ConflictError):
    """You have already rated this ride."""


class ActiveRideExistsError(ConflictError):
    """You already have an active or scheduled ride."""


class RideNotAvailableError(ConflictError):
    """This ride is no longer open."""


class RequestAlreadyPendingError(ConflictError):
    """You already have a pending request for this ride."""


class BookingNotCompletedError(ConflictError):
    """Only completed bookings can be rated."""


class InvalidTransitionError(ConflictError):
    """Illegal status transition."""

    def __init__(self, entity: str, current: str, target: str):
        super().__init__(f"Cannot move {entity} from '{current}' to '{target}'")
        self.entity = entity
        self.current = current
        self.target = target
