from cirql.schemas.enums import LocationErrorCode, SessionState


LOCATION_HINTS = {
    LocationErrorCode.permission_denied: (
        "Location access denied. Please enable location access in your browser settings."
    ),
    LocationErrorCode.position_unavailable: (
        "Location information is unavailable. Please check your device settings."
    ),
    LocationErrorCode.timeout: "Location request timed out. Please try again.",
    LocationErrorCode.unknown: "An unknown error occurred while retrieving location.",
}


class CirqlError(Exception):
    """Base class for place membership and presence errors."""


class LocationUnavailable(CirqlError):
    def __init__(
        self,
        code: LocationErrorCode = LocationErrorCode.unknown,
        message: str | None = None,
    ):
        self.code = LocationErrorCode(code)
        self.message = message or LOCATION_HINTS[self.code]
        super().__init__(self.message)


class PlaceNotFound(CirqlError):
    def __init__(self, place_id: str):
        self.place_id = place_id
        super().__init__(f"Place not found: {place_id}")


class TooFarError(CirqlError):
    """Geofence check failed; carries the measured distance."""

    def __init__(self, distance_meters: float, radius_meters: float):
        self.distance_meters = distance_meters
        self.radius_meters = radius_meters
        super().__init__(
            f"You are too far from this place ({round(distance_meters)}m away, "
            f"must be within {round(radius_meters)}m)"
        )


class AlreadyExists(CirqlError):
    def __init__(self, place_id: str):
        self.place_id = place_id
        super().__init__(f"Place already exists: {place_id}")


class PresenceRegistrationError(CirqlError):
    """Disconnect handler could not be registered, nothing was written."""

    def __init__(self, user_id: str, reason: str = "no connected realtime session"):
        self.user_id = user_id
        super().__init__(f"Cannot set user {user_id} online: {reason}")


class NotPlaceCreator(CirqlError):
    def __init__(self, place_id: str, user_id: str):
        self.place_id = place_id
        self.user_id = user_id
        super().__init__("Only the room creator can edit the room name")


class SessionNotInRange(CirqlError):
    """Monitoring asked for a session that is not joined and in range."""

    def __init__(self, place_id: str, user_id: str, state: SessionState):
        self.place_id = place_id
        self.user_id = user_id
        self.state = state
        super().__init__(f"Monitoring needs an in-range session (state={state.value})")
