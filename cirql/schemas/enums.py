from enum import Enum

class LocationErrorCode(str, Enum):
    permission_denied = "permission_denied"
    position_unavailable = "position_unavailable"
    timeout = "timeout"
    unknown = "unknown"

class SessionState(str, Enum):
    NOT_JOINED = "not_joined"
    CHECKING_GEOFENCE = "checking_geofence"
    IN_RANGE = "in_range"
    OUT_OF_RANGE = "out_of_range"
    LEFT = "left"
