from dataclasses import dataclass

from cirql.core.proximity_config import DEFAULT_RADIUS_METERS
from cirql.services.geo import distance_meters


@dataclass(frozen=True)
class ProximityCheck:
    distance_meters: float
    radius_meters: float

    @property
    def within(self) -> bool:
        # boundary is inclusive
        return self.distance_meters <= self.radius_meters


def check_proximity(
    user_lat: float,
    user_lng: float,
    origin_lat: float,
    origin_lng: float,
    radius_meters: float = DEFAULT_RADIUS_METERS,
) -> ProximityCheck:
    return ProximityCheck(
        distance_meters=distance_meters(user_lat, user_lng, origin_lat, origin_lng),
        radius_meters=radius_meters,
    )


def is_within_radius(
    user_lat: float,
    user_lng: float,
    origin_lat: float,
    origin_lng: float,
    radius_meters: float = DEFAULT_RADIUS_METERS,
) -> bool:
    return check_proximity(user_lat, user_lng, origin_lat, origin_lng, radius_meters).within
