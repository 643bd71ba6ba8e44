from typing import List

from cirql.core.proximity_config import NEARBY_PLACES_RADIUS_KM
from cirql.schemas.place import NearbyPlace
from cirql.services.geo import distance_meters
from cirql.services.membership_store import PlaceMembershipStore


def find_nearby_places(
    membership: PlaceMembershipStore,
    lat: float,
    lng: float,
    radius_km: float = NEARBY_PLACES_RADIUS_KM,
) -> List[NearbyPlace]:
    """Active places whose origin is within `radius_km`, nearest first."""
    nearby: List[NearbyPlace] = []
    for place in membership.list_active_places():
        distance_km = distance_meters(lat, lng, place.origin_lat, place.origin_lng) / 1000
        if distance_km > radius_km:
            continue
        nearby.append(
            NearbyPlace(
                place=place,
                distance_km=distance_km,
                member_count=membership.count_members(place.id),
            )
        )

    nearby.sort(key=lambda p: p.distance_km)
    return nearby
