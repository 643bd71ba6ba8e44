import math

from cirql.core.proximity_config import GEOHASH_PRECISION

EARTH_RADIUS_METERS = 6371000


def distance_meters(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle (haversine) distance between two points, in meters."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lng2 - lng1)

    a = (
        math.sin(dphi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    )
    return 2 * EARTH_RADIUS_METERS * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def geohash(lat: float, lng: float, precision: int = GEOHASH_PRECISION) -> str:
    """
    Coarse locality tag built by halving the lat/lng ranges `precision` times.

    Each round appends one latitude bit then one longitude bit, so the result
    is a bitstring of length 2 * precision. Stored next to coordinates only.
    """
    lat_min, lat_max = -90.0, 90.0
    lng_min, lng_max = -180.0, 180.0

    bits = []
    for _ in range(precision):
        lat_mid = (lat_min + lat_max) / 2
        if lat >= lat_mid:
            bits.append("1")
            lat_min = lat_mid
        else:
            bits.append("0")
            lat_max = lat_mid

        lng_mid = (lng_min + lng_max) / 2
        if lng >= lng_mid:
            bits.append("1")
            lng_min = lng_mid
        else:
            bits.append("0")
            lng_max = lng_mid

    return "".join(bits)
