import os

# --------------------------------------------------
# GEOFENCE
# --------------------------------------------------

# Radius around a place origin used for both joining and staying
DEFAULT_RADIUS_METERS = float(os.getenv("PROXIMITY_RADIUS_METERS", "100"))

# --------------------------------------------------
# MONITORING
# --------------------------------------------------

# How often a joined member's position is re-checked
PROXIMITY_CHECK_INTERVAL_SECONDS = float(os.getenv("PROXIMITY_CHECK_INTERVAL_SECONDS", "30"))

# Reported positions older than this count as unavailable
LOCATION_MAX_AGE_SECONDS = float(os.getenv("LOCATION_MAX_AGE_SECONDS", "300"))

# --------------------------------------------------
# GEOHASH
# --------------------------------------------------

# Subdivision rounds; each round adds one latitude and one longitude bit
GEOHASH_PRECISION = int(os.getenv("GEOHASH_PRECISION", "4"))

# --------------------------------------------------
# DISCOVERY
# --------------------------------------------------

NEARBY_PLACES_RADIUS_KM = float(os.getenv("NEARBY_PLACES_RADIUS_KM", "1"))
