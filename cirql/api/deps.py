from functools import lru_cache

from cirql.core.config import PROFILE_SOURCE
from cirql.core.db import SessionLocal
from cirql.realtime.database import RealtimeDatabase
from cirql.services.geolocation import ReportedPositionProvider
from cirql.services.membership_store import PlaceMembershipStore
from cirql.services.place_session import PlaceSessionController
from cirql.services.presence_store import PresenceStore
from cirql.services.profiles import LocalProfileResolver, ProfileResolver, SupabaseProfileResolver


@lru_cache(maxsize=1)
def get_realtime_db() -> RealtimeDatabase:
    return RealtimeDatabase()


@lru_cache(maxsize=1)
def get_membership_store() -> PlaceMembershipStore:
    return PlaceMembershipStore(SessionLocal)


@lru_cache(maxsize=1)
def get_presence_store() -> PresenceStore:
    return PresenceStore(get_realtime_db())


@lru_cache(maxsize=1)
def get_geolocation() -> ReportedPositionProvider:
    return ReportedPositionProvider()


@lru_cache(maxsize=1)
def get_profile_resolver() -> ProfileResolver:
    if PROFILE_SOURCE == "supabase":
        return SupabaseProfileResolver()
    if PROFILE_SOURCE == "local":
        return LocalProfileResolver(SessionLocal)
    raise RuntimeError(f"Invalid PROFILE_SOURCE: {PROFILE_SOURCE}")


@lru_cache(maxsize=1)
def get_session_controller() -> PlaceSessionController:
    return PlaceSessionController(
        membership=get_membership_store(),
        presence=get_presence_store(),
        geolocation=get_geolocation(),
        profiles=get_profile_resolver(),
    )
