"""
Place session state machine, one session per (place, user).

    NOT_JOINED -> CHECKING_GEOFENCE -> IN_RANGE -> OUT_OF_RANGE
                                          |              |
                                          +--> LEFT <----+

Joining writes to two stores that are not updated atomically: the
membership record first, then the presence record. If the presence write
fails the user is left as "member but not presence-online". Membership is
the source of truth for "ever joined" and presence for "connected now".
Nothing here reconciles the two; readers must tolerate the gap, as must a
client that disappears without leaving (presence flips offline through its
disconnect handler while the member record still says online).
"""
import threading
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from cirql.core.errors import (
    AlreadyExists,
    LocationUnavailable,
    PlaceNotFound,
    SessionNotInRange,
    TooFarError,
)
from cirql.core.proximity_config import DEFAULT_RADIUS_METERS, PROXIMITY_CHECK_INTERVAL_SECONDS
from cirql.schemas.base import GeoPoint
from cirql.schemas.enums import SessionState
from cirql.schemas.place import PlaceMemberRecord, PlaceRecord
from cirql.schemas.presence import OnlinePresence, PresenceDisplay
from cirql.services.categorized_members import CategorizedMembers, CategorizedMembershipQuery
from cirql.services.geolocation import GeolocationProvider
from cirql.services.membership_store import PlaceMembershipStore
from cirql.services.presence_store import PresenceStore
from cirql.services.profiles import ProfileResolver, display_fields
from cirql.services.proximity import check_proximity

SessionKey = Tuple[str, str]


@dataclass
class JoinResult:
    place: PlaceRecord
    member: PlaceMemberRecord
    distance_meters: float


class MonitorHandle:
    """Periodic re-validation of one member against one place origin."""

    def __init__(
        self,
        place_id: str,
        user_id: str,
        origin: GeoPoint,
        radius_meters: float,
        interval_seconds: float,
    ):
        self.place_id = place_id
        self.user_id = user_id
        self.origin = origin
        self.radius_meters = radius_meters
        self.interval_seconds = interval_seconds
        self.ticks = 0
        self._stopped = threading.Event()
        # held across a tick's writes; stop() waits for an in-flight write
        self._lock = threading.RLock()
        self._thread: Optional[threading.Thread] = None

    @property
    def key(self) -> SessionKey:
        return (self.place_id, self.user_id)

    @property
    def active(self) -> bool:
        return not self._stopped.is_set()

    def stop(self) -> None:
        with self._lock:
            self._stopped.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the monitor thread exits; True if it has."""
        if self._thread is None:
            return not self.active
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def __repr__(self) -> str:
        return f"MonitorHandle(place={self.place_id!r}, user={self.user_id!r}, active={self.active})"


class PlaceSessionController:
    def __init__(
        self,
        membership: PlaceMembershipStore,
        presence: PresenceStore,
        geolocation: GeolocationProvider,
        profiles: ProfileResolver,
        radius_meters: float = DEFAULT_RADIUS_METERS,
        check_interval_seconds: float = PROXIMITY_CHECK_INTERVAL_SECONDS,
    ):
        self._membership = membership
        self._presence = presence
        self._geolocation = geolocation
        self._profiles = profiles
        self._radius_meters = radius_meters
        self._check_interval_seconds = check_interval_seconds
        self._categorized = CategorizedMembershipQuery(membership, profiles, presence, radius_meters)

        self._lock = threading.RLock()
        self._states: Dict[SessionKey, SessionState] = {}
        self._monitors: Dict[SessionKey, MonitorHandle] = {}

    # ---------- state ----------

    def session_state(self, place_id: str, user_id: str) -> SessionState:
        with self._lock:
            state = self._states.get((place_id, user_id))
        if state is not None:
            return state

        member = self._membership.get_member(place_id, user_id)
        if member is None:
            return SessionState.NOT_JOINED
        if member.out_of_range:
            return SessionState.OUT_OF_RANGE
        if member.is_online:
            return SessionState.IN_RANGE
        return SessionState.LEFT

    def _set_state(self, key: SessionKey, state: Optional[SessionState]) -> Optional[SessionState]:
        with self._lock:
            previous = self._states.get(key)
            if state is None:
                self._states.pop(key, None)
            else:
                self._states[key] = state
            return previous

    # ---------- join / leave ----------

    def join_place(
        self,
        place_id: str,
        user_id: str,
        display: Optional[PresenceDisplay] = None,
    ) -> JoinResult:
        """
        Geofenced join.

        Raises LocationUnavailable, PlaceNotFound (missing or deactivated
        place) or TooFarError before anything is written. On success the
        member record is upserted and the user is marked presence-online
        at this place. PresenceRegistrationError after a successful member
        write leaves the two stores inconsistent; it is logged and re-raised.
        """
        key = (place_id, user_id)
        previous = self._set_state(key, SessionState.CHECKING_GEOFENCE)
        try:
            result = self._join(place_id, user_id, display)
        except Exception:
            self._set_state(key, previous)
            raise

        self._set_state(key, SessionState.IN_RANGE)
        logger.info(
            f"Joined place | place={place_id} user={user_id} "
            f"distance={result.distance_meters:.1f}m"
        )
        return result

    def _join(self, place_id: str, user_id: str, display: Optional[PresenceDisplay]) -> JoinResult:
        position = self._geolocation.get_current_position(user_id)

        place = self._membership.get_place(place_id)
        if not place.is_active:
            raise PlaceNotFound(place_id)

        check = check_proximity(
            position.lat, position.lng, place.origin_lat, place.origin_lng, self._radius_meters
        )
        if not check.within:
            logger.info(
                f"Join refused, too far | place={place_id} user={user_id} "
                f"distance={check.distance_meters:.1f}m"
            )
            raise TooFarError(check.distance_meters, self._radius_meters)

        member = self._membership.upsert_member(place_id, user_id, position.lat, position.lng)

        try:
            self._presence.set_online(
                user_id,
                display or display_fields(self._profiles, user_id),
                current_place=place_id,
                location=position,
            )
        except Exception:
            logger.warning(
                f"Member written but presence not online | place={place_id} user={user_id}"
            )
            raise

        return JoinResult(place=place, member=member, distance_meters=check.distance_meters)

    def create_and_join_place(
        self,
        place_id: str,
        user_id: str,
        name: Optional[str] = None,
        display: Optional[PresenceDisplay] = None,
    ) -> JoinResult:
        """Create the place at the caller's position, then join it."""
        position = self._geolocation.get_current_position(user_id)
        try:
            self._membership.create_place(
                place_id,
                name or f"Room {place_id}",
                position.lat,
                position.lng,
                created_by=user_id,
            )
        except AlreadyExists:
            logger.info(f"Place already exists, joining instead | place={place_id} user={user_id}")

        return self.join_place(place_id, user_id, display)

    def leave_place(self, place_id: str, user_id: str) -> None:
        """Explicit leave. Idempotent and never raises."""
        key = (place_id, user_id)
        # stop first so a tick in flight cannot reopen the record after the leave
        self.stop_monitoring(place_id, user_id)

        member = None
        try:
            member = self._membership.get_member(place_id, user_id)
            if member is not None and (member.is_online or member.left_at is None):
                self._membership.mark_left(place_id, user_id)
        except SQLAlchemyError:
            logger.exception(f"Leave: membership update failed | place={place_id} user={user_id}")

        record = self._presence.get(user_id)
        if isinstance(record, OnlinePresence) and record.current_place == place_id:
            self._presence.update_current_place(user_id, None)

        if member is not None:
            self._set_state(key, SessionState.LEFT)
        logger.info(f"Left place | place={place_id} user={user_id}")

    # ---------- monitoring ----------

    def monitoring(self, place_id: str, user_id: str) -> Optional[MonitorHandle]:
        with self._lock:
            handle = self._monitors.get((place_id, user_id))
        return handle if handle is not None and handle.active else None

    def start_monitoring(self, place_id: str, user_id: str) -> MonitorHandle:
        """
        Start the periodic geofence re-check; returns the running handle if one exists.

        Only an in-range session can be monitored. Anything else (never
        joined, left, out of range) raises SessionNotInRange; those records
        are reopened by a join, never by a monitor tick.
        """
        existing = self.monitoring(place_id, user_id)
        if existing is not None:
            logger.debug(f"Already monitoring | place={place_id} user={user_id}")
            return existing

        place = self._membership.get_place(place_id)
        state = self.session_state(place_id, user_id)
        if state is not SessionState.IN_RANGE:
            logger.info(f"Monitoring refused | place={place_id} user={user_id} state={state.value}")
            raise SessionNotInRange(place_id, user_id, state)

        handle = MonitorHandle(
            place_id,
            user_id,
            place.origin,
            self._radius_meters,
            self._check_interval_seconds,
        )

        with self._lock:
            existing = self._monitors.get(handle.key)
            if existing is not None and existing.active:
                return existing
            self._monitors[handle.key] = handle
            handle._thread = threading.Thread(
                target=self._run,
                args=(handle,),
                name=f"proximity-{place_id}-{user_id}",
                daemon=True,
            )
            handle._thread.start()

        logger.info(
            f"Proximity monitoring started | place={place_id} user={user_id} "
            f"every={handle.interval_seconds}s"
        )
        return handle

    def stop_monitoring(self, place_id: str, user_id: str) -> bool:
        with self._lock:
            handle = self._monitors.pop((place_id, user_id), None)
        if handle is None:
            return False
        handle.stop()
        logger.info(f"Proximity monitoring stopped | place={place_id} user={user_id}")
        return True

    def stop_user_monitors(self, user_id: str) -> int:
        """Stop every monitor of one user; membership records are left as they are."""
        with self._lock:
            keys = [key for key in self._monitors if key[1] == user_id]
            handles = [self._monitors.pop(key) for key in keys]
        for handle in handles:
            handle.stop()
        if handles:
            logger.info(f"Proximity monitoring stopped for user | user={user_id} monitors={len(handles)}")
        return len(handles)

    def _run(self, handle: MonitorHandle) -> None:
        try:
            while not handle._stopped.wait(handle.interval_seconds):
                try:
                    state = self.check_once(handle)
                except Exception:
                    logger.exception(
                        f"Proximity check failed | place={handle.place_id} user={handle.user_id}"
                    )
                    continue
                if state is SessionState.OUT_OF_RANGE:
                    break
        finally:
            handle.stop()
            with self._lock:
                if self._monitors.get(handle.key) is handle:
                    del self._monitors[handle.key]

    def check_once(self, handle: MonitorHandle) -> SessionState:
        """
        One re-validation tick.

        A missing position keeps the session as it is. A confirmed
        geofence failure marks the member out of range and stops the
        handle; if that write fails the error propagates and the handle
        stays active so the next tick retries it. Writes happen under the
        handle lock and only while the handle is active, so a stop or leave
        that lands while the position is being fetched wins.
        """
        if not handle.active:
            return self.session_state(handle.place_id, handle.user_id)
        handle.ticks += 1

        try:
            position = self._geolocation.get_current_position(handle.user_id)
        except LocationUnavailable as e:
            logger.warning(
                f"Proximity check skipped, location unavailable | "
                f"place={handle.place_id} user={handle.user_id} code={e.code.value}"
            )
            return self.session_state(handle.place_id, handle.user_id)

        check = check_proximity(
            position.lat,
            position.lng,
            handle.origin.lat,
            handle.origin.lng,
            handle.radius_meters,
        )

        with handle._lock:
            if not handle.active:
                logger.debug(f"Tick discarded, monitor stopped | place={handle.place_id} user={handle.user_id}")
                return self.session_state(handle.place_id, handle.user_id)

            if check.within:
                return self._refresh_in_range(handle, position)

            logger.info(
                f"Member moved out of range | place={handle.place_id} user={handle.user_id} "
                f"distance={check.distance_meters:.1f}m"
            )
            self._membership.mark_out_of_range(handle.place_id, handle.user_id)
            handle.stop()
            self._set_state(handle.key, SessionState.OUT_OF_RANGE)
            return SessionState.OUT_OF_RANGE

    def _refresh_in_range(self, handle: MonitorHandle, position: GeoPoint) -> SessionState:
        try:
            refreshed = self._membership.mark_online_status(
                handle.place_id, handle.user_id, True, location=position
            )
        except SQLAlchemyError:
            logger.exception(
                f"Online refresh failed | place={handle.place_id} user={handle.user_id}"
            )
        else:
            if not refreshed:
                # record was closed outside this monitor (left, out of range, removed)
                logger.info(
                    f"Member record closed, monitoring ends | "
                    f"place={handle.place_id} user={handle.user_id}"
                )
                handle.stop()
                self._set_state(handle.key, None)
                return self.session_state(handle.place_id, handle.user_id)

        self._presence.update_location(handle.user_id, position.lat, position.lng)
        self._set_state(handle.key, SessionState.IN_RANGE)
        return SessionState.IN_RANGE

    def shutdown(self, timeout: float = 1.0) -> None:
        """Stop every monitor; used on application teardown."""
        with self._lock:
            handles = list(self._monitors.values())
            self._monitors.clear()
        for handle in handles:
            handle.stop()
        for handle in handles:
            handle.wait(timeout)
        logger.info(f"Place sessions shut down | monitors={len(handles)}")

    # ---------- queries ----------

    def get_categorized_members(self, place_id: str) -> CategorizedMembers:
        place = self._membership.get_place(place_id)
        return self._categorized.categorize(place_id, place.origin_lat, place.origin_lng)
