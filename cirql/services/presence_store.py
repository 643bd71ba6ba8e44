import threading
from datetime import datetime
from typing import Callable, Dict, List, Optional

from loguru import logger
from pydantic import ValidationError

from cirql.core.errors import PresenceRegistrationError
from cirql.core.timeutils import utcnow
from cirql.realtime.database import (
    RealtimeConnection,
    RealtimeConnectionError,
    RealtimeDatabase,
    Snapshot,
    Unsubscribe,
)
from cirql.schemas.base import GeoPoint
from cirql.schemas.presence import (
    OfflinePresence,
    OnlinePresence,
    OnlineUser,
    PresenceDisplay,
    PresenceRecord,
    presence_record_adapter,
)

STATUS_COLLECTION = "status"

OnlineUsersCallback = Callable[[List[OnlineUser]], None]


class PresenceStore:
    """
    Global online/offline state per user, independent of place membership.

    Records live in the ``status`` collection of the realtime store. Going
    online always stages the offline record on the user's realtime
    connection first, so a dropped client is flipped offline by the store.
    """

    def __init__(self, realtime: RealtimeDatabase, clock: Callable[[], datetime] = utcnow):
        self._realtime = realtime
        self._clock = clock
        self._lock = threading.Lock()
        self._last_online: Dict[str, OnlinePresence] = {}
        self._reconnect_watches: Dict[str, Unsubscribe] = {}

    def get(self, user_id: str) -> Optional[PresenceRecord]:
        raw = self._realtime.get(STATUS_COLLECTION, user_id)
        if raw is None:
            return None
        return presence_record_adapter.validate_python(raw)

    def set_online(
        self,
        user_id: str,
        display: Optional[PresenceDisplay] = None,
        current_place: Optional[str] = None,
        location: Optional[GeoPoint] = None,
    ) -> OnlinePresence:
        conn = self._realtime.connection(user_id)
        if conn is None or not conn.connected:
            raise PresenceRegistrationError(user_id)

        display = display or PresenceDisplay()
        record = OnlinePresence(
            **display.model_dump(include=set(PresenceDisplay.model_fields)),
            last_changed=self._clock(),
            current_place=current_place,
            location=location,
        )
        self._arm_and_write(conn, user_id, record)
        self._watch_reconnects(conn, user_id)

        logger.info(f"Presence online | user={user_id} place={current_place or 'none'}")
        return record

    def _arm_and_write(self, conn: RealtimeConnection, user_id: str, record: OnlinePresence) -> None:
        # disconnect handler first; if it cannot be registered, nothing is written
        offline = OfflinePresence(last_changed=self._clock())
        try:
            conn.on_disconnect(STATUS_COLLECTION, user_id, offline.model_dump())
        except RealtimeConnectionError as e:
            raise PresenceRegistrationError(user_id, str(e)) from e

        self._realtime.set(STATUS_COLLECTION, user_id, record.model_dump())
        with self._lock:
            self._last_online[user_id] = record

    def _watch_reconnects(self, conn: RealtimeConnection, user_id: str) -> None:
        was_connected = conn.connected

        def on_connection_state(connected: bool) -> None:
            nonlocal was_connected
            came_back = connected and not was_connected
            was_connected = connected
            if not came_back:
                return

            with self._lock:
                last = self._last_online.get(user_id)
            if last is None:
                return
            try:
                self._arm_and_write(conn, user_id, last.model_copy(update={"last_changed": self._clock()}))
                logger.info(f"Presence restored after reconnect | user={user_id}")
            except PresenceRegistrationError as e:
                logger.warning(f"Presence restore failed | user={user_id} err={e}")

        unsubscribe = conn.subscribe_connected(on_connection_state)
        with self._lock:
            previous = self._reconnect_watches.pop(user_id, None)
            self._reconnect_watches[user_id] = unsubscribe
        if previous is not None:
            previous()

    def _forget(self, user_id: str) -> None:
        with self._lock:
            self._last_online.pop(user_id, None)
            unsubscribe = self._reconnect_watches.pop(user_id, None)
        if unsubscribe is not None:
            unsubscribe()

        conn = self._realtime.connection(user_id)
        if conn is not None:
            conn.cancel_on_disconnect(STATUS_COLLECTION, user_id)

    def set_offline(self, user_id: str) -> None:
        self._forget(user_id)
        self._realtime.set(
            STATUS_COLLECTION,
            user_id,
            OfflinePresence(last_changed=self._clock()).model_dump(),
        )
        logger.info(f"Presence offline | user={user_id}")

    def update_current_place(self, user_id: str, place_id: Optional[str]) -> bool:
        return self._merge_online(user_id, "place", current_place=place_id)

    def update_location(self, user_id: str, lat: float, lng: float) -> bool:
        return self._merge_online(user_id, "location", location=GeoPoint(lat=lat, lng=lng))

    def _merge_online(self, user_id: str, what: str, **fields) -> bool:
        record = self.get(user_id)
        if record is None:
            logger.warning(f"User status not found, cannot update {what} | user={user_id}")
            return False
        if isinstance(record, OfflinePresence):
            logger.info(f"User is offline, not updating {what} | user={user_id}")
            return False

        updated = record.model_copy(update={**fields, "last_changed": self._clock()})
        self._realtime.set(STATUS_COLLECTION, user_id, updated.model_dump())
        with self._lock:
            if user_id in self._last_online:
                self._last_online[user_id] = updated
        logger.debug(f"Presence {what} updated | user={user_id}")
        return True

    def online_users(self, place_id: Optional[str] = None) -> List[OnlineUser]:
        return _online_users(self._realtime.snapshot(STATUS_COLLECTION), place_id)

    def subscribe_all_online(self, callback: OnlineUsersCallback) -> Unsubscribe:
        return self._realtime.listen(
            STATUS_COLLECTION,
            lambda snapshot: callback(_online_users(snapshot)),
        )

    def subscribe_by_place(self, place_id: str, callback: OnlineUsersCallback) -> Unsubscribe:
        return self._realtime.listen(
            STATUS_COLLECTION,
            lambda snapshot: callback(_online_users(snapshot, place_id)),
        )

    def remove_presence(self, user_id: str) -> None:
        self._forget(user_id)
        self._realtime.set(STATUS_COLLECTION, user_id, None)
        logger.info(f"Presence removed | user={user_id}")


def _online_users(snapshot: Snapshot, place_id: Optional[str] = None) -> List[OnlineUser]:
    users = []
    for user_id, raw in snapshot.items():
        try:
            record = presence_record_adapter.validate_python(raw)
        except ValidationError:
            logger.warning(f"Skipping malformed presence record | user={user_id}")
            continue
        if not isinstance(record, OnlinePresence):
            continue
        if place_id is not None and record.current_place != place_id:
            continue
        users.append(OnlineUser(user_id=user_id, **record.model_dump()))
    return users
