"""
In-process realtime key/value store.

Data is organised as collections of JSON-like dicts keyed by id
(e.g. ``status/<user_id>``). Listeners on a collection receive the full
collection snapshot immediately and again after every change. Each client
holds a :class:`RealtimeConnection`; writes staged with
:meth:`RealtimeConnection.on_disconnect` are committed by the store itself
when that connection drops, whether or not the client cleaned up.
"""
import copy
import itertools
import threading
from typing import Any, Callable, Dict, Optional, Tuple

from loguru import logger

Document = Dict[str, Any]
Snapshot = Dict[str, Document]
Unsubscribe = Callable[[], None]


class RealtimeConnectionError(Exception):
    pass


class RealtimeConnection:
    def __init__(self, database: "RealtimeDatabase", client_id: str):
        self._database = database
        self.client_id = client_id
        self._connected = True
        self._lock = threading.RLock()
        self._staged: Dict[Tuple[str, str], Optional[Document]] = {}
        self._state_listeners: Dict[int, Callable[[bool], None]] = {}
        self._ids = itertools.count()

    @property
    def connected(self) -> bool:
        return self._connected

    def on_disconnect(self, collection: str, key: str, value: Optional[Document]) -> None:
        """Stage a write the store commits when this connection drops."""
        with self._lock:
            if not self._connected:
                raise RealtimeConnectionError(f"client {self.client_id} is not connected")
            self._staged[(collection, key)] = copy.deepcopy(value)
        logger.debug(f"onDisconnect staged | client={self.client_id} path={collection}/{key}")

    def cancel_on_disconnect(self, collection: str, key: str) -> None:
        with self._lock:
            self._staged.pop((collection, key), None)

    def subscribe_connected(self, callback: Callable[[bool], None]) -> Unsubscribe:
        """Connection-state signal; fires now with the current state, then on every change."""
        with self._lock:
            token = next(self._ids)
            self._state_listeners[token] = callback
            state = self._connected
        self._database._safe_call(callback, state)

        def unsubscribe() -> None:
            with self._lock:
                self._state_listeners.pop(token, None)

        return unsubscribe

    def disconnect(self) -> None:
        """Drop the connection, committing every staged write."""
        with self._lock:
            if not self._connected:
                return
            self._connected = False
            staged, self._staged = self._staged, {}
            listeners = list(self._state_listeners.values())

        logger.info(f"Realtime client disconnected | client={self.client_id} staged={len(staged)}")
        for (collection, key), value in staged.items():
            self._database.set(collection, key, value)
        for callback in listeners:
            self._database._safe_call(callback, False)

    def reconnect(self) -> None:
        with self._lock:
            if self._connected:
                return
            self._connected = True
            listeners = list(self._state_listeners.values())

        logger.info(f"Realtime client reconnected | client={self.client_id}")
        for callback in listeners:
            self._database._safe_call(callback, True)


class RealtimeDatabase:
    def __init__(self):
        self._lock = threading.RLock()
        # serializes write + notify so listeners see snapshots in write order
        self._notify_lock = threading.RLock()
        self._data: Dict[str, Snapshot] = {}
        self._listeners: Dict[str, Dict[int, Callable[[Snapshot], None]]] = {}
        self._connections: Dict[str, RealtimeConnection] = {}
        self._ids = itertools.count()

    # ---------- connections ----------

    def connect(self, client_id: str) -> RealtimeConnection:
        with self._lock:
            existing = self._connections.get(client_id)
            if existing is not None and existing.connected:
                return existing
            conn = RealtimeConnection(self, client_id)
            self._connections[client_id] = conn
        logger.info(f"Realtime client connected | client={client_id}")
        return conn

    def connection(self, client_id: str) -> Optional[RealtimeConnection]:
        with self._lock:
            return self._connections.get(client_id)

    # ---------- data ----------

    def get(self, collection: str, key: str) -> Optional[Document]:
        with self._lock:
            value = self._data.get(collection, {}).get(key)
            return copy.deepcopy(value)

    def snapshot(self, collection: str) -> Snapshot:
        with self._lock:
            return copy.deepcopy(self._data.get(collection, {}))

    def set(self, collection: str, key: str, value: Optional[Document]) -> None:
        """Overwrite one record; ``None`` deletes it."""
        with self._notify_lock:
            with self._lock:
                docs = self._data.setdefault(collection, {})
                if value is None:
                    docs.pop(key, None)
                else:
                    docs[key] = copy.deepcopy(value)
                snapshot = copy.deepcopy(docs)
                listeners = list(self._listeners.get(collection, {}).values())

            for callback in listeners:
                self._safe_call(callback, copy.deepcopy(snapshot))

    def listen(self, collection: str, callback: Callable[[Snapshot], None]) -> Unsubscribe:
        with self._lock:
            token = next(self._ids)
            self._listeners.setdefault(collection, {})[token] = callback
            snapshot = copy.deepcopy(self._data.get(collection, {}))
        self._safe_call(callback, snapshot)

        def unsubscribe() -> None:
            with self._lock:
                self._listeners.get(collection, {}).pop(token, None)

        return unsubscribe

    def listener_count(self, collection: str) -> int:
        with self._lock:
            return len(self._listeners.get(collection, {}))

    @staticmethod
    def _safe_call(callback: Callable, *args) -> None:
        try:
            callback(*args)
        except Exception:
            logger.exception("Realtime listener failed")
