import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol

from loguru import logger

from cirql.core.errors import LocationUnavailable
from cirql.core.proximity_config import LOCATION_MAX_AGE_SECONDS
from cirql.schemas.base import GeoPoint
from cirql.schemas.enums import LocationErrorCode


class GeolocationProvider(Protocol):
    def get_current_position(self, user_id: str) -> GeoPoint:
        """Single-shot position for a user; raises LocationUnavailable."""
        ...


@dataclass
class _Report:
    at: float
    position: Optional[GeoPoint] = None
    accuracy: Optional[float] = None
    error: Optional[LocationErrorCode] = None


class ReportedPositionProvider:
    """
    Serves the position each client last reported to the API.

    Clients push fixes (or the error their device gave them) through the
    heartbeat route and the presence socket. A lookup with nothing on record,
    an error on record, or a fix older than `max_age_seconds` raises
    LocationUnavailable with the matching code.
    """

    def __init__(
        self,
        max_age_seconds: float = LOCATION_MAX_AGE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._max_age_seconds = max_age_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._reports: Dict[str, _Report] = {}

    def report(self, user_id: str, lat: float, lng: float, accuracy: Optional[float] = None) -> GeoPoint:
        position = GeoPoint(lat=lat, lng=lng)
        with self._lock:
            self._reports[user_id] = _Report(at=self._clock(), position=position, accuracy=accuracy)
        logger.debug(f"Position reported | user={user_id} lat={lat} lng={lng}")
        return position

    def report_error(self, user_id: str, code: LocationErrorCode) -> None:
        with self._lock:
            self._reports[user_id] = _Report(at=self._clock(), error=LocationErrorCode(code))
        logger.info(f"Location error reported | user={user_id} code={code}")

    def forget(self, user_id: str) -> None:
        with self._lock:
            self._reports.pop(user_id, None)

    def get_current_position(self, user_id: str) -> GeoPoint:
        with self._lock:
            report = self._reports.get(user_id)

        if report is None:
            raise LocationUnavailable(LocationErrorCode.position_unavailable)
        if report.error is not None:
            raise LocationUnavailable(report.error)
        if self._clock() - report.at > self._max_age_seconds:
            raise LocationUnavailable(LocationErrorCode.timeout)
        return report.position
