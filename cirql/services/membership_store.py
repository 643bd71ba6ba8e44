from datetime import datetime
from typing import Callable, List, Optional

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from cirql.core.db import SessionLocal
from cirql.core.errors import AlreadyExists, NotPlaceCreator, PlaceNotFound
from cirql.core.proximity_config import GEOHASH_PRECISION
from cirql.core.timeutils import utcnow
from cirql.models.place import Place, PlaceMember
from cirql.schemas.base import GeoPoint
from cirql.schemas.place import PlaceMemberRecord, PlaceRecord
from cirql.services.geo import geohash


class PlaceMembershipStore:
    """
    Durable place and per-place member records.

    Every call opens its own short session from `session_factory`, so the
    store can be shared between request handlers and the monitor threads.
    Writes are whole-row point writes keyed by (place_id, user_id); the last
    writer wins.
    """

    def __init__(
        self,
        session_factory: sessionmaker = SessionLocal,
        clock: Callable[[], datetime] = utcnow,
        geohash_precision: int = GEOHASH_PRECISION,
    ):
        self._session_factory = session_factory
        self._clock = clock
        self._geohash_precision = geohash_precision

    # ---------- places ----------

    def get_place(self, place_id: str) -> PlaceRecord:
        with self._session_factory() as db:
            place = db.get(Place, place_id)
            if place is None:
                raise PlaceNotFound(place_id)
            return PlaceRecord.model_validate(place)

    def create_place(
        self,
        place_id: str,
        name: str,
        origin_lat: float,
        origin_lng: float,
        created_by: str,
    ) -> PlaceRecord:
        """Insert-if-absent; a taken id raises AlreadyExists."""
        with self._session_factory() as db:
            if db.get(Place, place_id) is not None:
                raise AlreadyExists(place_id)

            place = Place(
                id=place_id,
                name=name,
                origin_lat=origin_lat,
                origin_lng=origin_lng,
                origin_geohash=geohash(origin_lat, origin_lng, self._geohash_precision),
                created_by=created_by,
                is_active=True,
                created_at=self._clock(),
            )
            db.add(place)
            try:
                db.commit()
            except IntegrityError as e:
                # lost the race against a concurrent creator
                db.rollback()
                raise AlreadyExists(place_id) from e

            db.refresh(place)
            logger.info(f"Place created | place={place_id} by={created_by}")
            return PlaceRecord.model_validate(place)

    def set_place_active(self, place_id: str, is_active: bool) -> PlaceRecord:
        with self._session_factory() as db:
            place = db.get(Place, place_id)
            if place is None:
                raise PlaceNotFound(place_id)
            place.is_active = is_active
            place.updated_at = self._clock()
            db.commit()
            db.refresh(place)
            logger.info(f"Place active={is_active} | place={place_id}")
            return PlaceRecord.model_validate(place)

    def rename_place(self, place_id: str, name: str, requested_by: str) -> PlaceRecord:
        with self._session_factory() as db:
            place = db.get(Place, place_id)
            if place is None:
                raise PlaceNotFound(place_id)
            if place.created_by != requested_by:
                raise NotPlaceCreator(place_id, requested_by)
            place.name = name.strip()
            place.updated_at = self._clock()
            db.commit()
            db.refresh(place)
            return PlaceRecord.model_validate(place)

    def list_active_places(self) -> List[PlaceRecord]:
        with self._session_factory() as db:
            rows = db.scalars(
                select(Place)
                .where(Place.is_active.is_(True))
                .order_by(Place.created_at.desc())
            ).all()
            return [PlaceRecord.model_validate(r) for r in rows]

    # ---------- members ----------

    def get_member(self, place_id: str, user_id: str) -> Optional[PlaceMemberRecord]:
        with self._session_factory() as db:
            member = db.get(PlaceMember, (place_id, user_id))
            return PlaceMemberRecord.model_validate(member) if member else None

    def upsert_member(self, place_id: str, user_id: str, lat: float, lng: float) -> PlaceMemberRecord:
        """
        Write the member as online and in range at (lat, lng).

        `joined_at` is only set the first time; a rejoin refreshes
        `last_seen`, clears `out_of_range` and reopens a closed record.
        """
        try:
            return self._write_member(place_id, user_id, lat, lng)
        except IntegrityError:
            # a concurrent insert for the same key won; overwrite it
            logger.warning(f"Member insert raced, retrying as update | place={place_id} user={user_id}")
            return self._write_member(place_id, user_id, lat, lng)

    def _write_member(self, place_id: str, user_id: str, lat: float, lng: float) -> PlaceMemberRecord:
        now = self._clock()
        with self._session_factory() as db:
            member = db.get(PlaceMember, (place_id, user_id))
            if member is None:
                member = PlaceMember(place_id=place_id, user_id=user_id, joined_at=now)
                db.add(member)
            elif member.joined_at is None:
                member.joined_at = now

            member.lat = lat
            member.lng = lng
            member.geohash = geohash(lat, lng, self._geohash_precision)
            member.is_online = True
            member.out_of_range = False
            member.last_seen = now
            member.left_at = None

            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                raise
            db.refresh(member)
            return PlaceMemberRecord.model_validate(member)

    def mark_online_status(
        self,
        place_id: str,
        user_id: str,
        is_online: bool,
        location: Optional[GeoPoint] = None,
    ) -> bool:
        """
        Refresh an open member record.

        A closed record (`left_at` or `out_of_range` set) is left alone and
        False is returned; only `upsert_member` reopens one.
        """
        fields = {"is_online": is_online, "last_seen": self._clock()}
        if location is not None:
            fields.update(
                lat=location.lat,
                lng=location.lng,
                geohash=geohash(location.lat, location.lng, self._geohash_precision),
            )
        return self._update_member(place_id, user_id, only_open=True, **fields)

    def mark_out_of_range(self, place_id: str, user_id: str) -> bool:
        return self._update_member(
            place_id,
            user_id,
            is_online=False,
            out_of_range=True,
            left_at=self._clock(),
        )

    def mark_left(self, place_id: str, user_id: str) -> bool:
        return self._update_member(
            place_id,
            user_id,
            is_online=False,
            left_at=self._clock(),
        )

    def _update_member(self, place_id: str, user_id: str, only_open: bool = False, **fields) -> bool:
        with self._session_factory() as db:
            member = db.get(PlaceMember, (place_id, user_id))
            if member is None:
                logger.warning(f"No member record to update | place={place_id} user={user_id}")
                return False
            if only_open and (member.left_at is not None or member.out_of_range):
                logger.info(f"Member record closed, not updating | place={place_id} user={user_id}")
                return False
            for key, value in fields.items():
                setattr(member, key, value)
            db.commit()
            return True

    def list_members(self, place_id: str) -> List[PlaceMemberRecord]:
        with self._session_factory() as db:
            rows = db.scalars(
                select(PlaceMember)
                .where(PlaceMember.place_id == place_id)
                .order_by(PlaceMember.joined_at, PlaceMember.user_id)
            ).all()
            return [PlaceMemberRecord.model_validate(r) for r in rows]

    def count_members(self, place_id: str) -> int:
        with self._session_factory() as db:
            count = db.scalar(
                select(func.count()).select_from(PlaceMember).where(PlaceMember.place_id == place_id)
            )
            return int(count or 0)
