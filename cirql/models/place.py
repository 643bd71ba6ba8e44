from sqlalchemy import Column, String, Float, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.sql import func

from cirql.core.db import Base


class Place(Base):
    __tablename__ = "places"

    id = Column(String, primary_key=True, index=True)
    name = Column(String, nullable=False)

    # geofence center, written once at creation
    origin_lat = Column(Float, nullable=False)
    origin_lng = Column(Float, nullable=False)
    origin_geohash = Column(String, nullable=True)

    created_by = Column(String, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_places_active", "is_active"),
    )


class PlaceMember(Base):
    __tablename__ = "place_members"

    place_id = Column(String, ForeignKey("places.id"), primary_key=True)
    user_id = Column(String, primary_key=True, index=True)

    lat = Column(Float, nullable=False)
    lng = Column(Float, nullable=False)
    geohash = Column(String, nullable=True)

    is_online = Column(Boolean, nullable=False, default=False)
    out_of_range = Column(Boolean, nullable=False, default=False)

    joined_at = Column(DateTime, nullable=True)
    last_seen = Column(DateTime, nullable=True)
    left_at = Column(DateTime, nullable=True)
