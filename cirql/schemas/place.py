from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from cirql.schemas.base import BaseSchema, GeoPoint


class PlaceRecord(BaseSchema):
    id: str
    name: str
    origin_lat: float
    origin_lng: float
    origin_geohash: Optional[str] = None
    created_by: str
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def origin(self) -> GeoPoint:
        return GeoPoint(lat=self.origin_lat, lng=self.origin_lng)


class PlaceMemberRecord(BaseSchema):
    place_id: str
    user_id: str
    lat: float
    lng: float
    geohash: Optional[str] = None
    is_online: bool
    out_of_range: bool
    joined_at: Optional[datetime] = None
    last_seen: Optional[datetime] = None
    left_at: Optional[datetime] = None

    @property
    def location(self) -> GeoPoint:
        return GeoPoint(lat=self.lat, lng=self.lng)


class NearbyPlace(BaseModel):
    place: PlaceRecord
    distance_km: float
    member_count: int


# ---------- requests ----------
class PlaceCreateRequest(BaseModel):
    place_id: str = Field(..., min_length=1)
    name: Optional[str] = None
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class PlaceJoinRequest(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class PlaceRenameRequest(BaseModel):
    name: str = Field(..., min_length=1)


# ---------- responses ----------
class JoinResponse(BaseModel):
    success: bool = True
    message: str
    place: PlaceRecord
    distance_meters: float
    monitoring: bool


class LeaveResponse(BaseModel):
    success: bool = True
    message: str = "Successfully left place"


class PlaceUser(BaseModel):
    user_id: str
    display_name: str
    email: str = ""
    headline: Optional[str] = None
    bio: Optional[str] = None
    profile_picture_url: Optional[str] = None
    interests: List[str] = Field(default_factory=list)
    location: GeoPoint
    distance_meters: float
    joined_at: Optional[datetime] = None
    is_online: bool
    out_of_range: bool
    is_connected: Optional[bool] = None


class CategorizedMembersResponse(BaseModel):
    in_range: List[PlaceUser]
    out_of_range: List[PlaceUser]


class NearbyPlacesResponse(BaseModel):
    success: bool = True
    places: List[NearbyPlace]
    count: int
