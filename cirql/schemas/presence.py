from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from cirql.schemas.base import GeoPoint
from cirql.schemas.enums import LocationErrorCode


class PresenceDisplay(BaseModel):
    """Denormalized profile fields carried on an online record for fast rosters."""

    display_name: str = "User"
    email: str = ""
    profile_picture_url: Optional[str] = None
    headline: Optional[str] = None


class OfflinePresence(BaseModel):
    state: Literal["offline"] = "offline"
    last_changed: datetime


class OnlinePresence(PresenceDisplay):
    state: Literal["online"] = "online"
    last_changed: datetime
    current_place: Optional[str] = None
    location: Optional[GeoPoint] = None


PresenceRecord = Annotated[
    Union[OnlinePresence, OfflinePresence],
    Field(discriminator="state"),
]

presence_record_adapter = TypeAdapter(PresenceRecord)


class OnlineUser(OnlinePresence):
    user_id: str


# ---------- position reports ----------
class PresenceHeartbeatRequest(BaseModel):
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)
    accuracy: Optional[float] = None
    error_code: Optional[LocationErrorCode] = None


class PresenceHeartbeatResponse(BaseModel):
    status: str
    last_seen_at: datetime
    presence_updated: bool


class OnlineUsersResponse(BaseModel):
    users: List[OnlineUser]
