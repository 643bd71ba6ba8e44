from typing import List, Optional
from pydantic import Field

from cirql.schemas.base import BaseSchema


class UserProfile(BaseSchema):
    user_id: str
    display_name: str = "Unknown User"
    email: str = ""
    headline: Optional[str] = None
    bio: Optional[str] = None
    profile_picture_url: Optional[str] = None
    interests: List[str] = Field(default_factory=list)
