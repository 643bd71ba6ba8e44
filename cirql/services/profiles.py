from typing import Any, Callable, Dict, Optional, Protocol

from loguru import logger
from sqlalchemy.orm import sessionmaker

from cirql.core.db import SessionLocal
from cirql.models.profile import Profile
from cirql.schemas.presence import PresenceDisplay
from cirql.schemas.profile import UserProfile
from cirql.services.supabase_admin import supabase_admin


class ProfileResolver(Protocol):
    def get_profile(self, user_id: str) -> Optional[UserProfile]:
        ...


class LocalProfileResolver:
    """Profiles from the local `profiles` table."""

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self._session_factory = session_factory

    def get_profile(self, user_id: str) -> Optional[UserProfile]:
        with self._session_factory() as db:
            row = db.get(Profile, user_id)
            if row is None:
                return None
            return UserProfile(
                user_id=row.user_id,
                display_name=row.display_name or "Unknown User",
                email=row.email or "",
                headline=row.headline,
                bio=row.bio,
                profile_picture_url=row.profile_picture_url,
                interests=row.interests or [],
            )


class SupabaseProfileResolver:
    """Profiles from the Supabase `profiles` table."""

    def __init__(self, client_factory: Callable[[], Any] = supabase_admin):
        self._client_factory = client_factory

    def get_profile(self, user_id: str) -> Optional[UserProfile]:
        sb = self._client_factory()
        res = sb.table("profiles").select("*").eq("id", user_id).maybe_single().execute()
        if res is None or not res.data:
            return None
        return _profile_from_row(user_id, res.data)


def _profile_from_row(user_id: str, data: Dict[str, Any]) -> UserProfile:
    return UserProfile(
        user_id=user_id,
        display_name=data.get("display_name") or data.get("name") or "Unknown User",
        email=data.get("email") or "",
        headline=data.get("headline"),
        bio=data.get("bio"),
        profile_picture_url=data.get("profile_picture_url"),
        interests=data.get("interests") or [],
    )


def display_fields(resolver: ProfileResolver, user_id: str) -> PresenceDisplay:
    """Presence display fields for a user, falling back to defaults."""
    try:
        profile = resolver.get_profile(user_id)
    except Exception:
        logger.exception(f"Profile lookup failed | user={user_id}")
        profile = None

    if profile is None:
        return PresenceDisplay()
    return PresenceDisplay(
        display_name=profile.display_name,
        email=profile.email,
        profile_picture_url=profile.profile_picture_url,
        headline=profile.headline,
    )
