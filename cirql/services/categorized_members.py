from dataclasses import dataclass, field
from typing import List, Optional

from loguru import logger

from cirql.core.proximity_config import DEFAULT_RADIUS_METERS
from cirql.schemas.place import PlaceMemberRecord, PlaceUser
from cirql.schemas.presence import OnlinePresence
from cirql.schemas.profile import UserProfile
from cirql.services.membership_store import PlaceMembershipStore
from cirql.services.presence_store import PresenceStore
from cirql.services.profiles import ProfileResolver
from cirql.services.proximity import check_proximity


@dataclass
class CategorizedMembers:
    in_range: List[PlaceUser] = field(default_factory=list)
    out_of_range: List[PlaceUser] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.in_range) + len(self.out_of_range)


class CategorizedMembershipQuery:
    """
    Splits a place's members into in-range and out-of-range display lists.

    Each member's stored location is re-measured against the origin at read
    time. A member lands in `out_of_range` when the sticky flag is set or the
    re-measured distance exceeds the radius. Membership says who ever joined;
    when a presence store is given, `is_connected` shows who is live here now.
    The two are reported side by side, not reconciled.
    """

    def __init__(
        self,
        membership: PlaceMembershipStore,
        profiles: ProfileResolver,
        presence: Optional[PresenceStore] = None,
        radius_meters: float = DEFAULT_RADIUS_METERS,
    ):
        self._membership = membership
        self._profiles = profiles
        self._presence = presence
        self._radius_meters = radius_meters

    def categorize(self, place_id: str, origin_lat: float, origin_lng: float) -> CategorizedMembers:
        result = CategorizedMembers()

        for member in self._membership.list_members(place_id):
            profile = self._resolve_profile(member.user_id)
            if profile is None:
                continue

            check = check_proximity(
                member.lat, member.lng, origin_lat, origin_lng, self._radius_meters
            )
            user = self._display_user(place_id, member, profile, check.distance_meters)

            if member.out_of_range or not check.within:
                result.out_of_range.append(user)
            else:
                result.in_range.append(user)

        logger.debug(
            f"Categorized members | place={place_id} "
            f"in_range={len(result.in_range)} out_of_range={len(result.out_of_range)}"
        )
        return result

    def _resolve_profile(self, user_id: str) -> Optional[UserProfile]:
        try:
            profile = self._profiles.get_profile(user_id)
        except Exception:
            logger.exception(f"Profile lookup failed, dropping member | user={user_id}")
            return None
        if profile is None:
            logger.warning(f"No profile for member, dropping | user={user_id}")
        return profile

    def _display_user(
        self,
        place_id: str,
        member: PlaceMemberRecord,
        profile: UserProfile,
        distance: float,
    ) -> PlaceUser:
        return PlaceUser(
            user_id=member.user_id,
            display_name=profile.display_name,
            email=profile.email,
            headline=profile.headline,
            bio=profile.bio,
            profile_picture_url=profile.profile_picture_url,
            interests=profile.interests,
            location=member.location,
            distance_meters=distance,
            joined_at=member.joined_at,
            is_online=member.is_online,
            out_of_range=member.out_of_range,
            is_connected=self._is_connected(place_id, member.user_id),
        )

    def _is_connected(self, place_id: str, user_id: str) -> Optional[bool]:
        if self._presence is None:
            return None
        record = self._presence.get(user_id)
        return isinstance(record, OnlinePresence) and record.current_place == place_id
