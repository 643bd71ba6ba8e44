"""Tests for PlaceMembershipStore."""

import pytest

from cirql.core.errors import AlreadyExists, NotPlaceCreator, PlaceNotFound
from cirql.schemas.base import GeoPoint
from cirql.services.geo import geohash


class TestPlaces:
    """Place records."""

    def test_create_and_get(self, membership, clock):
        """Created place is readable with its origin and geohash."""
        membership.create_place("ROOM1", "Room ROOM1", 40.0, -73.0, created_by="alice")

        place = membership.get_place("ROOM1")
        assert place.name == "Room ROOM1"
        assert place.origin.lat == 40.0
        assert place.origin.lng == -73.0
        assert place.origin_geohash == geohash(40.0, -73.0)
        assert place.created_by == "alice"
        assert place.is_active is True
        assert place.created_at == clock.now

    def test_get_missing(self, membership):
        """Unknown id raises PlaceNotFound."""
        with pytest.raises(PlaceNotFound, match="NOPE"):
            membership.get_place("NOPE")

    def test_create_duplicate(self, membership, room1):
        """A taken id raises AlreadyExists and keeps the original origin."""
        with pytest.raises(AlreadyExists):
            membership.create_place("ROOM1", "Other", 10.0, 10.0, created_by="bob")

        place = membership.get_place("ROOM1")
        assert (place.origin_lat, place.origin_lng) == (40.0, -73.0)
        assert place.created_by == "alice"

    def test_deactivate(self, membership, room1):
        """Deactivation flips is_active and hides the place from active listings."""
        membership.set_place_active("ROOM1", False)

        assert membership.get_place("ROOM1").is_active is False
        assert membership.list_active_places() == []

    def test_rename_by_creator(self, membership, room1):
        """Creator can rename; the origin does not move."""
        place = membership.rename_place("ROOM1", "  Lobby  ", requested_by="alice")

        assert place.name == "Lobby"
        assert (place.origin_lat, place.origin_lng) == (40.0, -73.0)

    def test_rename_by_other_user(self, membership, room1):
        """Only the creator may rename."""
        with pytest.raises(NotPlaceCreator):
            membership.rename_place("ROOM1", "Mine now", requested_by="bob")


class TestMembers:
    """Per-place member records."""

    def test_upsert_creates_online_member(self, membership, room1, clock):
        """First upsert creates an online, in-range member."""
        member = membership.upsert_member("ROOM1", "bob", 40.0, -73.0009)

        assert member.is_online is True
        assert member.out_of_range is False
        assert member.joined_at == clock.now
        assert member.last_seen == clock.now
        assert member.left_at is None
        assert member.geohash == geohash(40.0, -73.0009)

    def test_upsert_again_keeps_joined_at(self, membership, room1, clock):
        """Re-upsert keeps joined_at and advances last_seen."""
        first = membership.upsert_member("ROOM1", "bob", 40.0, -73.0)
        clock.advance(60)
        second = membership.upsert_member("ROOM1", "bob", 40.0, -73.0005)

        assert second.joined_at == first.joined_at
        assert second.last_seen > first.last_seen
        assert second.lng == -73.0005
        assert membership.count_members("ROOM1") == 1

    def test_upsert_clears_out_of_range(self, membership, room1):
        """Rejoining is the only thing that clears out_of_range."""
        membership.upsert_member("ROOM1", "bob", 40.0, -73.0)
        membership.mark_out_of_range("ROOM1", "bob")

        member = membership.upsert_member("ROOM1", "bob", 40.0, -73.0)
        assert member.out_of_range is False
        assert member.is_online is True
        assert member.left_at is None

    def test_mark_online_status(self, membership, room1, clock):
        """An open record gets its online flag and last_seen refreshed."""
        membership.upsert_member("ROOM1", "bob", 40.0, -73.0)
        clock.advance(30)

        assert membership.mark_online_status("ROOM1", "bob", True) is True

        member = membership.get_member("ROOM1", "bob")
        assert member.is_online is True
        assert member.out_of_range is False
        assert member.last_seen == clock.now

    def test_mark_online_status_skips_left_member(self, membership, room1, clock):
        """A left member is not brought back online by a refresh."""
        membership.upsert_member("ROOM1", "bob", 40.0, -73.0)
        membership.mark_left("ROOM1", "bob")
        left = membership.get_member("ROOM1", "bob")
        clock.advance(30)

        assert membership.mark_online_status("ROOM1", "bob", True) is False

        assert membership.get_member("ROOM1", "bob") == left

    def test_mark_online_status_skips_out_of_range_member(self, membership, room1, clock):
        """An out-of-range member stays offline; only a rejoin reopens it."""
        membership.upsert_member("ROOM1", "bob", 40.0, -73.0)
        membership.mark_out_of_range("ROOM1", "bob")
        clock.advance(30)

        assert membership.mark_online_status("ROOM1", "bob", True, location=GeoPoint(lat=40.0, lng=-73.0)) is False

        member = membership.get_member("ROOM1", "bob")
        assert member.is_online is False
        assert member.out_of_range is True

    def test_mark_online_status_with_location(self, membership, room1):
        """An optional location is written alongside the status."""
        membership.upsert_member("ROOM1", "bob", 40.0, -73.0)
        membership.mark_online_status("ROOM1", "bob", True, location=GeoPoint(lat=40.0002, lng=-73.0))

        member = membership.get_member("ROOM1", "bob")
        assert member.lat == 40.0002
        assert member.geohash == geohash(40.0002, -73.0)

    def test_mark_out_of_range(self, membership, room1, clock):
        """Out of range closes the record and sets the sticky flag."""
        membership.upsert_member("ROOM1", "bob", 40.0, -73.0)
        clock.advance(10)
        membership.mark_out_of_range("ROOM1", "bob")

        member = membership.get_member("ROOM1", "bob")
        assert member.is_online is False
        assert member.out_of_range is True
        assert member.left_at == clock.now

    def test_mark_left_leaves_out_of_range_alone(self, membership, room1):
        """Leaving does not clear out_of_range."""
        membership.upsert_member("ROOM1", "bob", 40.0, -73.0)
        membership.mark_out_of_range("ROOM1", "bob")
        membership.mark_left("ROOM1", "bob")

        member = membership.get_member("ROOM1", "bob")
        assert member.is_online is False
        assert member.out_of_range is True

    def test_mark_left(self, membership, room1, clock):
        """Leaving sets is_online False and left_at."""
        membership.upsert_member("ROOM1", "bob", 40.0, -73.0)
        membership.mark_left("ROOM1", "bob")

        member = membership.get_member("ROOM1", "bob")
        assert member.is_online is False
        assert member.out_of_range is False
        assert member.left_at == clock.now

    def test_updates_on_missing_member(self, membership, room1):
        """Updating a member that never joined is a logged no-op."""
        assert membership.mark_left("ROOM1", "ghost") is False
        assert membership.mark_out_of_range("ROOM1", "ghost") is False
        assert membership.mark_online_status("ROOM1", "ghost", True) is False
        assert membership.get_member("ROOM1", "ghost") is None

    def test_list_and_count(self, membership, room1):
        """Members are listed per place."""
        membership.create_place("ROOM2", "Room ROOM2", 10.0, 10.0, created_by="carol")
        membership.upsert_member("ROOM1", "bob", 40.0, -73.0)
        membership.upsert_member("ROOM1", "carol", 40.0, -73.0)
        membership.upsert_member("ROOM2", "dave", 10.0, 10.0)

        assert {m.user_id for m in membership.list_members("ROOM1")} == {"bob", "carol"}
        assert membership.count_members("ROOM1") == 2
        assert membership.count_members("ROOM2") == 1
        assert membership.list_members("EMPTY") == []
