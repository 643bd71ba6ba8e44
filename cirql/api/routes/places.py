from fastapi import APIRouter, Depends, Header, Query
from loguru import logger

from cirql.api.deps import (
    get_geolocation,
    get_membership_store,
    get_session_controller,
)
from cirql.api.errors import http_error
from cirql.core.errors import CirqlError
from cirql.core.proximity_config import NEARBY_PLACES_RADIUS_KM
from cirql.schemas.place import (
    CategorizedMembersResponse,
    JoinResponse,
    LeaveResponse,
    NearbyPlacesResponse,
    PlaceCreateRequest,
    PlaceJoinRequest,
    PlaceRecord,
    PlaceRenameRequest,
)
from cirql.services.geolocation import ReportedPositionProvider
from cirql.services.membership_store import PlaceMembershipStore
from cirql.services.nearby_places import find_nearby_places
from cirql.services.place_session import JoinResult, PlaceSessionController

router = APIRouter()


def _join_response(result: JoinResult, message: str, monitoring: bool) -> JoinResponse:
    return JoinResponse(
        message=message,
        place=result.place,
        distance_meters=round(result.distance_meters, 1),
        monitoring=monitoring,
    )


# ------------------------------------------------------------------
# CREATE / JOIN / LEAVE
# ------------------------------------------------------------------

@router.post("/create", response_model=JoinResponse)
def create_place(
    payload: PlaceCreateRequest,
    x_user_id: str = Header(...),
    controller: PlaceSessionController = Depends(get_session_controller),
    geolocation: ReportedPositionProvider = Depends(get_geolocation),
):
    logger.info(f"Place create | place={payload.place_id} user={x_user_id}")
    geolocation.report(x_user_id, payload.lat, payload.lng)

    try:
        result = controller.create_and_join_place(payload.place_id, x_user_id, name=payload.name)
        handle = controller.start_monitoring(payload.place_id, x_user_id)
    except CirqlError as e:
        raise http_error(e)

    created = result.place.created_by == x_user_id
    message = "Place created successfully" if created else "Successfully joined place"
    return _join_response(result, message, handle.active)


@router.post("/{place_id}/join", response_model=JoinResponse)
def join_place(
    place_id: str,
    payload: PlaceJoinRequest,
    x_user_id: str = Header(...),
    controller: PlaceSessionController = Depends(get_session_controller),
    geolocation: ReportedPositionProvider = Depends(get_geolocation),
):
    geolocation.report(x_user_id, payload.lat, payload.lng)

    try:
        result = controller.join_place(place_id, x_user_id)
        handle = controller.start_monitoring(place_id, x_user_id)
    except CirqlError as e:
        raise http_error(e)

    return _join_response(result, "Successfully joined place", handle.active)


@router.post("/{place_id}/leave", response_model=LeaveResponse)
def leave_place(
    place_id: str,
    x_user_id: str = Header(...),
    controller: PlaceSessionController = Depends(get_session_controller),
):
    controller.leave_place(place_id, x_user_id)
    return LeaveResponse()


# ------------------------------------------------------------------
# MEMBERS + STATE
# ------------------------------------------------------------------

@router.get("/{place_id}/users", response_model=CategorizedMembersResponse)
def place_users(
    place_id: str,
    controller: PlaceSessionController = Depends(get_session_controller),
):
    try:
        members = controller.get_categorized_members(place_id)
    except CirqlError as e:
        raise http_error(e)

    return CategorizedMembersResponse(in_range=members.in_range, out_of_range=members.out_of_range)


@router.get("/{place_id}/state")
def session_state(
    place_id: str,
    x_user_id: str = Header(...),
    controller: PlaceSessionController = Depends(get_session_controller),
):
    return {
        "place_id": place_id,
        "user_id": x_user_id,
        "state": controller.session_state(place_id, x_user_id).value,
        "monitoring": controller.monitoring(place_id, x_user_id) is not None,
    }


# ------------------------------------------------------------------
# MONITORING
# ------------------------------------------------------------------

@router.post("/{place_id}/monitor/start")
def start_monitoring(
    place_id: str,
    x_user_id: str = Header(...),
    controller: PlaceSessionController = Depends(get_session_controller),
):
    try:
        handle = controller.start_monitoring(place_id, x_user_id)
    except CirqlError as e:
        raise http_error(e)
    return {"monitoring": handle.active, "interval_seconds": handle.interval_seconds}


@router.post("/{place_id}/monitor/stop")
def stop_monitoring(
    place_id: str,
    x_user_id: str = Header(...),
    controller: PlaceSessionController = Depends(get_session_controller),
):
    stopped = controller.stop_monitoring(place_id, x_user_id)
    return {"monitoring": False, "stopped": stopped}


# ------------------------------------------------------------------
# PLACE ADMIN + DISCOVERY
# ------------------------------------------------------------------

@router.put("/{place_id}/name", response_model=PlaceRecord)
def rename_place(
    place_id: str,
    payload: PlaceRenameRequest,
    x_user_id: str = Header(...),
    membership: PlaceMembershipStore = Depends(get_membership_store),
):
    try:
        return membership.rename_place(place_id, payload.name, requested_by=x_user_id)
    except CirqlError as e:
        raise http_error(e)


@router.get("/nearby", response_model=NearbyPlacesResponse)
def nearby_places(
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    radius_km: float = Query(NEARBY_PLACES_RADIUS_KM, gt=0),
    membership: PlaceMembershipStore = Depends(get_membership_store),
):
    places = find_nearby_places(membership, lat, lng, radius_km)
    return NearbyPlacesResponse(places=places, count=len(places))
