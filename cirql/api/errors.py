from fastapi import HTTPException

from cirql.core.errors import (
    AlreadyExists,
    CirqlError,
    LocationUnavailable,
    NotPlaceCreator,
    PlaceNotFound,
    PresenceRegistrationError,
    SessionNotInRange,
    TooFarError,
)


def http_error(e: CirqlError) -> HTTPException:
    if isinstance(e, PlaceNotFound):
        return HTTPException(status_code=404, detail={"error": "Place not found", "place_id": e.place_id})
    if isinstance(e, TooFarError):
        return HTTPException(
            status_code=400,
            detail={
                "error": "You are too far from this place",
                "distance": round(e.distance_meters),
                "radius": round(e.radius_meters),
            },
        )
    if isinstance(e, LocationUnavailable):
        return HTTPException(status_code=400, detail={"error": e.message, "code": e.code.value})
    if isinstance(e, AlreadyExists):
        return HTTPException(status_code=409, detail={"error": str(e), "place_id": e.place_id})
    if isinstance(e, SessionNotInRange):
        return HTTPException(
            status_code=409,
            detail={"error": str(e), "place_id": e.place_id, "state": e.state.value},
        )
    if isinstance(e, NotPlaceCreator):
        return HTTPException(status_code=403, detail={"error": str(e)})
    if isinstance(e, PresenceRegistrationError):
        return HTTPException(status_code=503, detail={"error": str(e)})
    return HTTPException(status_code=400, detail={"error": str(e)})
