from fastapi import APIRouter

from cirql.api.routes import places
from cirql.api.routes import presence

api_router = APIRouter(prefix="/v1")

api_router.include_router(places.router, prefix="/places", tags=["places"])
api_router.include_router(presence.router, prefix="/presence", tags=["presence"])
