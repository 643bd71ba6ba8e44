import asyncio
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, WebSocket, WebSocketDisconnect
from loguru import logger
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from cirql.api.deps import (
    get_geolocation,
    get_presence_store,
    get_profile_resolver,
    get_realtime_db,
    get_session_controller,
)
from cirql.core.errors import PresenceRegistrationError
from cirql.core.timeutils import utcnow
from cirql.realtime.database import RealtimeDatabase
from cirql.schemas.presence import (
    OnlineUsersResponse,
    PresenceHeartbeatRequest,
    PresenceHeartbeatResponse,
)
from cirql.services.geolocation import ReportedPositionProvider
from cirql.services.place_session import PlaceSessionController
from cirql.services.presence_store import PresenceStore
from cirql.services.profiles import ProfileResolver, display_fields

router = APIRouter()


# ------------------------------------------------------------------
# HEARTBEAT
# ------------------------------------------------------------------

@router.post("/heartbeat", response_model=PresenceHeartbeatResponse)
def presence_heartbeat(
    payload: PresenceHeartbeatRequest,
    x_user_id: str = Header(...),
    geolocation: ReportedPositionProvider = Depends(get_geolocation),
    presence: PresenceStore = Depends(get_presence_store),
):
    now = utcnow()

    if payload.error_code is not None:
        geolocation.report_error(x_user_id, payload.error_code)
        return {"status": "error_recorded", "last_seen_at": now, "presence_updated": False}

    if payload.lat is None or payload.lng is None:
        raise HTTPException(status_code=400, detail="lat and lng are required unless error_code is set")

    geolocation.report(x_user_id, payload.lat, payload.lng, accuracy=payload.accuracy)
    updated = presence.update_location(x_user_id, payload.lat, payload.lng)

    return {"status": "ok", "last_seen_at": now, "presence_updated": updated}


@router.get("/online", response_model=OnlineUsersResponse)
def online_users(
    place_id: Optional[str] = None,
    presence: PresenceStore = Depends(get_presence_store),
):
    return {"users": presence.online_users(place_id)}


# ------------------------------------------------------------------
# REALTIME SOCKET
# ------------------------------------------------------------------

async def _pump(websocket: WebSocket, outbox: asyncio.Queue) -> None:
    while True:
        payload = await outbox.get()
        await websocket.send_json(payload)


@router.websocket("/ws")
async def presence_socket(
    websocket: WebSocket,
    user_id: str = Query(...),
    realtime: RealtimeDatabase = Depends(get_realtime_db),
    presence: PresenceStore = Depends(get_presence_store),
    geolocation: ReportedPositionProvider = Depends(get_geolocation),
    profiles: ProfileResolver = Depends(get_profile_resolver),
    controller: PlaceSessionController = Depends(get_session_controller),
):
    """
    One realtime presence session per open socket.

    Messages use the heartbeat shape (`lat`/`lng`/`accuracy` or
    `error_code`); malformed ones are logged and skipped. Closing the
    socket, cleanly or not, stops the user's proximity monitors and
    disconnects the realtime connection, which commits the staged offline
    record. Member records are not touched.
    """
    await websocket.accept()
    loop = asyncio.get_running_loop()
    outbox: asyncio.Queue = asyncio.Queue()

    def push(users) -> None:
        payload = {"type": "online_users", "users": [u.model_dump(mode="json") for u in users]}
        loop.call_soon_threadsafe(outbox.put_nowait, payload)

    connection = realtime.connect(user_id)
    unsubscribe = presence.subscribe_all_online(push)
    sender = asyncio.create_task(_pump(websocket, outbox))
    try:
        display = await run_in_threadpool(display_fields, profiles, user_id)
        presence.set_online(user_id, display)

        while True:
            raw = await websocket.receive_text()
            try:
                message = PresenceHeartbeatRequest.model_validate_json(raw)
            except ValidationError as e:
                logger.warning(f"Ignoring malformed presence message | user={user_id} errors={e.error_count()}")
                continue

            if message.error_code is not None:
                geolocation.report_error(user_id, message.error_code)
                continue
            if message.lat is None or message.lng is None:
                continue
            geolocation.report(user_id, message.lat, message.lng, accuracy=message.accuracy)
            presence.update_location(user_id, message.lat, message.lng)
    except WebSocketDisconnect:
        logger.info(f"Presence socket closed | user={user_id}")
    except PresenceRegistrationError as e:
        logger.warning(f"Presence socket could not go online | user={user_id} err={e}")
        await websocket.close(code=1011)
    finally:
        controller.stop_user_monitors(user_id)
        unsubscribe()
        connection.disconnect()

        sender.cancel()
        try:
            await sender
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.warning(f"Presence socket sender failed | user={user_id} err={e}")
