import asyncio
import logging
from datetime import datetime, timezone
from typing import List

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel

from skillswap.core.dependencies import get_current_user_id, get_presence_hub, get_ws_user_id
from skillswap.core.errors import NotFound, run_query
from skillswap.core.supabase_client import get_supabase
from .tracker import DisplayStatus, PresenceHub, display_status

logger = logging.getLogger(__name__)
router = APIRouter()


class OnlineUsersResponseModel(BaseModel):
    online: List[str]


class UserStatusResponseModel(BaseModel):
    user_id: str
    status: DisplayStatus


@router.get("/online", response_model=OnlineUsersResponseModel, status_code=200)
def get_online_users(
    user_id: str = Depends(get_current_user_id),
    hub: PresenceHub = Depends(get_presence_hub),
):
    """Advisory only: users can linger here briefly after disconnecting."""
    return {"online": sorted(hub.online())}


@router.get("/status/{target_id}", response_model=UserStatusResponseModel, status_code=200)
def get_user_status(
    target_id: str,
    user_id: str = Depends(get_current_user_id),
    hub: PresenceHub = Depends(get_presence_hub),
    client=Depends(get_supabase),
):
    """
    Display status for one user, from the profile's `status` and `last_seen`.
    A user with an open presence socket counts as seen just now.
    """
    res = run_query(
        client.table("profiles").select("id, status, last_seen").eq("id", target_id).limit(1),
        "load profile status",
    )
    if not res.data:
        raise NotFound("User not found")

    profile = res.data[0]
    last_seen = profile.get("last_seen")
    if target_id in hub.online():
        last_seen = datetime.now(timezone.utc)
    return {"user_id": target_id, "status": display_status(profile.get("status"), last_seen)}


@router.websocket("/ws")
async def presence_socket(
    websocket: WebSocket,
    user_id: str = Depends(get_ws_user_id),
    hub: PresenceHub = Depends(get_presence_hub),
):
    """
    Announce the caller as online for the life of the socket and stream
    `sync` / `join` / `leave` frames. Send `{"action": "sync"}` to ask for a
    full resync.
    """
    await websocket.accept()

    loop = asyncio.get_running_loop()
    events: asyncio.Queue = asyncio.Queue()
    # track/untrack may run on another connection's thread
    unsubscribe = hub.subscribe(lambda event: loop.call_soon_threadsafe(events.put_nowait, event))
    hub.track(user_id)

    async def forward():
        while True:
            event = await events.get()
            await websocket.send_json(jsonable_encoder(event))

    writer = asyncio.create_task(forward())

    try:
        while True:
            frame = await websocket.receive_json()
            if isinstance(frame, dict) and frame.get("action") == "sync":
                hub.resync()
    except WebSocketDisconnect:
        pass
    finally:
        writer.cancel()
        unsubscribe()
        hub.untrack(user_id)
