import asyncio
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder

from skillswap.core.config import Settings, get_settings
from skillswap.core.context import MessagingContext
from skillswap.core.dependencies import (
    get_assistant_responder,
    get_event_bus,
    get_message_log,
    get_profile_cache,
    get_ws_user_id,
)
from skillswap.core.errors import InvalidInput, SwapChatError
from skillswap.delivery.engine import ConversationFeed, Responder
from skillswap.delivery.events import EventBus
from skillswap.utils.profiles import ProfileCache
from .messages import MessageLog

logger = logging.getLogger(__name__)
router = APIRouter()


async def push_snapshots(websocket: WebSocket, feed: ConversationFeed, updates: asyncio.Queue):
    while True:
        await updates.get()
        # Coalesce bursts into one frame
        while not updates.empty():
            updates.get_nowait()
        await websocket.send_json({"type": "snapshot", **jsonable_encoder(feed.snapshot())})


async def handle_action(feed: ConversationFeed, frame: dict) -> dict | None:
    action = frame.get("action")

    if action == "open":
        await feed.open(str(frame["conversation_id"]))
    elif action == "close":
        await feed.close()
    elif action == "send":
        message = await feed.send(str(frame.get("content", "")))
        return {"type": "sent", "message": jsonable_encoder(message)}
    elif action == "read":
        return {"type": "read", "updated": await feed.mark_read()}
    elif action == "foreground":
        feed.set_foreground(bool(frame.get("active", True)))
    else:
        raise InvalidInput(f"Unknown action: {action}")
    return None


@router.websocket("/ws")
async def conversation_socket(
    websocket: WebSocket,
    user_id: str = Depends(get_ws_user_id),
    messages: MessageLog = Depends(get_message_log),
    bus: EventBus = Depends(get_event_bus),
    profiles: ProfileCache = Depends(get_profile_cache),
    settings: Settings = Depends(get_settings),
    responder: Responder = Depends(get_assistant_responder),
):
    """
    Live view of one conversation at a time.

    Client frames: `{"action": "open", "conversation_id": ...}`, `close`,
    `send` (`content`), `read`, `foreground` (`active`). The server answers
    with `snapshot` frames whenever the message list, inbox order or offer
    statuses change, and `error` frames for rejected actions.
    """
    await websocket.accept()

    updates: asyncio.Queue = asyncio.Queue()
    context = MessagingContext(
        user_id,
        messages,
        bus,
        profiles=profiles,
        poll_interval=settings.poll_interval_seconds,
    )
    feed = ConversationFeed(context, responder=responder, on_change=updates.put_nowait)
    writer = asyncio.create_task(push_snapshots(websocket, feed, updates))

    try:
        await feed.start()
        while True:
            frame = await websocket.receive_json()
            try:
                reply = await handle_action(feed, frame)
            except SwapChatError as error:
                reply = {"type": "error", "detail": error.detail}
            except (AttributeError, KeyError, TypeError):
                reply = {"type": "error", "detail": "Malformed frame"}
            if reply is not None:
                await websocket.send_json(reply)
    except WebSocketDisconnect:
        logger.info(f"chat_socket_closed user_id={user_id}")
    finally:
        writer.cancel()
        await feed.shutdown()
