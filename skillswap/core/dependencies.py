import logging

import jwt
from fastapi import Depends, HTTPException, Query
from fastapi.requests import HTTPConnection
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from skillswap.chat.annotations import ChatAnnotations
from skillswap.chat.attachments import AttachmentStore
from skillswap.chat.messages import MessageLog
from skillswap.core.config import Settings, get_settings
from skillswap.core.supabase_client import get_supabase
from skillswap.delivery.assistant import scripted_reply
from skillswap.delivery.engine import Responder
from skillswap.delivery.events import EventBus
from skillswap.notifications.service import NotificationSink
from skillswap.offers.service import OfferNegotiator
from skillswap.pairing.service import ConversationDirectory
from skillswap.presence.tracker import PresenceHub
from skillswap.utils.profiles import ProfileCache

logger = logging.getLogger(__name__)

security = HTTPBearer()


def decode_token(token: str, settings: Settings) -> dict:
    if not settings.jwt_secret:
        logger.error("SUPABASE_JWT_SECRET is not configured")
        raise HTTPException(status_code=500, detail="Authentication is not configured")

    try:
        return jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            issuer=settings.jwt_issuer,
            options={"verify_aud": False},
            leeway=60,
        )

    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")

    except jwt.InvalidTokenError as e:
        logger.info(f"jwt_verification_failed error={e}")
        raise HTTPException(status_code=401, detail="Invalid token")


def verify_token(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    settings: Settings = Depends(get_settings),
):
    return decode_token(credentials.credentials, settings)


def get_current_user_id(payload: dict = Depends(verify_token)) -> str:
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid authentication")
    return str(user_id)


def get_ws_user_id(
    token: str = Query(...),
    settings: Settings = Depends(get_settings),
) -> str:
    """Browsers cannot set headers on a WebSocket, so the JWT rides in the query."""
    return get_current_user_id(decode_token(token, settings))


# Shared in-process state lives on app.state


def get_event_bus(conn: HTTPConnection) -> EventBus:
    return conn.app.state.bus


def get_presence_hub(conn: HTTPConnection) -> PresenceHub:
    return conn.app.state.presence


def get_profile_cache(conn: HTTPConnection, client=Depends(get_supabase)) -> ProfileCache:
    cache = getattr(conn.app.state, "profiles", None)
    if cache is None or cache.client is not client:
        cache = ProfileCache(client)
        conn.app.state.profiles = cache
    return cache


def get_assistant_responder() -> Responder:
    return scripted_reply


# Services


def get_conversation_directory(client=Depends(get_supabase)) -> ConversationDirectory:
    return ConversationDirectory(client)


def get_attachment_store(
    client=Depends(get_supabase),
    settings: Settings = Depends(get_settings),
) -> AttachmentStore:
    return AttachmentStore(client, bucket=settings.attachments_bucket)


def get_message_log(
    client=Depends(get_supabase),
    conversations: ConversationDirectory = Depends(get_conversation_directory),
    attachments: AttachmentStore = Depends(get_attachment_store),
    bus: EventBus = Depends(get_event_bus),
) -> MessageLog:
    return MessageLog(client, conversations, attachments=attachments, bus=bus)


def get_notification_sink(
    client=Depends(get_supabase),
    bus: EventBus = Depends(get_event_bus),
) -> NotificationSink:
    return NotificationSink(client, bus=bus)


def get_offer_negotiator(
    client=Depends(get_supabase),
    conversations: ConversationDirectory = Depends(get_conversation_directory),
    messages: MessageLog = Depends(get_message_log),
    notifier: NotificationSink = Depends(get_notification_sink),
    bus: EventBus = Depends(get_event_bus),
) -> OfferNegotiator:
    return OfferNegotiator(client, conversations, messages, notifier, bus=bus)


def get_chat_annotations(client=Depends(get_supabase)) -> ChatAnnotations:
    return ChatAnnotations(client)
