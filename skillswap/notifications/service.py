import logging
from typing import Any, Dict, Optional

from skillswap.delivery.events import EventBus, publish_rows

logger = logging.getLogger(__name__)

notifications_sql = """
CREATE TABLE notifications (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id UUID NOT NULL REFERENCES auth.users(id) ON DELETE CASCADE,
    sender_id UUID REFERENCES auth.users(id) ON DELETE SET NULL,
    type TEXT NOT NULL,
    title TEXT NOT NULL,
    body TEXT NOT NULL,
    data JSONB NOT NULL DEFAULT '{}'::jsonb,
    read BOOLEAN NOT NULL DEFAULT FALSE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""


class NotificationSink:
    """
    Fire-and-forget notifications.

    ``notify`` never raises: the operation that triggered it has already
    committed, so a failure here is logged and reported as ``None``.
    """

    def __init__(self, client, bus: Optional[EventBus] = None):
        self.client = client
        self.bus = bus

    def notify(
        self,
        user_id: str,
        type: str,
        title: str,
        body: str,
        data: Optional[Dict[str, Any]] = None,
        sender_id: Optional[str] = None,
    ) -> Optional[dict]:
        try:
            res = (
                self.client.table("notifications")
                .insert(
                    {
                        "user_id": str(user_id),
                        "sender_id": str(sender_id) if sender_id else None,
                        "type": type,
                        "title": title,
                        "body": body,
                        "data": data or {},
                        "read": False,
                    }
                )
                .execute()
            )
        except Exception:
            logger.exception(f"notification_failed user_id={user_id} type={type}")
            return None

        row = res.data[0] if res.data else None
        if row:
            publish_rows(self.bus, "insert", "notifications", [row])
        return row
