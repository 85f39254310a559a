import logging
import uuid
from collections import Counter
from typing import Iterable, List, Optional

from skillswap.core.errors import InvalidInput, NotFound, Unauthorized, run_query
from skillswap.delivery.events import EventBus, publish_rows
from skillswap.delivery.merge import parse_timestamp, sort_messages
from skillswap.pairing.service import ConversationDirectory
from .attachments import AttachmentStore
from .schemas import AttachmentUpload

logger = logging.getLogger(__name__)


class MessageLog:
    """Append-only, per-conversation ordered message store."""

    def __init__(
        self,
        client,
        conversations: ConversationDirectory,
        attachments: Optional[AttachmentStore] = None,
        bus: Optional[EventBus] = None,
    ):
        self.client = client
        self.conversations = conversations
        self.attachments = attachments
        self.bus = bus

    def send(
        self,
        conversation_id: Optional[str],
        sender_id: str,
        receiver_id: str,
        content: str = "",
        attachments: Iterable[AttachmentUpload] = (),
        offer_id: Optional[str] = None,
        message_id: Optional[str] = None,
    ) -> dict:
        """
        Append one message, then link any attachments to it.

        The message row is authoritative: a failed insert raises
        ``TransientIO`` and nothing else is written, while a failed
        attachment is dropped and reported in ``failed_attachments``.
        ``message_id`` lets a client reuse the id of its optimistic copy.
        """
        content = (content or "").strip()
        uploads = list(attachments)

        if not content and not offer_id:
            raise InvalidInput("A message needs text or an offer.")
        if uploads and self.attachments is None:
            raise InvalidInput("Attachments are not enabled.")

        sender_id, receiver_id = str(sender_id), str(receiver_id)

        if conversation_id is None:
            conversation_id = self.conversations.get_or_create(sender_id, receiver_id)
        else:
            conversation = self.conversations.require_participant(conversation_id, sender_id)
            if self.conversations.other_participant(conversation, sender_id) != receiver_id:
                raise InvalidInput("Receiver is not the other participant of this conversation.")

        payload = {
            "id": message_id or str(uuid.uuid4()),
            "conversation_id": str(conversation_id),
            "sender_id": sender_id,
            "receiver_id": receiver_id,
            "content": content,
            "read": False,
        }
        if offer_id:
            payload["offer_id"] = str(offer_id)

        res = run_query(self.client.table("messages").insert(payload), "send message")
        message = res.data[0]

        logger.info(
            f"message_sent id={message['id']} conversation_id={conversation_id} "
            f"sender_id={sender_id}"
        )
        publish_rows(self.bus, "insert", "messages", [message])

        stored, failed = [], []
        if uploads:
            stored, failed = self.attachments.attach_all(message["id"], uploads)

        return {"message": message, "attachments": stored, "failed_attachments": failed}

    def list(self, conversation_id: str) -> List[dict]:
        res = run_query(
            self.client.table("messages")
            .select("*")
            .eq("conversation_id", str(conversation_id))
            .order("created_at", desc=False)
            .order("id", desc=False),
            "load messages",
        )
        # Re-sort locally; the (created_at, id) total order must not depend on the store
        return sort_messages(res.data or [])

    def get(self, message_id: str) -> dict:
        res = run_query(
            self.client.table("messages").select("*").eq("id", str(message_id)).limit(1),
            "load message",
        )
        if not res.data:
            raise NotFound("Message not found")
        return res.data[0]

    def last_message(self, conversation_id: str) -> Optional[dict]:
        res = run_query(
            self.client.table("messages")
            .select("*")
            .eq("conversation_id", str(conversation_id))
            .order("created_at", desc=True)
            .order("id", desc=True)
            .limit(1),
            "load last message",
        )
        return res.data[0] if res.data else None

    def mark_read(self, conversation_id: str, user_id: str) -> int:
        """Flip every unread message addressed to ``user_id``. Idempotent."""
        res = run_query(
            self.client.table("messages")
            .update({"read": True})
            .eq("conversation_id", str(conversation_id))
            .eq("receiver_id", str(user_id))
            .eq("read", False),
            "mark conversation as read",
        )
        updated = res.data or []

        if updated:
            logger.info(
                f"conversation_read conversation_id={conversation_id} "
                f"user_id={user_id} count={len(updated)}"
            )
        publish_rows(self.bus, "update", "messages", updated)
        return len(updated)

    def mark_message_read(self, message_id: str, user_id: str) -> dict:
        message = self.get(message_id)

        if message["receiver_id"] != str(user_id):
            raise Unauthorized("Only the receiver can mark a message as read")
        if message["read"]:
            return message

        res = run_query(
            self.client.table("messages")
            .update({"read": True})
            .eq("id", str(message_id))
            .eq("read", False),
            "mark message as read",
        )
        publish_rows(self.bus, "update", "messages", res.data)
        return res.data[0] if res.data else {**message, "read": True}

    def unread_counts(self, user_id: str) -> dict:
        res = run_query(
            self.client.table("messages")
            .select("id, conversation_id")
            .eq("receiver_id", str(user_id))
            .eq("read", False),
            "count unread messages",
        )
        rows = res.data or []
        by_conversation = Counter(row["conversation_id"] for row in rows)
        return {"total": len(rows), "by_conversation": dict(by_conversation)}

    def conversation_summaries(self, user_id: str, profiles=None) -> List[dict]:
        """
        Inbox view: every conversation of ``user_id`` with the other party,
        last message and unread count, most recently active first.
        """
        user_id = str(user_id)
        unread = self.unread_counts(user_id)["by_conversation"]
        summaries = []

        for conversation in self.conversations.list_for_user(user_id):
            other_id = self.conversations.other_participant(conversation, user_id)
            last = self.last_message(conversation["id"])

            summaries.append(
                {
                    "id": conversation["id"],
                    "other_user_id": other_id,
                    "other_profile": profiles.get_profile(other_id) if profiles else None,
                    "last_message": last,
                    "unread_count": unread.get(conversation["id"], 0),
                    "created_at": conversation["created_at"],
                }
            )

        summaries.sort(key=latest_activity, reverse=True)
        return summaries


def latest_activity(summary: dict):
    last = summary.get("last_message")
    if last:
        return parse_timestamp(last["created_at"])
    return parse_timestamp(summary["created_at"])
