"""
Client-view delivery: one ``ConversationFeed`` per connected client.

Two producers feed the same message list for the open conversation:

* push - bus events for the ``messages`` table, merged with ``merge_by_id``
* poll - a periodic re-fetch, reconciled with ``replace_if_newer``

Both are torn down before another conversation is opened, so a feed never
holds subscriptions or timers for more than one conversation.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from fastapi.concurrency import run_in_threadpool

from skillswap.core.context import MessagingContext
from skillswap.core.errors import InvalidInput, SwapChatError
from .events import ChangeEvent, Subscription
from .merge import apply_update, merge_by_id, parse_timestamp, replace_if_newer, sort_messages

logger = logging.getLogger(__name__)

ASSISTANT_CONVERSATION_ID = "assistant"
ASSISTANT_USER_ID = "00000000-0000-4000-a000-000000000001"

Responder = Callable[[str, List[dict]], str]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ConversationList:
    """Inbox ordering: conversations by latest activity, newest first."""

    def __init__(self):
        self._activity: Dict[str, datetime] = {}

    def load(self, summaries: List[dict]):
        self._activity = {}
        for summary in summaries:
            last = summary.get("last_message")
            stamp = last["created_at"] if last else summary["created_at"]
            self._activity[summary["id"]] = parse_timestamp(stamp)

    def touch(self, conversation_id: str, created_at) -> bool:
        stamp = parse_timestamp(created_at)
        current = self._activity.get(conversation_id)
        if current is not None and current >= stamp:
            return False
        self._activity[conversation_id] = stamp
        return True

    def ordered(self) -> List[str]:
        return [
            cid
            for cid, _ in sorted(
                self._activity.items(), key=lambda item: (item[1], item[0]), reverse=True
            )
        ]


class ConversationFeed:
    def __init__(
        self,
        context: MessagingContext,
        responder: Optional[Responder] = None,
        on_change: Optional[Callable[[str], None]] = None,
    ):
        self.context = context
        self.responder = responder
        self.on_change = on_change

        self.conversation_id: Optional[str] = None
        self.other_user_id: Optional[str] = None
        # Offer rows for the open conversation only; cleared on close
        self.messages: List[dict] = []
        self.offers: Dict[str, dict] = {}
        self.conversations = ConversationList()
        self.foreground = True

        self._assistant_log: List[dict] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._conversation_subs: List[Subscription] = []
        self._user_subs: List[Subscription] = []
        self._poll_task: Optional[asyncio.Task] = None

    @property
    def user_id(self) -> str:
        return self.context.user_id

    @property
    def polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    def _changed(self, kind: str):
        if self.on_change is not None:
            self.on_change(kind)

    def _threadsafe(self, handler):
        # Bus callbacks fire on whichever thread committed the write
        loop = self._loop

        def callback(event: ChangeEvent):
            loop.call_soon_threadsafe(handler, event)

        return callback

    # Lifecycle

    async def start(self):
        """Subscribe the user-scoped streams and load the inbox."""
        self._loop = asyncio.get_running_loop()
        bus = self.context.bus
        self._user_subs = [
            bus.subscribe("messages", self._threadsafe(self.handle_inbox_event)),
            bus.subscribe("swap_offers", self._threadsafe(self.handle_offer_event)),
        ]

        summaries = await run_in_threadpool(
            self.context.messages.conversation_summaries, self.user_id, self.context.profiles
        )
        self.conversations.load(summaries)
        self._changed("conversations")

    async def open(self, conversation_id: str, other_user_id: Optional[str] = None):
        await self.close()
        if self._loop is None:
            self._loop = asyncio.get_running_loop()

        if conversation_id == ASSISTANT_CONVERSATION_ID:
            # Local-only persona: never subscribed, never polled
            self.conversation_id = conversation_id
            self.other_user_id = ASSISTANT_USER_ID
            self.messages = list(self._assistant_log)
            self._changed("messages")
            return

        if other_user_id is None:
            conversation = await run_in_threadpool(
                self.context.messages.conversations.require_participant,
                conversation_id,
                self.user_id,
            )
            other_user_id = self.context.messages.conversations.other_participant(
                conversation, self.user_id
            )
        self.conversation_id = conversation_id
        self.other_user_id = other_user_id

        # Subscribe before the first fetch so nothing lands in the gap
        self._conversation_subs = [
            self.context.bus.subscribe("messages", self._threadsafe(self.handle_message_event))
        ]
        fetched = await run_in_threadpool(self.context.messages.list, conversation_id)
        if self.conversation_id != conversation_id:
            return

        merged = sort_messages(fetched)
        for row in self.messages:
            merged, _ = merge_by_id(merged, row)
        self.messages = merged

        self._poll_task = asyncio.create_task(self._poll_loop(conversation_id))
        logger.debug(f"feed_opened user_id={self.user_id} conversation_id={conversation_id}")
        self._changed("messages")

    async def close(self):
        for sub in self._conversation_subs:
            sub.unsubscribe()
        self._conversation_subs = []

        if self._poll_task is not None:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None

        self.conversation_id = None
        self.other_user_id = None
        self.messages = []
        self.offers = {}

    async def shutdown(self):
        await self.close()
        for sub in self._user_subs:
            sub.unsubscribe()
        self._user_subs = []

    def set_foreground(self, active: bool):
        self.foreground = active

    # Push path

    def handle_message_event(self, event: ChangeEvent):
        row = event.row
        if self.conversation_id is None or row.get("conversation_id") != self.conversation_id:
            return

        if event.event_type == "insert":
            self.messages, changed = merge_by_id(self.messages, row)
        else:
            self.messages, changed = apply_update(self.messages, row)

        if changed:
            self._changed("messages")

    def handle_inbox_event(self, event: ChangeEvent):
        row = event.row
        if event.event_type != "insert":
            return
        if self.user_id not in (row.get("sender_id"), row.get("receiver_id")):
            return
        if self.conversations.touch(row["conversation_id"], row["created_at"]):
            self._changed("conversations")

    def handle_offer_event(self, event: ChangeEvent):
        row = event.row
        if self.user_id not in (row.get("sender_id"), row.get("receiver_id")):
            return
        if self.conversation_id is None or row.get("conversation_id") != self.conversation_id:
            return
        if self.offers.get(row["id"]) == row:
            return
        self.offers[row["id"]] = row
        self._changed("offers")

    # Poll path

    async def poll_once(self) -> bool:
        conversation_id = self.conversation_id
        if conversation_id is None or conversation_id == ASSISTANT_CONVERSATION_ID:
            return False

        fetched = await run_in_threadpool(self.context.messages.list, conversation_id)
        if self.conversation_id != conversation_id:
            return False

        self.messages, changed = replace_if_newer(self.messages, fetched)
        if changed:
            logger.info(
                f"feed_reconciled conversation_id={conversation_id} count={len(self.messages)}"
            )
            self._changed("messages")
        return changed

    async def _poll_loop(self, conversation_id: str):
        while self.conversation_id == conversation_id:
            await asyncio.sleep(self.context.poll_interval)
            if not self.foreground:
                continue
            try:
                await self.poll_once()
            except SwapChatError as error:
                # Next tick is the retry
                logger.warning(f"poll_failed conversation_id={conversation_id} detail={error.detail}")

    # Commands

    async def send(self, content: str) -> dict:
        if self.conversation_id is None:
            raise InvalidInput("No conversation is open.")
        if self.conversation_id == ASSISTANT_CONVERSATION_ID:
            return self._send_to_assistant(content)

        conversation_id = self.conversation_id
        local = {
            "id": str(uuid.uuid4()),
            "conversation_id": conversation_id,
            "sender_id": self.user_id,
            "receiver_id": self.other_user_id,
            "content": content,
            "offer_id": None,
            "read": False,
            "created_at": _now(),
            "pending": True,
        }
        self.messages, _ = merge_by_id(self.messages, local)
        self._changed("messages")

        try:
            result = await run_in_threadpool(
                self.context.messages.send,
                conversation_id,
                self.user_id,
                self.other_user_id,
                content,
                (),
                None,
                local["id"],
            )
        except SwapChatError:
            self.messages = [row for row in self.messages if row["id"] != local["id"]]
            self._changed("messages")
            raise

        if self.conversation_id == conversation_id:
            self.messages, _ = merge_by_id(self.messages, result["message"])
            self._changed("messages")
        return result["message"]

    def _send_to_assistant(self, content: str) -> dict:
        if self.responder is None:
            raise InvalidInput("Assistant chat is not available.")

        question = {
            "id": str(uuid.uuid4()),
            "conversation_id": ASSISTANT_CONVERSATION_ID,
            "sender_id": self.user_id,
            "receiver_id": ASSISTANT_USER_ID,
            "content": content,
            "offer_id": None,
            "read": True,
            "created_at": _now(),
        }
        self._assistant_log.append(question)

        reply = {
            "id": str(uuid.uuid4()),
            "conversation_id": ASSISTANT_CONVERSATION_ID,
            "sender_id": ASSISTANT_USER_ID,
            "receiver_id": self.user_id,
            "content": self.responder(content, list(self._assistant_log)),
            "offer_id": None,
            "read": True,
            "created_at": _now(),
        }
        self._assistant_log.append(reply)

        self.messages = list(self._assistant_log)
        self._changed("messages")
        return reply

    async def mark_read(self) -> int:
        if self.conversation_id in (None, ASSISTANT_CONVERSATION_ID):
            return 0
        return await run_in_threadpool(
            self.context.messages.mark_read, self.conversation_id, self.user_id
        )

    def snapshot(self) -> dict:
        return {
            "conversation_id": self.conversation_id,
            "messages": list(self.messages),
            "conversations": self.conversations.ordered(),
            "offers": list(self.offers.values()),
        }
