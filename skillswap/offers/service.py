"""
Offer negotiation state machine.

``pending`` is the only non-terminal state; ``accepted`` and ``rejected`` are
never left again. Every transition is a conditional write on
``status = 'pending'``, so when two actors race the first write wins and the
loser sees ``InvalidState`` before any side effect runs.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

import httpx
from postgrest.exceptions import APIError

from skillswap.chat.messages import MessageLog
from skillswap.core.errors import (
    InvalidInput,
    InvalidState,
    NotFound,
    SwapChatError,
    TransientIO,
    Unauthorized,
    is_unique_violation,
    run_query,
)
from skillswap.delivery.events import EventBus, publish_rows
from skillswap.notifications.service import NotificationSink
from skillswap.pairing.service import ConversationDirectory
from .schemas import CreateOfferModel, OfferStatus

logger = logging.getLogger(__name__)

ACCEPTED_MESSAGE = "Accepted the swap offer! 🎉"

OPTIONAL_FIELDS = ("category", "format", "address", "schedule", "notes")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class OfferNegotiator:
    def __init__(
        self,
        client,
        conversations: ConversationDirectory,
        messages: MessageLog,
        notifier: NotificationSink,
        bus: Optional[EventBus] = None,
    ):
        self.client = client
        self.conversations = conversations
        self.messages = messages
        self.notifier = notifier
        self.bus = bus

    # Queries

    def get(self, offer_id: str) -> dict:
        res = run_query(
            self.client.table("swap_offers").select("*").eq("id", str(offer_id)).limit(1),
            "load offer",
        )
        if not res.data:
            raise NotFound("Offer not found")
        return res.data[0]

    def list_by_swap(self, swap_id: str) -> List[dict]:
        res = run_query(
            self.client.table("swap_offers")
            .select("*")
            .eq("swap_id", str(swap_id))
            .order("created_at", desc=True),
            "load offers",
        )
        return res.data or []

    def list_by_conversation(self, conversation_id: str) -> List[dict]:
        res = run_query(
            self.client.table("swap_offers")
            .select("*")
            .eq("conversation_id", str(conversation_id))
            .order("created_at", desc=True),
            "load offers",
        )
        return res.data or []

    def pending_for_user(self, user_id: str) -> List[dict]:
        res = run_query(
            self.client.table("swap_offers")
            .select("*")
            .eq("receiver_id", str(user_id))
            .eq("status", OfferStatus.PENDING.value)
            .order("created_at", desc=True),
            "load pending offers",
        )
        return res.data or []

    def _get_swap(self, swap_id: str) -> dict:
        res = run_query(
            self.client.table("swaps").select("*").eq("id", str(swap_id)).limit(1),
            "load swap",
        )
        if not res.data:
            raise NotFound("Swap not found")
        return res.data[0]

    # Transitions

    def create(self, sender_id: str, data: CreateOfferModel) -> dict:
        """
        Write a pending offer, then the chat message that carries it, then
        notify the receiver.

        If the offer insert fails nothing else happens. If the message insert
        fails the offer is removed again so the pair stays consistent.
        """
        sender_id = str(sender_id)
        receiver_id = str(data.receiver_id)
        conversation_id = str(data.conversation_id)

        conversation = self.conversations.require_participant(conversation_id, sender_id)
        if self.conversations.other_participant(conversation, sender_id) != receiver_id:
            raise InvalidInput("Offers can only be sent to the other participant.")

        if data.swap_id is not None:
            self._get_swap(str(data.swap_id))

        payload = {
            "conversation_id": conversation_id,
            "swap_id": str(data.swap_id) if data.swap_id else None,
            "sender_id": sender_id,
            "receiver_id": receiver_id,
            "title": data.title,
            "skill_offered": data.skill_offered,
            "skill_wanted": data.skill_wanted,
            "session_days": list(data.session_days),
            "duration": data.duration,
            "status": OfferStatus.PENDING.value,
        }
        for field in OPTIONAL_FIELDS:
            payload[field] = getattr(data, field)

        res = run_query(self.client.table("swap_offers").insert(payload), "create offer")
        offer = res.data[0]

        try:
            sent = self.messages.send(
                conversation_id, sender_id, receiver_id, content="", offer_id=offer["id"]
            )
        except SwapChatError:
            logger.error(f"offer_message_failed offer_id={offer['id']}, removing offer")
            self._discard(offer["id"])
            raise

        logger.info(
            f"offer_created offer_id={offer['id']} conversation_id={conversation_id} "
            f"swap_id={offer.get('swap_id')}"
        )
        publish_rows(self.bus, "insert", "swap_offers", [offer])

        self.notifier.notify(
            receiver_id,
            type="new_offer",
            title="New Swap Offer",
            body=f"You received a new proposal for: {data.title}",
            data={"conversation_id": conversation_id, "offer_id": offer["id"]},
            sender_id=sender_id,
        )

        return {"offer": offer, "message": sent["message"]}

    def _discard(self, offer_id: str):
        try:
            self.client.table("swap_offers").delete().eq("id", offer_id).execute()
        except Exception:
            logger.exception(f"offer_cleanup_failed offer_id={offer_id}")

    def _check_transition(self, offer: dict, acting_user: str):
        if offer["receiver_id"] != str(acting_user):
            raise Unauthorized("Only the receiver can respond to this offer")
        if offer["status"] != OfferStatus.PENDING.value:
            raise InvalidState(f"Offer is already {offer['status']}")

    def _transition(self, offer: dict, status: OfferStatus) -> dict:
        """Conditional write: only lands while the offer is still pending."""
        try:
            res = (
                self.client.table("swap_offers")
                .update({"status": status.value, "updated_at": _now()})
                .eq("id", offer["id"])
                .eq("status", OfferStatus.PENDING.value)
                .execute()
            )
        except APIError as error:
            if is_unique_violation(error):
                raise InvalidState("This conversation already has an accepted offer") from error
            raise TransientIO("Database error while updating offer.") from error
        except httpx.HTTPError as error:
            raise TransientIO("Backing store unreachable while updating offer.") from error

        if not res.data:
            # Someone else's transition landed first
            current = self.get(offer["id"])
            raise InvalidState(f"Offer is already {current['status']}")

        publish_rows(self.bus, "update", "swap_offers", res.data)
        return res.data[0]

    def accept(self, offer_id: str, acting_user: str) -> dict:
        offer = self.get(offer_id)
        self._check_transition(offer, acting_user)

        if offer.get("swap_id"):
            self._get_swap(offer["swap_id"])

        already = run_query(
            self.client.table("swap_offers")
            .select("id")
            .eq("conversation_id", offer["conversation_id"])
            .eq("status", OfferStatus.ACCEPTED.value)
            .limit(1),
            "check accepted offers",
        )
        if already.data:
            raise InvalidState("This conversation already has an accepted offer")

        accepted = self._transition(offer, OfferStatus.ACCEPTED)

        # Offer is now authoritative; later failures surface but do not unwind it
        swap = self._activate_swap(offer)
        rejected = self._reject_siblings(offer)

        logger.info(
            f"offer_accepted offer_id={offer['id']} swap_id={swap['id']} "
            f"cascade_rejected={len(rejected)}"
        )

        try:
            self.messages.send(
                offer["conversation_id"],
                acting_user,
                offer["sender_id"],
                content=ACCEPTED_MESSAGE,
            )
        except SwapChatError as error:
            logger.error(f"offer_confirmation_failed offer_id={offer['id']} detail={error.detail}")

        self.notifier.notify(
            offer["sender_id"],
            type="offer_accepted",
            title="Offer Accepted!",
            body=f"Your offer for {offer['title']} was accepted! The swap is now active.",
            data={
                "swap_id": swap["id"],
                "offer_id": offer["id"],
                "conversation_id": offer["conversation_id"],
            },
            sender_id=acting_user,
        )

        return {
            "offer": accepted,
            "swap": swap,
            "rejected_offer_ids": [row["id"] for row in rejected],
        }

    def _activate_swap(self, offer: dict) -> dict:
        if offer.get("swap_id"):
            res = run_query(
                self.client.table("swaps")
                .update(
                    {
                        "partner_id": offer["sender_id"],
                        "status": "active",
                        "conversation_id": offer["conversation_id"],
                        "origin_offer_id": offer["id"],
                    }
                )
                .eq("id", offer["swap_id"]),
                "activate swap",
            )
            if not res.data:
                raise NotFound("Swap not found")
            event = "update"
        else:
            # Chat-first proposal: the agreement is born here
            res = run_query(
                self.client.table("swaps").insert(
                    {
                        "user_id": offer["sender_id"],
                        "partner_id": offer["receiver_id"],
                        "title": offer.get("title") or "Untitled Swap",
                        "skill_offered": offer["skill_offered"],
                        "skill_wanted": offer["skill_wanted"],
                        "category": offer.get("category"),
                        "format": offer.get("format"),
                        "duration": offer["duration"],
                        "status": "active",
                        "conversation_id": offer["conversation_id"],
                        "origin_offer_id": offer["id"],
                    }
                ),
                "create swap",
            )
            event = "insert"

        publish_rows(self.bus, event, "swaps", res.data)
        return res.data[0]

    def _reject_siblings(self, offer: dict) -> List[dict]:
        if not offer.get("swap_id"):
            return []

        res = run_query(
            self.client.table("swap_offers")
            .update({"status": OfferStatus.REJECTED.value, "updated_at": _now()})
            .eq("swap_id", offer["swap_id"])
            .eq("status", OfferStatus.PENDING.value)
            .neq("id", offer["id"]),
            "reject competing offers",
        )
        rejected = res.data or []
        publish_rows(self.bus, "update", "swap_offers", rejected)
        return rejected

    def reject(self, offer_id: str, acting_user: str) -> dict:
        offer = self.get(offer_id)
        self._check_transition(offer, acting_user)

        rejected = self._transition(offer, OfferStatus.REJECTED)
        logger.info(f"offer_rejected offer_id={offer['id']}")

        self.notifier.notify(
            offer["sender_id"],
            type="offer_rejected",
            title="Offer Declined",
            body="Your offer was not accepted.",
            data={"swap_id": offer.get("swap_id"), "offer_id": offer["id"]},
            sender_id=acting_user,
        )
        return rejected

    def withdraw(self, offer_id: str, acting_user: str) -> dict:
        """Sender takes back a pending offer; it ends up ``rejected``."""
        offer = self.get(offer_id)
        if offer["sender_id"] != str(acting_user):
            raise Unauthorized("Only the sender can withdraw this offer")
        if offer["status"] != OfferStatus.PENDING.value:
            raise InvalidState(f"Offer is already {offer['status']}")

        withdrawn = self._transition(offer, OfferStatus.REJECTED)
        logger.info(f"offer_withdrawn offer_id={offer['id']}")
        return withdrawn
