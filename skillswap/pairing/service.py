import logging
from typing import List

import httpx
from postgrest.exceptions import APIError

from skillswap.core.errors import (
    InvalidInput,
    NotFound,
    TransientIO,
    Unauthorized,
    is_unique_violation,
    run_query,
)

logger = logging.getLogger(__name__)


def canonical_pair(user_a: str, user_b: str) -> tuple[str, str]:
    """Lower id first. Both directions of a pair map to the same key."""
    u1, u2 = sorted([str(user_a), str(user_b)])
    return u1, u2


class ConversationDirectory:
    """Identity & pairing: one conversation row per unordered user pair."""

    def __init__(self, client):
        self.client = client

    def get_or_create(self, user_a: str, user_b: str) -> str:
        """
        Resolve the conversation between two users, creating it if needed.

        The ``get_or_create_conversation`` RPC does this atomically against the
        ``unique_conversation_pair`` constraint. If the RPC is unavailable we
        fall back to read-then-insert; a lost insert race surfaces as a unique
        violation and is resolved by re-reading.
        """
        if str(user_a) == str(user_b):
            raise InvalidInput("A conversation needs two different participants.")

        u1, u2 = canonical_pair(user_a, user_b)

        try:
            res = self.client.rpc(
                "get_or_create_conversation", {"uid1": u1, "uid2": u2}
            ).execute()
            if res.data:
                return str(res.data)
            logger.warning(f"pairing_rpc_empty user1={u1} user2={u2}")
        except APIError as error:
            logger.warning(
                f"pairing_rpc_unavailable user1={u1} user2={u2} code={error.code}, "
                "falling back to read-then-insert"
            )
        except httpx.HTTPError as error:
            raise TransientIO("Backing store unreachable while resolving conversation.") from error

        return self._find_or_insert(u1, u2)

    def _find_or_insert(self, u1: str, u2: str) -> str:
        existing = self._find(u1, u2)
        if existing:
            return existing

        try:
            res = (
                self.client.table("conversations")
                .insert({"user1_id": u1, "user2_id": u2})
                .execute()
            )
            logger.info(f"conversation_created id={res.data[0]['id']} user1={u1} user2={u2}")
            return str(res.data[0]["id"])
        except APIError as error:
            if not is_unique_violation(error):
                raise TransientIO("Database error while creating conversation.") from error
        except httpx.HTTPError as error:
            raise TransientIO("Backing store unreachable while creating conversation.") from error

        # Lost the race: the winner's row is there now
        existing = self._find(u1, u2)
        if not existing:
            raise TransientIO("Conversation vanished after a pairing conflict.")
        return existing

    def _find(self, u1: str, u2: str):
        res = run_query(
            self.client.table("conversations")
            .select("id, created_at")
            .eq("user1_id", u1)
            .eq("user2_id", u2)
            .order("created_at", desc=False)
            .order("id", desc=False),
            "look up conversation",
        )
        rows = res.data or []

        if len(rows) > 1:
            logger.error(
                f"duplicate_conversation_rows user1={u1} user2={u2} "
                f"ids={[row['id'] for row in rows]} using={rows[0]['id']}"
            )

        return str(rows[0]["id"]) if rows else None

    def get(self, conversation_id: str) -> dict:
        res = run_query(
            self.client.table("conversations")
            .select("*")
            .eq("id", str(conversation_id))
            .limit(1),
            "load conversation",
        )
        if not res.data:
            raise NotFound("Conversation not found")
        return res.data[0]

    def require_participant(self, conversation_id: str, user_id: str) -> dict:
        conversation = self.get(conversation_id)
        if str(user_id) not in (conversation["user1_id"], conversation["user2_id"]):
            raise Unauthorized("You are not a member of this conversation")
        return conversation

    @staticmethod
    def other_participant(conversation: dict, user_id: str) -> str:
        if conversation["user1_id"] == str(user_id):
            return conversation["user2_id"]
        return conversation["user1_id"]

    def list_for_user(self, user_id: str) -> List[dict]:
        user_id = str(user_id)
        as_first = run_query(
            self.client.table("conversations").select("*").eq("user1_id", user_id),
            "list conversations",
        )
        as_second = run_query(
            self.client.table("conversations").select("*").eq("user2_id", user_id),
            "list conversations",
        )
        return [*(as_first.data or []), *(as_second.data or [])]
