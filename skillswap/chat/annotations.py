import logging

import httpx
from postgrest.exceptions import APIError

from skillswap.core.errors import TransientIO, is_unique_violation, run_query

logger = logging.getLogger(__name__)

STARRED = "chat_starred"
ARCHIVED = "chat_archived"


class ChatAnnotations:
    """Per-user star/archive flags. Never touches the conversation row."""

    def __init__(self, client):
        self.client = client

    def _add(self, table: str, user_id: str, conversation_id: str):
        try:
            self.client.table(table).insert(
                {"user_id": str(user_id), "conversation_id": str(conversation_id)}
            ).execute()
        except APIError as error:
            # Already flagged
            if is_unique_violation(error):
                return
            raise TransientIO("Database error while updating chat metadata.") from error
        except httpx.HTTPError as error:
            raise TransientIO("Backing store unreachable while updating chat metadata.") from error

    def _remove(self, table: str, user_id: str, conversation_id: str):
        run_query(
            self.client.table(table)
            .delete()
            .eq("user_id", str(user_id))
            .eq("conversation_id", str(conversation_id)),
            "update chat metadata",
        )

    def _conversation_ids(self, table: str, user_id: str) -> set[str]:
        res = run_query(
            self.client.table(table).select("conversation_id").eq("user_id", str(user_id)),
            "load chat metadata",
        )
        return {row["conversation_id"] for row in res.data or []}

    def star(self, user_id: str, conversation_id: str):
        self._add(STARRED, user_id, conversation_id)

    def unstar(self, user_id: str, conversation_id: str):
        self._remove(STARRED, user_id, conversation_id)

    def archive(self, user_id: str, conversation_id: str):
        self._add(ARCHIVED, user_id, conversation_id)

    def unarchive(self, user_id: str, conversation_id: str):
        self._remove(ARCHIVED, user_id, conversation_id)

    def metadata(self, user_id: str) -> dict:
        return {
            "starred": self._conversation_ids(STARRED, user_id),
            "archived": self._conversation_ids(ARCHIVED, user_id),
        }
