import logging
import threading
from typing import Dict, Optional

from skillswap.core.errors import run_query

logger = logging.getLogger(__name__)


class ProfileCache:
    """
    Read-through cache over the ``profiles`` table.

    ``prime`` seeds an entry (e.g. the current user's profile restored from
    local storage) so views can paint before the first round trip.
    """

    def __init__(self, client):
        self.client = client
        self._lock = threading.Lock()
        self._profiles: Dict[str, dict] = {}

    def prime(self, profile: dict):
        with self._lock:
            self._profiles[str(profile["id"])] = dict(profile)

    def cached(self, user_id: str) -> Optional[dict]:
        with self._lock:
            return self._profiles.get(str(user_id))

    def invalidate(self, user_id: str):
        with self._lock:
            self._profiles.pop(str(user_id), None)

    def get_profile(self, user_id: str) -> Optional[dict]:
        """Get a user's profile by id, hitting the store only on a miss."""
        profile = self.cached(user_id)
        if profile is not None:
            return profile

        response = run_query(
            self.client.table("profiles").select("*").eq("id", str(user_id)).limit(1),
            "look up profile",
        )
        if not response.data:
            logger.warning(f"profile_missing user_id={user_id}")
            return None

        self.prime(response.data[0])
        return response.data[0]
