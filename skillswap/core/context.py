from typing import Optional

from skillswap.chat.messages import MessageLog
from skillswap.delivery.events import EventBus
from skillswap.utils.profiles import ProfileCache


class MessagingContext:
    """
    Everything a conversation feed needs about "who am I and where do I talk".

    Built once per connected client and handed to the feed, instead of the
    feed reaching for module-level singletons.
    """

    def __init__(
        self,
        user_id: str,
        messages: MessageLog,
        bus: EventBus,
        profiles: Optional[ProfileCache] = None,
        poll_interval: float = 3.0,
    ):
        self.user_id = str(user_id)
        self.messages = messages
        self.bus = bus
        self.profiles = profiles
        self.poll_interval = poll_interval
