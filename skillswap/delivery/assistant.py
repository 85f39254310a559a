"""
Default responder for the local assistant conversation.

The reply text is deliberately fixed; anything smarter is plugged in by
overriding ``get_assistant_responder``.
"""

from typing import List

FALLBACK_REPLY = (
    "I'm having a little trouble connecting right now. 😅 Please try again in a "
    "moment, or feel free to explore the swaps on your own!"
)


def scripted_reply(text: str, history: List[dict]) -> str:
    return FALLBACK_REPLY
