"""
Merge functions for the two message producers (push and poll).

Every list returned from here is sorted by ``(created_at, id)``.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

Row = Dict[str, Any]


def parse_timestamp(value) -> datetime:
    if isinstance(value, datetime):
        ts = value
    else:
        ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))

    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def message_sort_key(row: Row):
    return (parse_timestamp(row["created_at"]), str(row["id"]))


def sort_messages(rows: Iterable[Row]) -> List[Row]:
    return sorted(rows, key=message_sort_key)


def merge_by_id(current: List[Row], incoming: Row) -> tuple[List[Row], bool]:
    """
    Add ``incoming`` unless a message with its id is already present.

    Returns the new list and whether anything changed. Redelivery of the same
    id is a no-op, except that a confirmed row replaces a local pending copy.
    """
    for index, row in enumerate(current):
        if row["id"] == incoming["id"]:
            if row.get("pending") and not incoming.get("pending"):
                updated = list(current)
                updated[index] = incoming
                return sort_messages(updated), True
            return current, False

    return sort_messages([*current, incoming]), True


def apply_update(current: List[Row], updated: Row) -> tuple[List[Row], bool]:
    """Swap in a changed row (e.g. read flag) if we hold that id."""
    for index, row in enumerate(current):
        if row["id"] == updated["id"]:
            if row == updated:
                return current, False
            rows = list(current)
            rows[index] = {**row, **updated}
            return rows, True
    return current, False


def tail_id(rows: List[Row]) -> Optional[str]:
    return rows[-1]["id"] if rows else None


def replace_if_newer(current: List[Row], fetched: List[Row]) -> tuple[List[Row], bool]:
    """
    Reconcile a polled snapshot with the local list.

    The confirmed part of ``current`` is replaced wholesale when the fetched
    tail differs by count or by last id. A shorter fetch is treated as stale
    and ignored. Local pending (unconfirmed) messages survive until their id
    shows up in the fetched result.
    """
    fetched = sort_messages(fetched)
    confirmed = [row for row in current if not row.get("pending")]
    pending = [row for row in current if row.get("pending")]

    if len(fetched) < len(confirmed):
        return current, False

    fetched_ids = {row["id"] for row in fetched}
    still_pending = [row for row in pending if row["id"] not in fetched_ids]

    unchanged = len(fetched) == len(confirmed) and tail_id(fetched) == tail_id(
        sort_messages(confirmed)
    )
    if unchanged and len(still_pending) == len(pending):
        return current, False

    return sort_messages([*fetched, *still_pending]), True
