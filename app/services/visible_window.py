"""Ordered, de-duplicated slice of a user's timeline held in memory."""
from bisect import bisect_right
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from app.models.message import ChatMessageRead, OptimisticMessage, WindowEntry


def timeline_key(entry: WindowEntry) -> Tuple[datetime, str]:
    return (entry.created_at, entry.id)


class VisibleWindow:
    """
    Entries ascending by (created_at, id).

    ``_positions`` maps every entry id to its index. Optimistic entries use
    their temp id as id, so reconciliation is a dictionary lookup.
    """

    def __init__(self) -> None:
        self._entries: List[WindowEntry] = []
        self._positions: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, entry_id: str) -> bool:
        return entry_id in self._positions

    def entries(self) -> List[WindowEntry]:
        return list(self._entries)

    def get(self, entry_id: str) -> Optional[WindowEntry]:
        index = self._positions.get(entry_id)
        return self._entries[index] if index is not None else None

    def oldest_confirmed(self) -> Optional[ChatMessageRead]:
        for entry in self._entries:
            if isinstance(entry, ChatMessageRead):
                return entry
        return None

    def _reindex(self, start: int = 0) -> None:
        for index in range(start, len(self._entries)):
            self._positions[self._entries[index].id] = index

    def clear(self) -> None:
        self._entries.clear()
        self._positions.clear()

    def replace_all(self, entries: Iterable[WindowEntry]) -> None:
        self._entries = sorted(entries, key=timeline_key)
        self._positions = {}
        self._reindex()

    def insert(self, entry: WindowEntry) -> None:
        """Add an entry at its ordered position (normally the end)."""
        key = timeline_key(entry)
        if not self._entries or timeline_key(self._entries[-1]) <= key:
            self._positions[entry.id] = len(self._entries)
            self._entries.append(entry)
            return
        target = bisect_right([timeline_key(item) for item in self._entries], key)
        self._entries.insert(target, entry)
        self._reindex(target)

    def prepend(self, entries: Iterable[WindowEntry]) -> int:
        """
        Put an older page in front of the window.

        Entries already present are skipped. Returns how many were added.
        """
        fresh = [entry for entry in entries if entry.id not in self._positions]
        if not fresh:
            return 0
        fresh.sort(key=timeline_key)
        self._entries[:0] = fresh
        self._reindex()
        return len(fresh)

    def replace(self, entry_id: str, entry: WindowEntry) -> bool:
        """
        Swap the entry stored under ``entry_id`` for ``entry``.

        The replacement stays put when it still fits between its neighbours,
        otherwise it moves to its ordered position. Returns False when
        ``entry_id`` is not in the window.
        """
        index = self._positions.pop(entry_id, None)
        if index is None:
            return False

        if entry.id in self._positions:
            # Already present (e.g. delivered twice); just drop the stale entry
            del self._entries[index]
            self._positions = {}
            self._reindex()
            return True

        key = timeline_key(entry)
        fits_left = index == 0 or timeline_key(self._entries[index - 1]) <= key
        fits_right = index == len(self._entries) - 1 or key <= timeline_key(self._entries[index + 1])
        if fits_left and fits_right:
            self._entries[index] = entry
            self._positions[entry.id] = index
            return True

        del self._entries[index]
        keys = [timeline_key(item) for item in self._entries]
        target = bisect_right(keys, key)
        self._entries.insert(target, entry)
        self._positions = {}
        self._reindex()
        return True

    def optimistic(self) -> List[OptimisticMessage]:
        return [entry for entry in self._entries if isinstance(entry, OptimisticMessage)]
