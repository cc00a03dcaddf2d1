"""Per-run URL queue and visited-set bookkeeping."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, MutableSet


class EnqueueStatus(str, Enum):
    """Result status for queue offers made while following links."""

    ENQUEUED = "enqueued"
    SKIPPED_QUEUED = "skipped_queued"
    SKIPPED_VISITED = "skipped_visited"
    SKIPPED_FULL = "skipped_full"


@dataclass(frozen=True, slots=True)
class EnqueueResult:
    """Outcome of one offer."""

    status: EnqueueStatus
    url: str

    @property
    def accepted(self) -> bool:
        return self.status == EnqueueStatus.ENQUEUED


class VisitedSet:
    """URLs processed in the current run.

    The backing store is any mutable set, so callers can hand in a shared or
    externally persisted implementation; the default is an in-memory `set`.
    """

    def __init__(self, store: MutableSet[str] | None = None) -> None:
        self._store: MutableSet[str] = store if store is not None else set()

    def __contains__(self, url: object) -> bool:
        return url in self._store

    def __len__(self) -> int:
        return len(self._store)

    def add(self, url: str) -> bool:
        """Mark URL visited; returns False if it already was."""

        if url in self._store:
            return False
        self._store.add(url)
        return True

    def clear(self) -> None:
        self._store.clear()


class UrlQueue:
    """FIFO of pending URLs with a membership set for O(1) offer checks.

    `extend` loads the discovery result as-is (duplicates included, they are
    counted when dequeued); `offer` is the guarded path used for discovered
    links and refuses URLs already pending, already visited, or beyond
    `max_size`.
    """

    def __init__(self, urls: Iterable[str] = (), *, max_size: int | None = None) -> None:
        self.max_size = max_size
        self._items: deque[str] = deque()
        self._members: dict[str, int] = {}
        self.extend(urls)

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def __contains__(self, url: object) -> bool:
        return url in self._members

    def extend(self, urls: Iterable[str]) -> int:
        added = 0
        for url in urls:
            self._push(url)
            added += 1
        return added

    def offer(self, url: str, *, visited: VisitedSet | None = None) -> EnqueueResult:
        if url in self._members:
            return EnqueueResult(EnqueueStatus.SKIPPED_QUEUED, url)
        if visited is not None and url in visited:
            return EnqueueResult(EnqueueStatus.SKIPPED_VISITED, url)
        if self.max_size is not None and len(self._items) >= self.max_size:
            return EnqueueResult(EnqueueStatus.SKIPPED_FULL, url)
        self._push(url)
        return EnqueueResult(EnqueueStatus.ENQUEUED, url)

    def pop(self) -> str:
        """Dequeue the oldest URL; raises IndexError when empty."""

        url = self._items.popleft()
        remaining = self._members[url] - 1
        if remaining:
            self._members[url] = remaining
        else:
            del self._members[url]
        return url

    def snapshot(self) -> list[str]:
        return list(self._items)

    def _push(self, url: str) -> None:
        self._items.append(url)
        self._members[url] = self._members.get(url, 0) + 1


__all__ = [
    "EnqueueResult",
    "EnqueueStatus",
    "UrlQueue",
    "VisitedSet",
]
