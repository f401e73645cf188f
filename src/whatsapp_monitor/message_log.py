"""Bounded in-memory log of captured group messages."""

from __future__ import annotations

from collections import deque
from typing import Iterator

from .models import NormalizedMessage

DEFAULT_CAPACITY = 500
DEFAULT_LIST_LIMIT = 100


class CapturedMessageLog:
    """Keep the most recent captured messages, newest first."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        self._capacity = max(1, int(capacity))
        self._entries: deque[NormalizedMessage] = deque(maxlen=self._capacity)

    @property
    def capacity(self) -> int:
        return self._capacity

    def admit(self, message: NormalizedMessage) -> None:
        """Insert ``message`` at the head; the oldest entry drops off when full.

        Redelivered ids are not collapsed, so the log may hold several
        entries with the same id.
        """

        self._entries.appendleft(message)

    def find(self, message_id: str) -> NormalizedMessage | None:
        for message in self._entries:
            if message.id == message_id:
                return message
        return None

    def list(self, limit: int = DEFAULT_LIST_LIMIT) -> list[NormalizedMessage]:
        if limit <= 0:
            return []
        result: list[NormalizedMessage] = []
        for message in self._entries:
            if len(result) >= limit:
                break
            result.append(message)
        return result

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[NormalizedMessage]:
        return iter(self._entries)
