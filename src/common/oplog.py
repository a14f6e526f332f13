from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Deque, Iterator, List, Tuple


DEFAULT_CAPACITY = 10


@dataclass(frozen=True)
class OperationLogEntry:
    local_timestamp: datetime
    description: str

    def format(self) -> str:
        return f"{self.local_timestamp.strftime('%H:%M:%S')}: {self.description}"


class OperationLog:
    """
    Bounded, newest-first audit trail of completed operations.

    Entries are only ever removed by capacity eviction: appending to a full
    log drops the oldest entry.
    """

    def __init__(self, *, capacity: int = DEFAULT_CAPACITY, clock: Callable[[], datetime] = datetime.now) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        self._entries: Deque[OperationLogEntry] = deque(maxlen=capacity)
        self._clock = clock

    def record(self, description: str) -> OperationLogEntry:
        entry = OperationLogEntry(local_timestamp=self._clock(), description=description)
        self._entries.appendleft(entry)
        return entry

    @property
    def entries(self) -> Tuple[OperationLogEntry, ...]:
        return tuple(self._entries)

    def lines(self) -> List[str]:
        return [e.format() for e in self._entries]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[OperationLogEntry]:
        return iter(tuple(self._entries))


__all__ = ["OperationLog", "OperationLogEntry", "DEFAULT_CAPACITY"]
