import time
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Hashable, Iterator, Optional, Tuple, TypeVar

V = TypeVar("V")


class KeyedRegistry(Generic[V]):
    """In-process map owned by the bot, with explicit insertion and eviction."""

    def __init__(self, max_size: int = 1000, clock: Callable[[], float] = time.time):
        self._entries: Dict[Hashable, Tuple[float, V]] = {}
        self.max_size = max_size
        self.clock = clock

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[Hashable]:
        return iter(list(self._entries))

    def put(self, key: Hashable, value: V):
        if key not in self._entries and len(self._entries) >= self.max_size:
            self._evict_oldest()
        self._entries[key] = (self.clock(), value)

    def get(self, key: Hashable) -> Optional[V]:
        entry = self._entries.get(key)
        return entry[1] if entry else None

    def pop(self, key: Hashable) -> Optional[V]:
        entry = self._entries.pop(key, None)
        return entry[1] if entry else None

    def discard(self, key: Hashable, value: V) -> bool:
        """Remove the entry only if it still holds `value`."""
        if self.get(key) != value:
            return False
        del self._entries[key]
        return True

    def evict_older_than(self, max_age: float) -> int:
        cutoff = self.clock() - max_age
        stale = [key for key, (stamp, _) in self._entries.items() if stamp < cutoff]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def _evict_oldest(self):
        # Remove 10% of oldest entries
        count = max(1, len(self._entries) // 10)
        oldest = sorted(self._entries.items(), key=lambda item: item[1][0])[:count]
        for key, _ in oldest:
            del self._entries[key]


@dataclass
class LastMessage:
    channel_id: int
    guild_id: Optional[int]


class ActivityRegistry:
    """Per-process state the event cogs share: last channel per user, active trivia and drops."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self.last_channel: KeyedRegistry[LastMessage] = KeyedRegistry(max_size=10_000, clock=clock)
        self.active_trivia: KeyedRegistry[str] = KeyedRegistry(clock=clock)
        self.active_drops: KeyedRegistry[str] = KeyedRegistry(clock=clock)
