import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional


@dataclass(frozen=True)
class CacheEntry:
    address: str
    expires_at: float


class PodCache:
    """
    Process-wide podId -> address mapping with a fixed TTL.

    Expiry is checked lazily on lookup; there is no background sweep and no
    size-based eviction. ``put`` always replaces the whole entry, so racing
    discovery rounds for one podId resolve to the last writer.
    """

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, pod_id: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(pod_id)
            if entry is None:
                return None
            if self._clock() < entry.expires_at:
                return entry.address
            del self._entries[pod_id]
            return None

    def put(self, pod_id: str, address: str) -> CacheEntry:
        entry = CacheEntry(address=address, expires_at=self._clock() + self.ttl)
        with self._lock:
            self._entries[pod_id] = entry
        return entry

    def invalidate(self, pod_id: str) -> None:
        with self._lock:
            self._entries.pop(pod_id, None)

    def __contains__(self, pod_id: str) -> bool:
        return self.get(pod_id) is not None

    def __len__(self) -> int:
        with self._lock:
            now = self._clock()
            return sum(1 for entry in self._entries.values() if now < entry.expires_at)
