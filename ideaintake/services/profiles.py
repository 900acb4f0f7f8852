import time
from typing import Callable, Dict, Optional, Tuple

from ideaintake.models import UserProfile


class ProfileCache:
    """TTL cache in front of profile reads. Misses are cached too."""

    def __init__(self, store, ttl_seconds: float = 300.0, clock: Callable[[], float] = time.monotonic):
        self.store = store
        self.ttl = ttl_seconds
        self.clock = clock
        self._entries: Dict[str, Tuple[float, Optional[UserProfile]]] = {}

    async def get(self, user_id: str) -> Optional[UserProfile]:
        hit = self._entries.get(user_id)
        if hit is not None and self.clock() < hit[0]:
            return hit[1]
        profile = await self.store.get_profile(user_id)
        self._entries[user_id] = (self.clock() + self.ttl, profile)
        return profile

    def invalidate(self, user_id: str) -> None:
        self._entries.pop(user_id, None)

    def clear(self) -> None:
        self._entries.clear()
