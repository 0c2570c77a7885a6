import time
from typing import Callable, Dict

from manager.config import ManagerConfig


class StopIntentRegistry:
    """Server ids that are being stopped on purpose.

    Entries expire after ``ttl`` seconds and are never persisted; they only
    keep the health monitor from reporting a deliberate stop as a crash.
    """

    def __init__(self, ttl: float = ManagerConfig.STOP_INTENT_TTL,
                 clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._expires: Dict[str, float] = {}

    def mark(self, server_id: str):
        self._expires[server_id] = self._clock() + self.ttl

    def is_marked(self, server_id: str) -> bool:
        expires = self._expires.get(server_id)
        if expires is None:
            return False
        if self._clock() >= expires:
            del self._expires[server_id]
            return False
        return True

    def discard(self, server_id: str):
        self._expires.pop(server_id, None)

    def __len__(self):
        now = self._clock()
        for server_id in [s for s, e in self._expires.items() if now >= e]:
            del self._expires[server_id]
        return len(self._expires)
