"""Just enough of redis.Redis for the connection lock."""

import time
from typing import Any, Dict, Optional, Tuple


class FakeRedis:
    def __init__(self) -> None:
        self.store: Dict[str, Tuple[Any, Optional[float]]] = {}

    def _alive(self, key: str) -> bool:
        entry = self.store.get(key)
        if entry is None:
            return False
        _, expires_at = entry
        if expires_at is not None and expires_at <= time.monotonic():
            del self.store[key]
            return False
        return True

    def set(self, key: str, value: Any, nx: bool = False, ex: Optional[int] = None):
        if nx and self._alive(key):
            return None
        expires_at = time.monotonic() + ex if ex else None
        self.store[key] = (value, expires_at)
        return True

    def get(self, key: str):
        if not self._alive(key):
            return None
        return self.store[key][0]

    def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._alive(key):
                del self.store[key]
                removed += 1
        return removed

    def eval(self, script: str, numkeys: int, *keys_and_args: Any) -> int:
        """Only the compare-and-delete release script is supported."""
        key, token = keys_and_args[0], keys_and_args[numkeys]
        if self.get(key) == token:
            return self.delete(key)
        return 0

    def ping(self) -> bool:
        return True
