import hashlib
import json
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple, Union

DEFAULT_MAX_SIZE = 1000
DEFAULT_TTL_MS = 60_000


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


class InMemoryStore:
    """In-process LRU store with per-entry TTL.

    Expired entries are swept on access. Implements the KeyValueStore port.
    """

    def __init__(self, max_size: int = DEFAULT_MAX_SIZE, default_ttl_ms: int = DEFAULT_TTL_MS,
                 clock: Callable[[], float] = _monotonic_ms):
        self.max_size = max(1, int(max_size))
        self.default_ttl_ms = default_ttl_ms
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[str, float]]" = OrderedDict()
        self._lock = threading.Lock()
        self.stats = CacheStats()

    async def get(self, key: str) -> Optional[str]:
        with self._lock:
            self._sweep()
            entry = self._entries.get(key)
            if entry is None:
                self.stats.misses += 1
                return None
            self._entries.move_to_end(key)
            self.stats.hits += 1
            return entry[0]

    async def set(self, key: str, value: str, ttl_ms: Optional[int] = None) -> None:
        ttl = self.default_ttl_ms if ttl_ms is None else ttl_ms
        with self._lock:
            self._sweep()
            self._entries[key] = (value, self._clock() + ttl)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_size:
                self._entries.popitem(last=False)
                self.stats.evictions += 1

    async def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    async def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            self._sweep()
            return len(self._entries)

    def get_stats(self) -> Dict[str, int]:
        with self._lock:
            return {"hits": self.stats.hits, "misses": self.stats.misses, "evictions": self.stats.evictions}

    def reset_stats(self) -> None:
        with self._lock:
            self.stats = CacheStats()

    def _sweep(self) -> None:
        now = self._clock()
        expired = [key for key, (_, expires_at) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
            self.stats.evictions += 1


def compute_cache_key(method: str, url: str, user_id: Optional[Union[str, int]] = None) -> str:
    """Key for a cached HTTP response: ``http:`` + sha256 of METHOD::url[::user_id]."""
    parts = [method.upper(), url]
    if user_id is not None:
        parts.append(str(user_id))
    digest = hashlib.sha256("::".join(parts).encode("utf-8")).hexdigest()
    return f"http:{digest}"


def should_cache(method: str, status_code: int) -> bool:
    return method.upper() == "GET" and 200 <= status_code < 300


def serialize_cached_response(status: int, headers: Dict[str, str], body: Any) -> str:
    return json.dumps({"status": status, "headers": headers, "body": body})


def deserialize_cached_response(value: str) -> Dict[str, Any]:
    return json.loads(value)
