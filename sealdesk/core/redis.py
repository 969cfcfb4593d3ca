# sealdesk/core/redis.py

"""
Keyed stores with TTL eviction.

OTP codes and QES sessions live here instead of module-level dicts so they
can be shared across worker processes (Redis) or isolated per test
(in-memory).
"""

# Standard library imports
import threading
import time
from typing import Dict, List, Optional, Protocol, Tuple

# Third party imports
import redis

# Local imports
from sealdesk.core.config import settings


class TTLStore(Protocol):
    """Minimal key/value contract with per-key time to live"""

    def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    def get(self, key: str) -> Optional[str]: ...

    def delete(self, key: str) -> None: ...

    def keys(self, prefix: str) -> List[str]: ...


class RedisTTLStore:
    """TTL store backed by redis SET ... EX"""

    def __init__(self, client: Optional[redis.Redis] = None, namespace: str = "sealdesk"):
        self.client = client or get_redis_client()
        self.namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self.client.set(self._key(key), value, ex=max(1, int(ttl_seconds)))

    def get(self, key: str) -> Optional[str]:
        return self.client.get(self._key(key))

    def delete(self, key: str) -> None:
        self.client.delete(self._key(key))

    def keys(self, prefix: str) -> List[str]:
        strip = len(self.namespace) + 1
        return [k[strip:] for k in self.client.scan_iter(match=self._key(f"{prefix}*"))]


class InMemoryTTLStore:
    """
    Process-local TTL store.

    Expired entries are evicted lazily on read and in bulk by
    purge_expired(). The clock is injectable for tests.
    """

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._data: Dict[str, Tuple[str, float]] = {}

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._data[key] = (value, self._clock() + ttl_seconds)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at <= self._clock():
                del self._data[key]
                return None
            return value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self, prefix: str) -> List[str]:
        now = self._clock()
        with self._lock:
            return [k for k, (_, exp) in self._data.items() if k.startswith(prefix) and exp > now]

    def purge_expired(self) -> int:
        """Evict every expired entry, returning how many were removed"""
        now = self._clock()
        with self._lock:
            expired = [k for k, (_, exp) in self._data.items() if exp <= now]
            for k in expired:
                del self._data[k]
        return len(expired)


def get_redis_client() -> redis.Redis:
    """
    Method for obtaining a redis client
    """
    return redis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        username=settings.redis_username,
        password=settings.redis_password,
        decode_responses=True,
    )


_ttl_store: Optional[RedisTTLStore] = None


def get_ttl_store() -> TTLStore:
    """
    Shared Redis-backed TTL store for OTP codes and QES sessions
    """
    global _ttl_store  # pylint: disable=global-statement
    if _ttl_store is None:
        _ttl_store = RedisTTLStore()
    return _ttl_store
