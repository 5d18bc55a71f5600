"""Expiring key-value storage shared by conversation state and AI sessions.

Both backends expose the same three calls so a single-process deployment
(memory) and a multi-instance deployment (redis) behave identically.
"""

import json
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

import redis

from chapterbot.config import settings
from chapterbot.logging_config import get_logger

logger = get_logger("kv_store")

KEY_PREFIX = "chapterbot"


def make_key(namespace: str, tenant_id: str, user_id: str) -> str:
    return f"{KEY_PREFIX}:{namespace}:{tenant_id}:{user_id}"


class KVStore(ABC):
    @abstractmethod
    def get(self, key: str) -> Optional[dict]:
        pass

    @abstractmethod
    def set(self, key: str, value: dict, ttl_seconds: int) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove the key. Returns True if something was removed."""
        pass


class MemoryKVStore(KVStore):
    """Process-local store. Expiry is checked on read."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._data: dict[str, tuple[float, dict]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[dict]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._data[key]
                return None
            return dict(value)

    def set(self, key: str, value: dict, ttl_seconds: int) -> None:
        with self._lock:
            self._data[key] = (self._clock() + ttl_seconds, dict(value))

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None


class RedisKVStore(KVStore):
    def __init__(self, client: "redis.Redis"):
        self._client = client

    @classmethod
    def from_url(cls, url: str, socket_timeout_seconds: float = 1.0) -> "RedisKVStore":
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=socket_timeout_seconds,
            socket_timeout=socket_timeout_seconds,
        )
        return cls(client)

    def get(self, key: str) -> Optional[dict]:
        raw = self._client.get(key)
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Dropping undecodable kv entry", extra={"context": {"key": key}})
            self._client.delete(key)
            return None

    def set(self, key: str, value: dict, ttl_seconds: int) -> None:
        self._client.set(key, json.dumps(value, ensure_ascii=False, default=str), ex=max(int(ttl_seconds), 1))

    def delete(self, key: str) -> bool:
        return bool(self._client.delete(key))


_store: Optional[KVStore] = None


def build_kv_store(backend: str) -> KVStore:
    if backend == "redis":
        logger.info("Using redis kv store", extra={"context": {"url": settings.redis_url}})
        return RedisKVStore.from_url(settings.redis_url, settings.redis_socket_timeout_seconds)
    if backend != "memory":
        raise ValueError(f"Unknown state backend: {backend}")
    return MemoryKVStore()


def get_kv_store() -> KVStore:
    global _store
    if _store is None:
        _store = build_kv_store(settings.state_backend)
    return _store


def set_kv_store(store: Optional[KVStore]) -> None:
    """Swap the process-wide store (start-up wiring and tests)."""
    global _store
    _store = store


def serialize(value: Any) -> Any:
    """Make a payload value JSON-safe (UUIDs and dates become strings)."""
    if isinstance(value, dict):
        return {k: serialize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize(v) for v in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)
