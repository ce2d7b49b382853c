"""
phiguard Key-Value Storage

Two logically distinct scopes back the identity guard and map storage:
- session: ephemeral, per-session state (observed fingerprints), TTL-bound
- durable: state that survives restarts (confirmed fingerprint, sealed maps)

Redis is used when configured; the in-memory store serves tests and
single-process deployments.
"""

import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any

from phiguard.crypto.cipher import SealedMap
from phiguard.errors import StorageError

logger = logging.getLogger(__name__)


# ============================================
# Constants
# ============================================

SESSION_PREFIX = "phiguard:session:"
DURABLE_PREFIX = "phiguard:durable:"
SEALED_MAP_KEY_PREFIX = "phi_map_"


# ============================================
# Stores
# ============================================


class KeyValueStore(ABC):
    """Async get/set/remove over JSON-serializable values."""

    @abstractmethod
    async def get(self, key: str) -> Any | None: ...

    @abstractmethod
    async def set(self, key: str, value: Any) -> None: ...

    @abstractmethod
    async def remove(self, key: str) -> None: ...

    async def close(self) -> None:
        return None


class InMemoryStore(KeyValueStore):
    """Process-local store. Values are copied through JSON on the way in."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    async def get(self, key: str) -> Any | None:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value)

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def __len__(self) -> int:
        return len(self._data)


class RedisStore(KeyValueStore):
    """Redis-backed store.

    Attributes:
        prefix: Namespace prepended to every key.
        ttl_seconds: Expiry applied on set (None keeps keys forever).
    """

    def __init__(
        self,
        redis_url: str,
        prefix: str = DURABLE_PREFIX,
        ttl_seconds: int | None = None,
    ) -> None:
        self.prefix = prefix
        self.ttl_seconds = ttl_seconds
        self._redis_url = redis_url
        self._redis: Any | None = None

    async def _get_redis(self) -> Any:
        """Lazily initialize the Redis connection."""
        if self._redis is None:
            import redis.asyncio as redis

            self._redis = redis.from_url(self._redis_url, decode_responses=True)
        return self._redis

    def _make_key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def get(self, key: str) -> Any | None:
        from redis.exceptions import RedisError

        try:
            redis = await self._get_redis()
            cached = await redis.get(self._make_key(key))
        except RedisError as e:
            raise StorageError(f"Redis get failed: {e}") from e
        return json.loads(cached) if cached is not None else None

    async def set(self, key: str, value: Any) -> None:
        from redis.exceptions import RedisError

        try:
            redis = await self._get_redis()
            await redis.set(self._make_key(key), json.dumps(value), ex=self.ttl_seconds)
        except RedisError as e:
            raise StorageError(f"Redis set failed: {e}") from e

    async def remove(self, key: str) -> None:
        from redis.exceptions import RedisError

        try:
            redis = await self._get_redis()
            await redis.delete(self._make_key(key))
        except RedisError as e:
            raise StorageError(f"Redis delete failed: {e}") from e

    async def close(self) -> None:
        """Close Redis connection."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


# ============================================
# Sealed map persistence
# ============================================


class SealedMapStore:
    """Persists SealedMaps keyed by encounter id. Never sees plaintext."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    @staticmethod
    def _key(encounter_id: str) -> str:
        return f"{SEALED_MAP_KEY_PREFIX}{encounter_id}"

    async def store(self, encounter_id: str, sealed: SealedMap) -> None:
        record = {
            **sealed.to_wire(),
            "encounterId": encounter_id,
            "timestamp": int(time.time() * 1000),
        }
        await self._store.set(self._key(encounter_id), record)

    async def load(self, encounter_id: str) -> SealedMap | None:
        record = await self._store.get(self._key(encounter_id))
        if record is None:
            return None
        return SealedMap.from_wire(record)

    async def delete(self, encounter_id: str) -> None:
        await self._store.remove(self._key(encounter_id))
