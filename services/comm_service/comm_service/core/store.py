"""
Redis-backed key-value store shared by every component of the service.

All dispatch, idempotency and verification state is ephemeral and TTL-bound,
so the store is the single source of truth. Every operation that needs
atomicity across concurrent workers (lock release, status compare-and-swap,
attempt counting) is expressed as one Redis command, transaction or Lua script.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Mapping, Optional, Sequence

import redis.asyncio as redis

from comm_service.core.config import Settings

logger = logging.getLogger(__name__)


# Delete KEYS[1] only if it still holds ARGV[1]
COMPARE_AND_DELETE_SCRIPT = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("DEL", KEYS[1])
else
    return 0
end
"""

# ARGV: field, new_value, ttl, n_expected, expected..., extra_field, extra_value, ...
COMPARE_AND_SET_FIELD_SCRIPT = """
local current = redis.call("HGET", KEYS[1], ARGV[1])
local n = tonumber(ARGV[4])
for i = 1, n do
    if current == ARGV[4 + i] then
        redis.call("HSET", KEYS[1], ARGV[1], ARGV[2])
        local idx = 5 + n
        while idx < #ARGV do
            redis.call("HSET", KEYS[1], ARGV[idx], ARGV[idx + 1])
            idx = idx + 2
        end
        local ttl = tonumber(ARGV[3])
        if ttl > 0 then
            redis.call("EXPIRE", KEYS[1], ttl)
        end
        return 1
    end
end
return 0
"""


class KeyValueStore(ABC):
    """Contract the core relies on: string keys, hashes, lists and a few atomic primitives."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]: ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None: ...

    @abstractmethod
    async def set_if_absent(self, key: str, value: str, ttl: int) -> bool:
        """SET NX with expiry; True when this caller created the key."""

    @abstractmethod
    async def delete(self, *keys: str) -> int:
        """Delete keys, returning how many existed."""

    @abstractmethod
    async def exists(self, key: str) -> bool: ...

    @abstractmethod
    async def hset(
        self, key: str, mapping: Mapping[str, str], ttl: Optional[int] = None
    ) -> None: ...

    @abstractmethod
    async def hdel(self, key: str, *fields: str) -> None: ...

    @abstractmethod
    async def hgetall(self, key: str) -> Dict[str, str]: ...

    @abstractmethod
    async def lpush(self, key: str, *values: str) -> None: ...

    @abstractmethod
    async def expire(self, key: str, ttl: int) -> None: ...

    @abstractmethod
    async def lrange(self, key: str, start: int, stop: int) -> List[str]: ...

    @abstractmethod
    async def incr_with_ttl(self, key: str, ttl: int) -> int:
        """Atomically increment a counter and refresh its expiry."""

    @abstractmethod
    async def compare_and_delete(self, key: str, expected: str) -> bool:
        """Delete ``key`` only if its value equals ``expected``."""

    @abstractmethod
    async def compare_and_set_field(
        self,
        key: str,
        field: str,
        expected: Sequence[str],
        new_value: str,
        extra: Optional[Mapping[str, str]] = None,
        ttl: Optional[int] = None,
    ) -> bool:
        """Set ``field`` to ``new_value`` only if it currently holds one of ``expected``."""

    @abstractmethod
    async def publish(self, channel: str, message: str) -> None: ...

    @abstractmethod
    async def ping(self) -> bool: ...

    async def close(self) -> None:
        return None


class RedisStore(KeyValueStore):
    """KeyValueStore implementation on top of ``redis.asyncio``."""

    def __init__(self, client: "redis.Redis"):
        self.client = client
        self._compare_and_delete = client.register_script(COMPARE_AND_DELETE_SCRIPT)
        self._compare_and_set_field = client.register_script(
            COMPARE_AND_SET_FIELD_SCRIPT
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "RedisStore":
        """Create a store from application settings."""
        client = redis.from_url(
            settings.redis_url,
            password=settings.redis_password,
            db=settings.redis_db,
            decode_responses=True,
            socket_timeout=settings.redis_socket_timeout,
            socket_connect_timeout=settings.redis_socket_connect_timeout,
            retry_on_timeout=True,
            health_check_interval=30,
        )
        logger.info(f"Redis store configured: {_redact_url(settings.redis_url)}")
        return cls(client)

    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        if ttl:
            await self.client.set(key, value, ex=ttl)
        else:
            await self.client.set(key, value)

    async def set_if_absent(self, key: str, value: str, ttl: int) -> bool:
        # SET NX EX is a single command; no window between create and expire
        return bool(await self.client.set(key, value, nx=True, ex=ttl))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(await self.client.delete(*keys))

    async def exists(self, key: str) -> bool:
        return bool(await self.client.exists(key))

    async def hset(
        self, key: str, mapping: Mapping[str, str], ttl: Optional[int] = None
    ) -> None:
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.hset(key, mapping=dict(mapping))
            if ttl:
                pipe.expire(key, ttl)
            await pipe.execute()

    async def hdel(self, key: str, *fields: str) -> None:
        if fields:
            await self.client.hdel(key, *fields)

    async def hgetall(self, key: str) -> Dict[str, str]:
        return await self.client.hgetall(key)

    async def lpush(self, key: str, *values: str) -> None:
        await self.client.lpush(key, *values)

    async def expire(self, key: str, ttl: int) -> None:
        await self.client.expire(key, ttl)

    async def lrange(self, key: str, start: int, stop: int) -> List[str]:
        return await self.client.lrange(key, start, stop)

    async def incr_with_ttl(self, key: str, ttl: int) -> int:
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.expire(key, ttl)
            count, _ = await pipe.execute()
        return int(count)

    async def compare_and_delete(self, key: str, expected: str) -> bool:
        result = await self._compare_and_delete(keys=[key], args=[expected])
        return result == 1

    async def compare_and_set_field(
        self,
        key: str,
        field: str,
        expected: Sequence[str],
        new_value: str,
        extra: Optional[Mapping[str, str]] = None,
        ttl: Optional[int] = None,
    ) -> bool:
        args: List[str] = [field, new_value, str(ttl or 0), str(len(expected))]
        args.extend(expected)
        for extra_field, extra_value in (extra or {}).items():
            args.extend([extra_field, extra_value])
        result = await self._compare_and_set_field(keys=[key], args=args)
        return result == 1

    async def publish(self, channel: str, message: str) -> None:
        await self.client.publish(channel, message)

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except Exception as e:
            logger.debug(f"Redis health check failed: {e}")
            return False

    async def close(self) -> None:
        await self.client.aclose()


def _redact_url(url: str) -> str:
    """Hide credentials from a redis URL for logging."""
    scheme, _, rest = url.partition("://")
    host_part = rest.split("@")[-1]
    return f"{scheme}://{host_part}"
