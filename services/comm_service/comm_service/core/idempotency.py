"""Idempotency guard for mutating intake requests.

Given an optional client-supplied key, guarantees that at most one execution of
the wrapped operation happens per key inside the retention window, and replays
the first response to duplicate callers.

Flow:
 - no key: run the operation, no guarantee requested
 - ``idempotency:{key}`` cached: return it without running anything
 - otherwise claim ``idempotency:{key}:lock`` with SET NX; a failed claim means
   the same request is in flight elsewhere and the caller gets a Conflict
 - run, cache the JSON response, release the lock (success or failure)
"""

from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from comm_service.core.exceptions import ConflictError
from comm_service.core.lock import DistributedLock
from comm_service.core.metrics import IDEMPOTENCY_TOTAL
from comm_service.core.store import KeyValueStore

logger = logging.getLogger(__name__)

Operation = Callable[[], Awaitable[Dict[str, Any]]]


class IdempotencyGuard:
    """Deduplicates externally retried calls using the shared store."""

    def __init__(
        self,
        store: KeyValueStore,
        lock: DistributedLock,
        ttl: int = 86400,
        lock_ttl: int = 30,
    ):
        self.store = store
        self.lock = lock
        self.ttl = ttl
        self.lock_ttl = lock_ttl

    @staticmethod
    def cache_key(key: str) -> str:
        return f"idempotency:{key}"

    async def execute(self, key: Optional[str], operation: Operation) -> Dict[str, Any]:
        """Run ``operation`` at most once for ``key`` and return its (cached) response."""
        if not key:
            return await operation()

        cache_key = self.cache_key(key)
        cached = await self.store.get(cache_key)
        if cached is not None:
            logger.info(f"Replaying cached response for idempotency key {key}")
            IDEMPOTENCY_TOTAL.labels(result="replayed").inc()
            return json.loads(cached)

        lock_resource = f"{cache_key}:lock"
        token = await self.lock.acquire(lock_resource, self.lock_ttl)
        if token is None:
            IDEMPOTENCY_TOTAL.labels(result="conflict").inc()
            raise ConflictError()

        try:
            # A previous holder may have finished between our cache read and lock claim
            cached = await self.store.get(cache_key)
            if cached is not None:
                IDEMPOTENCY_TOTAL.labels(result="replayed").inc()
                return json.loads(cached)

            response = await operation()
            await self.store.set(
                cache_key, json.dumps(response, default=str), self.ttl
            )
            IDEMPOTENCY_TOTAL.labels(result="executed").inc()
            return response
        finally:
            await self.lock.release(lock_resource, token)
