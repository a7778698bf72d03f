"""Distributed lock on top of the shared key-value store.

A lock is a ``lock:{resource}`` key holding a random owner token and a TTL.
Release only deletes the key if it still holds the caller's token, so a
holder whose lock expired can never release a lock taken by a later holder.
Expiry is the only recovery path for a crashed holder.
"""

from __future__ import annotations

import logging
import secrets
from typing import Optional

from comm_service.core.store import KeyValueStore

logger = logging.getLogger(__name__)


class DistributedLock:
    """Acquire/release primitives with ownership tokens and auto-expiry."""

    def __init__(self, store: KeyValueStore, prefix: str = "lock:"):
        self.store = store
        self.prefix = prefix

    def _key(self, resource: str) -> str:
        return f"{self.prefix}{resource}"

    async def acquire(self, resource: str, ttl: int) -> Optional[str]:
        """Return an owner token if the lock was free, else None."""
        token = secrets.token_urlsafe(16)
        if await self.store.set_if_absent(self._key(resource), token, ttl):
            logger.debug(f"Acquired lock '{resource}' (ttl={ttl}s)")
            return token
        return None

    async def release(self, resource: str, token: str) -> bool:
        """Release the lock if ``token`` is still the current holder."""
        released = await self.store.compare_and_delete(self._key(resource), token)
        if not released:
            logger.warning(f"Lock '{resource}' was not held by this owner at release")
        return released
