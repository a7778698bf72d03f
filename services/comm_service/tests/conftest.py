import json
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import httpx
import pytest

from comm_service.channels.base import ConfirmationActions, DeliveryResult, NotificationChannel
from comm_service.channels.registry import ChannelRegistry
from comm_service.core.config import Settings
from comm_service.core.store import KeyValueStore
from comm_service.schemas.common import Channel, Recipient
from comm_service.services.container import build_container


class FakeClock:
    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class MemoryStore(KeyValueStore):
    """In-process KeyValueStore with TTLs driven by a controllable clock.

    Methods never await, so each call is atomic with respect to other tasks,
    matching the single-command atomicity the Redis implementation relies on.
    """

    def __init__(self, clock: Optional[FakeClock] = None):
        self.clock = clock or FakeClock()
        self.data: Dict[str, Any] = {}
        self.expiry: Dict[str, float] = {}
        self.published: List[tuple] = []

    def _alive(self, key: str) -> bool:
        deadline = self.expiry.get(key)
        if deadline is not None and self.clock() >= deadline:
            self.data.pop(key, None)
            self.expiry.pop(key, None)
        return key in self.data

    def _expire(self, key: str, ttl: Optional[int]) -> None:
        if ttl:
            self.expiry[key] = self.clock() + ttl

    def ttl(self, key: str) -> Optional[float]:
        if not self._alive(key) or key not in self.expiry:
            return None
        return self.expiry[key] - self.clock()

    async def get(self, key):
        return self.data[key] if self._alive(key) else None

    async def set(self, key, value, ttl=None):
        self.data[key] = value
        self.expiry.pop(key, None)
        self._expire(key, ttl)

    async def set_if_absent(self, key, value, ttl):
        if self._alive(key):
            return False
        await self.set(key, value, ttl)
        return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self._alive(key):
                del self.data[key]
                self.expiry.pop(key, None)
                removed += 1
        return removed

    async def exists(self, key):
        return self._alive(key)

    async def hset(self, key, mapping: Mapping[str, str], ttl=None):
        if not self._alive(key):
            self.data[key] = {}
        self.data[key].update(mapping)
        self._expire(key, ttl)

    async def hdel(self, key, *fields):
        if self._alive(key):
            for field in fields:
                self.data[key].pop(field, None)

    async def hgetall(self, key):
        return dict(self.data[key]) if self._alive(key) else {}

    async def lpush(self, key, *values):
        if not self._alive(key):
            self.data[key] = []
        for value in values:
            self.data[key].insert(0, value)

    async def expire(self, key, ttl):
        if self._alive(key):
            self._expire(key, ttl)

    async def lrange(self, key, start, stop):
        if not self._alive(key):
            return []
        items = self.data[key]
        return items[start:] if stop == -1 else items[start : stop + 1]

    async def incr_with_ttl(self, key, ttl):
        current = int(self.data[key]) if self._alive(key) else 0
        self.data[key] = str(current + 1)
        self._expire(key, ttl)
        return current + 1

    async def compare_and_delete(self, key, expected):
        if self._alive(key) and self.data[key] == expected:
            await self.delete(key)
            return True
        return False

    async def compare_and_set_field(
        self,
        key,
        field,
        expected: Sequence[str],
        new_value,
        extra=None,
        ttl=None,
    ):
        current = self.data[key].get(field) if self._alive(key) else None
        if current not in expected:
            return False
        self.data[key][field] = new_value
        self.data[key].update(extra or {})
        self._expire(key, ttl)
        return True

    async def publish(self, channel, message):
        self.published.append((channel, message))

    async def ping(self):
        return True


class RecordingChannel(NotificationChannel):
    """Channel double that records deliveries and can be told to fail."""

    def __init__(self, name: str, fail: bool = False):
        self.name = name
        self.fail = fail
        self.sent: List[SimpleNamespace] = []

    def recipient_for(self, to: Recipient) -> Optional[str]:
        if self.name == Channel.TELEGRAM.value:
            return str(to.telegram_chat_id) if to.telegram_chat_id is not None else None
        return to.email

    async def deliver(
        self,
        recipient: str,
        text: str,
        *,
        subject: Optional[str] = None,
        actions: Optional[ConfirmationActions] = None,
    ) -> DeliveryResult:
        self.sent.append(
            SimpleNamespace(recipient=recipient, text=text, subject=subject, actions=actions)
        )
        if self.fail:
            return self._failure(recipient, f"{self.name} unavailable")
        return self._success(recipient)


class Downstream:
    """Records outbound command calls and answers them with ``handler``."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.handler: Callable[[httpx.Request], httpx.Response] = lambda request: httpx.Response(
            200, json={"ok": True}
        )

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    def bodies(self) -> List[Dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests]


def make_settings(**overrides) -> Settings:
    values = dict(
        jwt_secret_key="test-secret",
        base_url="http://testserver",
        admins_telegram_ids="111,222",
        admin_email="ops@example.com",
        retry_delay_seconds=0.0,
        telegram_webhook_secret="hook-secret",
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemoryStore(clock)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def telegram():
    return RecordingChannel("telegram")


@pytest.fixture
def email():
    return RecordingChannel("email")


@pytest.fixture
def downstream():
    return Downstream()


@pytest.fixture
def container(settings, store, telegram, email, downstream):
    registry = ChannelRegistry({Channel.TELEGRAM: telegram, Channel.EMAIL: email})
    client = httpx.AsyncClient(transport=httpx.MockTransport(downstream))
    return build_container(settings, store=store, channels=registry, http_client=client)


@pytest.fixture
def auth_headers(container):
    token = container.tokens.issue("trading-service", ["command.dispatch"])
    return {"Authorization": f"Bearer {token}"}
